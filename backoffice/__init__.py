"""
Juice Factory Back-Office API

Order entry, pricing and CRM follow-up for a juice factory's back office,
backed by a PostgreSQL database.
"""

__version__ = "0.1.0"
