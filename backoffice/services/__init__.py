"""
Services package for the back-office API.
"""

from .contacts import ContactService
from .crm_settings import CrmSettingsService
from .follow_up import FollowUpService
from .identity import AuthResult, IdentityGate
from .orders import OrderService
from .payment_aging import PaymentAgingService
from .pricing import PricingEngine

__all__ = [
    "AuthResult",
    "ContactService",
    "CrmSettingsService",
    "FollowUpService",
    "IdentityGate",
    "OrderService",
    "PaymentAgingService",
    "PricingEngine",
]
