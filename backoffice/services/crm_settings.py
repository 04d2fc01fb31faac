"""
CRM Settings Service

Reads and updates the follow-up day ranges shown as CRM list filters and
summary cards.
"""

import logging
from typing import List, Sequence

from pydantic import ValidationError as PydanticValidationError

from backoffice.models.domain import DayRange
from backoffice.stores.base import CrmStore
from backoffice.utils.errors import PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

FOLLOW_UP_RANGES_KEY = "follow_up_day_ranges"
FOLLOW_UP_RANGES_DESCRIPTION = "Day ranges for customer follow-up (CRM list and chat)"

DEFAULT_DAY_RANGES = [
    DayRange(min_days=0, max_days=7, label="0-7 days", color="green"),
    DayRange(min_days=8, max_days=14, label="8-14 days", color="yellow"),
    DayRange(min_days=15, max_days=30, label="15-30 days", color="orange"),
    DayRange(min_days=31, max_days=60, label="31-60 days", color="red"),
    DayRange(min_days=61, max_days=None, label="60+ days", color="purple"),
]


class CrmSettingsService:
    """Follow-up day range configuration"""

    def __init__(self, store: CrmStore):
        self.store = store

    def get_day_ranges(self) -> List[DayRange]:
        """Configured ranges, or the defaults when none (or an unreadable value) is stored"""
        stored = self.store.get_setting(FOLLOW_UP_RANGES_KEY)
        if not stored:
            return list(DEFAULT_DAY_RANGES)

        try:
            return [DayRange.model_validate(entry) for entry in stored]
        except (PydanticValidationError, TypeError) as e:
            logger.warning(f"Ignoring invalid {FOLLOW_UP_RANGES_KEY} setting: {e}")
            return list(DEFAULT_DAY_RANGES)

    def update_day_ranges(self, user_id: str, ranges: Sequence[DayRange]) -> List[DayRange]:
        """
        Replace the day ranges. Admin only; ranges are stored sorted by their
        lower bound.

        Raises:
            PermissionDeniedError: the caller is not an admin
            ValidationError: the list is empty
        """
        role = self.store.get_user_role(user_id)
        if role != "admin":
            raise PermissionDeniedError("Only admin can update settings")

        if not ranges:
            raise ValidationError("dayRanges is required and must be a non-empty array")

        ordered = sorted(ranges, key=lambda day_range: day_range.min_days)
        stored = self.store.upsert_setting(
            FOLLOW_UP_RANGES_KEY,
            [day_range.model_dump(by_alias=True) for day_range in ordered],
            FOLLOW_UP_RANGES_DESCRIPTION,
        )
        logger.info(f"User {user_id} updated follow-up day ranges ({len(ordered)} ranges)")
        return [DayRange.model_validate(entry) for entry in stored]
