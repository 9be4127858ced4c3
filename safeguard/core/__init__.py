"""
Core domain models and pure functions for SafeGuard.

This module contains the domain models and pure business logic
that are independent of external I/O and infrastructure concerns.
"""

from .models import (
    IncidentRecord, IncidentDraft, ChangeEvent, Coordinates, CoordinateResult,
    NotificationEvent, NotificationPreferences, QuietHours, MutationError, ApiResult,
)
from .coordinates import resolve_coordinates
from .verification import VERIFICATION_THRESHOLD, apply_confirmation, is_verified_count

__all__ = [
    "IncidentRecord", "IncidentDraft", "ChangeEvent", "Coordinates", "CoordinateResult",
    "NotificationEvent", "NotificationPreferences", "QuietHours", "MutationError", "ApiResult",
    "resolve_coordinates", "VERIFICATION_THRESHOLD", "apply_confirmation", "is_verified_count",
]
