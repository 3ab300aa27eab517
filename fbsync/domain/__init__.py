"""
Domain layer - Pure business logic without external dependencies.
"""

from .exceptions import AuthenticationError, CalendarAPIError, FbSyncError, InvalidWindowError
from .interval_index import IntervalIndex
from .models import (
    UNBOUNDED,
    AccessLevel,
    Appointment,
    BusyStatus,
    BusyTimeBlock,
    ClassifiedFreeBusy,
    MeetingStatus,
    ResponseStatus,
    TimeRange,
    Timeline,
    User,
)
from .reconciler import ReconciliationEngine, merge_free_busy_lists
from .registry import UserRegistry

__all__ = [
    "UNBOUNDED",
    "AccessLevel",
    "Appointment",
    "AuthenticationError",
    "BusyStatus",
    "BusyTimeBlock",
    "CalendarAPIError",
    "ClassifiedFreeBusy",
    "FbSyncError",
    "IntervalIndex",
    "InvalidWindowError",
    "MeetingStatus",
    "ReconciliationEngine",
    "ResponseStatus",
    "TimeRange",
    "Timeline",
    "User",
    "UserRegistry",
    "merge_free_busy_lists",
]
