"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .appointment_lookup import AppointmentLookup
from .reconciliation import (
    AppointmentClientProtocol,
    CalendarReconciliationService,
    FreeBusyClientProtocol,
)

__all__ = [
    "AppointmentClientProtocol",
    "AppointmentLookup",
    "CalendarReconciliationService",
    "FreeBusyClientProtocol",
]
