"""
Application services for reconciling users' calendars.

The service coordinates the batch free/busy fetch and the per-user
appointment fetches through calendar client adapters and delegates the actual
merge to the domain-level ``ReconciliationEngine``. Both adapters are plain
protocols so tests can swap in stubs.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from ..domain.exceptions import InvalidWindowError
from ..domain.models import (
    UNBOUNDED,
    AccessLevel,
    Appointment,
    ClassifiedFreeBusy,
    TimeRange,
    Timeline,
    User,
)
from ..domain.reconciler import ReconciliationEngine
from ..domain.registry import UserRegistry
from .appointment_lookup import DEFAULT_MAX_WORKERS, AppointmentLookup

logger = logging.getLogger(__name__)


class FreeBusyClientProtocol(Protocol):
    """Batch free/busy fetch needed by the service."""

    def get_free_busy(
        self,
        users: Sequence[User],
        window: TimeRange,
    ) -> Dict[str, ClassifiedFreeBusy]:
        """Return free/busy ranges keyed by lower-cased email. Users may be omitted."""


class AppointmentClientProtocol(Protocol):
    """Per-user appointment fetch needed by the service."""

    def get_appointments(self, user: User, window: TimeRange) -> List[Appointment]:
        """Return the user's appointments in the window, empty if there are none."""


class CalendarReconciliationService:
    """
    Fetches free/busy data and appointments for users and merges them.

    The batch free/busy request runs on the calling thread while the
    appointment requests run on an ``AppointmentLookup`` pool, so total
    latency is roughly the slower of the two rather than their sum.
    """

    def __init__(
        self,
        free_busy_client: FreeBusyClientProtocol,
        appointment_client: AppointmentClientProtocol,
        engine: Optional[ReconciliationEngine] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._free_busy_client = free_busy_client
        self._appointment_client = appointment_client
        self._engine = engine or ReconciliationEngine()
        self._max_workers = max_workers

    def reconcile_one(self, user: User, window: TimeRange = UNBOUNDED) -> User:
        """
        Reconcile a single user.

        Without a window this queries all available history; unlike
        ``reconcile_batch`` the unbounded window is accepted here.
        """
        users = UserRegistry()
        users[user.key] = user
        self._reconcile_users(users, window)
        return user

    def reconcile_batch(
        self,
        users: Mapping[str, User],
        window: TimeRange,
    ) -> Dict[str, Timeline]:
        """
        Reconcile every user in ``users`` over ``window``.

        Users present in the free/busy result get ``access_level`` and
        ``timeline`` overwritten in place; the others are left untouched.

        Returns:
            Mapping of email key -> Timeline for the users that were reconciled

        Raises:
            InvalidWindowError: If no concrete window was given
        """
        if window is None or window.is_unbounded:
            raise InvalidWindowError("Must specify a time range")

        return self._reconcile_users(users, window)

    def _reconcile_users(
        self,
        users: Mapping[str, User],
        window: TimeRange,
    ) -> Dict[str, Timeline]:
        timelines: Dict[str, Timeline] = {}
        if not users:
            return timelines

        user_list = list(users.values())

        with AppointmentLookup(
            self._appointment_client,
            user_list,
            window,
            max_workers=self._max_workers,
        ) as lookup:
            free_busy = self._free_busy_client.get_free_busy(user_list, window)

            for user in user_list:
                # No data from the server for this user is fine, skip it.
                if user.key not in free_busy:
                    logger.info("No free/busy data returned for %s", user.email)
                    continue

                user.access_level = AccessLevel.READ
                appointments = lookup.result(user)

                user.timeline = self._engine.reconcile(
                    window,
                    free_busy[user.key] or ClassifiedFreeBusy(),
                    appointments,
                )
                timelines[user.key] = user.timeline

        logger.info("Reconciled %d of %d users for %s", len(timelines), len(user_list), window)
        return timelines
