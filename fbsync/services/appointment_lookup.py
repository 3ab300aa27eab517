"""
Scoped background retrieval of per-user appointment lists.

``AppointmentLookup`` starts one fetch per user as soon as it is created so
the fetches run while the caller is blocked on the batch free/busy request.
Results are collected per user on demand.
"""

from __future__ import annotations

import logging
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Dict, Iterable, List

from ..domain.models import Appointment, TimeRange, User

if TYPE_CHECKING:
    from .reconciliation import AppointmentClientProtocol

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class AppointmentLookup:
    """
    Runs ``get_appointments`` for every user on a private thread pool.

    Use it as a context manager. Leaving the block cancels fetches that have
    not started yet and waits for running ones, whether or not their results
    were consumed.

    A failing fetch is confined to its user: ``result`` logs the error and
    returns an empty list.
    """

    def __init__(
        self,
        client: "AppointmentClientProtocol",
        users: Iterable[User],
        window: TimeRange,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._client = client
        self._window = window
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="appointment-lookup",
        )
        self._futures: Dict[str, Future] = {}
        self._closed = False

        try:
            for user in users:
                self._futures[user.key] = self._executor.submit(
                    self._client.get_appointments, user, window
                )
        except BaseException:
            self.close()
            raise

        logger.debug("Started %d appointment lookups for %s", len(self._futures), window)

    def result(self, user: User) -> List[Appointment]:
        """
        Return the appointments fetched for ``user``.

        Blocks until that user's fetch has finished. Users that were never
        submitted, cancelled fetches and failed fetches all yield an empty list.
        """
        future = self._futures.get(user.key)
        if future is None:
            return []

        try:
            appointments = future.result()
        except CancelledError:
            logger.debug("Appointment lookup for %s was cancelled", user.email)
            return []
        except Exception as exc:
            logger.warning("Appointment lookup failed for %s: %s", user.email, exc)
            return []

        return list(appointments or [])

    def close(self) -> None:
        """Cancel pending fetches and join the running ones."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> "AppointmentLookup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._futures)
