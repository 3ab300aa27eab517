"""
Tests for the scoped appointment lookup helper.
"""

import threading
from typing import Dict, List

import pendulum

from fbsync.domain.exceptions import CalendarAPIError
from fbsync.domain.models import Appointment, TimeRange, User
from fbsync.services.appointment_lookup import AppointmentLookup

WINDOW = TimeRange(
    start=pendulum.parse("2024-11-25 09:00", tz="Europe/Berlin"),
    end=pendulum.parse("2024-11-25 17:00", tz="Europe/Berlin"),
)


def _appointment(subject: str) -> Appointment:
    return Appointment(subject=subject, time_range=WINDOW)


class StubAppointmentClient:
    """Minimal stub matching AppointmentClientProtocol."""

    def __init__(self, appointments: Dict[str, List[Appointment]], failing=()):
        self._appointments = appointments
        self._failing = set(failing)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def get_appointments(self, user, window):
        with self._lock:
            self.calls.append(user.key)
        if user.key in self._failing:
            raise CalendarAPIError(f"boom for {user.email}")
        return self._appointments.get(user.key, [])


class TestAppointmentLookup:
    """Tests for AppointmentLookup."""

    def test_returns_each_users_appointments(self):
        anna = User(email="Anna@example.com")
        ben = User(email="ben@example.com")
        client = StubAppointmentClient({"anna@example.com": [_appointment("Standup")]})

        with AppointmentLookup(client, [anna, ben], WINDOW) as lookup:
            assert [a.subject for a in lookup.result(anna)] == ["Standup"]
            assert lookup.result(ben) == []
            assert len(lookup) == 2

        assert sorted(client.calls) == ["anna@example.com", "ben@example.com"]

    def test_failed_fetch_yields_empty_list(self, caplog):
        anna = User(email="anna@example.com")
        ben = User(email="ben@example.com")
        client = StubAppointmentClient(
            {"ben@example.com": [_appointment("Workshop")]},
            failing=["anna@example.com"],
        )

        with AppointmentLookup(client, [anna, ben], WINDOW) as lookup:
            assert lookup.result(anna) == []
            assert [a.subject for a in lookup.result(ben)] == ["Workshop"]

        assert "Appointment lookup failed for anna@example.com" in caplog.text

    def test_unknown_user_yields_empty_list(self):
        client = StubAppointmentClient({})

        with AppointmentLookup(client, [], WINDOW) as lookup:
            assert lookup.result(User(email="nobody@example.com")) == []

    def test_fetches_start_before_results_are_requested(self):
        started = threading.Event()

        class SignallingClient:
            def get_appointments(self, user, window):
                started.set()
                return []

        with AppointmentLookup(SignallingClient(), [User(email="a@example.com")], WINDOW):
            assert started.wait(timeout=5)

    def test_close_cancels_pending_and_joins_running(self):
        started = threading.Event()
        release = threading.Event()
        finished: List[str] = []

        class BlockingClient:
            def get_appointments(self, user, window):
                if user.key == "first@example.com":
                    started.set()
                    release.wait(timeout=5)
                finished.append(user.key)
                return [_appointment(user.key)]

        first = User(email="first@example.com")
        second = User(email="second@example.com")
        lookup = AppointmentLookup(BlockingClient(), [first, second], WINDOW, max_workers=1)
        assert started.wait(timeout=5)

        timer = threading.Timer(0.2, release.set)
        timer.start()
        lookup.close()
        timer.join()

        # Running fetch was waited for, the queued one never ran
        assert finished == ["first@example.com"]
        assert [a.subject for a in lookup.result(first)] == ["first@example.com"]
        assert lookup.result(second) == []

    def test_close_is_idempotent(self):
        lookup = AppointmentLookup(StubAppointmentClient({}), [User(email="a@example.com")], WINDOW)

        lookup.close()
        lookup.close()
