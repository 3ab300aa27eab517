"""
Mock Microsoft Graph API client for testing without Azure authentication.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pendulum

from ..domain.exceptions import CalendarAPIError
from ..domain.models import (
    Appointment,
    BusyStatus,
    ClassifiedFreeBusy,
    MeetingStatus,
    ResponseStatus,
    TimeRange,
    User,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "mock_calendar_data.json"


class MockGraphClient:
    """
    Mock client that simulates Microsoft Graph API responses.

    This client loads calendar events from mock_calendar_data.json (or the
    given file) and serves both the free/busy and the appointment fetch from
    them, without requiring Microsoft authentication or API access.

    Calendars that have no events at all are left out of the free/busy result,
    the same way the server omits mailboxes it knows nothing about.
    """

    def __init__(
        self,
        access_token: str = "mock_token",
        timezone: str = "Europe/Berlin",
        data_file: Optional[Path] = None,
        fail_for: Iterable[str] = (),
    ):
        """
        Initialize the mock client.

        Args:
            access_token: Dummy token (not used, but kept for interface compatibility)
            timezone: Timezone for naive timestamps in the data file
            data_file: Optional path to an alternative events file
            fail_for: Emails whose appointment fetch raises CalendarAPIError
        """
        self.access_token = access_token
        self.timezone = timezone
        self.data_file = data_file or DEFAULT_DATA_FILE
        self.fail_for = {email.lower() for email in fail_for}
        self.calendar_events = self._load_calendar_data()

    def _load_calendar_data(self) -> List[Dict[str, Any]]:
        """Load mock calendar data from JSON file."""
        if not self.data_file.exists():
            logger.warning("Mock data file %s not found, using empty calendars", self.data_file)
            return []

        with open(self.data_file, "r", encoding="utf-8") as f:
            return json.load(f)

    def _events_for(self, user: User, window: TimeRange) -> Iterable[tuple]:
        calendar_id = (user.calendar_id or user.email).lower()

        for event in self.calendar_events:
            if event.get("calendarId", "").lower() != calendar_id:
                continue

            try:
                time_range = TimeRange(
                    start=pendulum.parse(event["start"], tz=self.timezone),
                    end=pendulum.parse(event["end"], tz=self.timezone),
                )
            except (KeyError, ValueError) as e:
                logger.debug("Skipping invalid mock event %r: %s", event, e)
                continue

            if window.is_unbounded or time_range.overlaps(window):
                yield event, time_range

    def _has_calendar(self, user: User) -> bool:
        calendar_id = (user.calendar_id or user.email).lower()
        return any(event.get("calendarId", "").lower() == calendar_id for event in self.calendar_events)

    def get_free_busy(
        self,
        users: Sequence[User],
        window: TimeRange,
    ) -> Dict[str, ClassifiedFreeBusy]:
        """
        Derive free/busy ranges from the mock events.

        Returns:
            Dictionary mapping lower-cased email -> ClassifiedFreeBusy
        """
        free_busy: Dict[str, ClassifiedFreeBusy] = {}

        for user in users:
            if not self._has_calendar(user):
                continue

            classified = ClassifiedFreeBusy()
            for event, time_range in self._events_for(user, window):
                status = BusyStatus.from_show_as(event.get("showAs", "busy"))
                if status == BusyStatus.FREE:
                    continue
                if status == BusyStatus.TENTATIVE:
                    classified.tentative.append(time_range)
                else:
                    classified.all.append(time_range)

            free_busy[user.key] = classified

        return free_busy

    def get_appointments(self, user: User, window: TimeRange) -> List[Appointment]:
        """
        Return the mock events of a user as appointments.

        Raises:
            CalendarAPIError: If the user is listed in ``fail_for``
        """
        if user.key in self.fail_for:
            raise CalendarAPIError(f"Simulated calendarView failure for {user.email}")

        return [
            Appointment(
                subject=event.get("subject", ""),
                time_range=time_range,
                response_status=ResponseStatus.parse(event.get("responseStatus")),
                meeting_status=MeetingStatus(event.get("meetingStatus", "confirmed")),
                busy_status=BusyStatus.from_show_as(event.get("showAs", "busy")),
                location=event.get("location", ""),
            )
            for event, time_range in self._events_for(user, window)
        ]

    def test_connection(self) -> Dict[str, Any]:
        """
        Mock connection test.

        Returns:
            Mock organization data
        """
        return {
            "displayName": "Mock Organization",
            "id": "00000000-0000-0000-0000-000000000000",
        }

