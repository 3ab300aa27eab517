"""
Tests for the Microsoft Graph adapter, with the HTTP session stubbed out.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List

import pendulum
import pytest
import requests

from fbsync.adapters.graph_client import GraphClient
from fbsync.domain.exceptions import CalendarAPIError
from fbsync.domain.models import (
    UNBOUNDED,
    BusyStatus,
    MeetingStatus,
    ResponseStatus,
    TimeRange,
    User,
)

WINDOW = TimeRange(
    start=pendulum.parse("2024-11-25 00:00", tz="Europe/Berlin"),
    end=pendulum.parse("2024-11-29 23:59", tz="Europe/Berlin"),
)


class FakeResponse:
    def __init__(self, payload: Dict[str, Any], status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")

    def json(self):
        return self._payload


class RecordingSession:
    """Replays canned responses and records requests."""

    def __init__(self, responses: List[FakeResponse]):
        self._responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        return self._responses.pop(0)


def _client(responses: List[FakeResponse]) -> GraphClient:
    client = GraphClient(access_token="token", endpoint="https://graph.example.com/v1.0/")
    session = RecordingSession(responses)
    client._create_session = lambda: session
    return client


def _item(status: str, start: str, end: str) -> Dict[str, Any]:
    return {
        "status": status,
        "start": {"dateTime": f"2024-11-25T{start}:00.0000000", "timeZone": "UTC"},
        "end": {"dateTime": f"2024-11-25T{end}:00.0000000", "timeZone": "UTC"},
    }


class TestGetFreeBusy:
    """Tests for GraphClient.get_free_busy."""

    def test_classifies_schedule_items(self):
        client = _client([FakeResponse({
            "value": [
                {
                    "scheduleId": "Anna@example.com",
                    "scheduleItems": [
                        _item("busy", "08:00", "09:00"),
                        _item("tentative", "10:00", "11:00"),
                        _item("oof", "12:00", "13:00"),
                        _item("free", "14:00", "15:00"),
                        _item("workingElsewhere", "15:00", "16:00"),
                    ],
                },
                {
                    "scheduleId": "ghost@example.com",
                    "error": {"message": "The specified object was not found in the store."},
                },
            ]
        })])
        users = [User(email="Anna@example.com"), User(email="ghost@example.com")]

        result = client.get_free_busy(users, WINDOW)

        assert set(result) == {"anna@example.com"}
        classified = result["anna@example.com"]
        assert [r.start.format("HH:mm") for r in classified.all] == ["09:00", "13:00", "16:00"]
        assert [r.start.format("HH:mm") for r in classified.tentative] == ["11:00"]
        assert classified.all[0].start.timezone_name == "Europe/Berlin"

        request = client.session.requests[0]
        assert request["method"] == "POST"
        assert request["url"] == "https://graph.example.com/v1.0/users/Anna@example.com/calendar/getSchedule"
        assert request["json"]["schedules"] == ["Anna@example.com", "ghost@example.com"]
        assert request["json"]["startTime"] == {"dateTime": "2024-11-24T23:00:00", "timeZone": "UTC"}

    def test_skips_unparseable_items(self):
        client = _client([FakeResponse({
            "value": [{
                "scheduleId": "a@example.com",
                "scheduleItems": [
                    {"status": "busy", "start": {"dateTime": "garbage", "timeZone": "UTC"},
                     "end": {"dateTime": "2024-11-25T10:00:00", "timeZone": "UTC"}},
                    {"status": "busy"},
                    _item("busy", "11:00", "12:00"),
                ],
            }]
        })])

        result = client.get_free_busy([User(email="a@example.com")], WINDOW)

        assert len(result["a@example.com"].all) == 1

    def test_long_windows_are_split(self):
        long_window = TimeRange(
            start=pendulum.parse("2024-01-01 00:00", tz="UTC"),
            end=pendulum.parse("2024-06-01 00:00", tz="UTC"),
        )
        empty = {"value": [{"scheduleId": "a@example.com", "scheduleItems": []}]}
        client = _client([FakeResponse(empty) for _ in range(3)])

        client.get_free_busy([User(email="a@example.com")], long_window)

        assert len(client.session.requests) == 3
        assert client.session.requests[-1]["json"]["endTime"]["dateTime"] == "2024-06-01T00:00:00"

    def test_no_users_means_no_request(self):
        client = _client([])

        assert client.get_free_busy([], WINDOW) == {}
        assert client.session.requests == []

    def test_http_error_raises_calendar_api_error(self):
        client = _client([FakeResponse({}, status_code=503)])

        with pytest.raises(CalendarAPIError, match="503"):
            client.get_free_busy([User(email="a@example.com")], WINDOW)


class TestGetAppointments:
    """Tests for GraphClient.get_appointments."""

    def test_maps_events_and_follows_pages(self):
        first_page = {
            "value": [{
                "subject": "Standup",
                "start": {"dateTime": "2024-11-25T08:00:00.0000000", "timeZone": "UTC"},
                "end": {"dateTime": "2024-11-25T08:30:00.0000000", "timeZone": "UTC"},
                "showAs": "busy",
                "responseStatus": {"response": "accepted"},
                "isCancelled": False,
                "location": {"displayName": "Room 1"},
                "organizer": {"emailAddress": {"address": "boss@example.com"}},
            }],
            "@odata.nextLink": "https://graph.example.com/v1.0/next-page",
        }
        second_page = {
            "value": [{
                "subject": "Cancelled sync",
                "start": {"dateTime": "2024-11-26T08:00:00", "timeZone": "UTC"},
                "end": {"dateTime": "2024-11-26T09:00:00", "timeZone": "UTC"},
                "showAs": "free",
                "isCancelled": True,
            }, {
                "subject": "Broken",
                "start": {"dateTime": "2024-11-26T08:00:00", "timeZone": "UTC"},
            }],
        }
        client = _client([FakeResponse(first_page), FakeResponse(second_page)])

        appointments = client.get_appointments(User(email="a@example.com"), WINDOW)

        assert [a.subject for a in appointments] == ["Standup", "Cancelled sync"]
        standup, cancelled = appointments
        assert standup.start == pendulum.parse("2024-11-25 09:00", tz="Europe/Berlin")
        assert standup.response_status == ResponseStatus.ACCEPTED
        assert standup.meeting_status == MeetingStatus.CONFIRMED
        assert standup.busy_status == BusyStatus.BUSY
        assert standup.location == "Room 1"
        assert standup.organizer == "boss@example.com"
        assert cancelled.meeting_status == MeetingStatus.CANCELLED
        assert cancelled.busy_status == BusyStatus.FREE

        first_request, second_request = client.session.requests
        assert first_request["url"].endswith("/users/a@example.com/calendarView")
        assert first_request["params"]["startDateTime"].startswith("2024-11-24T23:00:00")
        assert first_request["headers"] == {"Prefer": 'outlook.timezone="UTC"'}
        assert second_request["url"] == "https://graph.example.com/v1.0/next-page"
        assert second_request["params"] is None

    def test_unbounded_window_is_narrowed(self):
        client = _client([FakeResponse({"value": []})])

        client.get_appointments(User(email="a@example.com"), UNBOUNDED)

        params = client.session.requests[0]["params"]
        start = pendulum.parse(params["startDateTime"])
        end = pendulum.parse(params["endDateTime"])
        assert (end - start).in_days() == 2 * GraphClient.MAX_LOOKUP_DAYS

    def test_transport_error_raises_calendar_api_error(self):
        client = _client([])

        def explode(*args, **kwargs):
            raise requests.exceptions.ConnectionError("connection reset")

        client.session.request = explode

        with pytest.raises(CalendarAPIError, match="connection reset"):
            client.get_appointments(User(email="a@example.com"), WINDOW)


class TestSessions:
    """Tests for per-thread HTTP sessions."""

    def test_session_is_reused_within_a_thread(self):
        client = GraphClient(access_token="token")

        assert client.session is client.session
        assert client.session.headers["Authorization"] == "Bearer token"

    def test_each_thread_gets_its_own_session(self):
        client = GraphClient(access_token="token")

        with ThreadPoolExecutor(max_workers=1) as executor:
            worker_session = executor.submit(lambda: client.session).result()

        assert worker_session is not client.session
        assert worker_session.headers["Authorization"] == "Bearer token"
