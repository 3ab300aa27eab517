"""
Microsoft Graph API client for fetching free/busy data and appointments.
"""

import logging
import re
import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pendulum
import requests
from pendulum import DateTime
from requests.adapters import HTTPAdapter

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

_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")

# getSchedule status -> which free/busy list the item belongs to
_SCHEDULE_STATUS_LISTS = {
    "busy": "all",
    "oof": "all",
    "workingelsewhere": "all",
    "tentative": "tentative",
}


class GraphClient:
    """
    Client for Microsoft Graph API calendar operations.

    Implements both fetches the reconciliation service needs:
    ``/calendar/getSchedule`` for batch free/busy and ``/calendarView`` for
    per-user appointments. Methods may be called from several threads at once;
    every thread talks through its own ``requests.Session``.
    """

    GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0"

    # getSchedule rejects windows longer than 62 days
    MAX_SCHEDULE_DAYS = 62

    # Look-around used when no window was given
    MAX_LOOKUP_DAYS = 31

    PAGE_SIZE = 100

    def __init__(
        self,
        access_token: str,
        endpoint: str = GRAPH_API_ENDPOINT,
        timezone: str = "Europe/Berlin",
        max_connections: int = 8,
        timeout: int = 30,
    ):
        """
        Initialize the Graph API client.

        Args:
            access_token: Valid Microsoft Graph access token
            endpoint: Graph API base URL
            timezone: IANA timezone results are converted into
            max_connections: Size of the HTTP connection pool
            timeout: Per-request timeout in seconds
        """
        self.access_token = access_token
        self.endpoint = endpoint.rstrip("/")
        self.timezone = timezone
        self.timeout = timeout
        self.max_connections = max_connections

        # requests.Session is not thread-safe, each thread gets its own
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The HTTP session of the calling thread."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._create_session()
            self._local.session = session
        return session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        })
        adapter = HTTPAdapter(pool_connections=self.max_connections, pool_maxsize=self.max_connections)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def get_free_busy(
        self,
        users: Sequence[User],
        window: TimeRange,
    ) -> Dict[str, ClassifiedFreeBusy]:
        """
        Get classified free/busy ranges for multiple users.

        Args:
            users: Users to look up
            window: Time window, the unbounded window is narrowed to
                MAX_LOOKUP_DAYS around now

        Returns:
            Dictionary mapping lower-cased email -> ClassifiedFreeBusy. Users the
            server reported an error for are left out.

        Raises:
            CalendarAPIError: If the API call fails
        """
        if not users:
            return {}

        emails = [user.email for user in users]
        url = f"{self.endpoint}/users/{emails[0]}/calendar/getSchedule"
        result: Dict[str, ClassifiedFreeBusy] = {}

        for chunk in self._split_window(self._effective_window(window)):
            payload = {
                "schedules": emails,
                "startTime": {
                    "dateTime": chunk.start.in_timezone("UTC").format("YYYY-MM-DD[T]HH:mm:ss"),
                    "timeZone": "UTC",
                },
                "endTime": {
                    "dateTime": chunk.end.in_timezone("UTC").format("YYYY-MM-DD[T]HH:mm:ss"),
                    "timeZone": "UTC",
                },
                "availabilityViewInterval": 30,
            }
            data = self._request("POST", url, json=payload)

            for email, classified in self._parse_schedule_response(data).items():
                merged = result.setdefault(email, ClassifiedFreeBusy())
                merged.all.extend(classified.all)
                merged.tentative.extend(classified.tentative)

        return result

    def get_appointments(self, user: User, window: TimeRange) -> List[Appointment]:
        """
        Get every appointment in a user's calendar view for the window.

        Raises:
            CalendarAPIError: If the API call fails
        """
        window = self._effective_window(window)
        url = f"{self.endpoint}/users/{user.email}/calendarView"
        params: Optional[Dict[str, Any]] = {
            "startDateTime": window.start.in_timezone("UTC").to_iso8601_string(),
            "endDateTime": window.end.in_timezone("UTC").to_iso8601_string(),
            "$select": "subject,start,end,showAs,responseStatus,isCancelled,isDraft,location,organizer,isAllDay",
            "$orderby": "start/dateTime",
            "$top": self.PAGE_SIZE,
        }

        appointments: List[Appointment] = []
        for event in self._iterate_pages(url, params):
            try:
                appointments.append(self._parse_event(event))
            except (KeyError, ValueError) as e:
                logger.warning("Could not parse event for %s: %s", user.email, e)

        logger.debug("Fetched %d appointments for %s", len(appointments), user.email)
        return appointments

    def _iterate_pages(self, url: str, params: Optional[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
        next_url: Optional[str] = url
        while next_url:
            data = self._request(
                "GET",
                next_url,
                params=params,
                headers={"Prefer": 'outlook.timezone="UTC"'},
            )
            yield from data.get("value", [])
            # nextLink already carries the query string
            next_url = data.get("@odata.nextLink")
            params = None

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise CalendarAPIError(f"Microsoft Graph request failed ({method} {url}): {e}") from e
        except ValueError as e:
            raise CalendarAPIError(f"Microsoft Graph returned invalid JSON ({method} {url}): {e}") from e

    def _parse_schedule_response(self, response_data: Dict[str, Any]) -> Dict[str, ClassifiedFreeBusy]:
        """
        Parse the getSchedule API response into our domain model.

        Response format:
        {
            "value": [
                {
                    "scheduleId": "user@example.com",
                    "scheduleItems": [
                        {
                            "status": "busy",
                            "start": {"dateTime": "...", "timeZone": "UTC"},
                            "end": {"dateTime": "...", "timeZone": "UTC"}
                        }
                    ]
                }
            ]
        }
        """
        free_busy: Dict[str, ClassifiedFreeBusy] = {}

        for schedule in response_data.get("value", []):
            email = schedule.get("scheduleId", "").lower()

            if schedule.get("error"):
                logger.info(
                    "No free/busy data for %s: %s",
                    email,
                    schedule["error"].get("message", "unknown error"),
                )
                continue

            classified = ClassifiedFreeBusy()

            for item in schedule.get("scheduleItems", []):
                target = _SCHEDULE_STATUS_LISTS.get(item.get("status", "").lower())
                if target is None:
                    continue

                try:
                    time_range = TimeRange(
                        start=self._parse_datetime(item["start"]),
                        end=self._parse_datetime(item["end"]),
                    )
                except (KeyError, ValueError) as e:
                    logger.warning("Could not parse schedule item for %s: %s", email, e)
                    continue

                getattr(classified, target).append(time_range)

            free_busy[email] = classified

        return free_busy

    def _parse_event(self, event: Dict[str, Any]) -> Appointment:
        if event.get("isCancelled"):
            meeting_status = MeetingStatus.CANCELLED
        elif event.get("isDraft"):
            meeting_status = MeetingStatus.TENTATIVE
        else:
            meeting_status = MeetingStatus.CONFIRMED

        organizer = (event.get("organizer") or {}).get("emailAddress") or {}

        return Appointment(
            subject=event.get("subject") or "",
            time_range=TimeRange(
                start=self._parse_datetime(event["start"]),
                end=self._parse_datetime(event["end"]),
            ),
            response_status=ResponseStatus.parse((event.get("responseStatus") or {}).get("response")),
            meeting_status=meeting_status,
            busy_status=BusyStatus.from_show_as(event.get("showAs")),
            location=(event.get("location") or {}).get("displayName") or "",
            organizer=organizer.get("address") or "",
            is_all_day=bool(event.get("isAllDay")),
        )

    def _parse_datetime(self, value: Dict[str, str]) -> DateTime:
        """
        Parse a Graph dateTimeTimeZone object into the configured timezone.

        Graph sends seven fractional digits, which are cut down to six.
        """
        datetime_str = _EXCESS_FRACTION.sub(r"\1", value["dateTime"])
        dt = pendulum.parse(datetime_str, tz=value.get("timeZone") or "UTC")

        if isinstance(dt, DateTime):
            return dt.in_timezone(self.timezone)

        raise ValueError(f"Could not parse datetime: {value['dateTime']}")

    def _effective_window(self, window: TimeRange) -> TimeRange:
        if not window.is_unbounded:
            return window
        now = pendulum.now("UTC")
        return TimeRange(
            start=now.subtract(days=self.MAX_LOOKUP_DAYS),
            end=now.add(days=self.MAX_LOOKUP_DAYS),
        )

    def _split_window(self, window: TimeRange) -> List[TimeRange]:
        chunks: List[TimeRange] = []
        current = window.start
        while True:
            chunk_end = min(current.add(days=self.MAX_SCHEDULE_DAYS), window.end)
            chunks.append(TimeRange(start=current, end=chunk_end))
            if chunk_end >= window.end:
                return chunks
            current = chunk_end

    def test_connection(self) -> Dict[str, Any]:
        """
        Test the connection and the application's permissions.

        Returns:
            Organization data of the tenant

        Raises:
            CalendarAPIError: If connection test fails
        """
        data = self._request("GET", f"{self.endpoint}/organization")
        organizations = data.get("value", [])
        return organizations[0] if organizations else {}
