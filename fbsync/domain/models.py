"""
Domain models for free/busy reconciliation.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import pendulum
from pendulum import DateTime


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must not be after end. Zero-length ranges are allowed,
    calendars produce them for reminders and markers.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Start time {self.start} must not be after end time {self.end}")

    @property
    def is_unbounded(self) -> bool:
        """True if this is the "no range specified" sentinel."""
        return self == UNBOUNDED

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """
        Check if this range overlaps with another.

        Touching endpoints do not overlap: back-to-back meetings don't conflict.
        """
        return self.start < other.end and self.end > other.start

    def contains(self, moment: DateTime) -> bool:
        """Check if a moment lies within the range, both ends inclusive."""
        return self.start <= moment <= self.end

    def sort_key(self) -> Tuple[DateTime, DateTime]:
        """Ordering key: start ascending, ties broken by end ascending."""
        return (self.start, self.end)

    def __str__(self) -> str:
        if self.is_unbounded:
            return "unbounded"
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('DD.MM.YYYY HH:mm')}"


UNBOUNDED = TimeRange(
    start=pendulum.datetime(1, 1, 1, tz="UTC"),
    end=pendulum.datetime(9999, 12, 31, 23, 59, 59, tz="UTC"),
)


class BusyStatus(str, Enum):
    """How an appointment or free/busy period shows on the calendar."""
    FREE = "free"
    BUSY = "busy"
    TENTATIVE = "tentative"
    OUT_OF_OFFICE = "oof"
    UNKNOWN = "unknown"

    @classmethod
    def from_show_as(cls, value: Optional[str]) -> "BusyStatus":
        """Map a Microsoft Graph ``showAs`` value onto a busy status."""
        normalized = (value or "").strip().lower()
        if normalized == "workingelsewhere":
            return cls.BUSY
        for status in cls:
            if status.value == normalized:
                return status
        return cls.UNKNOWN


class ResponseStatus(str, Enum):
    """The mailbox owner's response to a meeting request."""
    NONE = "none"
    ORGANIZER = "organizer"
    TENTATIVELY_ACCEPTED = "tentativelyAccepted"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    NOT_RESPONDED = "notResponded"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ResponseStatus":
        for status in cls:
            if status.value.lower() == (value or "").lower():
                return status
        return cls.NONE


class MeetingStatus(str, Enum):
    """Lifecycle state of the meeting itself."""
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class AccessLevel(str, Enum):
    """How much of a user's calendar the connector could read."""
    NONE = "none"
    READ = "read"


@dataclass(frozen=True)
class Appointment:
    """
    A single calendar entry as returned by the appointment fetch.

    Immutable once fetched.
    """
    subject: str
    time_range: TimeRange
    response_status: ResponseStatus = ResponseStatus.NONE
    meeting_status: MeetingStatus = MeetingStatus.CONFIRMED
    busy_status: BusyStatus = BusyStatus.BUSY
    location: str = ""
    organizer: str = ""
    is_all_day: bool = False

    @property
    def start(self) -> DateTime:
        return self.time_range.start

    @property
    def end(self) -> DateTime:
        return self.time_range.end


def appointment_sort_key(appointment: Optional[Appointment]) -> tuple:
    """
    Sort key ordering appointments by range start, then end.

    Missing entries sort before any concrete appointment.
    """
    if appointment is None:
        return (0,)
    return (1,) + appointment.time_range.sort_key()


@dataclass
class ClassifiedFreeBusy:
    """
    Aggregate free/busy data for one user.

    ``all`` holds every busy period, ``tentative`` the tentatively busy ones.
    Neither carries per-appointment detail.
    """
    all: List[TimeRange] = field(default_factory=list)
    tentative: List[TimeRange] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.all or self.tentative)


@dataclass
class BusyTimeBlock:
    """A merged busy range annotated with the appointments overlapping it."""
    time_range: TimeRange
    appointments: List[Appointment] = field(default_factory=list)

    @property
    def start(self) -> DateTime:
        return self.time_range.start

    @property
    def end(self) -> DateTime:
        return self.time_range.end


class Timeline(Mapping):
    """
    Reconciled busy time for one user.

    Maps block start -> BusyTimeBlock, iterating in ascending start order.
    At most one block exists per start timestamp. ``appointments`` holds every
    non-free appointment seen for the user, attached to a block or not.
    """

    def __init__(self) -> None:
        self._blocks: Dict[DateTime, BusyTimeBlock] = {}
        self.appointments: List[Appointment] = []

    def add_block(self, block: BusyTimeBlock) -> bool:
        """Add a block unless one already starts at the same moment."""
        if block.start in self._blocks:
            return False
        self._blocks[block.start] = block
        return True

    def blocks(self) -> List[BusyTimeBlock]:
        """Blocks in ascending start order."""
        return [self._blocks[start] for start in self]

    def orphan_appointments(self) -> List[Appointment]:
        """Appointments that ended up attached to no block."""
        attached = {
            id(appointment)
            for block in self._blocks.values()
            for appointment in block.appointments
        }
        return [a for a in self.appointments if id(a) not in attached]

    def __getitem__(self, start: DateTime) -> BusyTimeBlock:
        return self._blocks[start]

    def __iter__(self) -> Iterator[DateTime]:
        return iter(sorted(self._blocks))

    def __len__(self) -> int:
        return len(self._blocks)

    def __repr__(self) -> str:
        return f"Timeline(blocks={len(self)}, appointments={len(self.appointments)})"


@dataclass(eq=False)
class User:
    """
    A resolved calendar user.

    Identity is the case-insensitive email. The reconciliation service writes
    ``access_level`` and ``timeline``; everything else belongs to whoever
    resolved the user.
    """
    email: str
    display_name: str = ""
    access_level: AccessLevel = AccessLevel.NONE
    timeline: Optional[Timeline] = None
    calendar_id: str = ""

    @property
    def key(self) -> str:
        """Lower-cased email used as the registry and lookup key."""
        return self.email.strip().lower()

    @property
    def is_valid(self) -> bool:
        return bool(self.email) and "@" in self.email

    def __str__(self) -> str:
        if self.display_name:
            return f"{self.display_name} <{self.email}>"
        return self.email
