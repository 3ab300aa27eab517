"""
Core business logic for reconciling free/busy data with appointments.

Pure domain logic without any external dependencies (no API calls, no I/O).
"""

import logging
import time
from typing import List, Optional, Sequence

from .interval_index import IntervalIndex
from .models import (
    Appointment,
    BusyStatus,
    BusyTimeBlock,
    ClassifiedFreeBusy,
    TimeRange,
    Timeline,
    appointment_sort_key,
)

logger = logging.getLogger(__name__)


def merge_free_busy_lists(*range_lists: Optional[Sequence[TimeRange]]) -> List[TimeRange]:
    """
    Combine several free/busy range lists into one candidate list.

    Ranges are concatenated, not coalesced: a tentative range overlapping a
    confirmed one stays a separate candidate.
    """
    merged: List[TimeRange] = []
    for ranges in range_lists:
        if ranges:
            merged.extend(ranges)
    return merged


def is_within_window(time_range: TimeRange, window: TimeRange) -> bool:
    """True if the range starts or ends inside the window (inclusive)."""
    return window.contains(time_range.start) or window.contains(time_range.end)


class ReconciliationEngine:
    """
    Turns one user's free/busy ranges and appointments into a Timeline.

    Algorithm:
    1. Concatenate the "all" and "tentative" free/busy ranges
    2. Keep ranges that start or end inside the window, one block per start
    3. Index the blocks by range for overlap queries
    4. Attach every non-free appointment to each block it overlaps
    5. Sort each block's appointments by start, then end
    """

    def reconcile(
        self,
        window: TimeRange,
        classified: Optional[ClassifiedFreeBusy],
        appointments: Optional[Sequence[Appointment]],
    ) -> Timeline:
        """
        Build the reconciled Timeline for one user.

        Args:
            window: Requested time window
            classified: Aggregate free/busy ranges for the user
            appointments: Appointment records for the user, in fetch order

        Returns:
            Timeline with appointment-annotated busy blocks
        """
        started = time.perf_counter()
        classified = classified or ClassifiedFreeBusy()
        appointments = appointments or []

        timeline = Timeline()
        index: IntervalIndex[BusyTimeBlock] = IntervalIndex()

        combined = merge_free_busy_lists(classified.all, classified.tentative)
        self._build_blocks(window, combined, timeline, index)

        for appointment in appointments:
            self._attach(appointment, timeline, index)

        for block in timeline.values():
            block.appointments.sort(key=appointment_sort_key)

        logger.info(
            "Merge result of %d ranges + %d appointments -> %d blocks (%.1f ms)",
            len(combined),
            len(appointments),
            len(timeline),
            (time.perf_counter() - started) * 1000,
        )
        return timeline

    @staticmethod
    def _build_blocks(
        window: TimeRange,
        ranges: List[TimeRange],
        timeline: Timeline,
        index: IntervalIndex[BusyTimeBlock],
    ) -> None:
        for time_range in ranges:
            if not is_within_window(time_range, window):
                continue

            block = BusyTimeBlock(time_range=time_range)

            # A later range with an already seen start is dropped, even if
            # its end differs.
            if timeline.add_block(block):
                index.insert(time_range, block)
            else:
                logger.debug("Dropping range %s, a block already starts at %s", time_range, block.start)

    @staticmethod
    def _attach(
        appointment: Appointment,
        timeline: Timeline,
        index: IntervalIndex[BusyTimeBlock],
    ) -> None:
        logger.debug(
            'Appt "%s" %s response = %s status = %s busy = %s',
            appointment.subject,
            appointment.time_range,
            appointment.response_status.value,
            appointment.meeting_status.value,
            appointment.busy_status.value,
        )

        if appointment.busy_status == BusyStatus.FREE:
            return

        blocks = index.find_overlapping(appointment.time_range)
        logger.debug("Found %d ranges overlapping %s", len(blocks), appointment.time_range)

        for block in blocks:
            block.appointments.append(appointment)

        timeline.appointments.append(appointment)
