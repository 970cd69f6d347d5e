"""Technician double-booking detection."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from models.entities import Appointment

logger = logging.getLogger(__name__)

ALTERNATIVE_STEP = timedelta(minutes=30)
ALTERNATIVE_SEARCH_WINDOW = timedelta(hours=8)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: back-to-back windows do not overlap."""
    return a_start < b_end and a_end > b_start


@dataclass
class TimeWindow:
    """A proposed replacement window for a blocked request."""
    start: datetime
    end: datetime


class ConflictDetector:
    """
    Checks a technician's live schedule for a requested time window.

    Availability is answered by the backend (the availability oracle). If
    the oracle fails, the error propagates: a failed check never counts as
    "available".
    """

    def __init__(self, repository):
        """Initialize with the repository acting as availability oracle."""
        self.repository = repository

    def is_available(self, technician_id: int, start: datetime, end: datetime) -> bool:
        """Ask the oracle whether the technician is free for ``[start, end)``."""
        available = self.repository.check_technician_availability(technician_id, start, end)
        logger.debug("Technician %s available %s - %s: %s", technician_id, start, end, available)
        return available

    def find_conflicts(
        self,
        technician_id: int,
        start: datetime,
        end: datetime,
        appointments: Optional[Iterable[Appointment]] = None,
        exclude_id: Optional[int] = None
    ) -> List[Appointment]:
        """
        Find the non-terminal appointments of a technician overlapping a window.

        Args:
            technician_id: Technician to check
            start: Window start
            end: Window end
            appointments: Appointments to check against (fetched if None)
            exclude_id: Appointment ID to ignore, e.g. the one being replaced

        Returns:
            Conflicting appointments sorted by start time
        """
        if appointments is None:
            appointments = self.repository.list_appointments()

        conflicts = [
            a for a in appointments
            if a.technician_id == technician_id
            and a.id != exclude_id
            and a.status.occupies_schedule
            and overlaps(a.scheduled_start_time, a.scheduled_end_time, start, end)
        ]
        return sorted(conflicts, key=lambda a: a.scheduled_start_time)

    def suggest_alternatives(
        self,
        technician_id: int,
        start: datetime,
        end: datetime,
        appointments: Optional[Iterable[Appointment]] = None,
        count: int = 3
    ) -> List[TimeWindow]:
        """
        Suggest same-length windows after the requested start that are free.

        Candidate starts step forward in 30-minute increments for up to
        8 hours past the requested start.
        """
        if appointments is None:
            appointments = self.repository.list_appointments()
        busy = [
            a for a in appointments
            if a.technician_id == technician_id and a.status.occupies_schedule
        ]

        duration = end - start
        suggestions = []
        current = start + ALTERNATIVE_STEP
        limit = start + ALTERNATIVE_SEARCH_WINDOW

        while current <= limit and len(suggestions) < count:
            current_end = current + duration
            if not any(
                overlaps(a.scheduled_start_time, a.scheduled_end_time, current, current_end)
                for a in busy
            ):
                suggestions.append(TimeWindow(start=current, end=current_end))
            current += ALTERNATIVE_STEP

        return suggestions
