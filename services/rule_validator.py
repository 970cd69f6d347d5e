"""Business rule validation for appointment candidates."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from models.entities import AppointmentCandidate
from services.config import local_now
from services.errors import ApiError, ErrorCategory

logger = logging.getLogger(__name__)

MIN_DURATION = timedelta(minutes=30)
MAX_DURATION = timedelta(hours=8)
MIN_LEAD_TIME = timedelta(minutes=5)


class ViolationCode(str, Enum):
    END_NOT_AFTER_START = "END_NOT_AFTER_START"
    DURATION_TOO_SHORT = "DURATION_TOO_SHORT"
    DURATION_TOO_LONG = "DURATION_TOO_LONG"
    START_NOT_IN_FUTURE = "START_NOT_IN_FUTURE"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    TICKET_NOT_OPEN = "TICKET_NOT_OPEN"
    TECHNICIAN_NOT_FOUND = "TECHNICIAN_NOT_FOUND"
    TECHNICIAN_NOT_ACTIVE = "TECHNICIAN_NOT_ACTIVE"


@dataclass(frozen=True)
class RuleViolation:
    """A single failed business rule."""
    code: ViolationCode
    message: str


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


class BusinessRuleValidator:
    """
    Checks an appointment candidate against the scheduling business rules.

    Rules:
        - duration between 30 minutes and 8 hours (inclusive)
        - start at least 5 minutes in the future at the moment of the check
        - ticket exists and is OPEN
        - technician exists and is ACTIVE

    Ticket and technician records are fetched from the repository on every
    call. Nothing here mutates state.
    """

    def __init__(self, repository, clock: Callable[[], datetime] = None):
        """Initialize with an entity repository and an optional clock."""
        self.repository = repository
        self.clock = clock or local_now

    def check_time_rules(
        self,
        candidate: AppointmentCandidate,
        now: Optional[datetime] = None
    ) -> List[RuleViolation]:
        """Check duration and lead time without any backend call."""
        now = now or self.clock()
        violations = []

        duration = candidate.end - candidate.start
        if duration <= timedelta(0):
            violations.append(RuleViolation(
                ViolationCode.END_NOT_AFTER_START,
                "End time must be after start time."
            ))
        elif duration < MIN_DURATION:
            violations.append(RuleViolation(
                ViolationCode.DURATION_TOO_SHORT,
                f"Minimum appointment duration is {_minutes(MIN_DURATION)} minutes "
                f"(requested {_minutes(duration)} minutes)."
            ))
        elif duration > MAX_DURATION:
            violations.append(RuleViolation(
                ViolationCode.DURATION_TOO_LONG,
                f"Maximum appointment duration is {_minutes(MAX_DURATION) // 60} hours "
                f"(requested {_minutes(duration)} minutes)."
            ))

        if candidate.start < now + MIN_LEAD_TIME:
            violations.append(RuleViolation(
                ViolationCode.START_NOT_IN_FUTURE,
                f"Start time must be at least {_minutes(MIN_LEAD_TIME)} minutes in the future."
            ))

        return violations

    def check_ticket(self, ticket_id: int) -> Optional[RuleViolation]:
        """Fetch the ticket and check it is OPEN. Returns None when it is."""
        ticket = self._lookup(self.repository.get_ticket_by_id, ticket_id)
        if ticket is None:
            return RuleViolation(ViolationCode.TICKET_NOT_FOUND, f"Ticket #{ticket_id} was not found.")
        if not ticket.is_open:
            return RuleViolation(
                ViolationCode.TICKET_NOT_OPEN,
                f"Ticket #{ticket.id} is no longer OPEN (current status: {ticket.status.value})."
            )
        return None

    def check_technician(self, technician_id: int) -> Optional[RuleViolation]:
        """Fetch the technician and check they are ACTIVE. Returns None when so."""
        technician = self._lookup(self.repository.get_technician_by_id, technician_id)
        if technician is None:
            return RuleViolation(
                ViolationCode.TECHNICIAN_NOT_FOUND,
                f"Technician not found with ID: {technician_id}."
            )
        if not technician.is_active:
            return RuleViolation(
                ViolationCode.TECHNICIAN_NOT_ACTIVE,
                f"Technician {technician.full_name} is no longer ACTIVE "
                f"(current status: {technician.status.value})."
            )
        return None

    def validate(self, candidate: AppointmentCandidate) -> List[RuleViolation]:
        """
        Run every rule against freshly fetched records.

        Returns:
            All violations found; an empty list means the candidate is accepted

        Raises:
            ApiError: when a lookup fails for a reason other than NOT_FOUND
        """
        violations = self.check_time_rules(candidate)

        ticket_violation = self.check_ticket(candidate.ticket_id)
        if ticket_violation:
            violations.append(ticket_violation)

        technician_violation = self.check_technician(candidate.technician_id)
        if technician_violation:
            violations.append(technician_violation)

        if violations:
            logger.info(
                "Candidate for ticket %s rejected: %s",
                candidate.ticket_id,
                ", ".join(v.code.value for v in violations)
            )
        return violations

    @staticmethod
    def _lookup(fetch, entity_id: int):
        try:
            return fetch(entity_id)
        except ApiError as e:
            if e.category is ErrorCategory.NOT_FOUND:
                return None
            raise
