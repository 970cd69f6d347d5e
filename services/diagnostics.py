"""Post-failure diagnostic reconciliation for appointment submissions."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from models.entities import Appointment, AppointmentCandidate
from services.config import local_now
from services.conflict_detector import ConflictDetector
from services.errors import ApiError, ErrorCategory
from services.rule_validator import MAX_DURATION, MIN_DURATION, MIN_LEAD_TIME

logger = logging.getLogger(__name__)

MAX_LISTED_CONFLICTS = 3


class CheckOutcome(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"


@dataclass
class DiagnosticCheck:
    """Result of one independent re-check."""
    name: str
    outcome: CheckOutcome
    details: List[str] = field(default_factory=list)
    root_cause: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.outcome is CheckOutcome.PASS


@dataclass
class DiagnosticReport:
    """Outcome of a full diagnostic run for a failed candidate."""
    candidate: AppointmentCandidate
    run_at: datetime
    checks: List[DiagnosticCheck] = field(default_factory=list)
    conflicts: List[Appointment] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def failed_checks(self) -> List[DiagnosticCheck]:
        return [check for check in self.checks if not check.passed]

    @property
    def conclusion(self) -> str:
        if self.all_passed:
            return (
                "All checks passed: the failure is most likely a server-side processing error. "
                "Examine the server logs."
            )
        first = self.failed_checks[0]
        return f"Likely root cause ({first.name}): {first.root_cause or 'see details'}"


class DiagnosticReconciler:
    """
    Re-verifies entity state after a submission failed for an unclear reason.

    Each check runs independently, in a fixed order, so one failing lookup
    does not hide the others. Nothing is modified.
    """

    def __init__(
        self,
        repository,
        conflict_detector: ConflictDetector = None,
        clock: Callable[[], datetime] = None
    ):
        self.repository = repository
        self.conflict_detector = conflict_detector or ConflictDetector(repository)
        self.clock = clock or local_now

    def run(self, candidate: AppointmentCandidate) -> DiagnosticReport:
        """Run every check for the failed candidate and collect the results."""
        logger.info(
            "Running appointment diagnostics for ticket %s, technician %s",
            candidate.ticket_id,
            candidate.technician_id
        )
        report = DiagnosticReport(candidate=candidate, run_at=self.clock())
        report.checks.append(self._check_ticket(candidate))
        report.checks.append(self._check_technician(candidate))
        report.checks.append(self._check_conflicts(candidate, report))
        report.checks.append(self._check_time_window(candidate))
        report.checks.append(self._check_server())

        for check in report.failed_checks:
            logger.warning("Diagnostic %s: %s (%s)", check.name, check.outcome.value, check.root_cause)
        return report

    def _check_ticket(self, candidate: AppointmentCandidate) -> DiagnosticCheck:
        name = "Ticket status"
        try:
            ticket = self.repository.get_ticket_by_id(candidate.ticket_id)
        except ApiError as e:
            if e.category is ErrorCategory.NOT_FOUND:
                return DiagnosticCheck(
                    name, CheckOutcome.FAIL,
                    [f"Ticket #{candidate.ticket_id} not found"],
                    "Ticket may have been deleted."
                )
            return DiagnosticCheck(
                name, CheckOutcome.ERROR,
                [f"Cannot retrieve ticket #{candidate.ticket_id}: {e.message}"],
                "Ticket lookup is failing on the server."
            )

        if ticket.is_open:
            return DiagnosticCheck(
                name, CheckOutcome.PASS,
                [f"Ticket #{ticket.id}: {ticket.description or 'No description'} (Status: {ticket.status.value})"]
            )
        return DiagnosticCheck(
            name, CheckOutcome.FAIL,
            [f"Ticket #{ticket.id}: Status is '{ticket.status.value}' (Expected: OPEN)"],
            "Ticket status changed after validation."
        )

    def _check_technician(self, candidate: AppointmentCandidate) -> DiagnosticCheck:
        name = "Technician status"
        try:
            technician = self.repository.get_technician_by_id(candidate.technician_id)
        except ApiError as e:
            if e.category is ErrorCategory.NOT_FOUND:
                return DiagnosticCheck(
                    name, CheckOutcome.FAIL,
                    [f"Technician ID {candidate.technician_id} not found"],
                    "Technician may have been deleted."
                )
            return DiagnosticCheck(
                name, CheckOutcome.ERROR,
                [f"Cannot retrieve technician data: {e.message}"],
                "Technician lookup is failing on the server."
            )

        summary = f"{technician.full_name} (ID: {technician.id}, Status: {technician.status.value})"
        if technician.is_active:
            return DiagnosticCheck(name, CheckOutcome.PASS, [summary])
        return DiagnosticCheck(
            name, CheckOutcome.FAIL,
            [f"{summary} (Expected: ACTIVE)"],
            "Technician status changed after validation."
        )

    def _check_conflicts(self, candidate: AppointmentCandidate, report: DiagnosticReport) -> DiagnosticCheck:
        name = "Scheduling conflicts"
        try:
            available = self.conflict_detector.is_available(
                candidate.technician_id, candidate.start, candidate.end
            )
        except ApiError as e:
            return DiagnosticCheck(
                name, CheckOutcome.ERROR,
                [f"Cannot check availability: {e.message}"],
                "Server-side conflict checking is failing."
            )

        if available:
            return DiagnosticCheck(name, CheckOutcome.PASS, ["No scheduling conflicts detected"])

        details = ["Scheduling conflict detected"]
        try:
            conflicts = self.conflict_detector.find_conflicts(
                candidate.technician_id, candidate.start, candidate.end
            )
        except ApiError as e:
            details.append(f"Could not retrieve conflict details: {e.message}")
        else:
            report.conflicts = conflicts[:MAX_LISTED_CONFLICTS]
            for conflict in report.conflicts:
                details.append(
                    f"Appointment #{conflict.id}: {conflict.scheduled_start_time:%Y-%m-%d %H:%M} - "
                    f"{conflict.scheduled_end_time:%Y-%m-%d %H:%M} (Status: {conflict.status.value})"
                )
        return DiagnosticCheck(
            name, CheckOutcome.FAIL, details,
            "Another appointment was created since validation."
        )

    def _check_time_window(self, candidate: AppointmentCandidate) -> DiagnosticCheck:
        name = "Date/time constraints"
        now = self.clock()
        duration = candidate.end - candidate.start
        minutes = int(duration.total_seconds() // 60)

        future_ok = candidate.start >= now + MIN_LEAD_TIME
        duration_ok = MIN_DURATION <= duration <= MAX_DURATION
        details = [
            f"Future start: {'Yes' if future_ok else 'No'} ({'✓' if future_ok else '✗'})",
            f"Duration: {minutes} minutes ({'✓' if duration_ok else '✗'})",
        ]
        if future_ok and duration_ok:
            return DiagnosticCheck(name, CheckOutcome.PASS, details)

        causes = []
        if not future_ok:
            causes.append("Appointment time is no longer in the future.")
        if not duration_ok:
            causes.append("Duration violates the 30min-8hr constraint.")
        return DiagnosticCheck(name, CheckOutcome.FAIL, details, " ".join(causes))

    def _check_server(self) -> DiagnosticCheck:
        name = "Server connection"
        if self.repository.test_connection():
            return DiagnosticCheck(name, CheckOutcome.PASS, ["Server is responding to API requests"])
        return DiagnosticCheck(
            name, CheckOutcome.FAIL,
            ["Server did not answer a test request"],
            "Server connectivity or availability issue."
        )
