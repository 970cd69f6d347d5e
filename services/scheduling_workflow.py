"""Appointment scheduling workflow: collect, validate, re-check, submit."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

from models.entities import Appointment, AppointmentCandidate
from services.config import local_now
from services.conflict_detector import ConflictDetector, TimeWindow
from services.console import CANCEL_WORD, Console, TerminalConsole
from services.diagnostics import DiagnosticReconciler, DiagnosticReport
from services.errors import ApiError, ErrorCategory, InvalidTransitionError
from services.response_formatter import ResponseFormatter
from services.rule_validator import (
    MAX_DURATION,
    MIN_DURATION,
    MIN_LEAD_TIME,
    BusinessRuleValidator,
    RuleViolation,
)
from services.state_machine import AppointmentAction, AppointmentStateMachine, TransitionParams

logger = logging.getLogger(__name__)

INPUT_DATETIME_FORMAT = "%Y-%m-%d %H:%M"
MAX_LISTED_TICKETS = 10


@dataclass
class AppointmentInput:
    """Raw selections from the caller. Missing fields are collected interactively."""
    ticket_id: Optional[int] = None
    technician_id: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    notes: Optional[str] = None


class ScheduleStatus(str, Enum):
    CREATED = "CREATED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    CONFLICT = "CONFLICT"
    ABORTED = "ABORTED"
    FAILED = "FAILED"


@dataclass
class ScheduleOutcome:
    """Result of one scheduling attempt."""
    status: ScheduleStatus
    candidate: Optional[AppointmentCandidate] = None
    appointment: Optional[Appointment] = None
    violations: List[RuleViolation] = field(default_factory=list)
    conflicts: List[Appointment] = field(default_factory=list)
    alternatives: List[TimeWindow] = field(default_factory=list)
    error: Optional[ApiError] = None
    diagnostics: Optional[DiagnosticReport] = None
    degraded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is ScheduleStatus.CREATED


@dataclass
class EligibilityCheck:
    """Outcome of the four eligibility checks at one point in time."""
    violations: List[RuleViolation] = field(default_factory=list)
    conflicts: List[Appointment] = field(default_factory=list)
    available: Optional[bool] = None
    unverified: Optional[ApiError] = None


class _Cancelled(Exception):
    """Raised inside the collector when the operator types 'cancel'."""


class AppointmentCollector:
    """
    Collects an appointment candidate from the operator.

    Only fields missing from the ``AppointmentInput`` are prompted for.
    Inline checks mirror the business rules so obvious mistakes are caught
    while typing; the authoritative checks happen in the workflow.
    """

    def __init__(self, repository, console: Console, clock: Callable[[], datetime] = None):
        self.repository = repository
        self.console = console
        self.clock = clock or local_now

    def collect(self, appointment_input: AppointmentInput) -> Optional[AppointmentCandidate]:
        """Return a candidate, or None if the operator cancelled or input was unusable."""
        try:
            ticket_id = appointment_input.ticket_id
            if ticket_id is None:
                ticket_id = self._collect_ticket_id()
                if ticket_id is None:
                    return None

            technician_id = appointment_input.technician_id
            if technician_id is None:
                technician_id = self._collect_technician_id()
                if technician_id is None:
                    return None

            start = appointment_input.start
            if start is None:
                start = self._collect_start_time()
                if start is None:
                    return None

            end = appointment_input.end
            if end is None:
                end = self._collect_end_time(start)
                if end is None:
                    return None

            notes = appointment_input.notes
            if notes is None and self.console.interactive:
                notes = self._collect_notes()
        except _Cancelled:
            self.console.show("❌ Appointment scheduling cancelled.")
            return None
        except ApiError as e:
            logger.error("Failed to collect appointment selections: %s", e)
            self.console.error(f"Failed to retrieve scheduling data: {e.message}")
            return None

        return AppointmentCandidate(
            ticket_id=ticket_id,
            technician_id=technician_id,
            start=start,
            end=end,
            notes=notes.strip() if notes and notes.strip() else None
        )

    def _ask(self, prompt: str, key: str) -> str:
        answer = self.console.ask(prompt, key)
        if answer.strip().lower() == CANCEL_WORD:
            raise _Cancelled()
        return answer.strip()

    def _select_id(
        self,
        prompt: str,
        key: str,
        options: List[int],
        label: str,
        listed: int = MAX_LISTED_TICKETS
    ) -> Optional[int]:
        """Accept a list number or a raw ID that must be among the options."""
        while True:
            answer = self._ask(prompt, key)
            try:
                choice = int(answer)
            except ValueError:
                self.console.error(f"Please enter a valid number or {label} ID.")
                if not self.console.interactive:
                    return None
                continue

            if 1 <= choice <= min(listed, len(options)):
                return options[choice - 1]
            if choice in options:
                return choice

            self.console.error(f"{label.capitalize()} not found or not eligible. Please select from the list.")
            if not self.console.interactive:
                return None

    def _collect_ticket_id(self) -> Optional[int]:
        open_tickets = [t for t in self.repository.list_tickets() if t.is_open]
        if not open_tickets:
            self.console.error("No open tickets available for scheduling appointments.")
            return None

        lines = ["📋 Available Open Tickets:", "   (Only open tickets can have appointments scheduled)"]
        for i, ticket in enumerate(open_tickets[:MAX_LISTED_TICKETS], 1):
            description = ticket.description or "No description"
            if len(description) > 40:
                description = description[:37] + "..."
            lines.append(f"   {i}. Ticket #{ticket.id}: {description}")
        if len(open_tickets) > MAX_LISTED_TICKETS:
            lines.append(f"   ... and {len(open_tickets) - MAX_LISTED_TICKETS} more tickets")
        self.console.show("\n".join(lines))

        ticket_id = self._select_id(
            "Select ticket by number or enter ticket ID:",
            "ticket",
            [t.id for t in open_tickets],
            "ticket"
        )
        if ticket_id is not None:
            self.console.success(f"Selected: Ticket #{ticket_id}")
        return ticket_id

    def _collect_technician_id(self) -> Optional[int]:
        technicians = [t for t in self.repository.list_active_technicians() if t.is_active]
        if not technicians:
            self.console.error("No active technicians available for appointment scheduling.")
            return None

        lines = ["👨‍🔧 Available Active Technicians:", "   (Only active technicians can be assigned appointments)"]
        for i, technician in enumerate(technicians, 1):
            skills = ", ".join(technician.skills) if technician.skills else "General"
            lines.append(f"   {i}. {technician.full_name} (Skills: {skills})")
        self.console.show("\n".join(lines))

        ids = [t.id for t in technicians]
        technician_id = self._select_id(
            "Select technician by number or enter technician ID:",
            "technician",
            ids,
            "technician",
            listed=len(ids)
        )
        if technician_id is not None:
            self.console.success(f"Selected: {technicians[ids.index(technician_id)].full_name}")
        return technician_id

    def _parse_datetime(self, answer: str) -> Optional[datetime]:
        try:
            return datetime.strptime(answer, INPUT_DATETIME_FORMAT)
        except ValueError:
            self.console.error("Invalid date/time format. Please use: YYYY-MM-DD HH:MM")
            return None

    def _collect_start_time(self) -> Optional[datetime]:
        self.console.show(
            "📅 Schedule Start Time:\n"
            "   Format: YYYY-MM-DD HH:MM (24-hour format)\n"
            "   Must be at least 5 minutes in the future"
        )
        while True:
            start = self._parse_datetime(self._ask("Start time:", "start"))
            if start is not None:
                if start >= self.clock() + MIN_LEAD_TIME:
                    return start
                self.console.error("Start time must be at least 5 minutes in the future.")
            if not self.console.interactive:
                return None

    def _collect_end_time(self, start: datetime) -> Optional[datetime]:
        self.console.show(
            "📅 Schedule End Time:\n"
            "   Duration: 30 minutes to 8 hours maximum\n"
            f"   Must be after: {start.strftime(INPUT_DATETIME_FORMAT)}"
        )
        while True:
            end = self._parse_datetime(self._ask("End time:", "end"))
            if end is not None:
                duration = end - start
                if end <= start:
                    self.console.error("End time must be after start time.")
                elif duration < MIN_DURATION:
                    self.console.error("Minimum appointment duration is 30 minutes.")
                elif duration > MAX_DURATION:
                    self.console.error("Maximum appointment duration is 8 hours.")
                else:
                    return end
            if not self.console.interactive:
                return None

    def _collect_notes(self) -> str:
        return self._ask("Notes (optional):", "notes")


class SchedulingWorkflow:
    """
    Orchestrates a scheduling attempt.

    Steps:
        1. collect the candidate (prompting only for missing fields)
        2. check time rules locally; no backend call if they fail
        3. validate ticket/technician and check the live schedule
        4. show a summary and ask for confirmation
        5. re-run all eligibility checks immediately before committing
        6. create the appointment; on rejection, classify and diagnose

    Nothing is retried automatically.
    """

    def __init__(
        self,
        repository,
        console: Console = None,
        clock: Callable[[], datetime] = None
    ):
        """Initialize the workflow and the services it drives."""
        self.repository = repository
        self.console = console or TerminalConsole()
        self.clock = clock or local_now
        self.validator = BusinessRuleValidator(repository, self.clock)
        self.conflict_detector = ConflictDetector(repository)
        self.state_machine = AppointmentStateMachine(repository, self.clock)
        self.reconciler = DiagnosticReconciler(repository, self.conflict_detector, self.clock)

    def validate(self, candidate: AppointmentCandidate) -> List[RuleViolation]:
        return self.validator.validate(candidate)

    def run_diagnostics(self, candidate: AppointmentCandidate) -> DiagnosticReport:
        return self.reconciler.run(candidate)

    def check_eligibility(self, candidate: AppointmentCandidate) -> EligibilityCheck:
        """
        Run the four eligibility checks against fresh backend state.

        Each check runs on its own. Backend failures are captured in
        ``unverified`` instead of raised, and violations found by the checks
        that did run are kept alongside them.
        """
        result = EligibilityCheck(violations=self.validator.check_time_rules(candidate))
        lookups = (
            (self.validator.check_ticket, candidate.ticket_id),
            (self.validator.check_technician, candidate.technician_id),
        )
        for check, entity_id in lookups:
            try:
                violation = check(entity_id)
            except ApiError as e:
                logger.error("Could not complete validation checks: %s", e)
                result.unverified = result.unverified or e
                continue
            if violation:
                result.violations.append(violation)

        try:
            result.available = self.conflict_detector.is_available(
                candidate.technician_id, candidate.start, candidate.end
            )
        except ApiError as e:
            logger.error("Could not verify technician availability: %s", e)
            result.unverified = result.unverified or e
            return result

        if result.available is False:
            try:
                result.conflicts = self.conflict_detector.find_conflicts(
                    candidate.technician_id, candidate.start, candidate.end
                )
            except ApiError as e:
                logger.warning("Could not retrieve conflict details: %s", e)
        return result

    def build_new_appointment(
        self,
        appointment_input: Optional[AppointmentInput] = None,
        console: Optional[Console] = None,
        degraded_override: bool = False
    ) -> ScheduleOutcome:
        """
        Collect, validate and submit a new appointment.

        ``degraded_override`` carries an override the operator already gave
        after seeing a connectivity failure, so it is not asked again.
        """
        console = console or self.console
        console.show(ResponseFormatter.format_header("NEW APPOINTMENT SCHEDULING"))
        collector = AppointmentCollector(self.repository, console, self.clock)
        candidate = collector.collect(appointment_input or AppointmentInput())
        if candidate is None:
            return ScheduleOutcome(ScheduleStatus.CANCELLED)
        return self.submit(candidate, console, degraded_override)

    schedule = build_new_appointment

    def transition(
        self,
        appointment: Appointment,
        action: AppointmentAction,
        params: Optional[TransitionParams] = None
    ) -> Appointment:
        return self.state_machine.transition(appointment, action, params)

    def submit(
        self,
        candidate: AppointmentCandidate,
        console: Optional[Console] = None,
        degraded_override: bool = False
    ) -> ScheduleOutcome:
        """Validate, confirm, re-check and create a collected candidate."""
        console = console or self.console

        violations = self.validator.check_time_rules(candidate)
        if violations:
            console.error(ResponseFormatter.format_violations(violations))
            return ScheduleOutcome(ScheduleStatus.REJECTED, candidate=candidate, violations=violations)

        console.show("🔍 Performing pre-submission validation...")
        blocked, override = self._gate(candidate, console, "validation", override_granted=degraded_override)
        if blocked is not None:
            return blocked

        console.show(ResponseFormatter.format_candidate_summary(candidate, self.repository))
        if not console.confirm("✅ Schedule this appointment?", key="schedule"):
            console.show("❌ Appointment scheduling cancelled.")
            return ScheduleOutcome(ScheduleStatus.CANCELLED, candidate=candidate, degraded=override)

        # Time has passed during data entry: everything is checked again
        console.show("🔍 Re-checking eligibility before submission...")
        blocked, override = self._gate(candidate, console, "final re-check", override_granted=override)
        if blocked is not None:
            return blocked

        return self._create(candidate, console, degraded=override)

    def _gate(
        self,
        candidate: AppointmentCandidate,
        console: Console,
        stage: str,
        override_granted: bool
    ) -> Tuple[Optional[ScheduleOutcome], bool]:
        """
        Run the eligibility checks for one stage.

        Returns:
            (blocking outcome or None, whether the attempt runs in degraded mode)
        """
        result = self.check_eligibility(candidate)

        # Known violations and conflicts reject even when other checks could not run
        if result.violations:
            if stage != "validation":
                logger.warning(
                    "Candidate for ticket %s passed earlier validation but failed the %s",
                    candidate.ticket_id, stage
                )
                console.warn("Entity state changed since your selection.")
            console.error(ResponseFormatter.format_violations(result.violations))
            return ScheduleOutcome(
                ScheduleStatus.REJECTED, candidate=candidate, violations=result.violations
            ), False

        if result.available is False:
            alternatives = self._alternatives(candidate)
            console.error(ResponseFormatter.format_conflicts(candidate, result.conflicts, alternatives))
            return ScheduleOutcome(
                ScheduleStatus.CONFLICT,
                candidate=candidate,
                conflicts=result.conflicts,
                alternatives=alternatives
            ), False

        if result.unverified is not None:
            error = result.unverified
            if not error.category.is_connectivity_failure:
                console.error(ResponseFormatter.format_api_error(error))
                return ScheduleOutcome(ScheduleStatus.FAILED, candidate=candidate, error=error), False
            if override_granted:
                logger.warning(
                    "DEGRADED MODE: %s for ticket %s could not be verified (%s); continuing under operator override",
                    stage, candidate.ticket_id, error
                )
                console.warn(f"Still unable to verify eligibility ({error.message}). Continuing in degraded mode.")
                return None, True
            if self._offer_degraded_override(candidate, error, console):
                return None, True
            return ScheduleOutcome(ScheduleStatus.ABORTED, candidate=candidate, error=error), False

        console.success(f"All {stage} checks passed.")
        return None, False

    def _alternatives(self, candidate: AppointmentCandidate) -> List[TimeWindow]:
        try:
            return self.conflict_detector.suggest_alternatives(
                candidate.technician_id, candidate.start, candidate.end
            )
        except ApiError as e:
            logger.warning("Could not compute alternative slots: %s", e)
            return []

    def _offer_degraded_override(self, candidate: AppointmentCandidate, error: ApiError, console: Console) -> bool:
        """Explicit, separately confirmed path for proceeding without full validation."""
        console.error(ResponseFormatter.format_degraded_warning(error))
        if console.confirm("🔹 Proceed with appointment creation anyway?", key="degraded_override"):
            logger.warning(
                "DEGRADED MODE: operator override accepted for ticket %s, technician %s (%s)",
                candidate.ticket_id, candidate.technician_id, error
            )
            console.warn(
                "Proceeding without complete validation. If the appointment fails, "
                "check ticket/technician status and scheduling conflicts."
            )
            return True
        logger.info("Operator declined degraded-mode override for ticket %s", candidate.ticket_id)
        console.show("❌ Appointment creation cancelled.")
        return False

    def _create(self, candidate: AppointmentCandidate, console: Console, degraded: bool) -> ScheduleOutcome:
        try:
            appointment = self.repository.create_appointment(candidate)
        except ApiError as e:
            logger.error("API exception during appointment creation: %s", e)
            console.error(ResponseFormatter.format_api_error(e, candidate))
            diagnostics = None
            if e.category is ErrorCategory.SERVER_FAULT:
                diagnostics = self.run_diagnostics(candidate)
            elif e.category is not ErrorCategory.TRANSPORT_FAILURE and console.confirm(
                "🔹 Run diagnostic checks to verify current entity states?", key="run_diagnostics"
            ):
                diagnostics = self.run_diagnostics(candidate)
            if diagnostics is not None:
                console.show(ResponseFormatter.format_diagnostic_report(diagnostics))
            return ScheduleOutcome(
                ScheduleStatus.FAILED,
                candidate=candidate,
                error=e,
                diagnostics=diagnostics,
                degraded=degraded
            )

        if degraded:
            logger.warning("DEGRADED MODE: appointment #%s created without full validation", appointment.id)
        console.success("Appointment scheduled successfully!")
        console.show(ResponseFormatter.format_appointment(appointment))

        if console.confirm("🔹 Confirm this appointment now?", key="confirm_now"):
            appointment = self._confirm_created(appointment, console)

        return ScheduleOutcome(
            ScheduleStatus.CREATED,
            candidate=candidate,
            appointment=appointment,
            degraded=degraded
        )

    def _confirm_created(self, appointment: Appointment, console: Console) -> Appointment:
        try:
            confirmed = self.state_machine.transition(appointment, AppointmentAction.CONFIRM)
        except (InvalidTransitionError, ApiError) as e:
            logger.error("Failed to confirm appointment #%s: %s", appointment.id, e)
            console.error(f"Failed to confirm appointment: {e}")
            console.show("The appointment was created but confirmation failed. You can confirm it later.")
            return appointment
        console.success(f"Appointment confirmed! Status: {confirmed.status.value}")
        return confirmed
