"""Appointment updates: in-place notes edits and the cancel-then-recreate saga."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

from models.entities import Appointment, AppointmentCandidate
from services.config import local_now
from services.console import CANCEL_WORD, Console, TerminalConsole
from services.errors import ApiError, InvalidTransitionError
from services.response_formatter import ResponseFormatter
from services.rule_validator import RuleViolation
from services.scheduling_workflow import (
    INPUT_DATETIME_FORMAT,
    AppointmentInput,
    ScheduleOutcome,
    SchedulingWorkflow,
)
from services.state_machine import AppointmentAction, TransitionParams

logger = logging.getLogger(__name__)

CANCELLATION_REASON = "Cancelled for modification - recreating with updated details"


@dataclass
class AppointmentUpdateInput:
    """Requested changes. ``None`` keeps the current value."""
    technician_id: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    notes: Optional[str] = None


class SagaState(str, Enum):
    NO_CHANGES = "NO_CHANGES"
    NOTES_UPDATED = "NOTES_UPDATED"
    NOT_STARTED = "NOT_STARTED"
    ABORTED = "ABORTED"
    CANCEL_FAILED = "CANCEL_FAILED"
    ORIGINAL_CANCELLED = "ORIGINAL_CANCELLED"
    COMPLETED = "COMPLETED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"


@dataclass
class RecreationOutcome:
    """Result of an update attempt."""
    state: SagaState
    original: Appointment
    replacement: Optional[Appointment] = None
    updated: Optional[Appointment] = None
    schedule: Optional[ScheduleOutcome] = None
    violations: List[RuleViolation] = field(default_factory=list)
    error: Optional[Exception] = None
    message: Optional[str] = None
    acknowledged: bool = False

    @property
    def partial_failure(self) -> bool:
        return self.state is SagaState.PARTIAL_FAILURE


class RecreationWorkflow:
    """
    Applies changes to an existing appointment.

    The backend cannot move an appointment in time or reassign it, so such
    changes cancel the original and create a replacement. The two steps are
    not atomic: if the replacement cannot be created the original stays
    CANCELLED, and the operator is told so.
    """

    def __init__(
        self,
        repository,
        console: Console = None,
        clock: Callable[[], datetime] = None,
        scheduler: SchedulingWorkflow = None
    ):
        self.repository = repository
        self.console = console or TerminalConsole()
        self.clock = clock or local_now
        self.scheduler = scheduler or SchedulingWorkflow(repository, self.console, self.clock)

    @property
    def state_machine(self):
        return self.scheduler.state_machine

    def build_appointment_update(
        self,
        existing: Appointment,
        update_input: Optional[AppointmentUpdateInput] = None,
        console: Optional[Console] = None
    ) -> RecreationOutcome:
        """
        Update an appointment's notes in place, or replace it via cancel + recreate.

        Args:
            existing: The appointment being changed
            update_input: Requested changes; collected from the console if None
            console: Operator I/O (defaults to the workflow's console)
        """
        console = console or self.console
        console.show(ResponseFormatter.format_header(f"UPDATE APPOINTMENT #{existing.id}"))

        if existing.is_terminal:
            message = f"Appointment #{existing.id} is {existing.status.value} and cannot be modified."
            console.error(message)
            return RecreationOutcome(SagaState.ABORTED, existing, message=message)

        if update_input is None:
            update_input = self._collect_changes(existing, console)
            if update_input is None:
                console.show("❌ Appointment update cancelled.")
                return RecreationOutcome(SagaState.ABORTED, existing, message="Cancelled by operator.")

        technician_id = update_input.technician_id or existing.technician_id
        start = update_input.start or existing.scheduled_start_time
        end = update_input.end or existing.scheduled_end_time
        notes = existing.notes if update_input.notes is None else (update_input.notes.strip() or None)

        schedule_changed = (
            technician_id != existing.technician_id
            or start != existing.scheduled_start_time
            or end != existing.scheduled_end_time
        )
        notes_changed = notes != existing.notes

        if not schedule_changed and not notes_changed:
            console.show("ℹ️ No changes requested.")
            return RecreationOutcome(SagaState.NO_CHANGES, existing)

        if not schedule_changed:
            return self._update_notes(existing, notes, console)

        replacement = AppointmentCandidate(
            ticket_id=existing.ticket_id,
            technician_id=technician_id,
            start=start,
            end=end,
            notes=notes
        )
        return self._recreate(existing, replacement, console)

    def _update_notes(self, existing: Appointment, notes: Optional[str], console: Console) -> RecreationOutcome:
        try:
            updated = self.repository.update_appointment_notes(existing.id, notes)
        except ApiError as e:
            logger.error("Failed to update notes for appointment #%s: %s", existing.id, e)
            console.error(ResponseFormatter.format_api_error(e))
            return RecreationOutcome(SagaState.ABORTED, existing, error=e, message=e.message)

        logger.info("Updated notes for appointment #%s", existing.id)
        console.success("Appointment notes updated.")
        return RecreationOutcome(SagaState.NOTES_UPDATED, existing, updated=updated)

    def _recreate(
        self,
        existing: Appointment,
        replacement: AppointmentCandidate,
        console: Console
    ) -> RecreationOutcome:
        cancel_params = TransitionParams(reason=CANCELLATION_REASON)
        if not self.state_machine.can_transition(existing, AppointmentAction.CANCEL, cancel_params):
            message = (
                f"Appointment #{existing.id} is {existing.status.value}; only PENDING or CONFIRMED "
                f"appointments can be rescheduled."
            )
            console.error(message)
            return RecreationOutcome(SagaState.ABORTED, existing, message=message)

        blocked, degraded = self._precheck(existing, replacement, console)
        if blocked is not None:
            return blocked

        console.show(ResponseFormatter.format_update_summary(existing, replacement))
        console.warn(
            "The original appointment is cancelled first. If the new appointment cannot be "
            "created, the original stays cancelled."
        )
        if not console.confirm("🔹 Proceed with the update?", key="recreate"):
            console.show("❌ Appointment update cancelled.")
            return RecreationOutcome(SagaState.ABORTED, existing, message="Cancelled by operator.")

        logger.info("Saga for appointment #%s: cancelling original", existing.id)
        try:
            cancelled = self.state_machine.transition(existing, AppointmentAction.CANCEL, cancel_params)
        except (InvalidTransitionError, ApiError) as e:
            logger.error("Saga for appointment #%s: cancel failed: %s", existing.id, e)
            console.error(f"Failed to cancel the original appointment: {e}")
            console.show("The original appointment was not changed.")
            return RecreationOutcome(SagaState.CANCEL_FAILED, existing, error=e, message=str(e))

        logger.info("Saga for appointment #%s: state %s", existing.id, SagaState.ORIGINAL_CANCELLED.value)
        console.success(f"Original appointment #{existing.id} cancelled. Creating the replacement...")

        prefilled = AppointmentInput(
            ticket_id=replacement.ticket_id,
            technician_id=replacement.technician_id,
            start=replacement.start,
            end=replacement.end,
            notes=replacement.notes or ""
        )
        # Past this point the original is gone: any error must end as a partial failure
        try:
            schedule = self.scheduler.build_new_appointment(prefilled, console, degraded_override=degraded)
        except Exception as e:
            logger.exception("Saga for appointment #%s: replacement raised: %s", existing.id, e)
            return self._partial_failure(cancelled, None, console, error=e)

        if not schedule.succeeded:
            return self._partial_failure(cancelled, schedule, console, error=schedule.error)

        logger.info(
            "Saga for appointment #%s completed: replaced by #%s",
            existing.id, schedule.appointment.id
        )
        return RecreationOutcome(
            SagaState.COMPLETED,
            cancelled,
            replacement=schedule.appointment,
            schedule=schedule
        )

    def _precheck(
        self,
        existing: Appointment,
        replacement: AppointmentCandidate,
        console: Console
    ) -> Tuple[Optional[RecreationOutcome], bool]:
        """
        Checks run before the original is touched.

        Returns:
            (outcome if the saga must not start, whether the operator accepted
            degraded mode because the backend could not be reached)
        """
        validator = self.scheduler.validator
        violations = validator.check_time_rules(replacement)
        if violations:
            console.error(ResponseFormatter.format_violations(violations))
            return RecreationOutcome(SagaState.ABORTED, existing, violations=violations), False

        unverified = None
        for check, entity_id in (
            (validator.check_ticket, replacement.ticket_id),
            (validator.check_technician, replacement.technician_id),
        ):
            try:
                violation = check(entity_id)
            except ApiError as e:
                unverified = unverified or e
                continue
            if violation:
                violations.append(violation)

        conflicts = []
        try:
            conflicts = self.scheduler.conflict_detector.find_conflicts(
                replacement.technician_id,
                replacement.start,
                replacement.end,
                exclude_id=existing.id
            )
        except ApiError as e:
            unverified = unverified or e

        if violations:
            console.error(ResponseFormatter.format_violations(violations))
            return RecreationOutcome(SagaState.ABORTED, existing, violations=violations), False
        if conflicts:
            console.error(ResponseFormatter.format_conflicts(replacement, conflicts, []))
            return RecreationOutcome(
                SagaState.ABORTED,
                existing,
                message=f"Technician {replacement.technician_id} is already booked in that window."
            ), False
        if unverified is None:
            return None, False

        logger.warning("Could not pre-verify replacement for appointment #%s: %s", existing.id, unverified)
        if unverified.category.is_connectivity_failure:
            console.error(ResponseFormatter.format_degraded_warning(unverified))
            if console.confirm(
                "🔹 Cancel the original and create the replacement without full validation?",
                key="degraded_override"
            ):
                logger.warning(
                    "DEGRADED MODE: operator override accepted for replacing appointment #%s (%s)",
                    existing.id, unverified
                )
                return None, True
        else:
            console.error(ResponseFormatter.format_api_error(unverified))
        console.show("The original appointment was not changed.")
        return RecreationOutcome(
            SagaState.ABORTED, existing, error=unverified, message=unverified.message
        ), False

    def _partial_failure(
        self,
        cancelled: Appointment,
        schedule: Optional[ScheduleOutcome],
        console: Console,
        error: Optional[Exception] = None
    ) -> RecreationOutcome:
        result = schedule.status.value if schedule else "ERROR"
        logger.critical(
            "PARTIAL FAILURE: appointment #%s was cancelled but its replacement was not created (%s). "
            "Original: ticket %s, technician %s, %s - %s",
            cancelled.id, result, cancelled.ticket_id, cancelled.technician_id,
            cancelled.scheduled_start_time, cancelled.scheduled_end_time
        )
        outcome = RecreationOutcome(
            SagaState.PARTIAL_FAILURE,
            cancelled,
            schedule=schedule,
            error=error,
            message=f"Replacement not created: {result}"
        )
        console.critical(ResponseFormatter.format_recreation_outcome(outcome))
        outcome.acknowledged = console.acknowledge(
            "The original appointment is CANCELLED and no replacement exists.", key="ack"
        )
        return outcome

    def _collect_changes(self, existing: Appointment, console: Console) -> Optional[AppointmentUpdateInput]:
        """Prompt for new values. Blank input keeps the current value; 'cancel' aborts."""
        console.show(ResponseFormatter.format_appointment(existing))
        console.show("Press Enter to keep the current value, or type 'cancel' to abort.")
        changes = AppointmentUpdateInput()

        answer = console.ask(f"Technician ID [{existing.technician_id}]:", "new_technician").strip()
        if answer.lower() == CANCEL_WORD:
            return None
        if answer:
            try:
                changes.technician_id = int(answer)
            except ValueError:
                console.error("Technician ID must be a number.")
                return None

        for key, label, current in (
            ("new_start", "Start", existing.scheduled_start_time),
            ("new_end", "End", existing.scheduled_end_time),
        ):
            answer = console.ask(f"{label} time [{current:%Y-%m-%d %H:%M}]:", key).strip()
            if answer.lower() == CANCEL_WORD:
                return None
            if not answer:
                continue
            try:
                value = datetime.strptime(answer, INPUT_DATETIME_FORMAT)
            except ValueError:
                console.error("Invalid date/time format. Please use: YYYY-MM-DD HH:MM")
                return None
            if key == "new_start":
                changes.start = value
            else:
                changes.end = value

        answer = console.ask(f"Notes [{existing.notes or ''}]:", "new_notes")
        if answer.strip().lower() == CANCEL_WORD:
            return None
        if answer.strip():
            changes.notes = answer
        return changes
