"""Appointment status state machine."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from models.entities import Appointment, AppointmentStatus
from services.config import local_now
from services.errors import ApiError, InvalidTransitionError

logger = logging.getLogger(__name__)


class AppointmentAction(str, Enum):
    CONFIRM = "CONFIRM"
    START = "START"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"
    MARK_NO_SHOW = "MARK_NO_SHOW"


# (current status, action) -> resulting status
TRANSITIONS: Dict[Tuple[AppointmentStatus, AppointmentAction], AppointmentStatus] = {
    (AppointmentStatus.PENDING, AppointmentAction.CONFIRM): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.CONFIRMED, AppointmentAction.START): AppointmentStatus.IN_PROGRESS,
    (AppointmentStatus.IN_PROGRESS, AppointmentAction.COMPLETE): AppointmentStatus.COMPLETED,
    (AppointmentStatus.PENDING, AppointmentAction.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, AppointmentAction.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, AppointmentAction.MARK_NO_SHOW): AppointmentStatus.NO_SHOW,
}

ACTION_LABELS = {
    AppointmentAction.CONFIRM: "Confirm appointment (PENDING → CONFIRMED)",
    AppointmentAction.START: "Start appointment (CONFIRMED → IN_PROGRESS)",
    AppointmentAction.COMPLETE: "Complete appointment (IN_PROGRESS → COMPLETED)",
    AppointmentAction.CANCEL: "Cancel appointment (PENDING/CONFIRMED → CANCELLED)",
    AppointmentAction.MARK_NO_SHOW: "Mark no-show (CONFIRMED, past start → NO_SHOW)",
}


@dataclass
class TransitionParams:
    """Extra input some transitions need."""
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentStateMachine:
    """
    Drives appointment status changes through the fixed transition table.

    Guards are checked locally first so obviously illegal requests fail
    fast, then the change is submitted to the backend, whose answer is
    authoritative.
    """

    def __init__(self, repository, clock: Callable[[], datetime] = None):
        self.repository = repository
        self.clock = clock or local_now

    def target_status(self, status: AppointmentStatus, action: AppointmentAction) -> Optional[AppointmentStatus]:
        return TRANSITIONS.get((status, action))

    def check(
        self,
        appointment: Appointment,
        action: AppointmentAction,
        params: Optional[TransitionParams] = None
    ) -> AppointmentStatus:
        """
        Check a transition locally.

        Returns:
            The status the appointment would move to

        Raises:
            InvalidTransitionError: if the transition or its guard fails
        """
        params = params or TransitionParams()
        target = self.target_status(appointment.status, action)

        if target is None:
            if appointment.is_terminal:
                message = (
                    f"Appointment #{appointment.id} is {appointment.status.value}; "
                    f"no further status changes are allowed."
                )
            else:
                message = f"Cannot {action.value} an appointment in status {appointment.status.value}."
            raise InvalidTransitionError(message, appointment_id=appointment.id)

        if action is AppointmentAction.CANCEL and not (params.reason and params.reason.strip()):
            raise InvalidTransitionError("Cancellation reason is required.", appointment_id=appointment.id)

        if action is AppointmentAction.MARK_NO_SHOW and appointment.scheduled_start_time >= self.clock():
            raise InvalidTransitionError(
                "Only appointments whose scheduled start has passed can be marked as no-show.",
                appointment_id=appointment.id
            )

        return target

    def can_transition(
        self,
        appointment: Appointment,
        action: AppointmentAction,
        params: Optional[TransitionParams] = None
    ) -> bool:
        try:
            self.check(appointment, action, params)
        except InvalidTransitionError:
            return False
        return True

    def allowed_actions(self, appointment: Appointment) -> List[AppointmentAction]:
        """Actions available for an appointment, ignoring input-only guards."""
        placeholder = TransitionParams(reason="placeholder")
        return [
            action for action in AppointmentAction
            if self.can_transition(appointment, action, placeholder)
        ]

    def transition(
        self,
        appointment: Appointment,
        action: AppointmentAction,
        params: Optional[TransitionParams] = None
    ) -> Appointment:
        """
        Apply a status change.

        The appointment is re-read from the backend before the local guard
        runs, then the change is submitted.

        Returns:
            The appointment as returned by the backend

        Raises:
            InvalidTransitionError: rejected locally or by the backend
            ApiError: the backend could not be reached or failed internally
        """
        params = params or TransitionParams()
        current = self.repository.get_appointment(appointment.id)
        if current.status != appointment.status:
            logger.info(
                "Appointment #%s changed on the backend: %s -> %s",
                appointment.id, appointment.status.value, current.status.value
            )

        expected = self.check(current, action, params)

        try:
            updated = self._submit(current, action, params)
        except ApiError as e:
            if e.category.is_connectivity_failure:
                raise
            logger.warning("Backend rejected %s for appointment #%s: %s", action.value, current.id, e)
            raise InvalidTransitionError(
                f"Backend rejected {action.value} for appointment #{current.id}: {e.message}",
                appointment_id=current.id,
                cause=e
            ) from e

        if updated.status != expected:
            # Backend accepted the write but reports a different status
            logger.warning(
                "Backend accepted %s for appointment #%s but reported status %s (expected %s)",
                action.value, current.id, updated.status.value, expected.value
            )
        else:
            logger.info("Appointment #%s is now %s", current.id, updated.status.value)
        return updated

    def _submit(self, appointment: Appointment, action: AppointmentAction, params: TransitionParams) -> Appointment:
        if action is AppointmentAction.CONFIRM:
            return self.repository.confirm_appointment(appointment.id)
        if action is AppointmentAction.START:
            return self.repository.start_appointment(appointment.id)
        if action is AppointmentAction.COMPLETE:
            return self.repository.complete_appointment(appointment.id, params.notes)
        if action is AppointmentAction.CANCEL:
            return self.repository.cancel_appointment(appointment.id, params.reason.strip())
        if action is AppointmentAction.MARK_NO_SHOW:
            return self.repository.mark_no_show(appointment.id, params.notes)
        raise InvalidTransitionError(f"Unknown action: {action}", appointment_id=appointment.id)
