import logging
from datetime import timedelta

import pytest

from conftest import ONE_HOUR, TOMORROW_10
from models.entities import AppointmentStatus, TicketStatus
from services.errors import ApiError, ErrorCategory
from services.recreation_workflow import (
    CANCELLATION_REASON,
    AppointmentUpdateInput,
    RecreationWorkflow,
    SagaState,
)
from services.scheduling_workflow import ScheduleStatus

T = TOMORROW_10
SAGA_CONFIRMATIONS = {'recreate': True, 'schedule': True}


def connection_refused() -> ApiError:
    return ApiError('Network error: connection refused', ErrorCategory.TRANSPORT_FAILURE)


@pytest.fixture
def existing(backend):
    return backend.add_appointment(101, 1, T, T + ONE_HOUR, AppointmentStatus.CONFIRMED, notes='Gate code 4411')


def test_reschedule_cancels_original_and_creates_replacement(backend, clock, make_console, existing) -> None:
    console = make_console(confirmations=SAGA_CONFIRMATIONS)
    workflow = RecreationWorkflow(backend, console, clock)

    outcome = workflow.build_appointment_update(
        existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.COMPLETED
    assert backend.appointments[existing.id].status is AppointmentStatus.CANCELLED
    assert backend.appointments[existing.id].notes == CANCELLATION_REASON
    assert outcome.replacement.id != existing.id
    assert outcome.replacement.ticket_id == existing.ticket_id
    assert outcome.replacement.scheduled_start_time == T + 2 * ONE_HOUR
    assert outcome.replacement.notes == 'Gate code 4411'
    assert backend.write_calls == ['cancel_appointment', 'create_appointment']


def test_shift_overlapping_own_slot_is_allowed(backend, clock, make_console, existing) -> None:
    console = make_console(confirmations=SAGA_CONFIRMATIONS)

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=T + timedelta(minutes=30), end=T + timedelta(minutes=90))
    )

    assert outcome.state is SagaState.COMPLETED


def test_reassign_technician(backend, clock, make_console, existing) -> None:
    console = make_console(confirmations=SAGA_CONFIRMATIONS)

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(technician_id=2)
    )

    assert outcome.state is SagaState.COMPLETED
    assert outcome.replacement.technician_id == 2


def test_notes_only_change_updates_in_place(backend, clock, make_console, existing) -> None:
    console = make_console()

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(notes='Call before arrival')
    )

    assert outcome.state is SagaState.NOTES_UPDATED
    assert outcome.updated.notes == 'Call before arrival'
    assert backend.appointments[existing.id].status is AppointmentStatus.CONFIRMED
    assert backend.write_calls == ['update_appointment_notes']


def test_no_changes(backend, clock, make_console, existing) -> None:
    outcome = RecreationWorkflow(backend, make_console(), clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=existing.scheduled_start_time, notes='Gate code 4411')
    )

    assert outcome.state is SagaState.NO_CHANGES
    assert backend.write_calls == []


def test_invalid_replacement_aborts_before_touching_original(backend, clock, make_console, existing) -> None:
    console = make_console(confirmations=SAGA_CONFIRMATIONS)

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(end=T + timedelta(minutes=10))
    )

    assert outcome.state is SagaState.ABORTED
    assert outcome.violations
    assert backend.write_calls == []
    assert backend.appointments[existing.id].status is AppointmentStatus.CONFIRMED


def test_replacement_conflicting_with_other_booking_aborts(backend, clock, make_console, existing) -> None:
    backend.add_appointment(102, 2, T + 3 * ONE_HOUR, T + 4 * ONE_HOUR)
    console = make_console(confirmations=SAGA_CONFIRMATIONS)

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(technician_id=2, start=T + 3 * ONE_HOUR, end=T + 4 * ONE_HOUR)
    )

    assert outcome.state is SagaState.ABORTED
    assert backend.write_calls == []


def test_operator_declines_update(backend, clock, make_console, existing) -> None:
    console = make_console(confirmations={'recreate': False})

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.ABORTED
    assert backend.write_calls == []


def test_cancel_failure_leaves_original_untouched(backend, clock, make_console, existing) -> None:
    backend.inject_failure('cancel_appointment', ApiError.from_status(503, 'Service Unavailable'))
    console = make_console(confirmations=SAGA_CONFIRMATIONS)

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.CANCEL_FAILED
    assert backend.appointments[existing.id].status is AppointmentStatus.CONFIRMED
    assert 'create_appointment' not in backend.calls


def test_replacement_failure_is_a_partial_failure(backend, clock, make_console, existing, caplog) -> None:
    backend.inject_failure('create_appointment', ApiError.from_status(409, 'Technician has a conflicting appointment'))
    console = make_console(confirmations=SAGA_CONFIRMATIONS)

    with caplog.at_level(logging.CRITICAL):
        outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
            existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
        )

    assert outcome.state is SagaState.PARTIAL_FAILURE
    assert outcome.partial_failure
    assert outcome.schedule.status is ScheduleStatus.FAILED
    assert outcome.original.status is AppointmentStatus.CANCELLED
    assert backend.appointments[existing.id].status is AppointmentStatus.CANCELLED
    assert any(record.levelno == logging.CRITICAL for record in caplog.records)
    assert console.messages_at('critical')
    assert console.prompts[-1] == 'ack'
    assert outcome.acknowledged


def test_ticket_closed_after_cancel_is_a_partial_failure(backend, clock, make_console, existing) -> None:
    console = make_console(
        confirmations=SAGA_CONFIRMATIONS,
        hooks={'schedule': lambda: backend.set_ticket_status(101, TicketStatus.CLOSED)},
    )

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.PARTIAL_FAILURE
    assert outcome.schedule.status is ScheduleStatus.REJECTED
    assert 'create_appointment' not in backend.calls


def test_operator_abort_after_cancel_is_a_partial_failure(backend, clock, make_console, existing) -> None:
    console = make_console(confirmations={'recreate': True, 'schedule': False})

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.PARTIAL_FAILURE
    assert outcome.schedule.status is ScheduleStatus.CANCELLED


def test_unexpected_error_after_cancel_is_a_partial_failure(
    backend, clock, make_console, existing, monkeypatch, caplog
) -> None:
    def malformed_ticket(ticket_id):
        raise ValueError("'PENDING_REVIEW' is not a valid TicketStatus")

    console = make_console(
        confirmations=SAGA_CONFIRMATIONS,
        hooks={'recreate': lambda: monkeypatch.setattr(backend, 'get_ticket_by_id', malformed_ticket)},
    )

    with caplog.at_level(logging.CRITICAL):
        outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
            existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
        )

    assert outcome.state is SagaState.PARTIAL_FAILURE
    assert isinstance(outcome.error, ValueError)
    assert backend.appointments[existing.id].status is AppointmentStatus.CANCELLED
    assert any(record.levelno == logging.CRITICAL for record in caplog.records)
    assert console.messages_at('critical')
    assert console.prompts[-1] == 'ack'


def test_unreachable_backend_during_precheck_declined_leaves_original(backend, clock, make_console, existing) -> None:
    backend.inject_failure('get_ticket_by_id', connection_refused(), times=3)
    console = make_console(confirmations={**SAGA_CONFIRMATIONS, 'degraded_override': False})

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.ABORTED
    assert outcome.error.category is ErrorCategory.TRANSPORT_FAILURE
    assert backend.appointments[existing.id].status is AppointmentStatus.CONFIRMED
    assert console.prompts == ['degraded_override']
    assert backend.write_calls == []


def test_unreachable_backend_override_is_asked_once_before_cancel(backend, clock, make_console, existing) -> None:
    backend.inject_failure('get_ticket_by_id', connection_refused(), times=2)
    console = make_console(confirmations={**SAGA_CONFIRMATIONS, 'degraded_override': True})

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.COMPLETED
    assert console.prompts == ['degraded_override', 'recreate', 'schedule', 'confirm_now']


def test_non_connectivity_error_during_precheck_aborts(backend, clock, make_console, existing) -> None:
    backend.inject_failure('get_technician_by_id', ApiError.from_status(400, 'Bad request'))
    console = make_console(confirmations={**SAGA_CONFIRMATIONS, 'degraded_override': True})

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(
        existing, AppointmentUpdateInput(technician_id=2)
    )

    assert outcome.state is SagaState.ABORTED
    assert 'degraded_override' not in console.prompts
    assert backend.write_calls == []


@pytest.mark.parametrize('status', [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW])
def test_terminal_appointments_cannot_be_modified(backend, clock, make_console, status) -> None:
    appointment = backend.add_appointment(101, 1, T, T + ONE_HOUR, status)

    outcome = RecreationWorkflow(backend, make_console(), clock).build_appointment_update(
        appointment, AppointmentUpdateInput(notes='too late')
    )

    assert outcome.state is SagaState.ABORTED
    assert backend.write_calls == []


def test_in_progress_appointment_cannot_be_rescheduled(backend, clock, make_console) -> None:
    appointment = backend.add_appointment(101, 1, T, T + ONE_HOUR, AppointmentStatus.IN_PROGRESS)

    outcome = RecreationWorkflow(backend, make_console(confirmations=SAGA_CONFIRMATIONS), clock).build_appointment_update(
        appointment, AppointmentUpdateInput(start=T + 2 * ONE_HOUR, end=T + 3 * ONE_HOUR)
    )

    assert outcome.state is SagaState.ABORTED
    assert backend.write_calls == []


def test_changes_collected_from_console(backend, clock, make_console, existing) -> None:
    console = make_console(
        answers={'new_technician': '', 'new_start': '2026-03-03 14:00', 'new_end': '2026-03-03 15:00', 'new_notes': ''},
        confirmations=SAGA_CONFIRMATIONS,
    )

    outcome = RecreationWorkflow(backend, console, clock).build_appointment_update(existing)

    assert outcome.state is SagaState.COMPLETED
    assert outcome.replacement.scheduled_start_time == T + 4 * ONE_HOUR
    assert outcome.replacement.technician_id == 1
