import logging
from datetime import timedelta

import pytest

from conftest import NOW, ONE_HOUR, TOMORROW_10
from models.entities import AppointmentStatus
from services.errors import ApiError, ErrorCategory, InvalidTransitionError
from services.state_machine import AppointmentAction, AppointmentStateMachine, TransitionParams

PAST_START = NOW - 2 * ONE_HOUR


@pytest.mark.parametrize(
    ('status', 'action', 'params', 'expected'),
    [
        (AppointmentStatus.PENDING, AppointmentAction.CONFIRM, None, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.CONFIRMED, AppointmentAction.START, None, AppointmentStatus.IN_PROGRESS),
        (AppointmentStatus.IN_PROGRESS, AppointmentAction.COMPLETE, TransitionParams(notes='Fan replaced'),
         AppointmentStatus.COMPLETED),
        (AppointmentStatus.PENDING, AppointmentAction.CANCEL, TransitionParams(reason='Client request'),
         AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentAction.CANCEL, TransitionParams(reason='Client request'),
         AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentAction.MARK_NO_SHOW, None, AppointmentStatus.NO_SHOW),
    ],
)
def test_allowed_transitions(backend, clock, status, action, params, expected) -> None:
    appointment = backend.add_appointment(101, 1, PAST_START, PAST_START + ONE_HOUR, status)

    updated = AppointmentStateMachine(backend, clock).transition(appointment, action, params)

    assert updated.status is expected
    assert backend.appointments[appointment.id].status is expected


@pytest.mark.parametrize(
    ('status', 'action'),
    [
        (AppointmentStatus.PENDING, AppointmentAction.START),
        (AppointmentStatus.PENDING, AppointmentAction.COMPLETE),
        (AppointmentStatus.PENDING, AppointmentAction.MARK_NO_SHOW),
        (AppointmentStatus.CONFIRMED, AppointmentAction.CONFIRM),
        (AppointmentStatus.IN_PROGRESS, AppointmentAction.CANCEL),
        (AppointmentStatus.COMPLETED, AppointmentAction.CONFIRM),
        (AppointmentStatus.CANCELLED, AppointmentAction.CANCEL),
        (AppointmentStatus.NO_SHOW, AppointmentAction.START),
    ],
)
def test_illegal_transitions_are_rejected_before_any_write(backend, clock, status, action) -> None:
    appointment = backend.add_appointment(101, 1, PAST_START, PAST_START + ONE_HOUR, status)

    with pytest.raises(InvalidTransitionError) as exception_info:
        AppointmentStateMachine(backend, clock).transition(appointment, action, TransitionParams(reason='x'))

    assert not exception_info.value.rejected_by_backend
    assert backend.write_calls == []
    assert backend.appointments[appointment.id].status is status


@pytest.mark.parametrize('reason', [None, '', '   '])
def test_cancel_requires_a_reason(backend, clock, reason) -> None:
    appointment = backend.add_appointment(101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR)

    with pytest.raises(InvalidTransitionError, match='reason is required'):
        AppointmentStateMachine(backend, clock).transition(
            appointment, AppointmentAction.CANCEL, TransitionParams(reason=reason)
        )

    assert backend.write_calls == []


def test_no_show_requires_start_in_the_past(backend, clock) -> None:
    appointment = backend.add_appointment(
        101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR, AppointmentStatus.CONFIRMED
    )

    with pytest.raises(InvalidTransitionError, match='no-show'):
        AppointmentStateMachine(backend, clock).transition(appointment, AppointmentAction.MARK_NO_SHOW)


@pytest.mark.parametrize(
    ('start', 'expected'),
    [
        (TOMORROW_10, [AppointmentAction.START, AppointmentAction.CANCEL]),
        (PAST_START, [AppointmentAction.START, AppointmentAction.CANCEL, AppointmentAction.MARK_NO_SHOW]),
    ],
)
def test_allowed_actions_for_confirmed(backend, clock, start, expected) -> None:
    appointment = backend.add_appointment(101, 1, start, start + ONE_HOUR, AppointmentStatus.CONFIRMED)

    assert AppointmentStateMachine(backend, clock).allowed_actions(appointment) == expected


def test_terminal_appointments_have_no_actions(backend, clock) -> None:
    appointment = backend.add_appointment(
        101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR, AppointmentStatus.COMPLETED
    )

    assert AppointmentStateMachine(backend, clock).allowed_actions(appointment) == []


def test_guard_uses_backend_state_not_local_copy(backend, clock) -> None:
    stale = backend.add_appointment(101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR)
    backend.confirm_appointment(stale.id)
    backend.calls.clear()

    with pytest.raises(InvalidTransitionError):
        AppointmentStateMachine(backend, clock).transition(stale, AppointmentAction.CONFIRM)

    assert backend.calls == ['get_appointment']


def test_backend_rejection_becomes_invalid_transition(backend, clock) -> None:
    appointment = backend.add_appointment(101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR)
    backend.inject_failure('confirm_appointment', ApiError.from_status(409, 'Appointment locked'))

    with pytest.raises(InvalidTransitionError) as exception_info:
        AppointmentStateMachine(backend, clock).transition(appointment, AppointmentAction.CONFIRM)

    assert exception_info.value.rejected_by_backend
    assert exception_info.value.cause.category is ErrorCategory.STATE_CONFLICT


def test_server_fault_propagates_as_api_error(backend, clock) -> None:
    appointment = backend.add_appointment(101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR)
    backend.inject_failure('confirm_appointment', ApiError.from_status(503))

    with pytest.raises(ApiError) as exception_info:
        AppointmentStateMachine(backend, clock).transition(appointment, AppointmentAction.CONFIRM)

    assert exception_info.value.category is ErrorCategory.SERVER_FAULT


def test_backend_status_wins_when_it_differs(backend, clock, caplog) -> None:
    appointment = backend.add_appointment(101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR)
    original_confirm = backend.confirm_appointment

    def confirm_and_start(appointment_id):
        confirmed = original_confirm(appointment_id)
        started = confirmed.with_status(AppointmentStatus.IN_PROGRESS)
        backend.appointments[appointment_id] = started
        return started

    backend.confirm_appointment = confirm_and_start

    with caplog.at_level(logging.WARNING):
        updated = AppointmentStateMachine(backend, clock).transition(appointment, AppointmentAction.CONFIRM)

    assert updated.status is AppointmentStatus.IN_PROGRESS
    assert 'expected CONFIRMED' in caplog.text


def test_cancel_sends_trimmed_reason(backend, clock) -> None:
    appointment = backend.add_appointment(101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR)

    updated = AppointmentStateMachine(backend, clock).transition(
        appointment, AppointmentAction.CANCEL, TransitionParams(reason='  Client rescheduled  ')
    )

    assert updated.status is AppointmentStatus.CANCELLED
    assert updated.notes == 'Client rescheduled'


def test_no_show_timing_uses_clock(backend) -> None:
    appointment = backend.add_appointment(
        101, 1, TOMORROW_10, TOMORROW_10 + ONE_HOUR, AppointmentStatus.CONFIRMED
    )
    machine = AppointmentStateMachine(backend, lambda: TOMORROW_10 + timedelta(minutes=20))

    assert machine.can_transition(appointment, AppointmentAction.MARK_NO_SHOW)


def test_second_no_show_on_same_appointment_fails(backend, clock) -> None:
    appointment = backend.add_appointment(101, 1, PAST_START, PAST_START + ONE_HOUR, AppointmentStatus.CONFIRMED)
    machine = AppointmentStateMachine(backend, clock)

    first = machine.transition(appointment, AppointmentAction.MARK_NO_SHOW)
    assert first.status is AppointmentStatus.NO_SHOW
    backend.calls.clear()

    with pytest.raises(InvalidTransitionError):
        machine.transition(appointment, AppointmentAction.MARK_NO_SHOW)

    assert 'mark_no_show' not in backend.calls
    assert backend.appointments[appointment.id].status is AppointmentStatus.NO_SHOW
