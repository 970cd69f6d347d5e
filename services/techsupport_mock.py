"""In-memory tech-support backend with synthetic data."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from models.entities import (
    Appointment,
    AppointmentCandidate,
    AppointmentStatus,
    Technician,
    TechnicianStatus,
    Ticket,
    TicketStatus,
)
from services.config import local_now
from services.conflict_detector import overlaps
from services.errors import ApiError
from services.state_machine import TRANSITIONS, AppointmentAction

logger = logging.getLogger(__name__)


class TechSupportBackendMock:
    """
    Mock backend implementing the same repository interface as
    ``TechSupportApiClient``.

    It enforces the backend's own rules (open ticket, active technician,
    no overlap, legal status changes) so the scheduling services can be
    exercised end to end. ``inject_failure`` makes the next call of an
    operation raise, to simulate outages and rejections.
    """

    def __init__(self, clock: Callable[[], datetime] = None, seed: bool = True):
        """Initialize with synthetic data."""
        self.clock = clock or local_now
        self.tickets: Dict[int, Ticket] = {}
        self.technicians: Dict[int, Technician] = {}
        self.appointments: Dict[int, Appointment] = {}
        self.calls: List[str] = []
        self._failures: Dict[str, List[ApiError]] = {}
        self._next_id = 1
        if seed:
            for ticket in self._generate_tickets():
                self.tickets[ticket.id] = ticket
            for technician in self._generate_technicians():
                self.technicians[technician.id] = technician

    def _generate_tickets(self) -> List[Ticket]:
        """Generate synthetic tickets."""
        return [
            Ticket(id=101, status=TicketStatus.OPEN, description="Laptop will not boot after update",
                   client_id=1, service_type="HARDWARE", priority="HIGH"),
            Ticket(id=102, status=TicketStatus.OPEN, description="Email client keeps crashing",
                   client_id=2, service_type="SOFTWARE", priority="MEDIUM"),
            Ticket(id=103, status=TicketStatus.OPEN, description="Printer driver installation",
                   client_id=3, service_type="SOFTWARE", priority="LOW"),
            Ticket(id=104, status=TicketStatus.CLOSED, description="Replaced failing SSD",
                   client_id=1, service_type="HARDWARE", priority="URGENT"),
        ]

    def _generate_technicians(self) -> List[Technician]:
        """Generate synthetic technicians."""
        return [
            Technician(id=1, first_name="Maria", last_name="Lopez", status=TechnicianStatus.ACTIVE,
                       email="maria.lopez@techsupport.example", skills=["HARDWARE", "SOFTWARE"]),
            Technician(id=2, first_name="Kevin", last_name="Osei", status=TechnicianStatus.ACTIVE,
                       email="kevin.osei@techsupport.example", skills=["SOFTWARE"]),
            Technician(id=3, first_name="Hannah", last_name="Berg", status=TechnicianStatus.ON_VACATION,
                       email="hannah.berg@techsupport.example", skills=["HARDWARE"]),
        ]

    # Test and demo helpers

    def inject_failure(self, operation: str, error: ApiError, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._failures.setdefault(operation, []).extend([error] * times)

    def add_appointment(
        self,
        ticket_id: int,
        technician_id: int,
        start: datetime,
        end: datetime,
        status: AppointmentStatus = AppointmentStatus.PENDING,
        notes: Optional[str] = None
    ) -> Appointment:
        """Store an appointment directly, bypassing backend rules."""
        now = self.clock()
        appointment = Appointment(
            id=self._allocate_id(),
            ticket_id=ticket_id,
            technician_id=technician_id,
            scheduled_start_time=start,
            scheduled_end_time=end,
            status=status,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.appointments[appointment.id] = appointment
        return appointment

    def set_ticket_status(self, ticket_id: int, status: TicketStatus) -> None:
        self.tickets[ticket_id] = replace(self.tickets[ticket_id], status=status)

    def set_technician_status(self, technician_id: int, status: TechnicianStatus) -> None:
        self.technicians[technician_id] = replace(self.technicians[technician_id], status=status)

    def _allocate_id(self) -> int:
        appointment_id = self._next_id
        self._next_id += 1
        return appointment_id

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        pending = self._failures.get(operation)
        if pending:
            error = pending.pop(0)
            logger.debug("Injected failure for %s: %s", operation, error)
            raise error

    def _get_or_404(self, store: Dict[int, object], key: int, label: str):
        if key not in store:
            raise ApiError.from_status(404, f"{label} not found with ID: {key}")
        return store[key]

    # Repository interface

    def test_connection(self) -> bool:
        try:
            self._enter("test_connection")
        except ApiError:
            return False
        return True

    def get_ticket_by_id(self, ticket_id: int) -> Ticket:
        self._enter("get_ticket_by_id")
        return self._get_or_404(self.tickets, ticket_id, "Ticket")

    def list_tickets(self) -> List[Ticket]:
        self._enter("list_tickets")
        return list(self.tickets.values())

    def get_technician_by_id(self, technician_id: int) -> Technician:
        self._enter("get_technician_by_id")
        return self._get_or_404(self.technicians, technician_id, "Technician")

    def list_technicians(self) -> List[Technician]:
        self._enter("list_technicians")
        return list(self.technicians.values())

    def list_active_technicians(self) -> List[Technician]:
        return [t for t in self.list_technicians() if t.is_active]

    def _overlapping(self, technician_id: int, start: datetime, end: datetime) -> List[Appointment]:
        return [
            a for a in self.appointments.values()
            if a.technician_id == technician_id
            and a.status.occupies_schedule
            and overlaps(a.scheduled_start_time, a.scheduled_end_time, start, end)
        ]

    def check_technician_availability(self, technician_id: int, start: datetime, end: datetime) -> bool:
        self._enter("check_technician_availability")
        self._get_or_404(self.technicians, technician_id, "Technician")
        return not self._overlapping(technician_id, start, end)

    def create_appointment(self, candidate: AppointmentCandidate) -> Appointment:
        self._enter("create_appointment")
        if candidate.end <= candidate.start:
            raise ApiError.from_status(400, "End time must be after start time")
        ticket = self._get_or_404(self.tickets, candidate.ticket_id, "Ticket")
        technician = self._get_or_404(self.technicians, candidate.technician_id, "Technician")
        if not ticket.is_open:
            raise ApiError.from_status(409, f"Ticket {ticket.id} is not OPEN")
        if not technician.is_active:
            raise ApiError.from_status(409, f"Technician {technician.id} is not ACTIVE")
        if self._overlapping(candidate.technician_id, candidate.start, candidate.end):
            raise ApiError.from_status(409, "Technician has a conflicting appointment")
        return self.add_appointment(
            candidate.ticket_id,
            candidate.technician_id,
            candidate.start,
            candidate.end,
            notes=candidate.notes,
        )

    def get_appointment(self, appointment_id: int) -> Appointment:
        self._enter("get_appointment")
        return self._get_or_404(self.appointments, appointment_id, "Appointment")

    def update_appointment_notes(self, appointment_id: int, notes: Optional[str]) -> Appointment:
        self._enter("update_appointment_notes")
        appointment = self._get_or_404(self.appointments, appointment_id, "Appointment")
        if appointment.is_terminal:
            raise ApiError.from_status(409, f"Appointment {appointment_id} is {appointment.status.value}")
        updated = replace(appointment, notes=notes, updated_at=self.clock())
        self.appointments[appointment_id] = updated
        return updated

    def _apply(self, operation: str, appointment_id: int, action: AppointmentAction,
               notes: Optional[str] = None) -> Appointment:
        self._enter(operation)
        appointment = self._get_or_404(self.appointments, appointment_id, "Appointment")
        target = TRANSITIONS.get((appointment.status, action))
        if target is None:
            raise ApiError.from_status(
                409, f"Cannot {action.value} appointment in status {appointment.status.value}"
            )
        if action is AppointmentAction.MARK_NO_SHOW and appointment.scheduled_start_time >= self.clock():
            raise ApiError.from_status(400, "Appointment has not started yet")
        updated = replace(
            appointment,
            status=target,
            notes=notes if notes else appointment.notes,
            updated_at=self.clock(),
        )
        self.appointments[appointment_id] = updated
        return updated

    def confirm_appointment(self, appointment_id: int) -> Appointment:
        return self._apply("confirm_appointment", appointment_id, AppointmentAction.CONFIRM)

    def start_appointment(self, appointment_id: int) -> Appointment:
        return self._apply("start_appointment", appointment_id, AppointmentAction.START)

    def complete_appointment(self, appointment_id: int, notes: Optional[str] = None) -> Appointment:
        return self._apply("complete_appointment", appointment_id, AppointmentAction.COMPLETE, notes)

    def cancel_appointment(self, appointment_id: int, reason: str) -> Appointment:
        if not reason or not reason.strip():
            raise ApiError.from_status(400, "Cancellation reason is required")
        return self._apply("cancel_appointment", appointment_id, AppointmentAction.CANCEL, reason)

    def mark_no_show(self, appointment_id: int, notes: Optional[str] = None) -> Appointment:
        return self._apply("mark_no_show", appointment_id, AppointmentAction.MARK_NO_SHOW, notes)

    def list_appointments(self) -> List[Appointment]:
        self._enter("list_appointments")
        return sorted(self.appointments.values(), key=lambda a: a.scheduled_start_time)

    def list_upcoming_appointments(self, days_ahead: int = 7) -> List[Appointment]:
        self._enter("list_upcoming_appointments")
        now = self.clock()
        horizon = now + timedelta(days=days_ahead)
        return sorted(
            (a for a in self.appointments.values()
             if a.status.occupies_schedule and now <= a.scheduled_start_time <= horizon),
            key=lambda a: a.scheduled_start_time
        )

    @property
    def write_calls(self) -> List[str]:
        """Calls that would mutate backend state."""
        writes = {
            "create_appointment", "update_appointment_notes", "confirm_appointment",
            "start_appointment", "complete_appointment", "cancel_appointment", "mark_no_show",
        }
        return [c for c in self.calls if c in writes]
