"""Domain models for the Appointment Scheduler."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class TechnicianStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ON_VACATION = "ON_VACATION"
    SICK_LEAVE = "SICK_LEAVE"
    TERMINATED = "TERMINATED"


class AppointmentStatus(str, Enum):
    """Appointment status vocabulary. New appointments start PENDING."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def occupies_schedule(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

ACTIVE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
})


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a backend timestamp into a naive local datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1]
    return datetime.fromisoformat(text).replace(tzinfo=None)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime the way the backend expects it (ISO, no offset)."""
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat()


def _get_field(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present value among several field name variations."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


@dataclass(frozen=True)
class Ticket:
    """Represents a support ticket."""
    id: int
    status: TicketStatus
    description: Optional[str] = None
    client_id: Optional[int] = None
    service_type: Optional[str] = None
    priority: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status is TicketStatus.OPEN

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Ticket":
        return cls(
            id=int(data["id"]),
            status=TicketStatus(data["status"]),
            description=data.get("description"),
            client_id=_get_field(data, "clientId", "client_id"),
            service_type=_get_field(data, "serviceType", "service_type"),
            priority=data.get("priority"),
        )


@dataclass(frozen=True)
class Technician:
    """Represents a field technician."""
    id: int
    first_name: str
    last_name: str
    status: TechnicianStatus
    email: Optional[str] = None
    skills: List[str] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status is TechnicianStatus.ACTIVE

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Technician":
        return cls(
            id=int(data["id"]),
            first_name=_get_field(data, "firstName", "first_name", default=""),
            last_name=_get_field(data, "lastName", "last_name", default=""),
            status=TechnicianStatus(data["status"]),
            email=data.get("email"),
            skills=list(data.get("skills") or []),
        )


@dataclass(frozen=True)
class AppointmentCandidate:
    """An appointment proposal that has not been accepted by the backend."""
    ticket_id: int
    technician_id: int
    start: datetime
    end: datetime
    notes: Optional[str] = None

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def to_api(self) -> Dict[str, Any]:
        payload = {
            "ticketId": self.ticket_id,
            "technicianId": self.technician_id,
            "startTime": format_datetime(self.start),
            "endTime": format_datetime(self.end),
        }
        if self.notes:
            payload["notes"] = self.notes
        return payload


@dataclass(frozen=True)
class Appointment:
    """
    A scheduled appointment as reported by the backend.

    ``ticket`` and ``technician`` are snapshots the backend may embed in a
    response. They are display hints only: eligibility is always decided
    from a fresh lookup by id.
    """
    id: Optional[int]
    ticket_id: int
    technician_id: int
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    ticket: Optional[Ticket] = None
    technician: Optional[Technician] = None

    @property
    def duration(self) -> timedelta:
        return self.scheduled_end_time - self.scheduled_start_time

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def with_status(self, status: AppointmentStatus, notes: Optional[str] = None) -> "Appointment":
        """Return a copy with a new status (and optionally notes)."""
        if notes is None:
            return replace(self, status=status)
        return replace(self, status=status, notes=notes)

    def as_candidate(self) -> AppointmentCandidate:
        return AppointmentCandidate(
            ticket_id=self.ticket_id,
            technician_id=self.technician_id,
            start=self.scheduled_start_time,
            end=self.scheduled_end_time,
            notes=self.notes,
        )

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Appointment":
        ticket = Ticket.from_api(data["ticket"]) if data.get("ticket") else None
        technician = Technician.from_api(data["technician"]) if data.get("technician") else None

        # Fall back to the embedded object when only the snapshot is present
        ticket_id = _get_field(data, "ticketId", "ticket_id")
        if ticket_id is None and ticket is not None:
            ticket_id = ticket.id
        technician_id = _get_field(data, "technicianId", "technician_id")
        if technician_id is None and technician is not None:
            technician_id = technician.id
        if ticket_id is None or technician_id is None:
            raise ValueError(f"Appointment payload is missing ticket or technician reference: {data!r}")

        return cls(
            id=int(data["id"]) if data.get("id") is not None else None,
            ticket_id=int(ticket_id),
            technician_id=int(technician_id),
            scheduled_start_time=parse_datetime(
                _get_field(data, "scheduledStartTime", "startTime", "start_time")
            ),
            scheduled_end_time=parse_datetime(
                _get_field(data, "scheduledEndTime", "endTime", "end_time")
            ),
            status=AppointmentStatus(data.get("status") or AppointmentStatus.PENDING.value),
            notes=data.get("notes"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
            ticket=ticket,
            technician=technician,
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "technicianId": self.technician_id,
            "scheduledStartTime": format_datetime(self.scheduled_start_time),
            "scheduledEndTime": format_datetime(self.scheduled_end_time),
            "status": self.status.value,
            "notes": self.notes,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
        }
