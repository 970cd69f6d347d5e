"""Tech-support backend REST client service."""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from models.entities import (
    Appointment,
    AppointmentCandidate,
    Technician,
    Ticket,
    format_datetime,
)
from services import config
from services.errors import ApiError, ErrorCategory

logger = logging.getLogger(__name__)


class TechSupportApiClient:
    """
    Client for the tech-support backend REST API.

    Acts as the entity repository and the technician availability oracle for
    the scheduling services. Every call goes to the backend: no entity is
    cached between calls, so each scheduling attempt sees fresh state.
    Failures are raised as ``ApiError`` classified by response category.
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        api_token: str = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize the backend API client.

        Args:
            base_url: Backend base URL (defaults to env var TECHSUPPORT_API_BASE_URL)
            timeout: Request timeout in seconds (defaults to env var TECHSUPPORT_API_TIMEOUT)
            api_token: Optional bearer token (defaults to env var TECHSUPPORT_API_TOKEN)
            transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
        """
        self.base_url = (base_url or config.TECHSUPPORT_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.TECHSUPPORT_API_TIMEOUT
        self.api_token = api_token if api_token is not None else config.TECHSUPPORT_API_TOKEN
        self.transport = transport

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        url = f"{self.base_url}{endpoint}"
        logger.debug("%s %s params=%s", method, url, params)

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=self._get_headers()
                )
        except httpx.RequestError as e:
            logger.error("Network error calling %s %s: %s", method, endpoint, e)
            raise ApiError(f"Network error: {e}", ErrorCategory.TRANSPORT_FAILURE) from e

        logger.debug("Response status: %s for URL: %s", response.status_code, url)

        if response.is_error:
            logger.error("API call %s %s failed with status %s", method, endpoint, response.status_code)
            raise ApiError.from_status(response.status_code, response.text)

        if not response.content:
            return None

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ApiError(
                f"Could not decode response from {endpoint}",
                ErrorCategory.SERVER_FAULT,
                status_code=response.status_code,
                body=response.text
            ) from e

    @staticmethod
    def _content(result: Any) -> List[Dict[str, Any]]:
        """Unwrap a paged response or a bare list."""
        if result is None:
            return []
        if isinstance(result, dict):
            return list(result.get("content") or [])
        return list(result)

    def _expect_object(self, result: Any, endpoint: str) -> Dict[str, Any]:
        if not isinstance(result, dict):
            raise ApiError(
                f"Unexpected response body from {endpoint}",
                ErrorCategory.SERVER_FAULT
            )
        return result

    @staticmethod
    def _parse(from_api: Callable[[Dict[str, Any]], Any], data: Any, endpoint: str) -> Any:
        """Build an entity from a response item. Malformed payloads are server faults."""
        try:
            return from_api(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed payload from %s: %s", endpoint, e)
            raise ApiError(
                f"Malformed response from {endpoint}: {e}",
                ErrorCategory.SERVER_FAULT
            ) from e

    def _get_one(self, from_api, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        result = self._request(method, endpoint, payload=payload)
        return self._parse(from_api, self._expect_object(result, endpoint), endpoint)

    def _get_list(self, from_api, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        result = self._request("GET", endpoint, params=params)
        return [self._parse(from_api, item, endpoint) for item in self._content(result)]

    def test_connection(self) -> bool:
        """Return True if the backend answers a lightweight request."""
        try:
            self._request("GET", "/api/appointments", params={"size": 1})
            return True
        except ApiError as e:
            logger.warning("Backend connection test failed: %s", e)
            return False

    # Tickets

    def get_ticket_by_id(self, ticket_id: int) -> Ticket:
        """Get a ticket by ID. Raises ApiError(NOT_FOUND) if it does not exist."""
        return self._get_one(Ticket.from_api, "GET", f"/api/tickets/{ticket_id}")

    def list_tickets(self) -> List[Ticket]:
        return self._get_list(Ticket.from_api, "/api/tickets")

    # Technicians

    def get_technician_by_id(self, technician_id: int) -> Technician:
        """Get a technician by ID. Raises ApiError(NOT_FOUND) if it does not exist."""
        return self._get_one(Technician.from_api, "GET", f"/api/technicians/{technician_id}")

    def list_technicians(self) -> List[Technician]:
        return self._get_list(Technician.from_api, "/api/technicians")

    def list_active_technicians(self) -> List[Technician]:
        return [t for t in self.list_technicians() if t.is_active]

    def check_technician_availability(
        self,
        technician_id: int,
        start: datetime,
        end: datetime
    ) -> bool:
        """
        Ask the backend whether a technician is free for ``[start, end)``.

        Returns:
            True if no non-terminal appointment overlaps the window
        """
        endpoint = f"/api/technicians/{technician_id}/availability"
        result = self._request(
            "GET",
            endpoint,
            params={"startTime": format_datetime(start), "endTime": format_datetime(end)}
        )
        if isinstance(result, bool):
            return result
        if isinstance(result, dict) and "available" in result:
            return bool(result["available"])
        raise ApiError(f"Unexpected availability response from {endpoint}", ErrorCategory.SERVER_FAULT)

    # Appointments

    def create_appointment(self, candidate: AppointmentCandidate) -> Appointment:
        logger.info(
            "Creating appointment - TicketId: %s, TechnicianId: %s, Start: %s, End: %s",
            candidate.ticket_id,
            candidate.technician_id,
            candidate.start,
            candidate.end
        )
        return self._get_one(Appointment.from_api, "POST", "/api/appointments", candidate.to_api())

    def get_appointment(self, appointment_id: int) -> Appointment:
        return self._get_one(Appointment.from_api, "GET", f"/api/appointments/{appointment_id}")

    def update_appointment_notes(self, appointment_id: int, notes: Optional[str]) -> Appointment:
        """Update the notes of an appointment in place (the only editable field)."""
        return self._get_one(Appointment.from_api, "PUT", f"/api/appointments/{appointment_id}", {"notes": notes})

    def _post_action(self, appointment_id: int, action: str, payload: Optional[Dict[str, Any]] = None) -> Appointment:
        endpoint = f"/api/appointments/{appointment_id}/{action}"
        return self._get_one(Appointment.from_api, "POST", endpoint, payload)

    def confirm_appointment(self, appointment_id: int) -> Appointment:
        return self._post_action(appointment_id, "confirm")

    def start_appointment(self, appointment_id: int) -> Appointment:
        return self._post_action(appointment_id, "start")

    def complete_appointment(self, appointment_id: int, notes: Optional[str] = None) -> Appointment:
        return self._post_action(appointment_id, "complete", {"notes": notes})

    def cancel_appointment(self, appointment_id: int, reason: str) -> Appointment:
        return self._post_action(appointment_id, "cancel", {"reason": reason})

    def mark_no_show(self, appointment_id: int, notes: Optional[str] = None) -> Appointment:
        return self._post_action(appointment_id, "no-show", {"notes": notes})

    def list_appointments(self) -> List[Appointment]:
        appointments = self._get_list(Appointment.from_api, "/api/appointments")
        logger.info("Successfully fetched %d appointments", len(appointments))
        return appointments

    def list_upcoming_appointments(self, days_ahead: int = 7) -> List[Appointment]:
        return self._get_list(Appointment.from_api, "/api/appointments/upcoming", params={"days": days_ahead})
