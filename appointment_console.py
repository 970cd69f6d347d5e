"""Terminal menu for managing technician appointments."""

import logging

from services import config
from services.console import TerminalConsole
from services.errors import ApiError, InvalidTransitionError
from services.recreation_workflow import RecreationWorkflow
from services.response_formatter import ResponseFormatter
from services.scheduling_workflow import SchedulingWorkflow
from services.state_machine import ACTION_LABELS, AppointmentAction, TransitionParams
from services.techsupport_client import TechSupportApiClient
from services.techsupport_mock import TechSupportBackendMock

logger = logging.getLogger(__name__)

MENU = """
📅 APPOINTMENT MANAGEMENT
   1. Schedule new appointment
   2. View all appointments
   3. View upcoming appointments
   4. Update appointment
   5. Change appointment status
   6. Run diagnostics for an appointment
   7. Test backend connection
   0. Exit"""


class AppointmentMenu:
    """Interactive terminal front end over the scheduling workflows."""

    def __init__(self, repository, console: TerminalConsole = None):
        self.repository = repository
        self.console = console or TerminalConsole()
        self.scheduler = SchedulingWorkflow(repository, self.console)
        self.recreation = RecreationWorkflow(repository, self.console, scheduler=self.scheduler)

    def run(self) -> None:
        handlers = {
            "1": self.schedule_new,
            "2": self.view_all,
            "3": self.view_upcoming,
            "4": self.update_existing,
            "5": self.change_status,
            "6": self.diagnose,
            "7": self.test_connection,
        }
        while True:
            self.console.show(MENU)
            choice = self.console.ask("Select an option:", "menu")
            if choice == "0":
                self.console.show("👋 Goodbye!")
                return
            handler = handlers.get(choice)
            if handler is None:
                self.console.error("Invalid option. Please try again.")
                continue
            try:
                handler()
            except ApiError as e:
                logger.error("Menu action failed: %s", e)
                self.console.error(ResponseFormatter.format_api_error(e))

    def schedule_new(self) -> None:
        outcome = self.scheduler.build_new_appointment(console=self.console)
        logger.info("Scheduling attempt finished: %s", outcome.status.value)

    def view_all(self) -> None:
        self.console.show(ResponseFormatter.format_appointment_list(
            self.repository.list_appointments(), "All Appointments"
        ))

    def view_upcoming(self) -> None:
        answer = self.console.ask("Days ahead [7]:", "days") or "7"
        try:
            days = int(answer)
        except ValueError:
            self.console.error("Please enter a number of days.")
            return
        self.console.show(ResponseFormatter.format_appointment_list(
            self.repository.list_upcoming_appointments(days), f"Next {days} day(s)"
        ))

    def _select_appointment(self):
        answer = self.console.ask("Appointment ID:", "appointment")
        try:
            appointment_id = int(answer)
        except ValueError:
            self.console.error("Please enter a valid appointment ID.")
            return None
        return self.repository.get_appointment(appointment_id)

    def update_existing(self) -> None:
        appointment = self._select_appointment()
        if appointment is None:
            return
        outcome = self.recreation.build_appointment_update(appointment, console=self.console)
        self.console.show(ResponseFormatter.format_recreation_outcome(outcome))

    def change_status(self) -> None:
        appointment = self._select_appointment()
        if appointment is None:
            return
        self.console.show(ResponseFormatter.format_appointment(appointment))

        actions = self.scheduler.state_machine.allowed_actions(appointment)
        if not actions:
            self.console.show(f"No status changes are available for status {appointment.status.value}.")
            return

        lines = ["Available actions:"]
        for i, action in enumerate(actions, 1):
            lines.append(f"   {i}. {ACTION_LABELS[action]}")
        self.console.show("\n".join(lines))

        answer = self.console.ask("Select an action:", "action")
        try:
            action = actions[int(answer) - 1]
        except (ValueError, IndexError):
            self.console.error("Invalid action.")
            return

        params = TransitionParams()
        if action is AppointmentAction.CANCEL:
            params.reason = self.console.ask("Cancellation reason:", "reason")
        elif action in (AppointmentAction.COMPLETE, AppointmentAction.MARK_NO_SHOW):
            params.notes = self.console.ask("Notes (optional):", "notes") or None

        try:
            updated = self.scheduler.transition(appointment, action, params)
        except InvalidTransitionError as e:
            self.console.error(str(e))
            return
        self.console.success(f"Appointment #{updated.id} is now {updated.status.value}")

    def diagnose(self) -> None:
        appointment = self._select_appointment()
        if appointment is None:
            return
        report = self.scheduler.run_diagnostics(appointment.as_candidate())
        self.console.show(ResponseFormatter.format_diagnostic_report(report))

    def test_connection(self) -> None:
        if self.repository.test_connection():
            self.console.success("Server is responding to API requests")
        else:
            self.console.error("Server did not answer a test request")


def main() -> None:
    config.configure_logging()
    if config.TECHSUPPORT_USE_MOCK:
        repository = TechSupportBackendMock()
        logger.info("Using in-memory backend")
    else:
        repository = TechSupportApiClient()
        logger.info("Using backend at %s", config.TECHSUPPORT_API_BASE_URL)
    AppointmentMenu(repository).run()


if __name__ == "__main__":
    main()
