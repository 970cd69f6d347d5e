"""Structured response formatter for consistent scheduling output."""

from datetime import datetime, timedelta
from typing import List, Optional

from models.entities import Appointment, AppointmentCandidate
from services.errors import ApiError

DISPLAY_FORMAT = "%Y-%m-%d %H:%M"


class ResponseFormatter:
    """Formats workflow output in a consistent, structured manner."""

    @staticmethod
    def format_header(title: str) -> str:
        rule = "=" * 60
        return f"{rule}\n{title}\n{rule}"

    @staticmethod
    def format_section(title: str, content: List[str], icon: str = "📋") -> str:
        """Format a section with title and content."""
        lines = [f"**{icon} {title}**", ""]
        lines.extend(content)
        return "\n".join(lines)

    @staticmethod
    def format_info_line(label: str, value: str, available: bool = True) -> str:
        """Format an info line with a pass/fail indicator."""
        icon = "✅" if available else "❌"
        return f"   {icon} **{label}:** {value}"

    @staticmethod
    def format_datetime(value: Optional[datetime]) -> str:
        return value.strftime(DISPLAY_FORMAT) if value else "N/A"

    @staticmethod
    def format_duration(delta: timedelta) -> str:
        minutes = int(delta.total_seconds() // 60)
        hours, rest = divmod(minutes, 60)
        if hours and rest:
            return f"{hours}h {rest}min"
        if hours:
            return f"{hours}h"
        return f"{rest} minutes"

    @staticmethod
    def format_success(title: str, message: str, details: Optional[List[str]] = None) -> str:
        """Format a success message."""
        lines = [f"**✅ {title}**", "", message]
        if details:
            lines.append("")
            lines.append("**Details:**")
            for detail in details:
                lines.append(f"• {detail}")
        return "\n".join(lines)

    @staticmethod
    def format_error(title: str, message: str, suggestions: Optional[List[str]] = None) -> str:
        """Format an error message."""
        lines = [f"**❌ {title}**", "", message]
        if suggestions:
            lines.append("")
            lines.append("**Suggestions:**")
            for suggestion in suggestions:
                lines.append(f"• {suggestion}")
        return "\n".join(lines)

    @staticmethod
    def format_info(title: str, message: str, items: Optional[List[str]] = None) -> str:
        """Format an informational message."""
        lines = [f"**ℹ️ {title}**", "", message]
        if items:
            lines.append("")
            for item in items:
                lines.append(f"• {item}")
        return "\n".join(lines)

    @staticmethod
    def format_candidate_summary(
        candidate: AppointmentCandidate,
        repository=None,
        title: str = "New Appointment Summary"
    ) -> str:
        """
        Summarize a candidate before it is submitted.

        Ticket and technician names are looked up when a repository is given;
        if a lookup fails the raw IDs are shown instead.
        """
        ticket_label = f"#{candidate.ticket_id}"
        technician_label = f"ID {candidate.technician_id}"
        if repository is not None:
            try:
                ticket = repository.get_ticket_by_id(candidate.ticket_id)
                ticket_label = f"#{ticket.id} - {ticket.description or 'No description'}"
            except ApiError:
                ticket_label += " (details unavailable)"
            try:
                technician = repository.get_technician_by_id(candidate.technician_id)
                technician_label = technician.full_name
            except ApiError:
                technician_label += " (details unavailable)"

        content = [
            f"• **Ticket:** {ticket_label}",
            f"• **Technician:** {technician_label}",
            f"• **Start:** {ResponseFormatter.format_datetime(candidate.start)}",
            f"• **End:** {ResponseFormatter.format_datetime(candidate.end)}",
            f"• **Duration:** {ResponseFormatter.format_duration(candidate.duration)}",
        ]
        if candidate.notes:
            content.append(f"• **Notes:** {candidate.notes}")
        return ResponseFormatter.format_section(title, content)

    @staticmethod
    def format_appointment(appointment: Appointment) -> str:
        """Format one appointment's details."""
        technician = (
            appointment.technician.full_name if appointment.technician
            else f"ID {appointment.technician_id}"
        )
        content = [
            f"• **Appointment ID:** {appointment.id}",
            f"• **Status:** {appointment.status.value}",
            f"• **Ticket:** #{appointment.ticket_id}",
            f"• **Technician:** {technician}",
            f"• **Start:** {ResponseFormatter.format_datetime(appointment.scheduled_start_time)}",
            f"• **End:** {ResponseFormatter.format_datetime(appointment.scheduled_end_time)}",
        ]
        if appointment.notes:
            content.append(f"• **Notes:** {appointment.notes}")
        return ResponseFormatter.format_section(f"Appointment #{appointment.id}", content, icon="📅")

    @staticmethod
    def format_appointment_list(appointments: List[Appointment], title: str = "Appointments") -> str:
        if not appointments:
            return ResponseFormatter.format_info(title, "No appointments found.")

        lines = [f"**📅 {title}**", "", f"Found **{len(appointments)}** appointment(s).", ""]
        for i, appointment in enumerate(appointments, 1):
            lines.append(
                f"{i}. **#{appointment.id}** [{appointment.status.value}] "
                f"{ResponseFormatter.format_datetime(appointment.scheduled_start_time)} - "
                f"{appointment.scheduled_end_time:%H:%M} "
                f"(Ticket #{appointment.ticket_id}, Technician {appointment.technician_id})"
            )
        return "\n".join(lines)

    @staticmethod
    def format_violations(violations) -> str:
        return ResponseFormatter.format_error(
            "Validation Failed",
            "The appointment does not satisfy the scheduling rules:",
            suggestions=[v.message for v in violations]
        )

    @staticmethod
    def format_conflicts(candidate: AppointmentCandidate, conflicts: List[Appointment], alternatives) -> str:
        """Format a double-booking rejection with alternative windows."""
        message = (
            f"Technician {candidate.technician_id} is not available between "
            f"{ResponseFormatter.format_datetime(candidate.start)} and "
            f"{ResponseFormatter.format_datetime(candidate.end)}."
        )
        lines = [f"**❌ Scheduling Conflict**", "", message]

        if conflicts:
            lines.append("")
            lines.append("**Conflicting appointments:**")
            for conflict in conflicts:
                lines.append(
                    f"• #{conflict.id}: {ResponseFormatter.format_datetime(conflict.scheduled_start_time)} - "
                    f"{conflict.scheduled_end_time:%H:%M} ({conflict.status.value})"
                )

        if alternatives:
            lines.append("")
            lines.append("**Available alternatives:**")
            for window in alternatives:
                lines.append(
                    f"• {ResponseFormatter.format_datetime(window.start)} - {window.end:%H:%M}"
                )
        return "\n".join(lines)

    @staticmethod
    def format_api_error(error: ApiError, candidate: Optional[AppointmentCandidate] = None) -> str:
        """Format a backend failure with its category and remediation hint."""
        status = f" (HTTP {error.status_code})" if error.status_code else ""
        suggestions = [error.remediation]
        if candidate is not None:
            suggestions.append(
                f"Request: ticket #{candidate.ticket_id}, technician {candidate.technician_id}, "
                f"{ResponseFormatter.format_datetime(candidate.start)} - "
                f"{ResponseFormatter.format_datetime(candidate.end)}"
            )
        return ResponseFormatter.format_error(
            f"{error.category.value.replace('_', ' ').title()}{status}",
            error.message,
            suggestions=suggestions
        )

    @staticmethod
    def format_degraded_warning(error: ApiError) -> str:
        return ResponseFormatter.format_error(
            "Unable to Verify Eligibility",
            f"Could not complete all validation checks: {error.message}",
            suggestions=[
                "Ticket may not be OPEN",
                "Technician may not be ACTIVE",
                "Technician may have scheduling conflicts",
                error.remediation,
            ]
        )

    @staticmethod
    def format_diagnostic_report(report) -> str:
        """Format a diagnostic run as a check list with its conclusion."""
        lines = [
            "**🔧 Appointment Diagnostics**",
            "",
            f"Run at {ResponseFormatter.format_datetime(report.run_at)}",
            "",
        ]
        for i, check in enumerate(report.checks, 1):
            lines.append(ResponseFormatter.format_info_line(
                f"{i}. {check.name}", check.outcome.value, check.passed
            ))
            for detail in check.details:
                lines.append(f"      {detail}")
            if check.root_cause and not check.passed:
                lines.append(f"      Likely cause: {check.root_cause}")
        lines.append("")
        lines.append(f"**Conclusion:** {report.conclusion}")
        return "\n".join(lines)

    @staticmethod
    def format_update_summary(existing: Appointment, replacement: AppointmentCandidate) -> str:
        """Side-by-side view of an appointment and the details replacing it."""
        def changed(label: str, before: str, after: str) -> str:
            marker = " (changed)" if before != after else ""
            return f"• **{label}:** {before} → {after}{marker}"

        fmt = ResponseFormatter.format_datetime
        content = [
            changed("Ticket", f"#{existing.ticket_id}", f"#{replacement.ticket_id}"),
            changed("Technician", str(existing.technician_id), str(replacement.technician_id)),
            changed("Start", fmt(existing.scheduled_start_time), fmt(replacement.start)),
            changed("End", fmt(existing.scheduled_end_time), fmt(replacement.end)),
            changed("Notes", existing.notes or "-", replacement.notes or "-"),
            "",
            f"Appointment #{existing.id} will be cancelled and a new appointment created.",
        ]
        return ResponseFormatter.format_section("Appointment Update Summary", content, icon="🔄")

    @staticmethod
    def format_schedule_outcome(outcome) -> str:
        """One-paragraph summary of a scheduling attempt."""
        status = outcome.status.value
        if outcome.succeeded:
            details = [f"Status: {outcome.appointment.status.value}"]
            if outcome.degraded:
                details.append("Created without complete validation (degraded mode)")
            return ResponseFormatter.format_success(
                "Appointment Scheduled",
                f"Appointment #{outcome.appointment.id} was created.",
                details
            )
        if outcome.violations:
            return ResponseFormatter.format_violations(outcome.violations)
        if outcome.error is not None:
            return ResponseFormatter.format_api_error(outcome.error, outcome.candidate)
        if status == "CONFLICT":
            return ResponseFormatter.format_conflicts(outcome.candidate, outcome.conflicts, outcome.alternatives)
        return ResponseFormatter.format_info("Scheduling Not Completed", f"Result: {status}")

    @staticmethod
    def format_recreation_outcome(outcome) -> str:
        """Summary of an update attempt, including the saga's final state."""
        state = outcome.state.value
        if outcome.partial_failure:
            return ResponseFormatter.format_error(
                "Partial Failure",
                f"Appointment #{outcome.original.id} was CANCELLED but no replacement was created.",
                suggestions=[
                    f"Original details: ticket #{outcome.original.ticket_id}, "
                    f"technician {outcome.original.technician_id}, "
                    f"{ResponseFormatter.format_datetime(outcome.original.scheduled_start_time)} - "
                    f"{ResponseFormatter.format_datetime(outcome.original.scheduled_end_time)}",
                    "Recreate the appointment manually",
                ]
            )
        if outcome.updated is not None:
            return ResponseFormatter.format_success(
                "Notes Updated",
                f"Appointment #{outcome.updated.id} was updated in place.",
                [f"Notes: {outcome.updated.notes or '-'}"]
            )
        if outcome.replacement is not None:
            return ResponseFormatter.format_success(
                "Appointment Updated",
                f"Appointment #{outcome.original.id} was replaced by #{outcome.replacement.id}.",
                [f"Saga state: {state}"]
            )
        return ResponseFormatter.format_info(
            "Update Not Applied",
            f"Appointment #{outcome.original.id} is unchanged. Result: {state}",
            [outcome.message] if outcome.message else None
        )
