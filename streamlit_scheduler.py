"""Technician Appointment Scheduler - Streamlit front end."""

from datetime import datetime, time, timedelta

import streamlit as st

from services import config
from services.console import PresetConsole
from services.errors import ApiError, InvalidTransitionError
from services.recreation_workflow import AppointmentUpdateInput, RecreationWorkflow, SagaState
from services.response_formatter import ResponseFormatter
from services.scheduling_workflow import AppointmentInput, ScheduleStatus, SchedulingWorkflow
from services.state_machine import ACTION_LABELS, AppointmentAction, TransitionParams
from services.techsupport_client import TechSupportApiClient
from services.techsupport_mock import TechSupportBackendMock

# ============================================================================
# CONFIGURATION
# ============================================================================

config.configure_logging()

st.set_page_config(
    page_title="Appointment Scheduler",
    page_icon="🛠️",
    layout="wide"
)

# ============================================================================
# SERVICE INITIALIZATION
# ============================================================================

@st.cache_resource
def get_services(_cache_version="v1.0"):
    """Initialize and cache the backend repository and workflows."""
    if config.TECHSUPPORT_USE_MOCK:
        repository = TechSupportBackendMock()
    else:
        repository = TechSupportApiClient()
    scheduler = SchedulingWorkflow(repository, PresetConsole())
    recreation = RecreationWorkflow(repository, PresetConsole(), scheduler=scheduler)
    return repository, scheduler, recreation


repository, scheduler, recreation = get_services()

# ============================================================================
# SESSION STATE INITIALIZATION
# ============================================================================

# Partial failures stay on screen until the operator acknowledges them
if "pending_ack" not in st.session_state:
    st.session_state.pending_ack = None

# Connectivity failures waiting for an explicit degraded-mode decision, per tab
if "degraded_retry" not in st.session_state:
    st.session_state.degraded_retry = {}

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def render_messages(messages):
    """Render console messages emitted by a workflow run."""
    for level, text in messages:
        if level == "success":
            st.success(text)
        elif level == "warning":
            st.warning(text)
        elif level == "error":
            st.error(text)
        elif level == "critical":
            st.error(f"🚨 CRITICAL\n\n{text}")
        else:
            st.markdown(text)


def datetime_inputs(prefix: str, default_start: datetime, default_end: datetime):
    """Date and time pickers for a start/end pair."""
    col1, col2 = st.columns(2)
    with col1:
        start_date = st.date_input("Start date", default_start.date(), key=f"{prefix}_start_date")
        start_time = st.time_input("Start time", default_start.time(), key=f"{prefix}_start_time", step=900)
    with col2:
        end_date = st.date_input("End date", default_end.date(), key=f"{prefix}_end_date")
        end_time = st.time_input("End time", default_end.time(), key=f"{prefix}_end_time", step=900)
    return datetime.combine(start_date, start_time), datetime.combine(end_date, end_time)


def next_slot() -> datetime:
    """Next full hour, at least an hour from now."""
    now = config.local_now()
    return datetime.combine(now.date(), time(now.hour)) + timedelta(hours=2)


def load_appointments():
    try:
        return repository.list_appointments()
    except ApiError as e:
        st.error(ResponseFormatter.format_api_error(e))
        return []


def appointment_label(appointment) -> str:
    return (
        f"#{appointment.id} [{appointment.status.value}] "
        f"{appointment.scheduled_start_time:%Y-%m-%d %H:%M} - Ticket #{appointment.ticket_id}"
    )


def remember_degraded_retry(kind: str, error, retry_args) -> None:
    """Keep an aborted run so the operator can decide on degraded mode after seeing the failure."""
    if isinstance(error, ApiError) and error.category.is_connectivity_failure:
        st.session_state.degraded_retry[kind] = (error, retry_args)
    else:
        st.session_state.degraded_retry.pop(kind, None)


def render_degraded_retry(kind: str, run) -> None:
    pending = st.session_state.degraded_retry.get(kind)
    if pending is None:
        return
    error, retry_args = pending
    st.warning(ResponseFormatter.format_degraded_warning(error))
    col1, col2 = st.columns(2)
    with col1:
        proceed = st.button("⚠️ Proceed in degraded mode", key=f"degraded_{kind}")
    with col2:
        discard = st.button("Discard", key=f"degraded_{kind}_discard")
    if discard:
        del st.session_state.degraded_retry[kind]
        st.rerun()
    if proceed:
        del st.session_state.degraded_retry[kind]
        run(*retry_args, degraded_override=True)

# ============================================================================
# TABS
# ============================================================================

def render_schedule_tab():
    st.subheader("📅 Schedule New Appointment")
    try:
        tickets = [t for t in repository.list_tickets() if t.is_open]
        technicians = repository.list_active_technicians()
    except ApiError as e:
        st.error(ResponseFormatter.format_api_error(e))
        return

    if not tickets:
        st.info("No open tickets available for scheduling appointments.")
        return
    if not technicians:
        st.info("No active technicians available for appointment scheduling.")
        return

    with st.form("schedule_form"):
        ticket = st.selectbox(
            "Ticket",
            tickets,
            format_func=lambda t: f"#{t.id}: {t.description or 'No description'}"
        )
        technician = st.selectbox(
            "Technician",
            technicians,
            format_func=lambda t: f"{t.full_name} ({', '.join(t.skills) or 'General'})"
        )
        start = next_slot()
        start, end = datetime_inputs("new", start, start + timedelta(hours=1))
        notes = st.text_area("Notes (optional)")

        st.markdown("**Options**")
        confirm_now = st.checkbox("Confirm the appointment immediately after creation")
        run_diagnostics = st.checkbox("Run diagnostics if the backend rejects the request", value=True)
        submitted = st.form_submit_button("✅ Schedule appointment")

    if submitted:
        run_schedule(
            AppointmentInput(
                ticket_id=ticket.id,
                technician_id=technician.id,
                start=start,
                end=end,
                notes=notes
            ),
            {"schedule": True, "confirm_now": confirm_now, "run_diagnostics": run_diagnostics}
        )
    render_degraded_retry("schedule", run_schedule)


def run_schedule(appointment_input, confirmations, degraded_override=False):
    console = PresetConsole(confirmations={**confirmations, "degraded_override": degraded_override})
    with st.spinner("Scheduling..."):
        outcome = scheduler.build_new_appointment(appointment_input, console)
    render_messages(console.messages)
    aborted_error = outcome.error if outcome.status is ScheduleStatus.ABORTED else None
    remember_degraded_retry("schedule", aborted_error, (appointment_input, confirmations))
    if outcome.succeeded:
        st.balloons()


def render_update_tab():
    st.subheader("🔄 Update Appointment")
    appointments = [a for a in load_appointments() if not a.is_terminal]
    if not appointments:
        st.info("No modifiable appointments.")
        return

    existing = st.selectbox("Appointment", appointments, format_func=appointment_label, key="update_select")
    st.markdown(ResponseFormatter.format_appointment(existing))

    try:
        technicians = repository.list_active_technicians()
    except ApiError as e:
        st.error(ResponseFormatter.format_api_error(e))
        return

    with st.form("update_form"):
        technician_ids = [t.id for t in technicians]
        default_index = technician_ids.index(existing.technician_id) if existing.technician_id in technician_ids else 0
        technician = st.selectbox(
            "Technician",
            technicians,
            index=default_index,
            format_func=lambda t: t.full_name
        )
        start, end = datetime_inputs(
            f"update_{existing.id}", existing.scheduled_start_time, existing.scheduled_end_time
        )
        notes = st.text_area("Notes", existing.notes or "")
        st.warning(
            "Changing the technician or time cancels this appointment and creates a new one. "
            "If the new one cannot be created, the original stays cancelled."
        )
        submitted = st.form_submit_button("🔄 Apply changes")

    if submitted:
        run_update(
            existing,
            AppointmentUpdateInput(
                technician_id=technician.id,
                start=start,
                end=end,
                notes=notes
            )
        )
    render_degraded_retry("update", run_update)


def run_update(existing, update_input, degraded_override=False):
    console = PresetConsole(confirmations={
        "recreate": True,
        "schedule": True,
        "degraded_override": degraded_override,
    })
    with st.spinner("Updating..."):
        outcome = recreation.build_appointment_update(existing, update_input, console)
    render_messages(console.messages)
    aborted_error = outcome.error if outcome.state is SagaState.ABORTED else None
    remember_degraded_retry("update", aborted_error, (existing, update_input))
    if outcome.state is SagaState.PARTIAL_FAILURE:
        st.session_state.pending_ack = ResponseFormatter.format_recreation_outcome(outcome)
        st.rerun()


def render_status_tab():
    st.subheader("🔁 Change Appointment Status")
    appointments = [a for a in load_appointments() if not a.is_terminal]
    if not appointments:
        st.info("No appointments with pending status changes.")
        return

    appointment = st.selectbox("Appointment", appointments, format_func=appointment_label, key="status_select")
    actions = scheduler.state_machine.allowed_actions(appointment)
    if not actions:
        st.info("No status changes are available for this appointment right now.")
        return

    action = st.radio("Action", actions, format_func=lambda a: ACTION_LABELS[a])
    params = TransitionParams()
    if action is AppointmentAction.CANCEL:
        params.reason = st.text_input("Cancellation reason (required)")
    elif action in (AppointmentAction.COMPLETE, AppointmentAction.MARK_NO_SHOW):
        params.notes = st.text_input("Notes (optional)") or None

    if st.button("Apply", key="apply_transition"):
        try:
            updated = scheduler.transition(appointment, action, params)
        except InvalidTransitionError as e:
            st.error(str(e))
        except ApiError as e:
            st.error(ResponseFormatter.format_api_error(e))
        else:
            st.success(f"Appointment #{updated.id} is now {updated.status.value}")


def render_upcoming_tab():
    st.subheader("📆 Upcoming Appointments")
    days = st.slider("Days ahead", 1, 30, 7)
    try:
        upcoming = repository.list_upcoming_appointments(days)
    except ApiError as e:
        st.error(ResponseFormatter.format_api_error(e))
        return
    st.markdown(ResponseFormatter.format_appointment_list(upcoming, f"Next {days} day(s)"))

# ============================================================================
# LAYOUT
# ============================================================================

with st.sidebar:
    st.subheader("⚙️ Backend")
    if config.TECHSUPPORT_USE_MOCK:
        st.markdown("**Mode:** In-memory mock")
    else:
        st.markdown(f"**API:** {config.TECHSUPPORT_API_BASE_URL}")
    if st.button("🔌 Test connection"):
        if repository.test_connection():
            st.success("Server is responding to API requests")
        else:
            st.error("Server did not answer a test request")
    st.markdown(f"**Local time:** {config.local_now():%Y-%m-%d %H:%M}")

st.title("🛠️ Technician Appointment Scheduler")
st.caption("Schedule, reschedule and track on-site support appointments.")

if st.session_state.pending_ack:
    st.error(f"🚨 CRITICAL\n\n{st.session_state.pending_ack}")
    if st.button("I acknowledge", key="ack_partial_failure"):
        st.session_state.pending_ack = None
        st.rerun()

schedule_tab, update_tab, status_tab, upcoming_tab = st.tabs(
    ["Schedule", "Update", "Status", "Upcoming"]
)
with schedule_tab:
    render_schedule_tab()
with update_tab:
    render_update_tab()
with status_tab:
    render_status_tab()
with upcoming_tab:
    render_upcoming_tab()
