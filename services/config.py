"""Runtime configuration for the Appointment Scheduler."""

import logging
import os
from datetime import datetime
from typing import Optional

import pytz
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _get_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


TECHSUPPORT_API_BASE_URL = os.getenv("TECHSUPPORT_API_BASE_URL", "http://localhost:8080")
TECHSUPPORT_API_TIMEOUT = float(os.getenv("TECHSUPPORT_API_TIMEOUT", "30"))
TECHSUPPORT_API_TOKEN = os.getenv("TECHSUPPORT_API_TOKEN", "")
TECHSUPPORT_USE_MOCK = _get_bool(os.getenv("TECHSUPPORT_USE_MOCK"), default=False)

# Backend timestamps are naive local times in this zone (empty = machine local time)
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def local_now(timezone: Optional[str] = None) -> datetime:
    """Current naive local time, as the backend interprets timestamps."""
    zone = timezone if timezone is not None else SCHEDULER_TIMEZONE
    if not zone:
        return datetime.now().replace(microsecond=0)
    return datetime.now(pytz.timezone(zone)).replace(tzinfo=None, microsecond=0)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for an entry point."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
