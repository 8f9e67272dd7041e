from datetime import datetime

from app.services.calendar_client import google_client_factory
from app.utils.time import utc_now


def get_now() -> datetime:
    """Current instant for the request. Overridden in tests."""
    return utc_now()


def get_calendar_client_factory():
    """Factory used by admin-triggered queue processing."""
    return google_client_factory
