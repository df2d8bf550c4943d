"""Pick the earliest date the next fetch needs to cover."""

from datetime import datetime, timedelta
from typing import Optional

from aulasync.log import get_logger
from aulasync.session import SessionRecord
from aulasync.utils import to_iso, utc_now

logger = get_logger(__name__)


def start_date(
    record: Optional[SessionRecord],
    default_days_in_past: int,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Calculate the start date for data retrieval from the session history.

    Priority:
        1. lastUsedSuccessfully (the last fetch known to have worked)
        2. created (when the current session id was first seen)
        3. ``default_days_in_past`` days before now

    Args:
        record: The session record, or None if there is none
        default_days_in_past: Days to go back without session history
        now: Current time, defaults to utc_now()

    Returns:
        The start date
    """
    if now is None:
        now = utc_now()

    if record is not None and record.last_used_successfully is not None:
        source, result = "lastUsedSuccessfully", record.last_used_successfully
    elif record is not None and record.created is not None:
        source, result = "created", record.created
    else:
        source, result = "defaultDaysInPast", now - timedelta(days=default_days_in_past)

    logger.info(
        "Using %s as data start date",
        source,
        extra={"context": {"startDate": to_iso(result), "daysAgo": (now - result).days}},
    )
    return result
