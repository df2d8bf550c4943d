"""Shared portal session token kept in a single DynamoDB item (``Id = 1``).

The item's fields determine the session state:

    NO_SESSION  no item
    EXPIRED     ttl has passed
    FAILED      lastUsedFailure is set
    ACTIVE      otherwise

``transition`` computes the item that follows an event without doing any
I/O; ``SessionLifecycleManager`` reads the item, applies the transition and
writes the result back. Storage errors are logged and never raised, since a
lost session only costs an extra login.
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from aulasync.log import get_logger
from aulasync.utils import epoch_seconds, parse_iso, to_iso, utc_now

logger = get_logger(__name__)

SESSION_RECORD_ID = 1

_SESSION_ID = re.compile(r"^[a-z0-9]{32}$")


def is_valid_session_id(session_id: Any) -> bool:
    """Portal session ids are exactly 32 lowercase letters or digits."""
    return isinstance(session_id, str) and bool(_SESSION_ID.match(session_id))


def session_id_error_message(session_id: Any) -> str:
    if not session_id:
        return "Session ID is required"
    if not isinstance(session_id, str):
        return "Session ID must be a string"
    if len(session_id) != 32:
        return f"Session ID must be exactly 32 characters (received {len(session_id)} characters)"
    if re.search(r"[A-Z]", session_id):
        return "Session ID must not contain uppercase letters"
    if re.search(r"[^a-z0-9]", session_id):
        return "Session ID must only contain lowercase letters (a-z) and numbers (0-9)"
    return "Invalid session ID format"


def validate_session_id(session_id: Any) -> None:
    if not is_valid_session_id(session_id):
        raise ValueError(session_id_error_message(session_id))


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    created: datetime
    last_updated: datetime
    ttl: int
    last_used_successfully: Optional[datetime] = None
    last_used_failure: Optional[datetime] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "SessionRecord":
        """Raises ValueError or TypeError if a field has the wrong shape."""
        session_id = item.get("sessionId") or ""
        if not isinstance(session_id, str):
            raise TypeError(f"sessionId must be a string, got {type(session_id).__name__}")
        last_updated = parse_iso(item.get("lastUpdated"))
        created = parse_iso(item.get("created")) or last_updated
        if created is None:
            raise ValueError("Session record has neither created nor lastUpdated")
        return cls(
            session_id=session_id,
            created=created,
            last_updated=last_updated or created,
            ttl=int(item.get("ttl") or 0),
            last_used_successfully=parse_iso(item.get("lastUsedSuccessfully")),
            last_used_failure=parse_iso(item.get("lastUsedFailure")),
        )

    def to_item(self) -> Dict[str, Any]:
        item = {
            "Id": SESSION_RECORD_ID,
            "sessionId": self.session_id,
            "created": to_iso(self.created),
            "lastUpdated": to_iso(self.last_updated),
            "ttl": self.ttl,
        }
        if self.last_used_successfully is not None:
            item["lastUsedSuccessfully"] = to_iso(self.last_used_successfully)
        if self.last_used_failure is not None:
            item["lastUsedFailure"] = to_iso(self.last_used_failure)
        return item


class SessionState(Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    EXPIRED = "expired"
    FAILED = "failed"


class SessionEvent(Enum):
    TOKEN_SET = "token_set"
    SUCCESS = "success"
    FAILURE = "failure"
    CLEAR_FAILURE = "clear_failure"


def session_state(record: Optional[SessionRecord], now: datetime) -> SessionState:
    if record is None:
        return SessionState.NO_SESSION
    if record.ttl and record.ttl < epoch_seconds(now):
        return SessionState.EXPIRED
    if record.last_used_failure is not None:
        return SessionState.FAILED
    return SessionState.ACTIVE


def transition(
    record: Optional[SessionRecord],
    event: SessionEvent,
    now: datetime,
    liveness_seconds: int,
    session_id: Optional[str] = None,
) -> Optional[SessionRecord]:
    """
    Compute the session record that follows ``event``.

    Returns:
        The record to store, or None when nothing needs writing (no record
        to update, or a repeated failure).
    """
    ttl = epoch_seconds(now) + liveness_seconds

    if event is SessionEvent.TOKEN_SET:
        if session_id is None:
            raise ValueError("TOKEN_SET requires a session_id")
        if record is None:
            return SessionRecord(session_id=session_id, created=now, last_updated=now, ttl=ttl)
        created = now if record.session_id != session_id else record.created
        return replace(record, session_id=session_id, created=created, last_updated=now, ttl=ttl)

    if record is None:
        return None

    if event is SessionEvent.SUCCESS:
        return replace(record, last_used_successfully=now, last_used_failure=None, last_updated=now, ttl=ttl)

    if event is SessionEvent.FAILURE:
        # first failure only
        if record.last_used_failure is not None:
            return None
        return replace(record, last_used_failure=now, last_updated=now)

    if event is SessionEvent.CLEAR_FAILURE:
        return replace(record, last_used_failure=None, last_updated=now)

    raise ValueError(f"Unknown session event: {event}")


class SessionLifecycleManager:
    """Stores the shared session token and its success/failure history.

    Args:
        table: DynamoDB Table (anything with ``get_item``/``put_item``)
        liveness_seconds: How far each token write or success extends the ttl
        clock: Returns the current UTC time
    """

    def __init__(self, table, liveness_seconds: int, clock: Callable[[], datetime] = utc_now):
        self.table = table
        self.liveness_seconds = liveness_seconds
        self.clock = clock

    def _read(self) -> Optional[SessionRecord]:
        """The stored record. Raises ``ValueError`` if the item is malformed."""
        result = self.table.get_item(Key={"Id": SESSION_RECORD_ID})
        item = result.get("Item")
        if not item:
            return None
        try:
            return SessionRecord.from_item(item)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Malformed session record: {e}") from e

    def _apply(self, event: SessionEvent, session_id: Optional[str] = None) -> bool:
        """Read, transition and write. Returns True if a new record was stored."""
        try:
            now = self.clock()
            try:
                record = self._read()
            except ValueError as e:
                if event is not SessionEvent.TOKEN_SET:
                    logger.warning(
                        "Cannot update malformed session record",
                        extra={"context": {"event": event.value, "error": str(e)}},
                    )
                    return False
                logger.warning("Replacing malformed session record", extra={"context": {"error": str(e)}})
                record = None
            updated = transition(record, event, now, self.liveness_seconds, session_id)
            if updated is None:
                logger.info("No session update needed", extra={"context": {"event": event.value}})
                return False
            self.table.put_item(Item=updated.to_item())
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Error storing session update",
                extra={"context": {"event": event.value, "error": str(e)}},
            )
            return False
        logger.info(
            "Session updated",
            extra={"context": {"event": event.value, "ttl": updated.ttl}},
        )
        return True

    def get_record(self) -> Optional[SessionRecord]:
        """The stored record, or None if absent, unreadable or malformed."""
        try:
            return self._read()
        except (ClientError, BotoCoreError, ValueError) as e:
            logger.warning("Error retrieving session record", extra={"context": {"error": str(e)}})
            return None

    def state(self) -> SessionState:
        return session_state(self.get_record(), self.clock())

    def get_token(self) -> str:
        """The stored token, or "" if there is none or it has expired."""
        record = self.get_record()
        if record is None:
            logger.info("No stored session ID found")
            return ""
        if session_state(record, self.clock()) is SessionState.EXPIRED:
            logger.warning("Stored session ID has expired", extra={"context": {"ttl": record.ttl}})
            return ""
        return record.session_id

    def set_token(self, session_id: str) -> bool:
        """Store ``session_id``. ``created`` resets only when the token changes."""
        return self._apply(SessionEvent.TOKEN_SET, session_id)

    def is_failed(self) -> bool:
        record = self.get_record()
        return record is not None and record.last_used_failure is not None

    def mark_success(self) -> bool:
        return self._apply(SessionEvent.SUCCESS)

    def mark_failure(self) -> bool:
        """Record the time of the first failure since the last success."""
        return self._apply(SessionEvent.FAILURE)

    def clear_failure(self) -> bool:
        return self._apply(SessionEvent.CLEAR_FAILURE)
