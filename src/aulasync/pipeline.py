"""
Orchestration of one synchronisation cycle.

A cycle checks the shared session, works out how far back to fetch, hands
the fetched collection to the persistence engine and finally records the
session outcome. The fetch itself is done by the caller-supplied ``fetch``
callable.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from aulasync.config import Settings
from aulasync.date_range import start_date
from aulasync.errors import PortalAPIError
from aulasync.log import get_logger
from aulasync.persistence import BatchPersistenceEngine, PersistReport, RunStatus
from aulasync.portal import ping_session
from aulasync.session import SessionLifecycleManager, SessionRecord, validate_session_id
from aulasync.transforms import normalize_collection
from aulasync.utils import to_iso

logger = get_logger(__name__)

Fetch = Callable[[datetime], Dict[str, Any]]


@dataclass
class RunReport:
    status: RunStatus
    persist: Optional[PersistReport] = None
    since: Optional[datetime] = None
    error: Optional[str] = None
    duration_ms: int = 0

    def body(self) -> Dict[str, Any]:
        body = {"status": self.status.value, "duration": f"{self.duration_ms}ms"}
        if self.since is not None:
            body["startDate"] = to_iso(self.since)
        if self.error:
            body["error"] = self.error
        if self.persist is not None:
            successful, failed = self.persist.totals()
            body["stats"] = {"totalSuccessful": successful, "totalFailed": failed}
            body["breakdown"] = self.persist.breakdown()
            if self.persist.errors:
                body["tableErrors"] = self.persist.errors
        return body


async def run_persist_cycle(
    settings: Settings,
    engine: BatchPersistenceEngine,
    sessions: SessionLifecycleManager,
    fetch: Fetch,
) -> RunReport:
    """
    Run one fetch-and-persist cycle.

    The session is only marked successful when every record was stored or
    already present. After a partial failure ``lastUsedSuccessfully`` stays
    where it was, so the next cycle fetches the same window again.
    """
    started = time.monotonic()

    def elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    # session calls are blocking boto3 I/O
    if await asyncio.to_thread(sessions.is_failed):
        logger.warning("Session is marked as failed, skipping run")
        return RunReport(RunStatus.SKIPPED, error="Session is marked as failed", duration_ms=elapsed())

    since = start_date(await asyncio.to_thread(sessions.get_record), settings.retrieval.default_days_in_past)

    try:
        collection = await asyncio.to_thread(fetch, since)
    except PortalAPIError as e:
        logger.error("Error fetching data from portal: %s", e)
        await asyncio.to_thread(sessions.mark_failure)
        return RunReport(RunStatus.FAILURE, since=since, error=str(e), duration_ms=elapsed())

    report = await engine.save_all(settings.tables, normalize_collection(collection))
    status = report.status

    if status is RunStatus.SUCCESS:
        await asyncio.to_thread(sessions.mark_success)
    else:
        successful, failed = report.totals()
        logger.warning(
            "Not advancing session success timestamp after failed writes",
            extra={"context": {"totalSuccessful": successful, "totalFailed": failed}},
        )

    run = RunReport(status, persist=report, since=since, duration_ms=elapsed())
    logger.info("Persist cycle finished", extra={"context": run.body()})
    return run


def keep_session_alive(
    settings: Settings,
    sessions: SessionLifecycleManager,
    ping: Callable[[str, str], None] = ping_session,
) -> SessionRecord:
    """
    Ping the portal with the stored token and record the outcome.

    Returns:
        The session record that was probed

    Raises:
        PortalAPIError: If there is no usable token or the ping fails
    """
    record = sessions.get_record()
    if record is None or not record.session_id:
        logger.error("No session ID found in retrieved session record")
        raise PortalAPIError("No session ID available in DynamoDB")

    try:
        validate_session_id(record.session_id)
    except ValueError as e:
        logger.warning(
            "Session ID validation failed",
            extra={"context": {"sessionId": record.session_id[:10] + "...", "error": str(e)}},
        )
        sessions.mark_failure()
        raise PortalAPIError(f"Invalid session ID in DynamoDB: {e}") from e

    try:
        ping(settings.api_url, record.session_id)
    except PortalAPIError:
        sessions.mark_failure()
        raise

    sessions.mark_success()
    return record
