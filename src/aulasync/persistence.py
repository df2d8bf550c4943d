"""Idempotent batch persistence of portal records.

Records are split into groups of 25 (the DynamoDB batch limit). Every
record in a group is written concurrently through the conditional-write
gateway, so re-running the same input never overwrites stored items.
Groups are written one after another.

Usage:
    engine = BatchPersistenceEngine(ConditionalWriteGateway(resource))
    result = await engine.persist("RAW_posts", posts)
    result.successful, result.failed, result.failed_items
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from aulasync.config import TableNames
from aulasync.errors import InvalidRecordError, PersistenceError, TableUnavailableError
from aulasync.gateway import ID_ATTRIBUTE, ConditionalWriteGateway, WriteOutcome, validate_table_name
from aulasync.log import get_logger
from aulasync.retry import RetryPolicy
from aulasync.transforms import flatten_weeks, split_threads
from aulasync.utils import add_months, chunk, epoch_seconds, flatten, utc_now

logger = get_logger(__name__)

BATCH_SIZE = 25


@dataclass
class SaveResult:
    """Outcome of one persist call. Items that already existed are in neither count."""

    successful: int = 0
    failed: int = 0
    failed_items: List[Dict[str, Any]] = field(default_factory=list)

    def already_existed(self, total: int) -> int:
        return total - self.successful - self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "failedItems": [item.get(ID_ATTRIBUTE) for item in self.failed_items],
        }


class RunStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    SKIPPED = "skipped"

    @property
    def status_code(self) -> int:
        return {"success": 200, "partial": 207, "failure": 500, "skipped": 200}[self.value]


def classify(successful: int, failed: int) -> RunStatus:
    """Derive the run status from the aggregated counts alone."""
    if failed > 0 and successful == 0:
        return RunStatus.FAILURE
    if failed > 0:
        return RunStatus.PARTIAL
    return RunStatus.SUCCESS


@dataclass
class PersistReport:
    """Per-entity SaveResults of one ``save_all`` call."""

    results: Dict[str, SaveResult] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    def totals(self) -> Tuple[int, int]:
        successful = sum(r.successful for r in self.results.values())
        failed = sum(r.failed for r in self.results.values())
        return successful, failed

    @property
    def status(self) -> RunStatus:
        return classify(*self.totals())

    def breakdown(self) -> Dict[str, Dict[str, int]]:
        return {
            name: {
                "successful": result.successful,
                "failed": result.failed,
                "alreadyExisted": result.already_existed(self.counts.get(name, 0)),
            }
            for name, result in self.results.items()
        }


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, Exception) and not isinstance(exc, (TableUnavailableError, InvalidRecordError))


class BatchPersistenceEngine:
    """Persists record lists into DynamoDB tables.

    Args:
        gateway: Conditional single-item writer
        retry: Retry policy for individual writes. Defaults to 3 attempts
            starting at one second.
        retention_months: Items expire this many calendar months after writing
        clock: Returns the current UTC time
        batch_size: Records per group
    """

    def __init__(
        self,
        gateway: ConditionalWriteGateway,
        retry: Optional[RetryPolicy] = None,
        retention_months: int = 2,
        clock: Callable[[], datetime] = utc_now,
        batch_size: int = BATCH_SIZE,
    ):
        self.gateway = gateway
        self.retry = retry or RetryPolicy(retry_on=is_transient)
        self.retention_months = retention_months
        self.clock = clock
        self.batch_size = batch_size

    def _ttl(self) -> int:
        return epoch_seconds(add_months(self.clock(), self.retention_months))

    async def _write(self, table: str, record: Dict[str, Any]) -> WriteOutcome:
        item = {**record, "ttl": self._ttl()}
        return await self.retry.call(
            lambda: self.gateway.write(table, item),
            description=f"Write {record.get(ID_ATTRIBUTE)} to {table}",
        )

    async def persist(self, table: str, records: Iterable[Dict[str, Any]]) -> SaveResult:
        """
        Write every record unless its Id already exists.

        Args:
            table: Destination table name
            records: Records, each with a unique ``Id``

        Returns:
            SaveResult for this table

        Raises:
            PersistenceError: If the table cannot be written to at all. The
                error carries the partial result and the unattempted records.
        """
        records = list(records)
        if not records:
            return SaveResult()

        try:
            validate_table_name(table)
        except TableUnavailableError as e:
            e.partial = SaveResult()
            e.unattempted = records
            raise

        result = SaveResult()
        groups = chunk(records, self.batch_size)
        logger.info("Writing %d items to %s in %d batches", len(records), table, len(groups))

        for index, group in enumerate(groups):
            outcomes = await asyncio.gather(
                *(self._write(table, record) for record in group),
                return_exceptions=True,
            )

            fatal = None
            fatal_records = []
            for record, outcome in zip(group, outcomes):
                if isinstance(outcome, TableUnavailableError):
                    fatal = fatal or outcome
                    fatal_records.append(record)
                elif isinstance(outcome, Exception):
                    result.failed += 1
                    result.failed_items.append(record)
                    logger.warning(
                        "Failed to save item to %s",
                        table,
                        extra={"context": {"itemId": record.get(ID_ATTRIBUTE), "error": str(outcome)}},
                    )
                elif isinstance(outcome, BaseException):
                    raise outcome
                elif outcome is WriteOutcome.WRITTEN:
                    result.successful += 1

            if fatal is not None:
                unattempted = fatal_records + flatten(groups[index + 1:])
                logger.error(
                    "Aborting batch write to %s",
                    table,
                    extra={"context": {
                        "error": str(fatal),
                        "successful": result.successful,
                        "failed": result.failed,
                        "unattempted": len(unattempted),
                    }},
                )
                raise PersistenceError(
                    f"Cannot write to {table}: {fatal}",
                    table=table,
                    partial=result,
                    unattempted=unattempted,
                ) from fatal

        logger.info(
            "Completed batch write to %s",
            table,
            extra={"context": {
                "successful": result.successful,
                "failed": result.failed,
                "alreadyExisted": result.already_existed(len(records)),
            }},
        )
        return result

    async def save_all(self, tables: TableNames, collection: Dict[str, Any]) -> PersistReport:
        """
        Persist a full data collection, one table per entity, tables in parallel.

        A table that cannot be written to at all counts its unwritten records
        as failed and is listed in ``report.errors``.
        """
        aula = collection.get("Aula") or {}
        meebook = collection.get("MeeBook") or {}

        def section(parent: Dict[str, Any], name: str, key: str) -> List[Any]:
            return (parent.get(name) or {}).get(key) or []

        threads, messages = split_threads(section(aula, "Messages", "Threads"))
        jobs = {
            "overviews": (tables.daily_overview, section(aula, "Overview", "Overviews")),
            "threads": (tables.threads, threads),
            "messages": (tables.thread_messages, messages),
            "calendarEvents": (tables.calendar_events, section(aula, "Calendar", "CalendarEvents")),
            "posts": (tables.posts, section(aula, "Posts", "Posts")),
            "workPlan": (tables.week_overview, flatten_weeks(section(meebook, "WorkPlan", "Weeks"), "work plan")),
            "bookList": (tables.book_list, flatten_weeks(section(meebook, "BookList", "Weeks"), "book list")),
            "galleryAlbums": (tables.gallery_albums, section(aula, "Gallery", "Albums")),
        }
        logger.info(
            "Saving all data in parallel",
            extra={"context": {name: len(records) for name, (_, records) in jobs.items()}},
        )

        outcomes = await asyncio.gather(
            *(self.persist(table, records) for table, records in jobs.values()),
            return_exceptions=True,
        )

        report = PersistReport()
        for (name, (_, records)), outcome in zip(jobs.items(), outcomes):
            if isinstance(outcome, PersistenceError):
                result = outcome.partial or SaveResult()
                result.failed += len(outcome.unattempted)
                result.failed_items.extend(outcome.unattempted)
                report.errors[name] = str(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result = outcome
            report.results[name] = result
            report.counts[name] = len(records)

        successful, failed = report.totals()
        logger.info(
            "Completed saving all data",
            extra={"context": {"totalSuccessful": successful, "totalFailed": failed}},
        )
        return report
