import calendar
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")

_IS_LAMBDA = "AWS_LAMBDA_FUNCTION_NAME" in os.environ


def root() -> Path:
    """Get the project root directory.

    On Lambda, uses /tmp since the package directory is read-only.
    ``DATA_DIR`` overrides both.
    """
    override = os.environ.get("DATA_DIR")
    if override:
        return Path(override)
    if _IS_LAMBDA:
        return Path("/tmp")
    return Path(__file__).parent.parent.parent


def data_dir(fid: str = "") -> Path:
    """
    Get the data directory path.

    Args:
        fid: Optional subdirectory/file name within the data directory

    Returns:
        Path object pointing to the data directory or subdirectory
    """
    path = root() / "data"
    if fid:
        path = path / fid
    return path


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format as ISO-8601 with millisecond precision and a ``Z`` suffix."""
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected an ISO-8601 string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_seconds(value: datetime) -> int:
    return int(value.timestamp())


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def flatten(groups: Iterable[Iterable[T]]) -> List[T]:
    return [item for group in groups for item in group]
