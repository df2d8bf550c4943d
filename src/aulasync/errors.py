"""Exception types shared by the Lambda handlers and the persistence layer.

``LambdaError`` subclasses carry the HTTP status a handler should answer
with. Per-record write failures never surface as exceptions; they are
counted in a ``SaveResult`` instead.
"""

from typing import Any, List, Optional


class LambdaError(Exception):
    """Base error carrying the status code a handler should return."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class ConfigurationError(LambdaError):
    """Required configuration is missing or invalid."""


class PortalAPIError(LambdaError):
    """The school portal rejected a call or could not be reached."""

    status_code = 502


class PersistenceError(LambdaError):
    """A table could not be written to at all.

    Args:
        table: Destination table name
        partial: SaveResult with the outcomes observed before the abort
        unattempted: Records that were never written (or hit the fatal error)
    """

    def __init__(self, message: str, table: str = "", partial=None, unattempted: Optional[List[dict]] = None):
        super().__init__(message)
        self.table = table
        self.partial = partial
        self.unattempted = list(unattempted or [])


class TableUnavailableError(PersistenceError):
    """The table is missing, misnamed, or the store is unreachable."""


class InvalidRecordError(ValueError):
    """A record cannot be written, e.g. it has no ``Id``."""
