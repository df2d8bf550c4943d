"""Conditional single-item writes to DynamoDB.

An item is only written when no item with the same ``Id`` exists. A
rejected write is a normal outcome (``WriteOutcome.ALREADY_EXISTS``), not
an exception; every other failure is raised to the caller.
"""

import asyncio
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from aulasync.errors import InvalidRecordError, TableUnavailableError
from aulasync.log import get_logger

logger = get_logger(__name__)

ID_ATTRIBUTE = "Id"
CONDITION_ID_ABSENT = f"attribute_not_exists({ID_ATTRIBUTE})"

_TABLE_NAME = re.compile(r"^[A-Za-z0-9_.-]{3,255}$")
_FATAL_ERROR_CODES = {"ResourceNotFoundException", "AccessDeniedException", "UnrecognizedClientException"}


class WriteOutcome(Enum):
    WRITTEN = "written"
    ALREADY_EXISTS = "already_exists"


def validate_table_name(table_name: str) -> None:
    if not isinstance(table_name, str) or not _TABLE_NAME.match(table_name):
        raise TableUnavailableError(f"Invalid table name: {table_name!r}", table=str(table_name))


def to_dynamodb_item(value: Any) -> Any:
    """Convert floats to Decimal, which boto3 requires for numbers.

    Every other value, including Decimals and sets read back from DynamoDB,
    is passed through unchanged.
    """
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {key: to_dynamodb_item(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_dynamodb_item(item) for item in value]
    return value


class ConditionalWriteGateway:
    """Writes one item at a time with an existence guard on ``Id``.

    Puts go through the resource's low-level client, which is safe to share
    between the worker threads of a fan-out.

    Args:
        resource: boto3 DynamoDB service resource
    """

    def __init__(self, resource):
        self._client = resource.meta.client

    def _put(self, table_name: str, item: Dict[str, Any]) -> WriteOutcome:
        try:
            self._client.put_item(
                TableName=table_name,
                Item=item,
                ConditionExpression=CONDITION_ID_ABSENT,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code == "ConditionalCheckFailedException":
                logger.debug("Item %s already exists in %s", item.get(ID_ATTRIBUTE), table_name)
                return WriteOutcome.ALREADY_EXISTS
            if code in _FATAL_ERROR_CODES:
                raise TableUnavailableError(f"Table {table_name} unavailable: {code}", table=table_name) from e
            raise
        except (NoCredentialsError, EndpointConnectionError) as e:
            raise TableUnavailableError(f"Cannot reach table {table_name}: {e}", table=table_name) from e
        return WriteOutcome.WRITTEN

    async def write(self, table_name: str, record: Dict[str, Any]) -> WriteOutcome:
        """Write ``record`` unless an item with its ``Id`` already exists."""
        validate_table_name(table_name)
        if record.get(ID_ATTRIBUTE) in (None, ""):
            raise InvalidRecordError(f"Record for {table_name} has no {ID_ATTRIBUTE}")
        return await asyncio.to_thread(self._put, table_name, to_dynamodb_item(record))

    async def write_if_absent(self, table_name: str, record: Dict[str, Any]) -> bool:
        """Returns True if newly written, False if the Id was already present."""
        return await self.write(table_name, record) is WriteOutcome.WRITTEN
