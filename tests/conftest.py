"""Shared fixtures: in-memory stand-ins for boto3 DynamoDB tables.

The fakes follow the boto3 resource call shapes and raise real botocore
``ClientError``s, so the code under test takes the same error paths as it
would against DynamoDB.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

# Keep log files out of the project tree; must happen before aulasync imports.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="aulasync-tests-"))

import pytest
from botocore.exceptions import ClientError

from aulasync.config import RetrievalSettings, RetrySettings, Settings, TableNames


def client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised by fake"}}, operation)


class FakeTable:
    """Dict-backed table keyed on ``Id``."""

    def __init__(self, name: str):
        self.name = name
        self.items = {}
        self.put_calls = []
        self.fail_ids = set()
        self.error_code = "ProvisionedThroughputExceededException"
        self.fail_get = False
        self.fail_put = False

    def put_item(self, Item, ConditionExpression=None):  # noqa: N803 - boto3 shape
        self.put_calls.append(Item)
        key = Item["Id"]
        if self.fail_put or key in self.fail_ids:
            raise client_error(self.error_code)
        if ConditionExpression == "attribute_not_exists(Id)" and key in self.items:
            raise client_error("ConditionalCheckFailedException")
        self.items[key] = dict(Item)
        return {}

    def get_item(self, Key):  # noqa: N803 - boto3 shape
        if self.fail_get:
            raise client_error("InternalServerError", "GetItem")
        item = self.items.get(Key["Id"])
        return {"Item": dict(item)} if item is not None else {}

    def puts_for(self, record_id):
        return [item for item in self.put_calls if item["Id"] == record_id]


class FakeClient:
    """Low-level client shape: routes calls to the table named in ``TableName``."""

    def __init__(self, resource):
        self.resource = resource

    def put_item(self, TableName, Item, ConditionExpression=None):  # noqa: N803 - boto3 shape
        return self.resource.Table(TableName).put_item(Item=Item, ConditionExpression=ConditionExpression)


class FakeResource:
    """Stands in for ``boto3.resource("dynamodb")``."""

    def __init__(self):
        self.tables = {}
        self.meta = SimpleNamespace(client=FakeClient(self))

    def Table(self, name):  # noqa: N802 - boto3 shape
        if name not in self.tables:
            self.tables[name] = FakeTable(name)
        return self.tables[name]


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

TABLES = TableNames(
    daily_overview="RAW_dailyOverview",
    threads="RAW_threads",
    thread_messages="RAW_threadMessages",
    calendar_events="RAW_calendarEvents",
    posts="RAW_posts",
    week_overview="RAW_weekOverview",
    book_list="RAW_bookList",
    gallery_albums="RAW_galleryAlbums",
)

TABLE_ENV = {
    "DAILY_OVERVIEW_TABLE": TABLES.daily_overview,
    "THREADS_TABLE": TABLES.threads,
    "THREAD_MESSAGES_TABLE": TABLES.thread_messages,
    "CALENDAR_EVENTS_TABLE": TABLES.calendar_events,
    "POSTS_TABLE": TABLES.posts,
    "WEEK_OVERVIEW_TABLE": TABLES.week_overview,
    "BOOK_LIST_TABLE": TABLES.book_list,
    "GALLERY_ALBUMS_TABLE": TABLES.gallery_albums,
    "AULA_SESSION_ID_TABLE": "RAW_sessionId",
}

VALID_SESSION_ID = "abcdefghijklmnopqrstuvwxyz012345"


@pytest.fixture
def resource():
    return FakeResource()


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def settings():
    return Settings(
        session_table=TABLE_ENV["AULA_SESSION_ID_TABLE"],
        tables=TABLES,
        api_url="https://portal.example/api/",
        retry=RetrySettings(max_attempts=3, base_delay_ms=0),
        retrieval=RetrievalSettings(default_days_in_past=30),
    )


@pytest.fixture
def lambda_env(monkeypatch):
    """Environment for the Lambda handlers, with no config file and no backoff."""
    monkeypatch.delenv("AULASYNC_CONFIG", raising=False)
    for key, value in TABLE_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("RETRY_BASE_DELAY_MS", "0")
    monkeypatch.setenv("API_URL", "https://portal.example/api/")
    monkeypatch.setenv("AULASESSION_AUTHENTICATE_TOKEN", "s3cret")
    return TABLE_ENV
