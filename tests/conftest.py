"""Pytest configuration and fixtures: in-memory Mongo stand-ins and app clients."""

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from sentinel.core.auth import create_session_token
from sentinel.core.config import Settings
from sentinel.main import create_app
from sentinel.security.counter_store import InMemoryCounterStore

_ids = itertools.count(1)


def _missing_last(value):
    return (value is None, value)


def _get_path(document: Dict[str, Any], path: str):
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _evaluate(expression, document):
    """Subset of aggregation expressions: field refs, date parts, $dateFromParts"""
    if isinstance(expression, str) and expression.startswith("$"):
        return _get_path(document, expression[1:])
    if isinstance(expression, dict):
        if "$year" in expression:
            return _evaluate(expression["$year"], document).year
        if "$month" in expression:
            return _evaluate(expression["$month"], document).month
        if "$dayOfMonth" in expression:
            return _evaluate(expression["$dayOfMonth"], document).day
        if "$hour" in expression:
            return _evaluate(expression["$hour"], document).hour
        if "$dateFromParts" in expression:
            parts = {key: _evaluate(value, document) for key, value in expression["$dateFromParts"].items()}
            return datetime(parts["year"], parts["month"], parts["day"], parts.get("hour", 0), tzinfo=timezone.utc)
        return {key: _evaluate(value, document) for key, value in expression.items()}
    return expression


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, condition in query.items():
        value = _get_path(document, field)
        if isinstance(condition, dict):
            for operator, operand in condition.items():
                if operator == "$gte" and not (value is not None and value >= operand):
                    return False
                if operator == "$lt" and not (value is not None and value < operand):
                    return False
                if operator == "$in" and value not in operand:
                    return False
                if operator == "$nin" and value in operand:
                    return False
        elif value != condition:
            return False
    return True


def _group(documents, stage):
    groups: Dict[Any, Dict[str, Any]] = {}
    order: List[Any] = []
    for document in documents:
        group_id = _evaluate(stage["_id"], document)
        key = repr(group_id)
        if key not in groups:
            groups[key] = {"_id": group_id}
            order.append(key)
        row = groups[key]
        for name, accumulator in stage.items():
            if name == "_id":
                continue
            operator, operand = next(iter(accumulator.items()))
            value = _evaluate(operand, document)
            if operator == "$sum":
                row[name] = row.get(name, 0) + value
            elif operator == "$min":
                row[name] = value if name not in row else min(row[name], value)
            elif operator == "$max":
                row[name] = value if name not in row else max(row[name], value)
            elif operator == "$first":
                row.setdefault(name, value)
            else:
                raise NotImplementedError(operator)
    return [groups[key] for key in order]


def _sort(documents, stage):
    rows = list(documents)
    for field, direction in reversed(list(stage.items())):
        rows.sort(key=lambda row: _missing_last(_get_path(row, field)), reverse=direction < 0)
    return rows


def _project(documents, stage):
    rows = []
    for document in documents:
        row = {}
        if stage.get("_id", 1) not in (0, False):
            row["_id"] = document.get("_id")
        for field, expression in stage.items():
            if field == "_id":
                continue
            row[field] = document.get(field) if expression in (1, True) else _evaluate(expression, document)
        rows.append(row)
    return rows


def run_pipeline(documents, pipeline):
    rows = [dict(document) for document in documents]
    for step in pipeline:
        operator, stage = next(iter(step.items()))
        if operator == "$match":
            rows = [row for row in rows if _matches(row, stage)]
        elif operator == "$group":
            rows = _group(rows, stage)
        elif operator == "$sort":
            rows = _sort(rows, stage)
        elif operator == "$limit":
            rows = rows[:stage]
        elif operator == "$project":
            rows = _project(rows, stage)
        elif operator == "$count":
            rows = [{stage: len(rows)}] if rows else []
        else:
            raise NotImplementedError(operator)
    return rows


class FakeCursor:

    def __init__(self, rows):
        self.rows = list(rows)

    def sort(self, field, direction=1):
        self.rows = _sort(self.rows, {field: direction})
        return self

    def limit(self, count):
        self.rows = self.rows[:count]
        return self

    async def to_list(self, length=None):
        return self.rows if length is None else self.rows[:length]


class FakeCollection:
    """
    Enough of AsyncIOMotorCollection for the recorders and aggregators.
    Set ``fail`` to make every call raise, ``delay`` to slow down writes.
    """

    def __init__(self, documents: Optional[List[Dict[str, Any]]] = None):
        self.documents: List[Dict[str, Any]] = [dict(d) for d in documents or []]
        self.fail = False
        self.delay = 0.0

    def _check(self):
        if self.fail:
            raise PyMongoError("simulated database failure")

    async def insert_one(self, document):
        if self.delay:
            await asyncio.sleep(self.delay)
        self._check()
        document.setdefault("_id", next(_ids))
        self.documents.append(dict(document))

    async def count_documents(self, query):
        self._check()
        return sum(1 for document in self.documents if _matches(document, query))

    async def distinct(self, field, query=None):
        self._check()
        values = []
        for document in self.documents:
            if _matches(document, query or {}):
                value = document.get(field)
                if value not in values:
                    values.append(value)
        return values

    def find(self, query=None, projection=None):
        self._check()
        rows = [dict(document) for document in self.documents if _matches(document, query or {})]
        if projection and projection.get("_id") == 0:
            for row in rows:
                row.pop("_id", None)
        return FakeCursor(rows)

    def aggregate(self, pipeline):
        self._check()
        return FakeCursor(run_pipeline(self.documents, pipeline))


class FakeDatabase:

    def __init__(self):
        self.visits = FakeCollection()
        self.threats = FakeCollection()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        admin_username="admin",
        admin_password="correct horse",
        test_pin="4321",
        rate_limit_backend="memory",
        gate_rate_limit=600,
        burst_request_threshold=100,
        burst_time_window_seconds=60,
        background_timeout_seconds=1.0,
        sendgrid_api_key="",
        email_user="",
        environment="test",
    )


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def app(settings, fake_db):
    return create_app(settings, database=fake_db, counter_store=InMemoryCounterStore())


@pytest.fixture
def client(app):
    # Leaving the block runs shutdown, which drains background writes
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_token(settings):
    return create_session_token("admin", settings)


def run(coroutine):
    return asyncio.run(coroutine)
