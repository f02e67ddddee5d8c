"""
Test fixtures for StudyRank.

Provides an in-memory record store (same interface as the Supabase-backed
one, with the unique keys the real tables carry), a controllable clock, the
services wired to both, and a TestClient with the store and clock overridden.
"""

from __future__ import annotations

import asyncio
import copy
import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-key")

from studyrank.core.database import RecordStore  # noqa: E402
from studyrank.core.exceptions import DuplicateRecordError, PersistenceError  # noqa: E402

UNIQUE_KEYS = {
    "user_stats": [("user_id",)],
    "subject_mastery": [("user_id", "subject_id")],
    "user_titles": [("user_id", "title_id")],
    "user_badges": [("user_id", "badge_id")],
    "user_equipped_title": [("user_id",)],
}


class InMemoryStore(RecordStore):
    """RecordStore over plain dicts.

    ``fail_on`` holds ``(operation, table)`` pairs that raise PersistenceError;
    ``before_update`` hooks run ahead of every update to simulate a concurrent
    writer.
    """

    def __init__(self):
        super().__init__(client=None)
        self.tables = {}
        self.fail_on = set()
        self.before_update = []
        self.calls = []

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def _check(self, operation, table):
        self.calls.append((operation, table))
        if (operation, table) in self.fail_on:
            raise PersistenceError(f"{operation} on {table} failed")

    def _conflicts(self, table, data, existing):
        keys = [("id",)] + UNIQUE_KEYS.get(table, [])
        for row in existing:
            for key in keys:
                if all(column in data for column in key) and all(row.get(c) == data[c] for c in key):
                    return True
        return False

    @staticmethod
    def _matches(row, match=None, gte=None, lte=None, lt=None):
        for column, value in (match or {}).items():
            if row.get(column) != value:
                return False
        for column, value in (gte or {}).items():
            if row.get(column) is None or row[column] < value:
                return False
        for column, value in (lte or {}).items():
            if row.get(column) is None or row[column] > value:
                return False
        for column, value in (lt or {}).items():
            if row.get(column) is None or row[column] >= value:
                return False
        return True

    def create(self, table, data):
        self._check("create", table)
        if self._conflicts(table, data, self.rows(table)):
            raise DuplicateRecordError(f"create on {table}: duplicate key")
        row = copy.deepcopy(data)
        self.rows(table).append(row)
        return copy.deepcopy(row)

    def create_many(self, table, rows):
        if not rows:
            return []
        self._check("create", table)
        staged = []
        for data in rows:
            if self._conflicts(table, data, self.rows(table) + staged):
                raise DuplicateRecordError(f"create on {table}: duplicate key")
            staged.append(copy.deepcopy(data))
        self.rows(table).extend(staged)
        return copy.deepcopy(staged)

    def query(self, table, columns="*", match=None, gte=None, lte=None, lt=None,
              order_by=None, desc=False, limit=None):
        self._check("query", table)
        found = [row for row in self.rows(table) if self._matches(row, match, gte, lte, lt)]
        for column in reversed(order_by or []):
            found.sort(key=lambda row: row.get(column), reverse=desc)
        if limit is not None:
            found = found[:limit]
        if columns != "*":
            wanted = [column.strip() for column in columns.split(",")]
            found = [{column: row.get(column) for column in wanted} for row in found]
        return copy.deepcopy(found)

    def update(self, table, data, **match):
        self._check("update", table)
        for hook in self.before_update:
            hook(self, table, match)
        updated = []
        for row in self.rows(table):
            if self._matches(row, match):
                row.update(copy.deepcopy(data))
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table, **match):
        self._check("delete", table)
        removed = [row for row in self.rows(table) if self._matches(row, match)]
        self.rows(table)[:] = [row for row in self.rows(table) if not self._matches(row, match)]
        return copy.deepcopy(removed)

    def upsert(self, table, data, on_conflict):
        self._check("upsert", table)
        key = [column.strip() for column in on_conflict.split(",")]
        for row in self.rows(table):
            if all(row.get(column) == data.get(column) for column in key):
                row.update(copy.deepcopy(data))
                return copy.deepcopy(row)
        row = copy.deepcopy(data)
        row.setdefault("id", "-".join(str(data[column]) for column in key))
        self.rows(table).append(row)
        return copy.deepcopy(row)


class FakeClock:
    """Callable clock that tests can move forward by whole days."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, days=1):
        self.now = self.now + timedelta(days=days)


USER_ID = "user-1"


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def store():
    store = InMemoryStore()
    store.rows("subjects").extend([
        {"id": "math", "name": "Mathematics"},
        {"id": "law", "name": "Civil Law"},
    ])
    return store


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def achievement_service(store, clock):
    from studyrank.services.achievement_service import AchievementService
    return AchievementService(db=store, clock=clock)


@pytest.fixture
def gamification_service(store, clock, achievement_service):
    from studyrank.services.gamification_service import GamificationService
    return GamificationService(db=store, clock=clock, achievement_service=achievement_service)


@pytest.fixture
def study_service(store, clock, gamification_service):
    from studyrank.services.study_service import StudyService
    return StudyService(db=store, clock=clock, gamification_service=gamification_service)


@pytest.fixture
def add_definition(store):
    """Insert a title or badge definition and return its id"""

    def _add(table, id, requirement_type, gear_points=0, name=None, **requirement):
        store.rows(table).append({
            "id": id,
            "name": name or id,
            "description": "",
            "rarity": "common",
            "requirement_type": requirement_type,
            "requirement_value": requirement.get("value"),
            "requirement_subject_id": requirement.get("subject_id"),
            "requirement_rank": requirement.get("rank"),
            "gear_points": gear_points,
        })
        return id

    return _add


@pytest.fixture
def client(store, clock):
    from fastapi.testclient import TestClient
    from studyrank.core.database import get_database
    from studyrank.main import app
    from studyrank.routers.dependencies import get_clock

    app.dependency_overrides[get_database] = lambda: store
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        test_client.headers.update({"X-User-Id": USER_ID})
        yield test_client
    app.dependency_overrides.clear()
