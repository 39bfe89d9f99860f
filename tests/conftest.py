"""Shared fixtures: in-memory Redis stand-in, scripted evaluator and task source."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from taskscore.models import TaskRecord
from taskscore.storage.repo import Repo


class FakeRedis:
    """Just the Redis commands the repository uses, backed by dicts."""

    def __init__(self):
        self.strings = {}
        self.hashes = {}

    def incr(self, key):
        value = int(self.strings.get(key, 0)) + 1
        self.strings[key] = str(value)
        return value

    def set(self, key, value):
        self.strings[key] = str(value)

    def get(self, key):
        return self.strings.get(key)

    def hset(self, key, field=None, value=None, mapping=None):
        bucket = self.hashes.setdefault(key, {})
        if field is not None:
            bucket[field] = str(value)
        for k, v in (mapping or {}).items():
            bucket[k] = str(v)

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))


class ScriptedEvaluator:
    """Evaluator double. ``script`` maps record id -> outcomes consumed per call.

    An outcome is either an exception instance (raised) or an AnalysisResult.
    Records without a script succeed with ``default``.
    """

    def __init__(self, default, script=None):
        self.default = default
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def evaluate(self, record):
        self.calls.append(record.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            outcomes = self.script.get(record.id)
            outcome = outcomes.pop(0) if outcomes else self.default
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


class FakeSource:
    def __init__(self, records=None, error=None, employees=None):
        self.records = list(records or [])
        self.error = error
        self.employees = list(employees or [])
        self.selectors = []

    async def fetch_tasks(self, selector=None):
        self.selectors.append(selector)
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def fetch_distinct_dates(self, selector):
        dates = []
        for record in await self.fetch_tasks(selector):
            if record.date and record.date not in dates:
                dates.append(record.date)
        return dates

    async def list_employees(self):
        if self.error is not None:
            raise self.error
        return list(self.employees)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_records(count, date=None):
    return [
        TaskRecord(id=i, text=f"Prepare weekly report {i} by Friday", task=f"Prepare weekly report {i}", date=date)
        for i in range(1, count + 1)
    ]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def repo(fake_redis):
    return Repo(client=fake_redis)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
