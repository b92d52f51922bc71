"""Shared fixtures for docsync tests."""

import asyncio
import copy
from datetime import datetime, timedelta

import pytest

from docsync.errors import RemoteError
from docsync.model import User
from docsync.storage import LocalStore
from docsync.sync import PushResponse, RemoteClient


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 60) -> None:
        self.now += timedelta(seconds=seconds)


class FakeRemote(RemoteClient):
    """In-memory remote store keyed by unique_identifier."""

    def __init__(self):
        self.records: dict[str, dict[str, dict]] = {}
        self.push_calls: list[dict] = []
        self.pull_calls = 0
        self.fail_with: RemoteError | None = None
        self.assign_id: str | None = None
        self._next_id = 1

    async def push(self, record_type, payload):
        self.push_calls.append(copy.deepcopy(payload))
        if self.fail_with:
            raise self.fail_with

        records = self.records.setdefault(record_type, {})
        existing = records.get(payload["unique_identifier"])
        if self.assign_id:
            internal_id = self.assign_id
        elif existing:
            internal_id = existing["internal_id"]
        else:
            internal_id = f"srv-{self._next_id}"
            self._next_id += 1

        stored = copy.deepcopy(payload)
        stored["internal_id"] = internal_id
        records[payload["unique_identifier"]] = stored
        return PushResponse(internal_id=internal_id)

    async def pull_all(self, record_type):
        self.pull_calls += 1
        if self.fail_with:
            raise self.fail_with
        return [copy.deepcopy(r) for r in self.records.get(record_type, {}).values()]

    async def delete_all(self, record_type):
        self.records.pop(record_type, None)
        return True


class GatedRemote(FakeRemote):
    """FakeRemote whose pushes block until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def push(self, record_type, payload):
        self.entered.set()
        await self.gate.wait()
        return await super().push(record_type, payload)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def user():
    return User("field_worker", "UNICEF")


@pytest.fixture
def store():
    """Create an in-memory LocalStore for testing."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def gated_remote():
    return GatedRemote()
