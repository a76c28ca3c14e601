"""
Shared pytest fixtures for immotrack tests.

Provides an in-memory key/value store, a controllable clock, and recording
stand-ins for the UI collaborators, so no test touches the real home
directory or depends on wall-clock time.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from immotrack.api import PropertyStore
from immotrack.checklist import repair_checklist
from immotrack.config import StoreConfig
from immotrack.kvstore import MemoryKeyValueStore
from immotrack.persistence import PersistenceGateway
from immotrack.schema import repair_record
from immotrack.working_set import WorkingSet


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 6, 20, 10, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that keeps every message for inspection."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, kind: str = "info", duration_ms: int = 3000) -> None:
        self.messages.append((kind, message))

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.messages]


class RecordingDetailView:
    """Detail view that records which ids it was asked to close."""

    def __init__(self):
        self.closed: list[str] = []

    def close_if_showing(self, record_id: str) -> None:
        self.closed.append(record_id)


class FailingGateway(PersistenceGateway):
    """Gateway whose single-record writes fail on demand.

    ``fail_delete``/``fail_save`` make the call report False;
    ``raise_on_delete`` makes ``delete_one`` raise instead.
    """

    def __init__(self, *args, fail_delete=True, fail_save=False, raise_on_delete=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_delete = fail_delete
        self.fail_save = fail_save
        self.raise_on_delete = raise_on_delete
        self.delete_calls = 0

    def delete_one(self, record_id: str) -> bool:
        self.delete_calls += 1
        if self.raise_on_delete:
            raise RuntimeError("simulated storage crash")
        if self.fail_delete:
            return False
        return super().delete_one(record_id)

    def save_one(self, record) -> bool:
        if self.fail_save:
            return False
        return super().save_one(record)


def make_raw(**overrides: Any) -> dict[str, Any]:
    """A complete, valid record in wire form."""
    raw = {
        "id": "prop_1",
        "name": "12 High Street",
        "portfolio": "Portfolio 1",
        "type": "MV",
        "hasHeating": False,
        "accountingYear": 2024,
        "accountingPeriod": "01.01.2024 - 31.12.2024",
        "isDemo": False,
        "notes": [],
        "specialFeatures": [],
        "checklist": {},
        "createdAt": "2025-01-01T00:00:00.000Z",
        "updatedAt": "2025-01-01T00:00:00.000Z",
    }
    raw.update(overrides)
    return raw


def make_record(**overrides: Any):
    """A repaired PropertyRecord built from ``make_raw``."""
    return repair_record(make_raw(**overrides), checklist_repair=repair_checklist)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def detail_view():
    return RecordingDetailView()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def gateway(kv, notifier, clock):
    return PersistenceGateway(kv, notifier=notifier, clock=clock)


@pytest.fixture
def working_set():
    return WorkingSet()


@pytest.fixture
def store(kv, notifier, detail_view, clock, tmp_path):
    """PropertyStore over the in-memory kv store, without demo records."""
    config = StoreConfig(path=tmp_path, backend="memory", include_demo=False)
    ps = PropertyStore(
        config=config,
        kv_store=kv,
        notifier=notifier,
        detail_view=detail_view,
        clock=clock,
    )
    yield ps
    ps.close()
