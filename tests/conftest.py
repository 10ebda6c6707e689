"""Shared fixtures — an in-memory store and a controllable clock."""

import threading
from datetime import datetime, timezone

import pytest

from beadview.config import Settings, reset_settings
from beadview.models import IssueRecord, Relationship, RelationType
from beadview.store import StoreError


class FakeStore:
    """In-memory stand-in for BeadsStore."""

    def __init__(self, records=()):
        self.records = list(records)
        self.fail = False
        self.mtime = None
        self.fetch_count = 0
        self.gate: threading.Event | None = None
        self.created: list[IssueRecord] = []

    def fetch_all(self):
        self.fetch_count += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail:
            raise StoreError("store offline")
        return list(self.records)

    def last_modified(self):
        return self.mtime

    def create(self, title, issue_type="task", priority=2, labels=(), assignee=None,
               description=None, parent_id=None):
        if not title.strip():
            raise ValueError("title must not be blank")
        rels = ()
        if parent_id:
            rels = (Relationship(parent_id, RelationType.PARENT_CHILD),)
        record = IssueRecord(
            id=f"new-{len(self.created) + 1}",
            title=title,
            issue_type=issue_type,
            priority=priority,
            labels=frozenset(labels),
            created_at=datetime.now(timezone.utc),
            relationships=rels,
        )
        self.created.append(record)
        return record


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    reset_settings()
    return Settings(
        database_path=str(tmp_path / "missing.db"),
        log_file=None,
        auto_refresh_seconds=0,
    )
