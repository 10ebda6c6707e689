"""Tests for the CLI — read commands and issue mutations against fake stores."""

from datetime import datetime, timezone

import pytest
from typer.testing import CliRunner

from beadview.cli import issue as issue_cli
from beadview.cli.main import app
from beadview.config import reset_settings
from beadview.models import IssueRecord, Relationship, RelationType
from beadview.store import StoreError

runner = CliRunner()

_BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _make_issue(issue_id, title, parents=(), status="open"):
    return IssueRecord(
        id=issue_id,
        title=title,
        status=status,
        created_at=_BASE,
        relationships=tuple(Relationship(p, RelationType.PARENT_CHILD) for p in parents),
    )


class RecordingStore:
    """Captures mutation calls made by the issue commands."""

    def __init__(self, fail=None):
        self.calls = []
        self.fail = fail

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            if self.fail is not None:
                raise self.fail
            if name == "create":
                return _make_issue("bd-9", args[0])
            return None

        return method


@pytest.fixture(autouse=True)
def quiet_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("BEADVIEW_LOG_FILE", "")
    monkeypatch.setenv("BEADVIEW_DATABASE_PATH", str(tmp_path / "missing.db"))
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def loaded(monkeypatch, fake_store):
    store = fake_store
    store.records = [
        _make_issue("A", "Platform"),
        _make_issue("B", "Storage", parents=["A"]),
        _make_issue("C", "Done thing", status="closed"),
    ]
    monkeypatch.setattr("beadview.store.BeadsStore", lambda *a, **kw: store)
    return store


@pytest.fixture
def recording(monkeypatch):
    store = RecordingStore()
    monkeypatch.setattr(issue_cli, "_store", lambda: store)
    return store


class TestReadCommands:
    def test_tree(self, loaded):
        result = runner.invoke(app, ["tree", "--expand-all"])
        assert result.exit_code == 0
        assert "Platform" in result.output
        assert "Storage" in result.output

    def test_tree_active_view(self, loaded):
        result = runner.invoke(app, ["tree", "--view", "active"])
        assert result.exit_code == 0
        assert "Done thing" not in result.output

    def test_tree_bad_view(self, loaded):
        assert runner.invoke(app, ["tree", "--view", "sideways"]).exit_code == 1

    def test_show(self, loaded):
        result = runner.invoke(app, ["show", "A"])
        assert result.exit_code == 0
        assert "Subtasks" in result.output

    def test_show_unknown(self, loaded):
        assert runner.invoke(app, ["show", "nope"]).exit_code == 1

    def test_stats(self, loaded):
        result = runner.invoke(app, ["stats"])
        assert result.exit_code == 0
        assert "Total" in result.output

    def test_store_failure(self, loaded):
        loaded.fail = True
        result = runner.invoke(app, ["tree"])
        assert result.exit_code == 1
        assert "Could not load issues" in result.output


class TestIssueCommands:
    def test_status(self, recording):
        result = runner.invoke(app, ["issue", "status", "bd-1", "In_Progress"])
        assert result.exit_code == 0
        assert recording.calls == [("update_status", ("bd-1", "in_progress"), {})]

    def test_unknown_status(self, recording):
        assert runner.invoke(app, ["issue", "status", "bd-1", "someday"]).exit_code == 2
        assert recording.calls == []

    def test_create(self, recording):
        result = runner.invoke(
            app, ["issue", "create", "New work", "-p", "1", "-l", "a,b", "--parent", "bd-1"]
        )
        assert result.exit_code == 0
        name, args, kwargs = recording.calls[0]
        assert name == "create"
        assert kwargs["priority"] == 1
        assert kwargs["parent_id"] == "bd-1"
        assert "bd-9" in result.output

    def test_delete_requires_confirmation(self, recording):
        result = runner.invoke(app, ["issue", "delete", "bd-1"], input="n\n")
        assert result.exit_code != 0
        assert recording.calls == []

    def test_delete_yes(self, recording):
        result = runner.invoke(app, ["issue", "delete", "bd-1", "--yes", "--cascade"])
        assert result.exit_code == 0
        assert recording.calls[0][0] == "delete"

    def test_dep_add(self, recording):
        result = runner.invoke(app, ["issue", "dep", "add", "bd-2", "bd-1"])
        assert result.exit_code == 0
        assert recording.calls[0][0] == "add_dependency"

    def test_store_error_exit(self, monkeypatch):
        store = RecordingStore(fail=StoreError("bd exploded"))
        monkeypatch.setattr(issue_cli, "_store", lambda: store)
        result = runner.invoke(app, ["issue", "close", "bd-1"])
        assert result.exit_code == 1
        assert "bd exploded" in result.output

    def test_value_error_exit(self, monkeypatch):
        store = RecordingStore(fail=ValueError("label must not be blank"))
        monkeypatch.setattr(issue_cli, "_store", lambda: store)
        result = runner.invoke(app, ["issue", "label", "add", "bd-1", " "])
        assert result.exit_code == 2


class TestDiagnostics:
    def test_doctor(self, loaded):
        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 0
        assert "Fetched 3 issues" in result.output
        assert "Data Integrity" in result.output

    def test_doctor_fetch_failure(self, loaded):
        loaded.fail = True
        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 1
        assert "Fetch failed" in result.output

    def test_config(self):
        result = runner.invoke(app, ["config"])
        assert "BEADVIEW_BD_BINARY" in result.output
