"""Tests for the web API — rows, navigation, create, system routes."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from beadview.api import create_app
from beadview.api.session import ViewerSession
from beadview.models import IssueRecord, Relationship, RelationType
from beadview.refresh import RefreshReconciler

_BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _make_issue(issue_id, status="open", parents=(), minute=0):
    return IssueRecord(
        id=issue_id,
        title=f"Issue {issue_id}",
        status=status,
        created_at=_BASE + timedelta(minutes=minute),
        relationships=tuple(Relationship(p, RelationType.PARENT_CHILD) for p in parents),
    )


@pytest.fixture
def client(fake_store, settings):
    fake_store.records = [
        _make_issue("A", minute=0),
        _make_issue("B", parents=["A"], minute=1),
        _make_issue("C", status="closed", minute=2),
    ]
    reconciler = RefreshReconciler(fake_store, interval_seconds=0, settings=settings)
    return TestClient(create_app(ViewerSession(reconciler)))


def _row_ids(client):
    return [r["issue_id"] for r in client.get("/api/rows").json()]


class TestRows:
    def test_root(self, client):
        assert client.get("/").json()["rows"] == "/api/rows"

    def test_initial_rows(self, client):
        rows = client.get("/api/rows").json()
        assert [r["issue_id"] for r in rows] == ["A", "C"]
        assert rows[0]["selected"] is True
        assert rows[0]["has_children"] is True
        assert rows[0]["hidden_children"] == 1

    def test_toggle(self, client):
        resp = client.post("/api/toggle/A")
        assert resp.json()["expanded"] is True
        assert _row_ids(client) == ["A", "B", "C"]

    def test_toggle_unknown(self, client):
        assert client.post("/api/toggle/nope").status_code == 404

    def test_cursor(self, client):
        assert client.post("/api/cursor", json={"position": "bottom"}).json()["selected_id"] == "C"
        assert client.post("/api/cursor", json={"delta": -1}).json()["selected_id"] == "A"
        assert client.post("/api/cursor", json={"position": "middle"}).status_code == 422

    def test_select_reveals(self, client):
        payload = client.post("/api/select/B").json()
        assert payload["selected_id"] == "B"
        assert "A" in payload["expanded"]

    def test_filter_and_clear(self, client):
        payload = client.post("/api/filter", json={"text": "issue b"}).json()
        assert payload["filter_text"] == "issue b"
        assert _row_ids(client) == ["A", "B"]
        client.post("/api/filter", json={"text": ""})
        assert _row_ids(client) == ["A", "C"]

    def test_view_mode(self, client):
        client.post("/api/filter", json={"text": "", "view_mode": "active"})
        assert "C" not in _row_ids(client)


class TestIssues:
    def test_detail(self, client):
        detail = client.get("/api/issues/A").json()
        assert detail["subtasks"] == ["B"]
        assert detail["parents"] == []
        assert client.get("/api/issues/B").json()["parents"] == ["A"]

    def test_detail_unknown(self, client):
        assert client.get("/api/issues/zzz").status_code == 404

    def test_create_under_parent(self, client, fake_store):
        resp = client.post("/api/issues", json={"title": "Follow-up", "parent_id": "A"})
        assert resp.status_code == 201
        new_id = resp.json()["id"]
        assert resp.json()["selected_id"] == new_id
        assert new_id in _row_ids(client)
        assert fake_store.created[0].title == "Follow-up"

    def test_create_blank_title(self, client):
        assert client.post("/api/issues", json={"title": "  "}).status_code == 422

    def test_create_bad_priority(self, client):
        assert client.post("/api/issues", json={"title": "x", "priority": 9}).status_code == 422


class TestRefresh:
    def test_refresh_applies_changes(self, client, fake_store):
        client.get("/api/rows")
        fake_store.records.append(_make_issue("D", minute=5))
        payload = client.post("/api/refresh").json()
        assert payload["applied"] is True
        assert payload["last_delta"]["added"] == ["D"]

    def test_refresh_failure_reported(self, client, fake_store):
        client.get("/api/rows")
        fake_store.fail = True
        payload = client.post("/api/refresh").json()
        assert payload["applied"] is False
        assert payload["error"] == "store offline"
        assert _row_ids(client) == ["A", "C"]

    def test_initial_load_failure(self, client, fake_store):
        fake_store.fail = True
        assert client.get("/api/rows").status_code == 502


class TestSystem:
    def test_health(self, client):
        client.get("/api/rows")
        body = client.get("/api/health").json()
        assert body["ok"] is True
        assert body["issues"] == 3
        assert body["refresh_interval"] == 0

    def test_stats(self, client):
        stats = client.get("/api/stats").json()
        assert stats["total"] == 3
        assert stats["closed"] == 1

    def test_doctor(self, client):
        body = client.get("/api/doctor").json()
        assert body["data_integrity"]["total_issues"] == 3
        assert "store" in body
