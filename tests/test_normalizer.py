"""Tests for normalizer — timestamps, statuses, relationship shapes."""

from datetime import timezone

import pytest

from beadview.models import RelationType, Status
from beadview.normalizer import normalize_issue, normalize_issues, parse_timestamp


# ── Timestamps ────────────────────────────────────────────────────────


class TestParseTimestamp:
    def test_zulu(self):
        ts = parse_timestamp("2025-03-04T05:06:07Z")
        assert ts.tzinfo is not None
        assert (ts.year, ts.hour, ts.second) == (2025, 5, 7)

    def test_offset_preserved(self):
        ts = parse_timestamp("2025-03-04T05:06:07+02:00")
        assert ts.utcoffset().total_seconds() == 7200

    def test_nanoseconds_truncated(self):
        ts = parse_timestamp("2025-03-04T05:06:07.123456789Z")
        assert ts.microsecond == 123456

    def test_naive_is_utc(self):
        ts = parse_timestamp("2025-03-04 05:06:07")
        assert ts.tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "   ", "yesterday", 42])
    def test_unparseable(self, value):
        assert parse_timestamp(value) is None


# ── Issues ────────────────────────────────────────────────────────────


class TestNormalizeIssue:
    def test_minimal(self):
        rec = normalize_issue({"id": "bd-1", "title": "T", "status": "open"})
        assert rec.id == "bd-1"
        assert rec.priority == 2
        assert rec.issue_type == "task"
        assert rec.labels == frozenset()
        assert rec.relationships == ()

    def test_missing_id_dropped(self):
        assert normalize_issue({"title": "no id"}) is None

    def test_tombstone_dropped(self):
        assert normalize_issue({"id": "x", "status": "Tombstone"}) is None

    def test_blank_status_is_open(self):
        assert normalize_issue({"id": "x", "status": ""}).status == Status.OPEN.value

    def test_unknown_status_preserved(self):
        assert normalize_issue({"id": "x", "status": "review"}).status == "review"

    def test_bad_priority_defaults(self):
        assert normalize_issue({"id": "x", "priority": "high"}).priority == 2

    def test_labels_from_string(self):
        rec = normalize_issue({"id": "x", "labels": "a, b,,c"})
        assert rec.labels == frozenset({"a", "b", "c"})

    def test_show_dependency_shape(self):
        rec = normalize_issue({
            "id": "x",
            "dependencies": [{"id": "p", "dependency_type": "parent-child"}],
            "dependents": [{"id": "c", "dependency_type": "blocks"}],
        })
        assert rec.relationships[0].target_id == "p"
        assert rec.relationships[0].relation_type is RelationType.PARENT_CHILD
        assert rec.dependents[0].target_id == "c"

    def test_export_dependency_shape(self):
        rec = normalize_issue({
            "id": "x",
            "dependencies": [{"issue_id": "x", "depends_on_id": "y", "type": "blocks"}],
        })
        assert rec.relationships[0].target_id == "y"
        assert rec.relationships[0].relation_type is RelationType.BLOCKS

    def test_unknown_relation_keeps_raw_type(self):
        rec = normalize_issue({
            "id": "x",
            "dependencies": [{"depends_on_id": "y", "type": "waits-for"}],
        })
        assert rec.relationships[0].relation_type is RelationType.UNKNOWN
        assert rec.relationships[0].raw_type == "waits-for"

    def test_malformed_dependencies_skipped(self):
        rec = normalize_issue({"id": "x", "dependencies": ["y", {"type": "blocks"}]})
        assert rec.relationships == ()

    def test_normalize_issues_filters(self):
        records = normalize_issues([
            {"id": "a"},
            {"title": "orphan"},
            {"id": "b", "status": "tombstone"},
        ])
        assert [r.id for r in records] == ["a"]
