"""Normalizer — converts raw beads JSON into immutable IssueRecord values."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from beadview.models import (
    TOMBSTONE,
    IssueRecord,
    Relationship,
    RelationType,
    Status,
    parse_status,
)

logger = logging.getLogger(__name__)

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 / ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC; anything unparseable becomes None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("Z", "+00:00")
    # SQLite rows sometimes use a space instead of "T"
    if len(text) > 10 and text[10] == " ":
        text = text[:10] + "T" + text[11:]
    # fromisoformat only takes up to microsecond precision
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _safe_int(val: Any, default: int) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return default


def _normalize_relationship(dep: Any, id_keys: tuple[str, ...]) -> Relationship | None:
    """Normalize a dependency entry.

    Accepts the ``bd show --json`` shape ({"id", "dependency_type"}) as well as
    the export / SQLite shape ({"depends_on_id" | "issue_id", "type"}).
    """
    if not isinstance(dep, dict):
        return None

    target = None
    for key in id_keys:
        if dep.get(key):
            target = str(dep[key])
            break
    if not target:
        return None

    raw_type = dep.get("dependency_type") or dep.get("type") or ""
    return Relationship(
        target_id=target,
        relation_type=RelationType.parse(raw_type),
        raw_type=str(raw_type),
    )


def _normalize_labels(raw: Any) -> frozenset[str]:
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        return frozenset(p.strip() for p in raw.split(",") if p.strip())
    return frozenset(str(lbl) for lbl in raw if lbl)


def normalize_issue(raw: dict[str, Any]) -> IssueRecord | None:
    """Normalize one raw issue dict into an IssueRecord.

    Returns None for records that must never be displayed (no id, tombstones).
    A blank status is read as ``open``; unknown statuses pass through verbatim.
    """
    issue_id = str(raw.get("id") or "").strip()
    if not issue_id:
        logger.warning("Skipping issue without id: %r", raw.get("title"))
        return None

    raw_status = raw.get("status")
    if (raw_status or "").strip().lower() == TOMBSTONE:
        return None
    try:
        status = parse_status(raw_status)
    except ValueError:
        logger.info("Issue %s has blank status — treating as open", issue_id)
        status = Status.OPEN.value

    relationships = tuple(
        rel
        for rel in (
            _normalize_relationship(d, ("depends_on_id", "id"))
            for d in raw.get("dependencies") or []
        )
        if rel is not None
    )
    dependents = tuple(
        rel
        for rel in (
            _normalize_relationship(d, ("issue_id", "id"))
            for d in raw.get("dependents") or []
        )
        if rel is not None
    )

    return IssueRecord(
        id=issue_id,
        title=str(raw.get("title") or ""),
        status=status,
        priority=_safe_int(raw.get("priority"), 2),
        issue_type=str(raw.get("issue_type") or raw.get("type") or "task"),
        labels=_normalize_labels(raw.get("labels")),
        created_at=parse_timestamp(raw.get("created_at")),
        updated_at=parse_timestamp(raw.get("updated_at")),
        closed_at=parse_timestamp(raw.get("closed_at")),
        assignee=raw.get("assignee") or None,
        description=str(raw.get("description") or ""),
        relationships=relationships,
        dependents=dependents,
    )


def normalize_issues(raw_issues: list[dict[str, Any]]) -> list[IssueRecord]:
    """Normalize a list of raw issues, dropping the ones normalize_issue rejects."""
    records: list[IssueRecord] = []
    for raw in raw_issues:
        record = normalize_issue(raw)
        if record is not None:
            records.append(record)
    return records
