"""Beads store client — reads the issue database, runs bd mutations.

Store assumptions:
- The bd CLI prints JSON with ``--json``; warnings may precede the payload
- ``bd list --json`` omits relationships, so full records come from
  ``bd show --json <ids...>`` in batches
- The SQLite database (when present) has issues / labels / dependencies
  tables; deleted issues are either tombstoned or carry ``deleted_at``
- A dependency row (issue_id, depends_on_id, type) is outgoing for
  ``issue_id`` and a dependent of ``depends_on_id``
"""

from __future__ import annotations

import json
import logging
import sqlite3
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

from beadview.config import Settings, get_settings
from beadview.models import IssueRecord, Relationship, RelationType, Status
from beadview.normalizer import normalize_issue, normalize_issues

logger = logging.getLogger(__name__)

SHOW_BATCH_SIZE = 50

ISSUES_SQL = """
SELECT id, title, description, status, priority, issue_type,
       COALESCE(assignee, ''), created_at, updated_at, closed_at
FROM issues
WHERE status != 'tombstone' AND deleted_at IS NULL
ORDER BY created_at, id
"""

LABELS_SQL = "SELECT issue_id, label FROM labels ORDER BY issue_id, label"

DEPENDENCIES_SQL = "SELECT issue_id, depends_on_id, type FROM dependencies"


class StoreError(Exception):
    """Raised when the issue store cannot be read or a bd command fails."""


class StoreNotFoundError(StoreError):
    """Raised when the bd binary cannot be found."""


def _require(value: str, what: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{what} must not be blank")
    return value


def extract_json(output: str) -> Any:
    """Decode the first JSON value in command output, skipping any leading warnings."""
    decoder = json.JSONDecoder()
    for idx, ch in enumerate(output):
        if ch not in "[{":
            continue
        try:
            value, _ = decoder.raw_decode(output, idx)
        except json.JSONDecodeError:
            continue
        return value
    raise StoreError(f"No JSON payload in bd output: {output[:200]!r}")


class BeadsStore:
    """Handles all communication with the beads issue store."""

    def __init__(
        self,
        settings: Settings | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.settings = settings or get_settings()
        self._runner = runner

    # ── Command plumbing ──────────────────────────────────────────────

    def _command(self, args: Sequence[str]) -> list[str]:
        cmd = [self.settings.bd_binary]
        if self.settings.database_file.exists():
            cmd += ["--db", str(self.settings.database_file)]
        return cmd + list(args)

    def _run(self, args: Sequence[str]) -> str:
        """Run one bd command and return its stdout."""
        cmd = self._command(args)
        logger.debug("Running: %s", " ".join(cmd))
        try:
            proc = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.settings.command_timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise StoreNotFoundError(
                f"bd binary {self.settings.bd_binary!r} not found in PATH"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise StoreError(
                f"bd {args[0]} timed out after {self.settings.command_timeout}s"
            ) from exc

        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout or "").strip()
            raise StoreError(f"bd {' '.join(args)} failed ({proc.returncode}): {detail[:300]}")
        return proc.stdout or ""

    def _run_json(self, args: Sequence[str]) -> Any:
        return extract_json(self._run(args))

    def _read_with_retry(self, read: Callable[[], list[IssueRecord]]) -> list[IssueRecord]:
        """Execute a read with retries and exponential backoff."""
        max_retries = self.settings.store_max_retries
        for attempt in range(max_retries + 1):
            try:
                return read()
            except StoreNotFoundError:
                raise
            except StoreError as exc:
                if attempt >= max_retries:
                    raise
                wait = 2 ** attempt
                logger.warning(
                    "Store read failed (attempt %d/%d), retrying in %ds: %s",
                    attempt + 1, max_retries, wait, exc,
                )
                time.sleep(wait)
        raise StoreError("Unexpected retry loop exit")  # pragma: no cover

    # ── Reads ─────────────────────────────────────────────────────────

    def fetch_all(self) -> list[IssueRecord]:
        """Fetch every live issue with its labels and relationships."""
        if self.settings.database_file.exists():
            records = self._read_with_retry(self._read_sqlite)
            source = "sqlite"
        else:
            records = self._read_with_retry(self._read_cli)
            source = "bd"
        logger.info("Fetched %d issues from %s", len(records), source)
        return records

    def show(self, ids: Sequence[str]) -> list[IssueRecord]:
        """Full records for a batch of ids (missing ids are simply absent)."""
        ids = [_require(i, "issue id") for i in ids]
        if not ids:
            return []
        if self.settings.database_file.exists():
            wanted = set(ids)
            return [r for r in self._read_with_retry(self._read_sqlite) if r.id in wanted]
        return self._read_with_retry(lambda: self._show_cli(ids))

    def last_modified(self) -> float | None:
        """Newest mtime of the database and its WAL/SHM files, if there is a database."""
        db = self.settings.database_file
        newest: float | None = None
        for path in (db, Path(f"{db}-wal"), Path(f"{db}-shm")):
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if newest is None or mtime > newest:
                newest = mtime
        return newest

    def _show_cli(self, ids: Sequence[str]) -> list[IssueRecord]:
        raw: list[dict[str, Any]] = []
        for start in range(0, len(ids), SHOW_BATCH_SIZE):
            batch = list(ids[start:start + SHOW_BATCH_SIZE])
            payload = self._run_json(["show", "--json", *batch])
            if isinstance(payload, dict):
                payload = [payload]
            raw.extend(p for p in payload if isinstance(p, dict))
        return normalize_issues(raw)

    def _read_cli(self) -> list[IssueRecord]:
        listing = self._run_json(["list", "--all", "--json"])
        if not isinstance(listing, list):
            raise StoreError("bd list returned an unexpected payload")
        ids = [str(item["id"]) for item in listing if isinstance(item, dict) and item.get("id")]
        if not ids:
            return []
        return self._show_cli(ids)

    def _read_sqlite(self) -> list[IssueRecord]:
        db = self.settings.database_file
        uri = f"{db.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True, timeout=self.settings.command_timeout)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open {db}: {exc}") from exc
        try:
            issues: dict[str, dict[str, Any]] = {}
            for row in conn.execute(ISSUES_SQL):
                issues[row[0]] = {
                    "id": row[0],
                    "title": row[1],
                    "description": row[2],
                    "status": row[3],
                    "priority": row[4],
                    "issue_type": row[5],
                    "assignee": row[6],
                    "created_at": row[7],
                    "updated_at": row[8],
                    "closed_at": row[9],
                    "labels": [],
                    "dependencies": [],
                    "dependents": [],
                }
            for issue_id, label in conn.execute(LABELS_SQL):
                if issue_id in issues:
                    issues[issue_id]["labels"].append(label)
            for issue_id, depends_on, dep_type in conn.execute(DEPENDENCIES_SQL):
                if issue_id in issues:
                    issues[issue_id]["dependencies"].append(
                        {"depends_on_id": depends_on, "type": dep_type}
                    )
                if depends_on in issues:
                    issues[depends_on]["dependents"].append(
                        {"issue_id": issue_id, "type": dep_type}
                    )
        except sqlite3.Error as exc:
            raise StoreError(f"SQLite read failed: {exc}") from exc
        finally:
            conn.close()
        return normalize_issues(list(issues.values()))

    # ── Mutations (single attempt, no retry) ──────────────────────────

    def update_status(self, issue_id: str, status: Status | str) -> None:
        issue_id = _require(issue_id, "issue id")
        value = status.value if isinstance(status, Status) else _require(status, "status")
        self._run(["update", issue_id, f"--status={value}"])
        logger.info("Set %s status to %s", issue_id, value)

    def close(self, issue_id: str) -> None:
        self._run(["close", _require(issue_id, "issue id")])
        logger.info("Closed %s", issue_id)

    def reopen(self, issue_id: str) -> None:
        self._run(["reopen", _require(issue_id, "issue id")])
        logger.info("Reopened %s", issue_id)

    def add_label(self, issue_id: str, label: str) -> None:
        self._run(["label", "add", _require(issue_id, "issue id"), _require(label, "label")])

    def remove_label(self, issue_id: str, label: str) -> None:
        self._run(["label", "remove", _require(issue_id, "issue id"), _require(label, "label")])

    def create(
        self,
        title: str,
        issue_type: str = "task",
        priority: int = 2,
        labels: Sequence[str] = (),
        assignee: str | None = None,
        description: str | None = None,
        parent_id: str | None = None,
    ) -> IssueRecord:
        """Create an issue (optionally under a parent) and return its record."""
        title = _require(title, "title")
        if not 0 <= priority <= 4:
            raise ValueError(f"priority must be between 0 and 4, got: {priority}")
        if parent_id is not None:
            parent_id = _require(parent_id, "parent id")

        args = [
            "create",
            "--title", title,
            "--type", _require(issue_type, "issue type"),
            "--priority", str(priority),
            "--json",
        ]
        clean_labels = [lbl.strip() for lbl in labels if lbl and lbl.strip()]
        if clean_labels:
            args += ["--labels", ",".join(clean_labels)]
        if assignee:
            args += ["--assignee", assignee]
        if description:
            args += ["--description", description]

        payload = self._run_json(args)
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, dict):
            raise StoreError("bd create returned an unexpected payload")
        payload.setdefault("title", title)
        payload.setdefault("issue_type", issue_type)
        payload.setdefault("priority", priority)
        payload.setdefault("labels", clean_labels)
        record = normalize_issue(payload)
        if record is None:
            raise StoreError("bd create did not return an issue id")
        logger.info("Created %s", record.id)

        if parent_id:
            self.add_dependency(record.id, parent_id, RelationType.PARENT_CHILD)
            record = replace(
                record,
                relationships=record.relationships
                + (Relationship(parent_id, RelationType.PARENT_CHILD),),
            )
        return record

    def delete(self, issue_id: str, cascade: bool = False) -> None:
        args = ["delete", _require(issue_id, "issue id"), "--force"]
        if cascade:
            args.append("--cascade")
        self._run(args)
        logger.info("Deleted %s%s", issue_id, " (cascade)" if cascade else "")

    def add_dependency(
        self,
        from_id: str,
        to_id: str,
        relation_type: RelationType | str = RelationType.BLOCKS,
    ) -> None:
        from_id = _require(from_id, "issue id")
        to_id = _require(to_id, "target id")
        if from_id == to_id:
            raise ValueError("an issue cannot depend on itself")
        kind = relation_type.value if isinstance(relation_type, RelationType) else relation_type
        self._run(["dep", "add", from_id, to_id, "--type", _require(kind, "relation type")])

    def remove_dependency(self, from_id: str, to_id: str) -> None:
        self._run(["dep", "remove", _require(from_id, "issue id"), _require(to_id, "target id")])
