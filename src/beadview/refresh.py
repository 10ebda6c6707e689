"""Refresh reconciler — background fetch, main-thread apply, change summary.

Threading model:
- At most one fetch runs at a time, on a daemon thread that is abandoned at
  exit. The thread only fetches and builds; it never touches the live
  forest or navigation state.
- Results travel through a single-slot queue. The main loop applies them by
  calling ``tick()`` / ``drain()``, so every mutation of the viewer state
  happens on one thread.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Protocol

from beadview.config import Settings, get_settings
from beadview.graph import BuildDiagnostics, Forest, build_forest
from beadview.models import IssueRecord, Status
from beadview.ordering import propagate_states, sort_forest, sort_siblings
from beadview.store import StoreError
from beadview.tree_state import Stats, TreeStateManager, compute_stats

logger = logging.getLogger(__name__)


class IssueSource(Protocol):
    def fetch_all(self) -> list[IssueRecord]: ...


@dataclass
class PipelineResult:
    forest: Forest
    diagnostics: BuildDiagnostics
    default_expanded: set[str]


def build_pipeline(records: Iterable[IssueRecord]) -> PipelineResult:
    """Build, propagate and sort. Safe to run off the main thread."""
    built = build_forest(records)
    default_expanded = propagate_states(built.forest)
    sort_forest(built.forest)
    return PipelineResult(built.forest, built.diagnostics, default_expanded)


# ── Change summary ────────────────────────────────────────────────────


def issue_digest(forest: Forest) -> dict[str, str]:
    """Fingerprint of the user-visible fields of every issue."""
    digest: dict[str, str] = {}
    for issue_id, record in forest.records.items():
        updated = record.updated_at.isoformat() if record.updated_at else ""
        digest[issue_id] = f"{record.title}|{record.status}|{record.priority}|{updated}"
    return digest


@dataclass(frozen=True)
class RefreshDelta:
    added: tuple[str, ...] = ()
    changed: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    before: Stats = field(default_factory=Stats)
    after: Stats = field(default_factory=Stats)

    @property
    def net(self) -> int:
        return self.after.total - self.before.total

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.changed or self.removed)

    def summary(self) -> str:
        return f"+{len(self.added)} / ~{len(self.changed)} / -{len(self.removed)}"


def compute_delta(old: Forest, new: Forest) -> RefreshDelta:
    old_digest = issue_digest(old)
    new_digest = issue_digest(new)
    return RefreshDelta(
        added=tuple(sorted(new_digest.keys() - old_digest.keys())),
        changed=tuple(
            sorted(i for i in new_digest.keys() & old_digest.keys() if new_digest[i] != old_digest[i])
        ),
        removed=tuple(sorted(old_digest.keys() - new_digest.keys())),
        before=compute_stats(old),
        after=compute_stats(new),
    )


@dataclass(frozen=True)
class Notification:
    """Transient message shown in the status bar."""

    message: str
    level: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class _FetchOutcome:
    pipeline: PipelineResult | None = None
    error: Exception | None = None
    mtime: float | None = None
    skipped: bool = False


# ── Reconciler ────────────────────────────────────────────────────────


class RefreshReconciler:
    """Keeps a TreeStateManager in sync with the store without losing the user's place."""

    def __init__(
        self,
        store: IssueSource,
        state: TreeStateManager | None = None,
        interval_seconds: float | None = None,
        toast_seconds: float | None = None,
        refresh_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Settings | None = None,
    ) -> None:
        s = settings or get_settings()
        self.store = store
        self.state = state or TreeStateManager()
        self.interval = s.auto_refresh_seconds if interval_seconds is None else interval_seconds
        self.toast_seconds = s.toast_seconds if toast_seconds is None else toast_seconds
        self.refresh_timeout = s.refresh_timeout if refresh_timeout is None else refresh_timeout
        self.clock = clock

        self.last_delta: RefreshDelta | None = None
        self.diagnostics: BuildDiagnostics | None = None
        self.last_error: str | None = None

        self._results: queue.Queue[_FetchOutcome] = queue.Queue(maxsize=1)
        self._thread: threading.Thread | None = None
        self._in_flight = False
        self._started_at: float | None = None
        self._stale_reported = False
        self._last_refresh_at: float | None = None
        self._known_mtime: float | None = None
        self._notifications: list[Notification] = []

    # ── Notifications ─────────────────────────────────────────────────

    def notify(self, message: str, level: str = "info") -> Notification:
        note = Notification(message, level, self.clock() + self.toast_seconds)
        self._notifications.append(note)
        return note

    def notifications(self, now: float | None = None) -> list[Notification]:
        """Live notifications; expired ones are dropped."""
        now = self.clock() if now is None else now
        self._notifications = [n for n in self._notifications if not n.is_expired(now)]
        return list(self._notifications)

    # ── Loading ───────────────────────────────────────────────────────

    def _store_mtime(self) -> float | None:
        last_modified = getattr(self.store, "last_modified", None)
        return last_modified() if callable(last_modified) else None

    def load_initial(self) -> PipelineResult:
        """Synchronous first load. Store errors propagate to the caller."""
        mtime = self._store_mtime()
        pipeline = build_pipeline(self.store.fetch_all())
        self.state.set_forest(pipeline.forest, pipeline.default_expanded)
        self.diagnostics = pipeline.diagnostics
        self._known_mtime = mtime
        self._last_refresh_at = self.clock()
        logger.info("Loaded %d issues (%d tree entries)", len(pipeline.forest.records), len(pipeline.forest))
        return pipeline

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def request_refresh(self, force: bool = False) -> bool:
        """Start a background fetch. Returns False when one is already running."""
        if self._in_flight:
            logger.debug("Refresh already in flight; request ignored")
            return False
        self._in_flight = True
        self._started_at = self.clock()
        self._stale_reported = False
        self._thread = threading.Thread(
            target=self._worker,
            args=(force, self._known_mtime),
            name="beadview-refresh",
            daemon=True,
        )
        self._thread.start()
        return True

    def _worker(self, force: bool, known_mtime: float | None) -> None:
        try:
            mtime = self._store_mtime()
            if not force and known_mtime is not None and mtime is not None and mtime <= known_mtime:
                outcome = _FetchOutcome(mtime=mtime, skipped=True)
            else:
                outcome = _FetchOutcome(pipeline=build_pipeline(self.store.fetch_all()), mtime=mtime)
        except StoreError as exc:
            logger.warning("Background refresh failed: %s", exc)
            outcome = _FetchOutcome(error=exc)
        except Exception as exc:
            logger.exception("Unexpected error during background refresh")
            outcome = _FetchOutcome(error=exc)
        self._results.put(outcome)

    # ── Main-thread apply ─────────────────────────────────────────────

    def tick(self, now: float | None = None) -> bool:
        """Main-loop hook: start a timed refresh when due, apply a finished one.

        Returns True when a new forest was applied.
        """
        now = self.clock() if now is None else now
        if self._in_flight:
            if (
                not self._stale_reported
                and self._started_at is not None
                and self.refresh_timeout > 0
                and now - self._started_at >= self.refresh_timeout
            ):
                self._stale_reported = True
                self.notify(f"Refresh is taking longer than {self.refresh_timeout}s", "warning")
        elif self.interval > 0 and (
            self._last_refresh_at is None or now - self._last_refresh_at >= self.interval
        ):
            self.request_refresh()
        return self.drain()

    def drain(self) -> bool:
        """Apply a completed fetch, if any. Returns True when the forest changed hands."""
        try:
            outcome = self._results.get_nowait()
        except queue.Empty:
            return False
        return self._apply(outcome)

    def wait_for_refresh(self, timeout: float | None = None) -> bool:
        """Block until the in-flight fetch completes, then apply it."""
        if not self._in_flight:
            return self.drain()
        try:
            outcome = self._results.get(timeout=timeout)
        except queue.Empty:
            return False
        return self._apply(outcome)

    def refresh_now(self, timeout: float | None = None) -> bool:
        """Force a refresh and wait for it to be applied."""
        self.request_refresh(force=True)
        return self.wait_for_refresh(self.refresh_timeout if timeout is None else timeout)

    def _apply(self, outcome: _FetchOutcome) -> bool:
        self._in_flight = False
        self._started_at = None
        self._last_refresh_at = self.clock()

        if outcome.error is not None:
            # Keep the last good forest and the user's place.
            self.last_error = str(outcome.error)
            self.notify(f"Refresh failed: {outcome.error}", "error")
            return False
        if outcome.skipped or outcome.pipeline is None:
            logger.debug("Store unchanged since last load; refresh skipped")
            return False

        pipeline = outcome.pipeline
        old_forest = self.state.forest
        self.state.set_forest(pipeline.forest)
        self.diagnostics = pipeline.diagnostics
        self._known_mtime = outcome.mtime
        self.last_error = None

        delta = compute_delta(old_forest, pipeline.forest)
        self.last_delta = delta
        if delta.has_changes:
            logger.info("Refresh applied: %s", delta.summary())
            self.notify(f"Refreshed: {delta.summary()}")
        return True

    # ── Optimistic insert ─────────────────────────────────────────────

    def inject_created(self, record: IssueRecord, parent_id: str | None = None) -> bool:
        """Show a just-created issue before the next refresh confirms it.

        The record is placed at its sorted position under every instance of
        the parent (or as a root) and the cursor moves onto it.
        """
        forest = self.state.forest
        if record.id in forest.records:
            return False
        parents = forest.instances_of(parent_id) if parent_id else []
        forest.records[record.id] = record

        if not parents:
            node = forest.add_node(record)
            node.has_active_descendant = node.is_active
            node.has_ready_descendant = node.is_ready
            node.has_open_descendant = node.is_open
            sort_siblings(forest, forest.roots)
        else:
            forest.parents_of.setdefault(record.id, []).append(parent_id)
            forest.children_of.setdefault(parent_id, []).append(record.id)
            for parent in parents:
                node = forest.add_node(record, parent.index)
                node.has_active_descendant = node.is_active
                node.has_ready_descendant = node.is_ready
                node.has_open_descendant = node.is_open
                for ancestor in forest.ancestors(node):
                    ancestor.has_active_descendant |= node.is_active
                    ancestor.has_ready_descendant |= node.is_ready
                    ancestor.has_open_descendant |= node.is_open
                    siblings = (
                        forest.roots if ancestor.parent is None
                        else forest.nodes[ancestor.parent].children
                    )
                    sort_siblings(forest, siblings)
                sort_siblings(forest, parent.children)
            if record.status == Status.IN_PROGRESS.value:
                self.state.expanded.add(parent_id)

        self.state.recalc()
        self.state.select(record.id, parent_id)
        self.notify(f"Created {record.id}")
        return True
