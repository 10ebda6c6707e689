"""Tree state manager — navigation state and the visible row list.

Navigation state (cursor, expanded ids, filter) is the only thing that
survives a forest rebuild. Everything is keyed by issue id so it can be
re-applied to a freshly built forest.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from beadview.graph import Forest, TreeNode
from beadview.models import Status
from beadview.search import FilterEvaluation, ViewMode, evaluate_filter, is_filter_active

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisibleRow:
    """One drawable line of the tree."""

    node_index: int
    issue_id: str
    parent_id: str | None
    depth: int
    has_children: bool
    expanded: bool
    hidden_children: int
    blocked: bool
    active: bool
    ready: bool
    matches: bool = True


@dataclass(frozen=True)
class Stats:
    total: int = 0
    in_progress: int = 0
    ready: int = 0
    blocked: int = 0
    closed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "in_progress": self.in_progress,
            "ready": self.ready,
            "blocked": self.blocked,
            "closed": self.closed,
        }


@dataclass
class NavigationState:
    selected_id: str | None = None
    selected_parent_id: str | None = None
    cursor: int = 0
    expanded: set[str] = field(default_factory=set)
    filter_text: str = ""
    view_mode: ViewMode = ViewMode.ALL
    filter_collapsed: set[str] = field(default_factory=set)
    filter_expanded: set[str] = field(default_factory=set)

    def copy(self) -> "NavigationState":
        return NavigationState(
            selected_id=self.selected_id,
            selected_parent_id=self.selected_parent_id,
            cursor=self.cursor,
            expanded=set(self.expanded),
            filter_text=self.filter_text,
            view_mode=self.view_mode,
            filter_collapsed=set(self.filter_collapsed),
            filter_expanded=set(self.filter_expanded),
        )


def compute_stats(forest: Forest) -> Stats:
    """Counts over unique issues (multi-parent issues count once)."""
    in_progress = ready = blocked = closed = 0
    for issue_id, record in forest.records.items():
        status = record.status
        if status == Status.IN_PROGRESS.value:
            in_progress += 1
        elif status == Status.CLOSED.value:
            closed += 1
        elif status == Status.BLOCKED.value or issue_id in forest.blocked_ids:
            blocked += 1
        elif status == Status.OPEN.value:
            ready += 1
    return Stats(
        total=len(forest.records),
        in_progress=in_progress,
        ready=ready,
        blocked=blocked,
        closed=closed,
    )


class TreeStateManager:
    """Owns the navigation state and recomputes the visible rows after every change."""

    def __init__(self, forest: Forest | None = None, default_expanded: Iterable[str] | None = None) -> None:
        self.forest = forest or Forest()
        self.expanded: set[str] = set(default_expanded or ())
        self.filter_text = ""
        self.view_mode = ViewMode.ALL
        self.filter_collapsed: set[str] = set()
        self.filter_expanded: set[str] = set()
        self.cursor = 0
        self.visible_rows: list[VisibleRow] = []
        self.recalc()

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def filter_active(self) -> bool:
        return is_filter_active(self.filter_text, self.view_mode)

    def current_row(self) -> VisibleRow | None:
        if 0 <= self.cursor < len(self.visible_rows):
            return self.visible_rows[self.cursor]
        return None

    def current_node(self) -> TreeNode | None:
        row = self.current_row()
        return None if row is None else self.forest.nodes[row.node_index]

    @property
    def selected_id(self) -> str | None:
        row = self.current_row()
        return None if row is None else row.issue_id

    def is_expanded(self, issue_id: str) -> bool:
        return issue_id in self.expanded

    def stats(self) -> Stats:
        return compute_stats(self.forest)

    # ── Visible rows ──────────────────────────────────────────────────

    def _expanded_for_walk(self, node: TreeNode, ev: FilterEvaluation | None) -> bool:
        if not node.children:
            return False
        issue_id = node.issue_id
        if ev is None:
            return issue_id in self.expanded
        if issue_id in self.filter_collapsed:
            return False
        if issue_id in self.filter_expanded:
            return True
        # Matches are never hidden behind a collapsed ancestor.
        return ev.has_matching_child

    def recalc(self) -> None:
        """Rebuild the visible row list from the forest and navigation state."""
        forest = self.forest
        evals = evaluate_filter(forest, self.filter_text, self.view_mode) if self.filter_active else None

        rows: list[VisibleRow] = []
        stack: list[tuple[int, str | None, int]] = [(i, None, 0) for i in reversed(forest.roots)]
        while stack:
            index, parent_id, depth = stack.pop()
            node = forest.nodes[index]
            ev = evals.get(index) if evals is not None else None
            if evals is not None and (ev is None or not ev.visible):
                continue

            expanded = self._expanded_for_walk(node, ev)
            if not expanded:
                hidden = len(node.children)
                shown: list[int] = []
            elif evals is None:
                hidden = 0
                shown = node.children
            else:
                shown = [c for c in node.children if evals[c].visible]
                hidden = len(node.children) - len(shown)

            rows.append(
                VisibleRow(
                    node_index=index,
                    issue_id=node.issue_id,
                    parent_id=parent_id,
                    depth=depth,
                    has_children=bool(node.children),
                    expanded=expanded,
                    hidden_children=hidden,
                    blocked=node.blocked_by_unresolved,
                    active=node.is_active,
                    ready=node.is_ready,
                    matches=True if ev is None else ev.matches,
                )
            )
            for child in reversed(shown):
                stack.append((child, node.issue_id, depth + 1))

        self.visible_rows = rows
        self._clamp_cursor()

    def _clamp_cursor(self) -> None:
        if not self.visible_rows:
            self.cursor = 0
            return
        self.cursor = max(0, min(self.cursor, len(self.visible_rows) - 1))

    def _restore_cursor(self, issue_id: str | None, parent_id: str | None = None) -> bool:
        """Put the cursor back on an issue; clamp the old index when it is gone."""
        if issue_id is None:
            self._clamp_cursor()
            return False
        fallback = None
        for idx, row in enumerate(self.visible_rows):
            if row.issue_id != issue_id:
                continue
            if row.parent_id == parent_id:
                self.cursor = idx
                return True
            if fallback is None:
                fallback = idx
        if fallback is not None:
            self.cursor = fallback
            return True
        self._clamp_cursor()
        return False

    def _recalc_keeping_selection(self) -> None:
        row = self.current_row()
        self.recalc()
        if row is not None:
            self._restore_cursor(row.issue_id, row.parent_id)

    # ── Forest replacement ────────────────────────────────────────────

    def set_forest(self, forest: Forest, default_expanded: Iterable[str] | None = None) -> None:
        """Swap in a new forest, carrying navigation state across by issue id.

        ``default_expanded`` is only passed on initial load; user toggles are
        never overwritten on refresh.
        """
        state = self.capture()
        self.forest = forest
        if default_expanded:
            self.expanded |= set(default_expanded)
        self.recalc()
        self.cursor = state.cursor
        self._restore_cursor(state.selected_id, state.selected_parent_id)

    def capture(self) -> NavigationState:
        row = self.current_row()
        return NavigationState(
            selected_id=None if row is None else row.issue_id,
            selected_parent_id=None if row is None else row.parent_id,
            cursor=self.cursor,
            expanded=set(self.expanded),
            filter_text=self.filter_text,
            view_mode=self.view_mode,
            filter_collapsed=set(self.filter_collapsed),
            filter_expanded=set(self.filter_expanded),
        )

    def restore(self, state: NavigationState) -> None:
        self.expanded = set(state.expanded)
        self.filter_text = state.filter_text
        self.view_mode = state.view_mode
        self.filter_collapsed = set(state.filter_collapsed)
        self.filter_expanded = set(state.filter_expanded)
        self.recalc()
        self.cursor = state.cursor
        self._restore_cursor(state.selected_id, state.selected_parent_id)

    # ── Expansion ─────────────────────────────────────────────────────

    def _has_children(self, issue_id: str) -> bool:
        return any(n.children for n in self.forest.instances_of(issue_id))

    def _shown_expanded(self, issue_id: str) -> bool:
        for row in self.visible_rows:
            if row.issue_id == issue_id:
                return row.expanded
        return issue_id in self.expanded

    def expand(self, issue_id: str) -> None:
        if not self._has_children(issue_id):
            return
        self.expanded.add(issue_id)
        if self.filter_active:
            self.filter_collapsed.discard(issue_id)
            self.filter_expanded.add(issue_id)
        self._recalc_keeping_selection()

    def collapse(self, issue_id: str) -> None:
        if self.filter_active:
            self.filter_collapsed.add(issue_id)
            self.filter_expanded.discard(issue_id)
        else:
            self.expanded.discard(issue_id)
        self._recalc_keeping_selection()

    def toggle(self, issue_id: str) -> bool:
        """Flip expansion for every instance of an issue. Returns the new state."""
        if not self._has_children(issue_id):
            return False
        currently = self._shown_expanded(issue_id) if self.filter_active else issue_id in self.expanded
        if currently:
            self.collapse(issue_id)
            return False
        self.expand(issue_id)
        return True

    def toggle_current(self) -> bool:
        row = self.current_row()
        return False if row is None else self.toggle(row.issue_id)

    def expand_all(self) -> None:
        self.expanded = {n.issue_id for n in self.forest.nodes if n.children}
        self.filter_collapsed.clear()
        self._recalc_keeping_selection()

    def collapse_all(self) -> None:
        self.expanded.clear()
        self.filter_expanded.clear()
        self._recalc_keeping_selection()

    def reveal(self, node: TreeNode) -> None:
        """Expand every ancestor of one entry so it shows up unfiltered."""
        for ancestor in self.forest.ancestors(node):
            self.expanded.add(ancestor.issue_id)

    # ── Cursor ────────────────────────────────────────────────────────

    def move_cursor(self, delta: int) -> None:
        self.cursor += delta
        self._clamp_cursor()

    def cursor_to_top(self) -> None:
        self.cursor = 0

    def cursor_to_bottom(self) -> None:
        self.cursor = max(0, len(self.visible_rows) - 1)

    def select(self, issue_id: str, parent_id: str | None = None) -> bool:
        """Move the cursor to an issue, expanding its ancestors if needed."""
        if self._restore_exact(issue_id, parent_id):
            return True
        node = self.forest.find_first(issue_id)
        if node is None:
            return False
        if not self.filter_active:
            self.reveal(node)
            self.recalc()
        return self._restore_cursor(issue_id, parent_id)

    def _restore_exact(self, issue_id: str, parent_id: str | None) -> bool:
        for idx, row in enumerate(self.visible_rows):
            if row.issue_id == issue_id and (parent_id is None or row.parent_id == parent_id):
                self.cursor = idx
                return True
        return False

    # ── Filter ────────────────────────────────────────────────────────

    def set_filter(self, text: str) -> None:
        if text == self.filter_text:
            return
        if not text:
            self.clear_filter()
            return
        row = self.current_row()
        self.filter_text = text
        self.filter_collapsed.clear()
        self.filter_expanded.clear()
        self.recalc()
        if row is not None:
            self._restore_cursor(row.issue_id, row.parent_id)

    def clear_filter(self) -> None:
        """Drop the text filter, keeping forced expansions and the selection visible."""
        row = self.current_row()
        node = self.current_node()
        self.filter_text = ""
        # A non-default view mode keeps the filter, and its overrides, in force.
        if not self.filter_active:
            self.expanded |= self.filter_expanded
            self.filter_collapsed.clear()
            self.filter_expanded.clear()
            if node is not None:
                self.reveal(node)
        self.recalc()
        if row is not None:
            self._restore_cursor(row.issue_id, row.parent_id)

    def set_view_mode(self, mode: ViewMode) -> None:
        if mode is self.view_mode:
            return
        row = self.current_row()
        self.view_mode = mode
        self.recalc()
        if row is not None:
            self._restore_cursor(row.issue_id, row.parent_id)
