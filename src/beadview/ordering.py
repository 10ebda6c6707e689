"""State propagation and prioritized ordering of the forest.

Sorting principles:
- Siblings (roots included): active work first, then ready work, then other
  unfinished work, then fully closed subtrees, oldest first within each group.
- Detail lists (subtasks, blockers, blocked issues) each use their own
  secondary keys to surface what can be acted on next.
"""

from __future__ import annotations

from datetime import datetime, timezone

from beadview.graph import Forest, TreeNode
from beadview.models import Status, is_terminal

RANK_ACTIVE = 0
RANK_READY = 1
RANK_OPEN = 2
RANK_CLOSED = 3

# Detail-list status categories (lower = surfaced first)
CATEGORY_IN_PROGRESS = 1
CATEGORY_READY = 2
CATEGORY_BLOCKED = 3
CATEGORY_DEFERRED = 4
CATEGORY_CLOSED = 5

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ── State propagation ──────────────────────────────────────────────────


def propagate_states(forest: Forest) -> set[str]:
    """Compute aggregate flags bottom-up in one post-order pass.

    Returns the ids of issues that should start expanded: every issue with
    children whose subtree holds an active issue.
    """
    default_expanded: set[str] = set()
    stack: list[tuple[int, bool]] = [(i, False) for i in reversed(forest.roots)]

    while stack:
        index, children_done = stack.pop()
        node = forest.nodes[index]
        if not children_done:
            stack.append((index, True))
            stack.extend((child, False) for child in reversed(node.children))
            continue

        active = node.is_active
        ready = node.is_ready
        unfinished = node.is_open
        for child in node.children:
            child_node = forest.nodes[child]
            active = active or child_node.has_active_descendant
            ready = ready or child_node.has_ready_descendant
            unfinished = unfinished or child_node.has_open_descendant
        node.has_active_descendant = active
        node.has_ready_descendant = ready
        node.has_open_descendant = unfinished

        if active and node.children:
            default_expanded.add(node.issue_id)

    return default_expanded


# ── Sibling ordering ───────────────────────────────────────────────────


def status_rank(node: TreeNode) -> int:
    if node.has_active_descendant:
        return RANK_ACTIVE
    if node.has_ready_descendant:
        return RANK_READY
    if node.has_open_descendant:
        return RANK_OPEN
    return RANK_CLOSED


def sort_key(node: TreeNode) -> tuple:
    return (status_rank(node), node.issue.created_sort_key, node.issue_id)


def sort_siblings(forest: Forest, indices: list[int]) -> None:
    indices.sort(key=lambda i: sort_key(forest.nodes[i]))


def sort_forest(forest: Forest) -> None:
    """Order roots and every children list in place. Idempotent."""
    sort_siblings(forest, forest.roots)
    for node in forest.nodes:
        if len(node.children) > 1:
            sort_siblings(forest, node.children)


# ── Detail-list ordering ──────────────────────────────────────────────


def node_status_category(forest: Forest, issue_id: str) -> int:
    record = forest.records[issue_id]
    status = record.status
    if status == Status.IN_PROGRESS.value:
        return CATEGORY_IN_PROGRESS
    if status == Status.CLOSED.value:
        return CATEGORY_CLOSED
    if status == Status.BLOCKED.value:
        return CATEGORY_BLOCKED
    if status == Status.DEFERRED.value:
        return CATEGORY_DEFERRED
    # open, or an unknown status from a newer store
    if issue_id in forest.blocked_ids:
        return CATEGORY_BLOCKED
    return CATEGORY_READY


def count_open_blockers(forest: Forest, issue_id: str) -> int:
    return sum(
        1
        for blocker in forest.blocked_by.get(issue_id, ())
        if not is_terminal(forest.records[blocker].status)
    )


def _closed_at(forest: Forest, issue_id: str) -> datetime:
    return forest.records[issue_id].closed_at or _EPOCH


def sort_subtasks(forest: Forest, issue_ids: list[str]) -> list[str]:
    """in_progress → ready (unblocking others first) → blocked → deferred → closed."""

    def key(issue_id: str) -> tuple:
        category = node_status_category(forest, issue_id)
        secondary: float = 0
        if category == CATEGORY_READY:
            secondary = -len(forest.blocks.get(issue_id, ()))
        elif category == CATEGORY_BLOCKED:
            secondary = count_open_blockers(forest, issue_id)
        elif category == CATEGORY_CLOSED:
            # Most recently closed first
            secondary = -_closed_at(forest, issue_id).timestamp()
        return (category, secondary, forest.records[issue_id].priority, issue_id)

    return sorted(issue_ids, key=key)


def sort_blockers(forest: Forest, issue_ids: list[str]) -> list[str]:
    """Blockers in work order: what can be done now comes first, closed last."""

    def key(issue_id: str) -> tuple:
        record = forest.records[issue_id]
        closed = record.is_closed
        return (
            closed,
            -_closed_at(forest, issue_id).timestamp() if closed else 0,
            count_open_blockers(forest, issue_id),
            record.status != Status.IN_PROGRESS.value,
            record.priority,
            issue_id,
        )

    return sorted(issue_ids, key=key)


def sort_blocked(forest: Forest, issue_ids: list[str]) -> list[str]:
    """Downstream issues: the ones closest to becoming ready come first."""
    return sorted(
        issue_ids,
        key=lambda i: (count_open_blockers(forest, i), forest.records[i].priority, i),
    )
