"""Search/filter engine — pure predicates over the forest."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from beadview.graph import Forest, TreeNode


class ViewMode(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    READY = "ready"


@dataclass(frozen=True)
class FilterEvaluation:
    matches: bool
    has_matching_child: bool

    @property
    def visible(self) -> bool:
        return self.matches or self.has_matching_child


def matches(node: TreeNode, query: str) -> bool:
    """Case-insensitive substring match on the title; an empty query matches everything."""
    if not query:
        return True
    return query.lower() in node.issue.title.lower()


def matches_view_mode(node: TreeNode, mode: ViewMode) -> bool:
    if mode is ViewMode.ACTIVE:
        return not node.issue.is_closed
    if mode is ViewMode.READY:
        return node.is_ready
    return True


def subtree_matches(forest: Forest, node: TreeNode, query: str) -> bool:
    stack = [node]
    while stack:
        current = stack.pop()
        if matches(current, query):
            return True
        stack.extend(forest.children(current))
    return False


def is_filter_active(query: str, mode: ViewMode = ViewMode.ALL) -> bool:
    return bool(query) or mode is not ViewMode.ALL


def evaluate_filter(
    forest: Forest, query: str, mode: ViewMode = ViewMode.ALL
) -> dict[int, FilterEvaluation]:
    """Evaluate the filter for every entry in a single post-order pass.

    A node matches when it satisfies both the text query and the view mode.
    """
    query_lower = query.lower()
    evals: dict[int, FilterEvaluation] = {}
    stack: list[tuple[int, bool]] = [(i, False) for i in reversed(forest.roots)]

    while stack:
        index, children_done = stack.pop()
        node = forest.nodes[index]
        if not children_done:
            stack.append((index, True))
            stack.extend((child, False) for child in reversed(node.children))
            continue

        direct = matches(node, query_lower) and matches_view_mode(node, mode)
        child_match = any(evals[child].visible for child in node.children)
        evals[index] = FilterEvaluation(matches=direct, has_matching_child=child_match)

    return evals
