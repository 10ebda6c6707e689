"""Graph builder — turns flat issue records into an arena-backed forest.

The forest is an index-addressable list of TreeNode entries. Parent and
children links are arena indices, so an issue that has two parents is simply
two entries sharing the same issue id. Expansion state elsewhere is keyed by
that id, never by entry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from beadview.models import (
    IssueRecord,
    RelationType,
    Status,
    is_known_status,
    is_terminal,
)

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class TreeNode:
    """One placement of an issue in the forest."""

    index: int
    issue: IssueRecord
    parent: int | None = None
    children: list[int] = field(default_factory=list)
    depth: int = 0
    blocked_by_unresolved: bool = False

    # Set by the state propagation pass only.
    has_active_descendant: bool = False
    has_ready_descendant: bool = False
    has_open_descendant: bool = False

    @property
    def issue_id(self) -> str:
        return self.issue.id

    @property
    def is_active(self) -> bool:
        return self.issue.status == Status.IN_PROGRESS.value

    @property
    def is_ready(self) -> bool:
        return self.issue.status == Status.OPEN.value and not self.blocked_by_unresolved

    @property
    def is_open(self) -> bool:
        return not is_terminal(self.issue.status)

    @property
    def is_root(self) -> bool:
        return self.parent is None


@dataclass
class Forest:
    nodes: list[TreeNode] = field(default_factory=list)
    roots: list[int] = field(default_factory=list)
    records: dict[str, IssueRecord] = field(default_factory=dict)

    # Issue-level relationship tables (accepted edges only), keyed by issue id.
    parents_of: dict[str, list[str]] = field(default_factory=dict)
    children_of: dict[str, list[str]] = field(default_factory=dict)
    blocked_by: dict[str, list[str]] = field(default_factory=dict)
    blocks: dict[str, list[str]] = field(default_factory=dict)
    related: dict[str, list[str]] = field(default_factory=dict)
    discovered_from: dict[str, list[str]] = field(default_factory=dict)
    blocked_ids: set[str] = field(default_factory=set)

    _instances: dict[str, list[int]] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self.nodes)

    def add_node(self, issue: IssueRecord, parent: int | None = None) -> TreeNode:
        """Append a new entry; registers it under its parent or as a root."""
        node = TreeNode(index=len(self.nodes), issue=issue, parent=parent)
        if parent is None:
            self.roots.append(node.index)
        else:
            parent_node = self.nodes[parent]
            node.depth = parent_node.depth + 1
            parent_node.children.append(node.index)
        self.nodes.append(node)
        self._instances.setdefault(issue.id, []).append(node.index)
        return node

    def node(self, index: int) -> TreeNode:
        return self.nodes[index]

    def children(self, node: TreeNode) -> list[TreeNode]:
        return [self.nodes[i] for i in node.children]

    def parent(self, node: TreeNode) -> TreeNode | None:
        return None if node.parent is None else self.nodes[node.parent]

    def root_nodes(self) -> list[TreeNode]:
        return [self.nodes[i] for i in self.roots]

    def instances_of(self, issue_id: str) -> list[TreeNode]:
        return [self.nodes[i] for i in self._instances.get(issue_id, [])]

    def find_first(self, issue_id: str) -> TreeNode | None:
        indices = self._instances.get(issue_id)
        return self.nodes[indices[0]] if indices else None

    def ancestors(self, node: TreeNode) -> list[TreeNode]:
        """Ancestors of one entry, nearest first."""
        chain: list[TreeNode] = []
        current = self.parent(node)
        while current is not None:
            chain.append(current)
            current = self.parent(current)
        return chain

    def issue_ids(self) -> set[str]:
        return set(self._instances)

    def iter_preorder(self) -> Iterator[TreeNode]:
        stack = list(reversed(self.roots))
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def is_acyclic(self) -> bool:
        """True when no entry has an ancestor carrying its own issue id."""
        for node in self.nodes:
            if any(a.issue_id == node.issue_id for a in self.ancestors(node)):
                return False
        return True


@dataclass
class BuildDiagnostics:
    """Data-quality counters collected while building a forest."""

    duplicate_ids: int = 0
    dangling_edges: int = 0
    self_edges: int = 0
    cyclic_edges: int = 0
    unknown_relations: int = 0
    unknown_statuses: int = 0

    @property
    def rejected_edges(self) -> int:
        return self.self_edges + self.cyclic_edges

    @property
    def total(self) -> int:
        return (
            self.duplicate_ids
            + self.dangling_edges
            + self.self_edges
            + self.cyclic_edges
            + self.unknown_relations
            + self.unknown_statuses
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "duplicate_ids": self.duplicate_ids,
            "dangling_edges": self.dangling_edges,
            "self_edges": self.self_edges,
            "cyclic_edges": self.cyclic_edges,
            "unknown_relations": self.unknown_relations,
            "unknown_statuses": self.unknown_statuses,
        }


@dataclass
class BuildResult:
    forest: Forest
    diagnostics: BuildDiagnostics


def _reaches(children_of: dict[str, list[str]], start: str, target: str) -> bool:
    """True if ``target`` is ``start`` or one of its descendants."""
    stack = [start]
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current == target:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(children_of.get(current, ()))
    return False


def _parent_edges(order: list[str], by_id: dict[str, IssueRecord]) -> Iterator[tuple[str, str]]:
    """Yield declared (child, parent) pairs from both directions, in input order."""
    for issue_id in order:
        record = by_id[issue_id]
        for rel in record.relationships:
            if rel.relation_type is RelationType.PARENT_CHILD:
                yield issue_id, rel.target_id
        for rel in record.dependents:
            if rel.relation_type is RelationType.PARENT_CHILD:
                yield rel.target_id, issue_id


def build_forest(records: Iterable[IssueRecord]) -> BuildResult:
    """Build a forest from flat records.

    Never raises on bad data: duplicates, dangling targets, self references and
    cycle-closing parent edges are counted in the diagnostics and skipped.
    """
    diagnostics = BuildDiagnostics()
    forest = Forest()

    by_id: dict[str, IssueRecord] = {}
    order: list[str] = []
    for record in records:
        if record.id in by_id:
            diagnostics.duplicate_ids += 1
            logger.warning("Duplicate issue id detected: %s — keeping latest", record.id)
        else:
            order.append(record.id)
        by_id[record.id] = record

    for issue_id in order:
        if not is_known_status(by_id[issue_id].status):
            diagnostics.unknown_statuses += 1
            logger.info("Issue %s has unrecognized status %r", issue_id, by_id[issue_id].status)

    forest.records = {issue_id: by_id[issue_id] for issue_id in order}

    # ── Parent-child edges ────────────────────────────────────────────
    children_of: dict[str, list[str]] = {}
    parents_of: dict[str, list[str]] = {}
    seen_edges: set[tuple[str, str]] = set()

    for child_id, parent_id in _parent_edges(order, by_id):
        edge = (child_id, parent_id)
        if edge in seen_edges:
            continue
        seen_edges.add(edge)

        if child_id == parent_id:
            diagnostics.self_edges += 1
            logger.warning("Rejected self-referential parent edge on %s", child_id)
            continue
        if child_id not in by_id or parent_id not in by_id:
            diagnostics.dangling_edges += 1
            logger.info("Parent edge %s -> %s references a missing issue", child_id, parent_id)
            continue
        if _reaches(children_of, child_id, parent_id):
            diagnostics.cyclic_edges += 1
            logger.warning(
                "Rejected parent edge %s -> %s: would create a cycle", child_id, parent_id
            )
            continue

        children_of.setdefault(parent_id, []).append(child_id)
        parents_of.setdefault(child_id, []).append(parent_id)

    # ── Other relationships ───────────────────────────────────────────
    for issue_id in order:
        record = by_id[issue_id]
        for rel in record.relationships:
            kind = rel.relation_type
            if kind is RelationType.PARENT_CHILD:
                continue
            if kind is RelationType.UNKNOWN:
                # Unknown types are decorative, never blocking.
                diagnostics.unknown_relations += 1
                continue
            target = by_id.get(rel.target_id)
            if target is None:
                diagnostics.dangling_edges += 1
                continue
            if rel.target_id == issue_id:
                diagnostics.self_edges += 1
                continue
            if kind is RelationType.BLOCKS:
                if rel.target_id in forest.blocked_by.get(issue_id, ()):
                    continue
                forest.blocked_by.setdefault(issue_id, []).append(rel.target_id)
                forest.blocks.setdefault(rel.target_id, []).append(issue_id)
                if not is_terminal(target.status):
                    forest.blocked_ids.add(issue_id)
            elif kind is RelationType.RELATED:
                if rel.target_id in forest.related.get(issue_id, ()):
                    continue
                forest.related.setdefault(issue_id, []).append(rel.target_id)
                forest.related.setdefault(rel.target_id, []).append(issue_id)
            elif kind is RelationType.DISCOVERED_FROM:
                forest.discovered_from.setdefault(issue_id, []).append(rel.target_id)

    for dependents in forest.blocks.values():
        dependents.sort(key=lambda i: (by_id[i].created_sort_key, i))

    # Default stable order before prioritization
    def created_order(issue_id: str) -> tuple:
        return (by_id[issue_id].created_sort_key, issue_id)

    for kids in children_of.values():
        kids.sort(key=created_order)
    root_ids = sorted((i for i in order if i not in parents_of), key=created_order)

    forest.children_of = children_of
    forest.parents_of = parents_of

    # ── Instantiate entries (one per accepted parent edge) ────────────
    for root_id in root_ids:
        stack: list[tuple[str, int | None]] = [(root_id, None)]
        while stack:
            issue_id, parent_index = stack.pop()
            node = forest.add_node(by_id[issue_id], parent_index)
            node.blocked_by_unresolved = issue_id in forest.blocked_ids
            for child_id in reversed(children_of.get(issue_id, ())):
                stack.append((child_id, node.index))

    if diagnostics.total:
        logger.info("Graph builder diagnostics: %s", diagnostics.as_dict())

    return BuildResult(forest=forest, diagnostics=diagnostics)
