"""Tests for the graph builder — parent edges, cycles, multi-parent, blocking."""

from datetime import datetime, timedelta, timezone

from beadview.graph import build_forest
from beadview.models import IssueRecord, Relationship, RelationType
from beadview.ordering import propagate_states, sort_forest

_BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _make_issue(issue_id, status="open", parents=(), blockers=(), minute=0, title=None, extra=()):
    rels = [Relationship(p, RelationType.PARENT_CHILD, "parent-child") for p in parents]
    rels += [Relationship(b, RelationType.BLOCKS, "blocks") for b in blockers]
    rels += list(extra)
    return IssueRecord(
        id=issue_id,
        title=title or f"Issue {issue_id}",
        status=status,
        created_at=_BASE + timedelta(minutes=minute),
        relationships=tuple(rels),
    )


def _child_ids(forest, node):
    return [c.issue_id for c in forest.children(node)]


class TestBuildForest:
    def test_single_root(self):
        result = build_forest([_make_issue("ab-1")])
        forest = result.forest
        assert [n.issue_id for n in forest.root_nodes()] == ["ab-1"]
        assert forest.root_nodes()[0].children == []
        assert result.diagnostics.total == 0

    def test_parent_child(self):
        forest = build_forest([
            _make_issue("P-1"),
            _make_issue("C-1", parents=["P-1"]),
        ]).forest
        root = forest.root_nodes()[0]
        assert root.issue_id == "P-1"
        assert _child_ids(forest, root) == ["C-1"]
        child = forest.children(root)[0]
        assert forest.parent(child) is root
        assert child.depth == 1

    def test_inverse_declaration_from_dependents(self):
        parent = IssueRecord(
            id="P-1",
            dependents=(Relationship("C-1", RelationType.PARENT_CHILD, "parent-child"),),
        )
        child = _make_issue("C-1")
        forest = build_forest([parent, child]).forest
        assert [n.issue_id for n in forest.root_nodes()] == ["P-1"]
        assert _child_ids(forest, forest.root_nodes()[0]) == ["C-1"]

    def test_edge_declared_both_ways_is_accepted_once(self):
        parent = IssueRecord(
            id="P-1",
            dependents=(Relationship("C-1", RelationType.PARENT_CHILD, "parent-child"),),
        )
        child = _make_issue("C-1", parents=["P-1"])
        forest = build_forest([parent, child]).forest
        assert len(forest.instances_of("C-1")) == 1

    def test_children_ordered_by_created_then_id(self):
        forest = build_forest([
            _make_issue("P-1"),
            _make_issue("C-b", parents=["P-1"], minute=5),
            _make_issue("C-a", parents=["P-1"], minute=5),
            _make_issue("C-z", parents=["P-1"], minute=1),
        ]).forest
        assert _child_ids(forest, forest.root_nodes()[0]) == ["C-z", "C-a", "C-b"]

    def test_missing_created_at_sorts_last(self):
        undated = IssueRecord(id="C-0", relationships=(
            Relationship("P-1", RelationType.PARENT_CHILD),
        ))
        forest = build_forest([
            _make_issue("P-1"),
            undated,
            _make_issue("C-9", parents=["P-1"], minute=9),
        ]).forest
        assert _child_ids(forest, forest.root_nodes()[0]) == ["C-9", "C-0"]


class TestDataQuality:
    def test_duplicate_id_last_wins(self):
        result = build_forest([
            _make_issue("ab-1", title="first"),
            _make_issue("ab-1", title="second"),
        ])
        assert result.diagnostics.duplicate_ids == 1
        assert len(result.forest.instances_of("ab-1")) == 1
        assert result.forest.records["ab-1"].title == "second"

    def test_dangling_parent_becomes_root(self):
        result = build_forest([_make_issue("C-1", parents=["GONE"])])
        assert [n.issue_id for n in result.forest.root_nodes()] == ["C-1"]
        assert result.diagnostics.dangling_edges == 1

    def test_self_parent_rejected(self):
        result = build_forest([_make_issue("ab-1", parents=["ab-1"])])
        assert result.diagnostics.self_edges == 1
        assert result.forest.is_acyclic()
        assert len(result.forest) == 1

    def test_two_cycle_rejects_one_edge(self):
        result = build_forest([
            _make_issue("A", parents=["B"]),
            _make_issue("B", parents=["A"]),
        ])
        assert result.diagnostics.cyclic_edges == 1
        assert result.forest.is_acyclic()
        assert len(result.forest.roots) == 1

    def test_three_cycle_rejects_closing_edge(self):
        result = build_forest([
            _make_issue("A", parents=["C"]),
            _make_issue("B", parents=["A"]),
            _make_issue("C", parents=["B"]),
        ])
        forest = result.forest
        assert result.diagnostics.cyclic_edges == 1
        assert result.diagnostics.rejected_edges == 1
        assert forest.is_acyclic()
        # every issue still appears exactly once
        assert sorted(n.issue_id for n in forest.iter_preorder()) == ["A", "B", "C"]

    def test_unknown_relation_is_counted_and_non_blocking(self):
        weird = Relationship("ab-2", RelationType.UNKNOWN, "waits-for")
        result = build_forest([
            _make_issue("ab-1", extra=[weird]),
            _make_issue("ab-2"),
        ])
        assert result.diagnostics.unknown_relations == 1
        assert not result.forest.find_first("ab-1").blocked_by_unresolved

    def test_unknown_status_counted(self):
        result = build_forest([_make_issue("ab-1", status="review")])
        assert result.diagnostics.unknown_statuses == 1
        assert result.forest.records["ab-1"].status == "review"


class TestBlocking:
    def test_open_blocker_blocks(self):
        forest = build_forest([
            _make_issue("ab-1", blockers=["ab-2"]),
            _make_issue("ab-2"),
        ]).forest
        assert forest.find_first("ab-1").blocked_by_unresolved
        assert forest.blocked_by["ab-1"] == ["ab-2"]
        assert forest.blocks["ab-2"] == ["ab-1"]

    def test_closed_blocker_does_not_block(self):
        forest = build_forest([
            _make_issue("ab-1", blockers=["ab-2"]),
            _make_issue("ab-2", status="closed"),
        ]).forest
        assert not forest.find_first("ab-1").blocked_by_unresolved

    def test_in_progress_blocker_blocks(self):
        forest = build_forest([
            _make_issue("ab-1", blockers=["ab-2"]),
            _make_issue("ab-2", status="in_progress"),
        ]).forest
        assert forest.find_first("ab-1").blocked_by_unresolved
        assert not forest.find_first("ab-1").is_ready


class TestScenarios:
    def test_epic_with_active_and_unresolved_blocker(self):
        result = build_forest([
            _make_issue("ab-1", minute=0),
            _make_issue("ab-2", status="in_progress", parents=["ab-1"], minute=2),
            _make_issue("ab-3", parents=["ab-1"], blockers=["ab-4"], minute=1),
        ])
        forest = result.forest
        propagate_states(forest)
        sort_forest(forest)

        roots = forest.root_nodes()
        assert [r.issue_id for r in roots] == ["ab-1"]
        assert roots[0].has_active_descendant
        assert _child_ids(forest, roots[0]) == ["ab-2", "ab-3"]
        assert not forest.find_first("ab-3").blocked_by_unresolved
        assert result.diagnostics.dangling_edges == 1

    def test_diamond_parentage_duplicates_node(self):
        forest = build_forest([
            _make_issue("ab-1", minute=0),
            _make_issue("ab-6", minute=1),
            _make_issue("ab-5", parents=["ab-1", "ab-6"], minute=2),
        ]).forest
        instances = forest.instances_of("ab-5")
        assert len(instances) == 2
        assert {forest.parent(n).issue_id for n in instances} == {"ab-1", "ab-6"}
        assert instances[0].index != instances[1].index
        assert forest.parents_of["ab-5"] == ["ab-1", "ab-6"]

    def test_diamond_subtree_is_duplicated(self):
        forest = build_forest([
            _make_issue("ab-1"),
            _make_issue("ab-6"),
            _make_issue("ab-5", parents=["ab-1", "ab-6"]),
            _make_issue("ab-7", parents=["ab-5"]),
        ]).forest
        assert len(forest.instances_of("ab-7")) == 2
        depths = sorted(n.depth for n in forest.instances_of("ab-7"))
        assert depths == [2, 2]

    def test_ancestors_nearest_first(self):
        forest = build_forest([
            _make_issue("A"),
            _make_issue("B", parents=["A"]),
            _make_issue("C", parents=["B"]),
        ]).forest
        leaf = forest.find_first("C")
        assert [a.issue_id for a in forest.ancestors(leaf)] == ["B", "A"]

    def test_deep_chain_builds_without_recursion(self):
        records = [_make_issue("n-0")]
        records += [_make_issue(f"n-{i}", parents=[f"n-{i - 1}"]) for i in range(1, 3000)]
        forest = build_forest(records).forest
        assert len(forest) == 3000
        assert forest.find_first("n-2999").depth == 2999
