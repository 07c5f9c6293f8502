"""
Unit tests for hierarchy assembly.
"""

import pytest
from workitem_engine.hierarchy import (
    UNLINKED,
    build_hierarchy,
    count_by_relation_type,
    flatten_hierarchy,
    group_by_relation_type,
    has_hierarchical_relations
)
from workitem_engine.models import RelationType, WorkItem


def make_item(item_id, relation_type=None, relation_source=None):
    return WorkItem(
        id=str(item_id),
        title=f"Item {item_id}",
        work_item_type="Task",
        state="Active",
        relation_type=relation_type,
        relation_source=str(relation_source) if relation_source is not None else None
    )


def ids(nodes):
    return [node.item.id for node in nodes]


class TestHasHierarchicalRelations:
    """Test detection of Parent/Child tags."""

    def test_empty(self):
        assert not has_hierarchical_relations([])
        assert not has_hierarchical_relations(None)

    def test_untagged_and_non_hierarchical(self):
        items = [make_item(1), make_item(2, RelationType.RELATED, 1)]
        assert not has_hierarchical_relations(items)

    @pytest.mark.parametrize("relation_type", [RelationType.PARENT, RelationType.CHILD])
    def test_hierarchical(self, relation_type):
        assert has_hierarchical_relations([make_item(1), make_item(2, relation_type)])


class TestBuildHierarchy:
    """Test forest construction."""

    def test_empty(self):
        hierarchy = build_hierarchy([])
        assert hierarchy.roots == []
        assert not hierarchy.has_hierarchy

    def test_flat_list_without_hierarchy(self):
        items = [make_item(1), make_item(2, RelationType.RELATED, 1)]
        hierarchy = build_hierarchy(items)

        assert not hierarchy.has_hierarchy
        assert ids(hierarchy.roots) == ["1", "2"]
        assert all(node.level == 0 and not node.children for node in hierarchy.roots)

    def test_parent_without_source_and_independent_item(self):
        items = [make_item(1, RelationType.PARENT), make_item(2)]
        hierarchy = build_hierarchy(items)

        assert hierarchy.has_hierarchy
        assert ids(hierarchy.roots) == ["1", "2"]
        assert hierarchy.roots[0].parent_badge is None
        assert not hierarchy.roots[1].children

    def test_children_nest_under_their_target(self):
        items = [
            make_item(1),
            make_item(2, RelationType.CHILD, 1),
            make_item(3, RelationType.CHILD, 2),
            make_item(4, RelationType.CHILD, 1),
        ]
        hierarchy = build_hierarchy(items)

        assert ids(hierarchy.roots) == ["1"]
        root = hierarchy.roots[0]
        assert root.has_children
        assert ids(root.children) == ["2", "4"]
        assert root.children[0].level == 1
        assert ids(root.children[0].children) == ["3"]
        assert root.children[0].children[0].level == 2

    def test_child_with_target_outside_batch_is_root(self):
        hierarchy = build_hierarchy([make_item(1), make_item(2, RelationType.CHILD, 99)])
        assert ids(hierarchy.roots) == ["1", "2"]

    def test_parent_without_children_becomes_badge(self):
        items = [make_item(1), make_item(2, RelationType.PARENT, 1)]
        hierarchy = build_hierarchy(items)

        assert ids(hierarchy.roots) == ["1"]
        assert hierarchy.roots[0].parent_badge.id == "2"
        assert ids(flatten_hierarchy(hierarchy)) == ["1"]

    def test_one_badge_per_host(self):
        items = [
            make_item(1),
            make_item(2, RelationType.PARENT, 1),
            make_item(3, RelationType.PARENT, 1),
        ]
        hierarchy = build_hierarchy(items)

        assert ids(hierarchy.roots) == ["1", "3"]
        assert hierarchy.roots[0].parent_badge.id == "2"
        assert hierarchy.roots[1].parent_badge is None

    def test_mutual_cycle_emits_each_item_once(self):
        items = [make_item(1, RelationType.CHILD, 2), make_item(2, RelationType.CHILD, 1)]
        hierarchy = build_hierarchy(items)

        flat = flatten_hierarchy(hierarchy)
        assert sorted(ids(flat)) == ["1", "2"]

        def check(node, ancestors):
            assert node.item.id not in ancestors
            for child in node.children:
                check(child, ancestors | {node.item.id})

        for root in hierarchy.roots:
            check(root, set())

    def test_self_link_is_root(self):
        hierarchy = build_hierarchy([make_item(1, RelationType.CHILD, 1)])
        assert ids(hierarchy.roots) == ["1"]
        assert not hierarchy.roots[0].children

    def test_duplicate_ids_collapse(self):
        hierarchy = build_hierarchy([make_item(1), make_item(1), make_item(2, RelationType.CHILD, 1)])
        assert ids(flatten_hierarchy(hierarchy)) == ["1", "2"]

    def test_every_item_appears_once(self):
        items = [
            make_item(1),
            make_item(2, RelationType.CHILD, 1),
            make_item(3, RelationType.PARENT, 2),
            make_item(4, RelationType.CHILD, 5),
            make_item(5, RelationType.CHILD, 4),
            make_item(6, RelationType.RELATED, 1),
        ]
        hierarchy = build_hierarchy(items)

        shown = ids(flatten_hierarchy(hierarchy))
        badges = [node.parent_badge.id for node in flatten_hierarchy(hierarchy) if node.parent_badge]
        assert sorted(shown + badges) == ["1", "2", "3", "4", "5", "6"]


class TestGrouping:
    """Test grouping and counting by relation type."""

    def test_group_by_relation_type(self):
        items = [
            make_item(1, RelationType.PARENT),
            make_item(2, RelationType.CHILD, 1),
            make_item(3),
            make_item(4, RelationType.CHILD, 1),
        ]
        groups = group_by_relation_type(items)

        assert list(groups) == ["Parent", "Child", UNLINKED]
        assert [item.id for item in groups["Child"]] == ["2", "4"]

    def test_count_by_relation_type(self):
        items = [make_item(1), make_item(2), make_item(3, RelationType.RELATED, 1)]
        assert count_by_relation_type(items) == {UNLINKED: 2, "Related": 1}

    def test_empty(self):
        assert group_by_relation_type(None) == {}
        assert count_by_relation_type([]) == {}
