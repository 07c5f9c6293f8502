"""
Hierarchy assembly for enriched work items.

Child items nest under the item they link to. A Parent item with nothing
nested under it is shown as a badge on the item it links to rather than as
an extra tree level, which keeps the display shallow. Relation data from the
backend can be inconsistent (A parent of B and B parent of A), so descent
keeps a per-branch visited set and anything reachable only through a cycle
is emitted as a root: each item appears exactly once.
"""

import logging
from typing import Dict, List, Optional, Set, Union

from .models import HIERARCHICAL_RELATIONS, HierarchicalWorkItem, Hierarchy, RelationType, WorkItem

logger = logging.getLogger(__name__)

UNLINKED = "Unlinked"


def has_hierarchical_relations(items: Optional[List[WorkItem]]) -> bool:
    """True iff at least one item is tagged Parent or Child."""
    return any(item.relation_type in HIERARCHICAL_RELATIONS for item in items or [])


def _link_target(item: WorkItem, index: Dict[str, WorkItem]) -> Optional[str]:
    """The in-batch item this one links to, if any."""
    source = item.relation_source
    if source is None:
        return None
    source = str(source)
    if source == str(item.id) or source not in index:
        return None
    return source


def build_hierarchy(items: Optional[List[WorkItem]]) -> Hierarchy:
    """
    Arrange enriched work items into a forest.

    Args:
        items: Work items, typically from enrich_work_items_with_relationships

    Returns:
        Hierarchy whose roots keep the input order
    """
    if not items:
        return Hierarchy(roots=[], has_hierarchy=False)

    # Later duplicates of an id are dropped
    index: Dict[str, WorkItem] = {}
    ordered: List[WorkItem] = []
    for item in items:
        key = str(item.id)
        if key not in index:
            index[key] = item
            ordered.append(item)

    if not has_hierarchical_relations(ordered):
        return Hierarchy(roots=[HierarchicalWorkItem(item=item) for item in ordered], has_hierarchy=False)

    children_of: Dict[str, List[WorkItem]] = {}
    for item in ordered:
        if item.relation_type == RelationType.CHILD:
            target = _link_target(item, index)
            if target:
                children_of.setdefault(target, []).append(item)

    # Parent items with no nested children ride on the item they link to
    badge_for: Dict[str, WorkItem] = {}
    badged: Set[str] = set()
    for item in ordered:
        key = str(item.id)
        if item.relation_type != RelationType.PARENT or children_of.get(key):
            continue
        target = _link_target(item, index)
        if not target or target in badged or target in badge_for or key in badge_for:
            continue
        badge_for[target] = item
        badged.add(key)

    emitted: Set[str] = set()

    def make_node(item: WorkItem, level: int, path: Set[str]) -> HierarchicalWorkItem:
        key = str(item.id)
        emitted.add(key)
        node = HierarchicalWorkItem(item=item, level=level, parent_badge=badge_for.get(key))

        branch = path | {key}
        for child in children_of.get(key, []):
            child_key = str(child.id)
            if child_key in branch or child_key in emitted or child_key in badged:
                continue
            node.children.append(make_node(child, level + 1, branch))
        return node

    roots: List[HierarchicalWorkItem] = []

    for item in ordered:
        key = str(item.id)
        if key in badged:
            continue
        nested = item.relation_type == RelationType.CHILD and _link_target(item, index) is not None
        if not nested:
            roots.append(make_node(item, 0, set()))

    # Whatever is left only hangs off a cycle
    for item in ordered:
        key = str(item.id)
        if key not in emitted and key not in badged:
            logger.debug(f"Work item {key} is part of a relation cycle; emitting as root")
            roots.append(make_node(item, 0, set()))

    return Hierarchy(roots=roots, has_hierarchy=True)


def flatten_hierarchy(hierarchy: Union[Hierarchy, List[HierarchicalWorkItem]]) -> List[HierarchicalWorkItem]:
    """Depth-first, parent-before-children listing of every tree node."""
    roots = hierarchy.roots if isinstance(hierarchy, Hierarchy) else hierarchy
    flat: List[HierarchicalWorkItem] = []

    def visit(node: HierarchicalWorkItem):
        flat.append(node)
        for child in node.children:
            visit(child)

    for root in roots or []:
        visit(root)
    return flat


def _relation_key(item: WorkItem) -> str:
    return item.relation_type.value if item.relation_type is not None else UNLINKED


def group_by_relation_type(items: Optional[List[WorkItem]]) -> Dict[str, List[WorkItem]]:
    """Group items by relation type; untagged items go under "Unlinked"."""
    groups: Dict[str, List[WorkItem]] = {}
    for item in items or []:
        groups.setdefault(_relation_key(item), []).append(item)
    return groups


def count_by_relation_type(items: Optional[List[WorkItem]]) -> Dict[str, int]:
    return {key: len(group) for key, group in group_by_relation_type(items).items()}
