"""
Relationship enrichment for work item search results.

Raw link identifiers reported by the backend are classified into the closed
RelationType set here, so nothing downstream sees the wire vocabulary. The
role recorded on an item is the role *that item* plays in the link: an item
whose link points at its parent (Hierarchy-Reverse) is a Child.
"""

import asyncio
import dataclasses
import inspect
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from .constants import LinkTypes, QueryLimits
from .decorators import PerformanceMonitor
from .log_sanitizer import safe_log_error
from .models import ClassifiedRelation, RelationType, WorkItem, WorkItemRelation

logger = logging.getLogger(__name__)

RelationsLookup = Callable[[str], Union[Awaitable[List[WorkItemRelation]], List[WorkItemRelation]]]

RELATION_CLASSIFICATION: Dict[str, RelationType] = {
    LinkTypes.HIERARCHY_REVERSE: RelationType.CHILD,
    LinkTypes.PARENT: RelationType.CHILD,
    LinkTypes.HIERARCHY_FORWARD: RelationType.PARENT,
    LinkTypes.CHILD: RelationType.PARENT,
    LinkTypes.DEPENDENCY_FORWARD: RelationType.PREDECESSOR,
    LinkTypes.SUCCESSOR: RelationType.PREDECESSOR,
    LinkTypes.DEPENDENCY_REVERSE: RelationType.SUCCESSOR,
    LinkTypes.PREDECESSOR: RelationType.SUCCESSOR,
    LinkTypes.RELATED: RelationType.RELATED,
}

# Lower wins when choosing the relation shown on an item
RELATION_PRECEDENCE: Dict[RelationType, int] = {
    RelationType.CHILD: 0,
    RelationType.PARENT: 1,
    RelationType.PREDECESSOR: 2,
    RelationType.SUCCESSOR: 3,
    RelationType.RELATED: 4,
    RelationType.OTHER: 5,
}


def classify_relation(raw_relation_type: Optional[str]) -> RelationType:
    """Map a raw link identifier onto RelationType; unknown ones are OTHER."""
    if not raw_relation_type:
        return RelationType.OTHER
    return RELATION_CLASSIFICATION.get(raw_relation_type.strip(), RelationType.OTHER)


def classify_relations(item_id: str, relations: Iterable[WorkItemRelation]) -> List[ClassifiedRelation]:
    """
    Classify raw links, dropping self-links, empty targets and duplicates.
    """
    classified = []
    seen = set()
    for relation in relations or []:
        target_id = str(relation.target_id).strip() if relation.target_id is not None else ''
        if not target_id or target_id == str(item_id):
            continue

        entry = ClassifiedRelation(target_id=target_id, relation_type=classify_relation(relation.raw_relation_type))
        if entry in seen:
            continue
        seen.add(entry)
        classified.append(entry)
    return classified


def select_primary_relation(
    relations: List[ClassifiedRelation],
    batch_ids: Optional[Set[str]] = None
) -> Optional[ClassifiedRelation]:
    """
    Pick the relation that sets an item's relation_type.

    Links into the same batch win over links leaving it, then RELATION_PRECEDENCE
    decides; remaining ties keep backend order.
    """
    if not relations:
        return None
    batch_ids = batch_ids or set()
    return min(
        relations,
        key=lambda r: (r.target_id not in batch_ids, RELATION_PRECEDENCE[r.relation_type])
    )


class RelationshipEnricher:
    """
    Looks up links for a batch of work items with bounded concurrency.

    A failed lookup is logged and leaves that item unenriched; it never
    aborts the batch. Lookups are not retried.
    """

    def __init__(self, get_relations: RelationsLookup, max_concurrency: int = QueryLimits.RELATIONS_MAX_CONCURRENCY):
        """
        Initialize enricher.

        Args:
            get_relations: Lookup returning the raw links of one item id,
                as a list or an awaitable of one
            max_concurrency: Maximum lookups in flight at once
        """
        self.get_relations = get_relations
        self.max_concurrency = max(1, int(max_concurrency))

    async def enrich(self, items: List[WorkItem]) -> List[WorkItem]:
        """
        Return copies of items carrying their classified relations.

        Output order matches input order.
        """
        if not items:
            return []

        batch_ids = {str(item.id) for item in items}
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def enrich_one(item: WorkItem) -> WorkItem:
            async with semaphore:
                try:
                    raw = self.get_relations(str(item.id))
                    if inspect.isawaitable(raw):
                        raw = await raw
                    relations = classify_relations(str(item.id), raw or [])
                    primary = select_primary_relation(relations, batch_ids)
                except Exception as e:
                    logger.warning(safe_log_error(e, f"Relation lookup failed for work item {item.id}"))
                    return item

            if primary is None:
                return item

            return dataclasses.replace(
                item,
                relation_type=primary.relation_type,
                relation_source=primary.target_id,
                relations=relations
            )

        async with PerformanceMonitor(f"enrich_relationships[{len(items)}]"):
            enriched = await asyncio.gather(*(enrich_one(item) for item in items))

        linked = sum(1 for item in enriched if item.relation_type is not None)
        logger.debug(f"Enriched {linked}/{len(items)} work items with relationships")
        return list(enriched)


async def enrich_work_items_with_relationships(
    items: List[WorkItem],
    get_relations: RelationsLookup,
    max_concurrency: int = QueryLimits.RELATIONS_MAX_CONCURRENCY
) -> List[WorkItem]:
    """
    Attach relation_type, relation_source and relations to each item.

    Args:
        items: Work items from a prior search
        get_relations: Relations lookup, e.g. WorkItemService.get_relations
        max_concurrency: Maximum concurrent lookups

    Returns:
        Enriched copies, in input order
    """
    return await RelationshipEnricher(get_relations, max_concurrency).enrich(items)
