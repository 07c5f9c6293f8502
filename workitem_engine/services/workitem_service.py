"""
Work item service for Azure DevOps operations
Runs WIQL queries, fetches work items and their links
"""
import asyncio
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple, Union

from azure.devops.v7_1.work_item_tracking.models import Wiql
from azure.devops.v7_1.work.models import TeamContext
from msrest.exceptions import DeserializationError
from msrest.serialization import Deserializer

from ..validation import (
    validate_wiql,
    validate_work_item_id,
    validate_and_fix_wiql_query,
    normalize_priority,
    normalize_story_points
)
from ..decorators import azure_devops_operation
from ..constants import (
    FieldNames,
    WORK_ITEM_FIELDS,
    QueryLimits,
    ExpandOptions,
    WorkItemStates
)
from ..errors import QueryTooLargeError
from ..models import GlobalFilters, QueryFixResult, Sprint, WorkItem, WorkItemRelation
from ..query_builder import WiqlQueryBuilder, apply_filters_to_query
from ..relationships import enrich_work_items_with_relationships

logger = logging.getLogger(__name__)

WORK_ITEM_URL_MARKER = '/workItems/'


class WorkItemService:
    """Service for work item queries within one project"""

    def __init__(
        self,
        connection,
        project: str,
        max_concurrency: int = QueryLimits.RELATIONS_MAX_CONCURRENCY
    ):
        """
        Initialize work item service

        Args:
            connection: azure.devops Connection
            project: Azure DevOps project name
            max_concurrency: Concurrent relation lookups during enrichment
        """
        self.connection = connection
        self.project = project
        self.max_concurrency = max_concurrency
        self.query_builder = WiqlQueryBuilder(project)
        self._wit_client = None

    @property
    def wit_client(self):
        """Lazy load work item tracking client"""
        if not self._wit_client:
            self._wit_client = self.connection.clients.get_work_item_tracking_client()
        return self._wit_client

    @azure_devops_operation(timeout_seconds=60)
    async def run_query(self, query: str, limit: int = QueryLimits.DEFAULT_LIMIT) -> List[WorkItem]:
        """
        Execute a WIQL query and fetch the matched work items

        Args:
            query: WIQL query (flat or link query)
            limit: Maximum number of work items to return

        Returns:
            Work items in query result order

        Raises:
            ValidationError: If the query is structurally invalid
        """
        validate_wiql(query)
        limit = max(1, min(int(limit), QueryLimits.MAX_LIMIT))

        query_result = await asyncio.to_thread(
            self.wit_client.query_by_wiql,
            Wiql(query=query),
            team_context=TeamContext(project=self.project),
            top=limit
        )

        ids = self._result_ids(query_result)[:limit]
        if not ids:
            return []

        work_items = await self._batch_get_work_items(ids)
        return [self._to_work_item(wi) for wi in work_items]

    @azure_devops_operation(timeout_seconds=30)
    async def get_work_item(self, work_item_id: Union[int, str]) -> WorkItem:
        """
        Get one work item

        Args:
            work_item_id: Work item ID (int, "123" or "#123")

        Returns:
            The work item
        """
        work_item_id = validate_work_item_id(work_item_id)

        wi = await asyncio.to_thread(
            self.wit_client.get_work_item,
            id=work_item_id,
            project=self.project,
            fields=WORK_ITEM_FIELDS
        )
        return self._to_work_item(wi)

    @azure_devops_operation(timeout_seconds=30)
    async def get_relations(self, work_item_id: Union[int, str]) -> List[WorkItemRelation]:
        """
        Get the links of a work item to other work items

        Hyperlinks, attachments and other non work item links are skipped.

        Args:
            work_item_id: Work item ID

        Returns:
            Raw relations (target id + backend link type)
        """
        work_item_id = validate_work_item_id(work_item_id)

        wi = await asyncio.to_thread(
            self.wit_client.get_work_item,
            id=work_item_id,
            expand=ExpandOptions.RELATIONS
        )

        relations = []
        for relation in wi.relations or []:
            url = relation.url or ''
            if WORK_ITEM_URL_MARKER not in url:
                continue
            target_id = url.rstrip('/').split(WORK_ITEM_URL_MARKER)[-1]
            if not target_id.isdecimal():
                continue
            relations.append(WorkItemRelation(target_id=target_id, raw_relation_type=relation.rel))

        return relations

    async def search(
        self,
        command: Optional[str],
        param: Optional[str] = None,
        filters: Union[GlobalFilters, Dict[str, Any], None] = None,
        limit: int = QueryLimits.DEFAULT_LIMIT
    ) -> List[WorkItem]:
        """
        Run a chat command against this project

        Args:
            command: Command keyword (see WiqlQueryBuilder)
            param: Optional command parameter
            filters: Optional global filters
            limit: Maximum number of work items to return

        Returns:
            Matching work items
        """
        query = self.query_builder.build(command, param, filters)
        logger.debug(f"Search '{command}' in {self.project}: {query}")
        return await self.run_query(query, limit=limit)

    async def run_generated_query(
        self,
        raw_query: str,
        sprints: Optional[List[Sprint]] = None,
        filters: Union[GlobalFilters, Dict[str, Any], None] = None,
        limit: int = QueryLimits.DEFAULT_LIMIT
    ) -> Tuple[QueryFixResult, List[WorkItem]]:
        """
        Correct and run WIQL produced by an untrusted generator

        Args:
            raw_query: Generated WIQL
            sprints: Known sprints used to repair iteration path predicates
            filters: Optional global filters AND-ed onto the corrected query
            limit: Maximum number of work items to return

        Returns:
            (correction outcome, matching work items)
        """
        fix = validate_and_fix_wiql_query(raw_query, self.project, sprints)
        query = apply_filters_to_query(fix.query, filters)
        items = await self.run_query(query, limit=limit)
        return fix, items

    async def enrich(self, items: List[WorkItem]) -> List[WorkItem]:
        """Attach relationship data to items using this service's lookups"""
        return await enrich_work_items_with_relationships(items, self.get_relations, self.max_concurrency)

    async def _batch_get_work_items(self, ids: List[int]) -> List[Any]:
        """
        Fetch work items in batches respecting Azure DevOps batch size limit.

        Raises:
            QueryTooLargeError: If more than MAX_LIMIT IDs requested
        """
        if len(ids) > QueryLimits.MAX_LIMIT:
            raise QueryTooLargeError(result_count=len(ids), max_results=QueryLimits.MAX_LIMIT)

        all_items = []
        for i in range(0, len(ids), QueryLimits.BATCH_SIZE):
            batch_ids = ids[i:i + QueryLimits.BATCH_SIZE]
            batch_items = await asyncio.to_thread(
                self.wit_client.get_work_items,
                ids=batch_ids,
                fields=WORK_ITEM_FIELDS,
                error_policy='omit'
            )
            # Items deleted since the query ran come back as None
            all_items.extend(wi for wi in batch_items or [] if wi is not None)

        return all_items

    @staticmethod
    def _result_ids(query_result) -> List[int]:
        """IDs from a flat or link query result, first occurrence order"""
        ids: List[int] = []
        seen = set()

        def add(ref):
            if ref is not None and ref.id is not None and ref.id not in seen:
                seen.add(ref.id)
                ids.append(ref.id)

        for ref in getattr(query_result, 'work_items', None) or []:
            add(ref)
        for link in getattr(query_result, 'work_item_relations', None) or []:
            add(link.source)
            add(link.target)

        return ids

    def _to_work_item(self, wi) -> WorkItem:
        """Convert an SDK work item into a WorkItem"""
        fields = wi.fields or {}
        state = fields.get(FieldNames.STATE) or ''

        closed_date = self._parse_date(fields.get(FieldNames.CLOSED_DATE))
        if closed_date is None and state in WorkItemStates.COMPLETED_STATES:
            closed_date = self._parse_date(fields.get(FieldNames.RESOLVED_DATE))

        story_points = fields.get(FieldNames.STORY_POINTS)
        if story_points is None:
            story_points = fields.get(FieldNames.EFFORT)

        return WorkItem(
            id=str(wi.id),
            title=fields.get(FieldNames.TITLE) or '',
            work_item_type=fields.get(FieldNames.WORK_ITEM_TYPE) or '',
            state=state,
            priority=normalize_priority(fields.get(FieldNames.PRIORITY)),
            assigned_to=self._format_identity(fields.get(FieldNames.ASSIGNED_TO)),
            created_by=self._format_identity(fields.get(FieldNames.CREATED_BY)),
            created_date=self._parse_date(fields.get(FieldNames.CREATED_DATE)),
            changed_date=self._parse_date(fields.get(FieldNames.CHANGED_DATE)),
            closed_date=closed_date,
            project=fields.get(FieldNames.TEAM_PROJECT) or self.project,
            area_path=fields.get(FieldNames.AREA_PATH),
            iteration_path=fields.get(FieldNames.ITERATION_PATH),
            tags=self._split_tags(fields.get(FieldNames.TAGS)),
            story_points=normalize_story_points(story_points),
            description=fields.get(FieldNames.DESCRIPTION)
        )

    @staticmethod
    def _split_tags(value: Optional[str]) -> List[str]:
        tags: List[str] = []
        for tag in (value or '').split(';'):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    @staticmethod
    def _format_identity(identity) -> Optional[str]:
        """Reduce an identity field to a display name"""
        if not identity:
            return None
        if isinstance(identity, dict):
            return identity.get('displayName') or identity.get('uniqueName')
        display_name = getattr(identity, 'display_name', None)
        if display_name:
            return display_name
        return str(identity)

    @staticmethod
    def _parse_date(value) -> Optional[datetime]:
        if not value:
            return None
        if isinstance(value, datetime):
            return value
        try:
            # Backend timestamps carry up to seven fractional digits
            return Deserializer.deserialize_iso(str(value))
        except DeserializationError:
            logger.debug(f"Unparseable date value: {value}")
            return None
