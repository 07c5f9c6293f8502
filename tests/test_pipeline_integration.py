"""
Integration tests across the query, enrichment, hierarchy and analytics layers.

A ServiceManager is built over a fake connection whose SDK clients are
Mocks, so every layer above the SDK runs for real.
"""

import logging
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
from workitem_engine import server
from workitem_engine.analytics import calculate_cycle_time, calculate_sprint_velocity
from workitem_engine.hierarchy import build_hierarchy, count_by_relation_type, flatten_hierarchy
from workitem_engine.models import RelationType
from workitem_engine.service_manager import ServiceManager


PROJECT = "Phoenix"

FIELDS = {
    1: {"System.WorkItemType": "Epic", "System.State": "Active", "System.Title": "Checkout revamp",
        "System.IterationPath": "Phoenix\\Sprint 1"},
    2: {"System.WorkItemType": "User Story", "System.State": "Done", "System.Title": "Card form",
        "System.IterationPath": "Phoenix\\Sprint 1", "System.AssignedTo": {"displayName": "Jane"},
        "Microsoft.VSTS.Scheduling.StoryPoints": 3, "System.CreatedDate": "2024-03-01T09:00:00Z",
        "Microsoft.VSTS.Common.ClosedDate": "2024-03-05T09:00:00Z"},
    3: {"System.WorkItemType": "User Story", "System.State": "Active", "System.Title": "Wallet support",
        "System.IterationPath": "Phoenix\\Sprint 1", "System.AssignedTo": {"displayName": "Raj"},
        "Microsoft.VSTS.Scheduling.StoryPoints": 5},
    4: {"System.WorkItemType": "Bug", "System.State": "Closed", "System.Title": "Rounding error",
        "System.IterationPath": "Phoenix\\Sprint 2", "System.AssignedTo": {"displayName": "Jane"},
        "Microsoft.VSTS.Scheduling.StoryPoints": 2, "System.CreatedDate": "2024-03-10T09:00:00Z",
        "Microsoft.VSTS.Common.ClosedDate": "2024-03-12T09:00:00Z"},
}

LINKS = {
    1: [("System.LinkTypes.Hierarchy-Forward", 2), ("System.LinkTypes.Hierarchy-Forward", 3)],
    2: [("System.LinkTypes.Hierarchy-Reverse", 1)],
    3: [("System.LinkTypes.Hierarchy-Reverse", 1)],
    4: [("System.LinkTypes.Related", 2)],
}


def sdk_item(item_id, relations=None):
    return SimpleNamespace(id=item_id, fields=dict(FIELDS[item_id]), relations=relations)


def get_work_item(id, project=None, fields=None, expand=None):
    relations = [
        SimpleNamespace(rel=rel, url=f"https://dev.azure.com/contoso/_apis/wit/workItems/{target}")
        for rel, target in LINKS[id]
    ]
    return sdk_item(id, relations)


def iteration(name, time_frame):
    return SimpleNamespace(
        id=name, name=name, path=f"{PROJECT}\\{name}",
        attributes=SimpleNamespace(time_frame=time_frame, start_date=None, finish_date=None)
    )


@pytest.fixture
def clients():
    wit = Mock()
    wit.query_by_wiql = Mock(return_value=SimpleNamespace(
        work_items=[SimpleNamespace(id=i) for i in FIELDS],
        work_item_relations=None
    ))
    wit.get_work_items = Mock(side_effect=lambda ids, fields, error_policy: [sdk_item(i) for i in ids])
    wit.get_work_item = Mock(side_effect=get_work_item)

    work = Mock()
    work.get_team_iterations = Mock(return_value=[iteration("Sprint 1", "past"), iteration("Sprint 2", "current")])

    core = Mock()
    core.get_teams = Mock(return_value=[SimpleNamespace(name="Phoenix Team")])

    return SimpleNamespace(wit=wit, work=work, core=core)


@pytest.fixture
def manager(clients):
    connection = Mock()
    connection.clients.get_work_item_tracking_client.return_value = clients.wit
    connection.clients.get_work_client.return_value = clients.work
    connection.clients.get_core_client.return_value = clients.core
    return ServiceManager(connection, default_project=PROJECT)


@pytest.mark.integration
class TestSearchToHierarchy:
    """Search, enrich and arrange items."""

    @pytest.mark.asyncio
    async def test_hierarchy_from_search(self, manager):
        service = manager.get_workitem_service()

        items = await service.search("board", "Payments")
        enriched = await service.enrich(items)
        hierarchy = build_hierarchy(enriched)

        assert hierarchy.has_hierarchy
        assert [root.item.id for root in hierarchy.roots] == ["1", "4"]
        assert [child.item.id for child in hierarchy.roots[0].children] == ["2", "3"]
        assert len(flatten_hierarchy(hierarchy)) == 4
        assert count_by_relation_type(enriched) == {"Parent": 1, "Child": 2, "Related": 1}

    @pytest.mark.asyncio
    async def test_related_item_points_at_batch_member(self, manager):
        service = manager.get_workitem_service()
        enriched = await service.enrich(await service.search("all"))

        bug = next(item for item in enriched if item.id == "4")
        assert bug.relation_type is RelationType.RELATED
        assert bug.relation_source == "2"

    @pytest.mark.asyncio
    async def test_generated_query_uses_team_sprints(self, manager, clients):
        sprints = await manager.get_sprint_service().get_sprints()
        raw = "SELECT [System.Id] FROM WorkItems WHERE [System.IterationPath] CONTAINS 'Sprint 2'"

        fix, items = await manager.get_workitem_service().run_generated_query(raw, sprints)

        assert fix.query.endswith("[System.IterationPath] UNDER 'Phoenix\\Sprint 2'")
        assert len(items) == 4
        assert clients.wit.query_by_wiql.call_args[0][0].query == fix.query


@pytest.mark.integration
class TestSearchToAnalytics:
    """Search items and compute analytics."""

    @pytest.mark.asyncio
    async def test_velocity_and_cycle_time(self, manager):
        items = await manager.get_workitem_service().search("recent", "90")
        sprints = await manager.get_sprint_service().get_sprints()

        velocities = calculate_sprint_velocity(items, sprints)
        assert [(v.iteration, v.story_points_planned, v.story_points_completed) for v in velocities] == [
            ("Sprint 1", 8.0, 3.0),
            ("Sprint 2", 2.0, 2.0),
        ]

        cycle = calculate_cycle_time(items)
        assert cycle.average_days == 3.0
        assert cycle.by_type == {"User Story": 4.0, "Bug": 2.0}


@pytest.mark.integration
class TestServerHelpers:
    """Test server-side item loading against the fake backend."""

    @pytest.mark.asyncio
    async def test_bare_id_is_a_lookup(self, manager, clients):
        with patch.object(server, "_service_manager", manager):
            items = await server._load_items(None, "#2", None, None, 10)

        assert [item.id for item in items] == ["2"]
        clients.wit.query_by_wiql.assert_not_called()

    @pytest.mark.asyncio
    async def test_slash_input_runs_its_command(self, manager, clients):
        with patch.object(server, "_service_manager", manager):
            await server._load_items(None, "/state Active", None, {"ignoreClosed": True}, 10)

        query = clients.wit.query_by_wiql.call_args[0][0].query
        assert "[System.State] = 'Active'" in query
        reported = manager.get_workitem_service().query_builder.build_for_input(
            "/state Active", None, {"ignoreClosed": True}
        )
        assert query == reported

    @pytest.mark.asyncio
    async def test_free_text_searches_title_and_description(self, manager, clients):
        with patch.object(server, "_service_manager", manager):
            await server._load_items(None, "login bug", None, None, 10)

        query = clients.wit.query_by_wiql.call_args[0][0].query
        assert "[System.Title] CONTAINS 'login bug'" in query
        assert "[System.Description] CONTAINS 'login bug'" in query

    @pytest.mark.asyncio
    async def test_lone_keyword_is_not_free_text(self, manager, clients):
        with patch.object(server, "_service_manager", manager):
            await server._load_items(None, "current_sprint", None, None, 10)

        query = clients.wit.query_by_wiql.call_args[0][0].query
        assert "[System.IterationPath] = @CurrentIteration" in query

    @pytest.mark.asyncio
    async def test_analytics_default_to_recent_items(self, manager, clients):
        with patch.object(server, "_service_manager", manager):
            await server._load_analytics_items(None, None, None, None, 100)

        query = clients.wit.query_by_wiql.call_args[0][0].query
        assert "[System.ChangedDate] >= @Today - 90" in query

    @pytest.mark.asyncio
    async def test_sprint_failure_degrades_to_none(self, manager, clients, caplog):
        error = Exception("Access denied, token: abc123")
        error.status_code = 401
        clients.core.get_teams.side_effect = error

        with patch.object(server, "_service_manager", manager), \
                caplog.at_level(logging.WARNING, logger="workitem_engine.server"):
            assert await server._known_sprints(None) is None

        assert "Sprint lookup failed" in caplog.text
        assert "abc123" not in caplog.text

    def test_uninitialized_manager(self):
        with patch.object(server, "_service_manager", None):
            with pytest.raises(RuntimeError, match="not initialized"):
                server._manager()
