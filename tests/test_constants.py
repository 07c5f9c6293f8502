"""
Unit tests for constants module.

Tests field definitions, query limits, and helper functions.
"""

from workitem_engine.constants import (
    FieldNames,
    QUERY_FIELDS,
    WORK_ITEM_FIELDS,
    QueryLimits,
    ExpandOptions,
    WorkItemStates,
    LinkTypes,
    Priority,
    TrendThresholds,
    format_wiql_fields
)


class TestFieldNames:
    """Test FieldNames class."""

    def test_system_field_values(self):
        assert FieldNames.ID == "System.Id"
        assert FieldNames.ITERATION_PATH == "System.IterationPath"
        assert FieldNames.AREA_PATH == "System.AreaPath"
        assert FieldNames.CHANGED_DATE == "System.ChangedDate"

    def test_vsts_field_values(self):
        assert FieldNames.PRIORITY == "Microsoft.VSTS.Common.Priority"
        assert FieldNames.CLOSED_DATE == "Microsoft.VSTS.Common.ClosedDate"
        assert FieldNames.STORY_POINTS == "Microsoft.VSTS.Scheduling.StoryPoints"


class TestFieldSets:
    """Test field lists."""

    def test_query_fields(self):
        assert QUERY_FIELDS == ["System.Id", "System.Title", "System.State"]

    def test_work_item_fields_cover_analytics_inputs(self):
        for field in (
            FieldNames.STATE,
            FieldNames.ASSIGNED_TO,
            FieldNames.CREATED_DATE,
            FieldNames.CLOSED_DATE,
            FieldNames.ITERATION_PATH,
            FieldNames.STORY_POINTS,
        ):
            assert field in WORK_ITEM_FIELDS

    def test_no_duplicates(self):
        assert len(WORK_ITEM_FIELDS) == len(set(WORK_ITEM_FIELDS))


class TestLimitsAndOptions:
    """Test query limits and expand options."""

    def test_limits(self):
        assert QueryLimits.DEFAULT_LIMIT <= QueryLimits.MAX_LIMIT
        assert QueryLimits.BATCH_SIZE == 200
        assert QueryLimits.RECENT_DAYS == 7
        assert QueryLimits.RELATIONS_MAX_CONCURRENCY >= 1

    def test_expand_relations(self):
        assert ExpandOptions.RELATIONS == "Relations"


class TestStatesAndPriority:
    """Test state groupings and priority values."""

    def test_completed_states(self):
        assert {"Done", "Closed"} <= WorkItemStates.COMPLETED_STATES
        assert "Active" not in WorkItemStates.COMPLETED_STATES

    def test_priority(self):
        assert Priority.ALLOWED == {1, 2, 3, 4}
        assert Priority.DEFAULT == 3

    def test_link_types(self):
        assert LinkTypes.HIERARCHY_FORWARD.endswith("Hierarchy-Forward")
        assert LinkTypes.RELATED == "System.LinkTypes.Related"


class TestTrendThresholds:
    """Test default trend thresholds."""

    def test_defaults(self):
        thresholds = TrendThresholds()
        assert thresholds.significant_change_percent == 20.0
        assert thresholds.volatility_swing_percent == 25.0
        assert thresholds.low_completion_rate == 0.8


class TestHelperFunctions:
    """Test helper functions."""

    def test_format_wiql_fields(self):
        assert format_wiql_fields(["System.Id", "System.Title"]) == "[System.Id], [System.Title]"

    def test_format_wiql_fields_empty(self):
        assert format_wiql_fields([]) == ""
