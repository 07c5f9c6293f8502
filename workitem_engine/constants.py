"""
Constants and field definitions for work item queries and analytics.

Defines WIQL field names, state groupings, relation identifiers and the
tunable thresholds used by velocity trend analysis.
"""

import os
from dataclasses import dataclass
from typing import List


# ============================================================================
# Field Reference Names
# ============================================================================

class FieldNames:
    """Azure DevOps field reference names."""

    # System fields
    ID = "System.Id"
    AREA_PATH = "System.AreaPath"
    TEAM_PROJECT = "System.TeamProject"
    ITERATION_PATH = "System.IterationPath"
    WORK_ITEM_TYPE = "System.WorkItemType"
    STATE = "System.State"
    ASSIGNED_TO = "System.AssignedTo"
    CREATED_DATE = "System.CreatedDate"
    CREATED_BY = "System.CreatedBy"
    CHANGED_DATE = "System.ChangedDate"
    TITLE = "System.Title"
    DESCRIPTION = "System.Description"
    TAGS = "System.Tags"

    # Microsoft.VSTS.Common fields
    CLOSED_DATE = "Microsoft.VSTS.Common.ClosedDate"
    RESOLVED_DATE = "Microsoft.VSTS.Common.ResolvedDate"
    PRIORITY = "Microsoft.VSTS.Common.Priority"

    # Microsoft.VSTS.Scheduling fields
    STORY_POINTS = "Microsoft.VSTS.Scheduling.StoryPoints"
    EFFORT = "Microsoft.VSTS.Scheduling.Effort"


# ============================================================================
# Field Sets
# ============================================================================

# Fields named in the SELECT clause of generated queries
QUERY_FIELDS: List[str] = [
    FieldNames.ID,
    FieldNames.TITLE,
    FieldNames.STATE,
]

# Fields fetched for each matched work item
WORK_ITEM_FIELDS: List[str] = [
    FieldNames.ID,
    FieldNames.TITLE,
    FieldNames.WORK_ITEM_TYPE,
    FieldNames.STATE,
    FieldNames.ASSIGNED_TO,
    FieldNames.CREATED_BY,
    FieldNames.CREATED_DATE,
    FieldNames.CHANGED_DATE,
    FieldNames.CLOSED_DATE,
    FieldNames.RESOLVED_DATE,
    FieldNames.PRIORITY,
    FieldNames.DESCRIPTION,
    FieldNames.TAGS,
    FieldNames.TEAM_PROJECT,
    FieldNames.AREA_PATH,
    FieldNames.ITERATION_PATH,
    FieldNames.STORY_POINTS,
    FieldNames.EFFORT,
]


# ============================================================================
# Query Limits
# ============================================================================

class QueryLimits:
    """Default limits for query execution."""

    DEFAULT_LIMIT = 200

    # Maximum allowed by Azure DevOps API
    MAX_LIMIT = 20000

    # Batch size for work item retrieval
    BATCH_SIZE = 200

    # Rolling window used by the "recent" command
    RECENT_DAYS = 7

    # Concurrent relation lookups during enrichment
    RELATIONS_MAX_CONCURRENCY = 5


class ExpandOptions:
    """Work item expand options for Azure DevOps API."""

    NONE = "None"
    RELATIONS = "Relations"
    ALL = "All"


# ============================================================================
# States
# ============================================================================

class WorkItemStates:
    """Work item states across process templates."""

    NEW = "New"
    ACTIVE = "Active"
    RESOLVED = "Resolved"
    CLOSED = "Closed"
    REMOVED = "Removed"
    DONE = "Done"
    COMPLETED = "Completed"

    # Terminal states count toward completed story points and cycle time
    COMPLETED_STATES = {DONE, CLOSED, RESOLVED, COMPLETED}


# ============================================================================
# Link Types
# ============================================================================

class LinkTypes:
    """Raw relation identifiers reported by the relations lookup."""

    HIERARCHY_FORWARD = "System.LinkTypes.Hierarchy-Forward"
    HIERARCHY_REVERSE = "System.LinkTypes.Hierarchy-Reverse"
    PARENT = "System.LinkTypes.Parent"
    CHILD = "System.LinkTypes.Child"

    DEPENDENCY_FORWARD = "System.LinkTypes.Dependency-Forward"
    DEPENDENCY_REVERSE = "System.LinkTypes.Dependency-Reverse"
    SUCCESSOR = "System.LinkTypes.Successor"
    PREDECESSOR = "System.LinkTypes.Predecessor"

    RELATED = "System.LinkTypes.Related"


# ============================================================================
# Priority
# ============================================================================

class Priority:
    """Work item priority values (1 is highest)."""

    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4

    ALLOWED = {CRITICAL, HIGH, MEDIUM, LOW}
    DEFAULT = MEDIUM


# ============================================================================
# Velocity Trend Thresholds
# ============================================================================

@dataclass(frozen=True)
class TrendThresholds:
    """
    Cutoffs for classifying a velocity series.

    Attributes:
        significant_change_percent: |change| at or above this is a trend
        volatility_swing_percent: sprint-to-sprint swing counted as a swing
        low_completion_rate: average completion rate below this is flagged
    """
    significant_change_percent: float = 20.0
    volatility_swing_percent: float = 25.0
    low_completion_rate: float = 0.8

    @classmethod
    def from_env(cls) -> "TrendThresholds":
        """Build thresholds from VELOCITY_* environment variables."""
        defaults = cls()
        return cls(
            significant_change_percent=float(os.getenv(
                "VELOCITY_SIGNIFICANT_CHANGE_PERCENT",
                defaults.significant_change_percent
            )),
            volatility_swing_percent=float(os.getenv(
                "VELOCITY_VOLATILITY_SWING_PERCENT",
                defaults.volatility_swing_percent
            )),
            low_completion_rate=float(os.getenv(
                "VELOCITY_LOW_COMPLETION_RATE",
                defaults.low_completion_rate
            )),
        )


# ============================================================================
# Helper Functions
# ============================================================================

def format_wiql_fields(fields: List[str]) -> str:
    """
    Format field list for WIQL SELECT clause.

    Args:
        fields: List of field names

    Returns:
        Formatted field list for WIQL (e.g., "[System.Id], [System.Title]")
    """
    return ', '.join(f'[{field}]' for field in fields)
