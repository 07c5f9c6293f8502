"""
Data models for the work item query and analytics engine
"""
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, List, Dict, FrozenSet


class RelationType(str, Enum):
    """Role a work item plays in its primary link"""
    PARENT = "Parent"
    CHILD = "Child"
    RELATED = "Related"
    SUCCESSOR = "Successor"
    PREDECESSOR = "Predecessor"
    OTHER = "Other"


HIERARCHICAL_RELATIONS = frozenset({RelationType.PARENT, RelationType.CHILD})


@dataclass(frozen=True)
class WorkItemRelation:
    """A raw link as reported by the relations lookup"""
    target_id: str
    raw_relation_type: str


@dataclass(frozen=True)
class ClassifiedRelation:
    """A link after classification into the closed relation set"""
    target_id: str
    relation_type: RelationType


@dataclass
class WorkItem:
    """Represents an Azure DevOps work item"""
    id: str
    title: str
    work_item_type: str
    state: str
    priority: int = 3
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    created_date: Optional[datetime] = None
    changed_date: Optional[datetime] = None
    closed_date: Optional[datetime] = None
    project: Optional[str] = None
    area_path: Optional[str] = None
    iteration_path: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    story_points: Optional[float] = None
    description: Optional[str] = None
    relation_type: Optional[RelationType] = None
    relation_source: Optional[str] = None
    relations: List[ClassifiedRelation] = field(default_factory=list)


@dataclass
class Sprint:
    """Represents a sprint/iteration"""
    name: str
    path: str
    time_frame: Optional[str] = None
    id: Optional[str] = None
    start_date: Optional[datetime] = None
    finish_date: Optional[datetime] = None


@dataclass(frozen=True)
class GlobalFilters:
    """Per-request filters AND-ed onto every generated query"""
    ignore_closed: bool = False
    ignore_states: FrozenSet[str] = frozenset()
    only_my_tickets: bool = False
    current_user: Optional[str] = None
    ignore_older_than_days: Optional[int] = None
    ignore_created_by: FrozenSet[str] = frozenset()


@dataclass
class ParsedCommand:
    """A chat input split into command keyword and parameter"""
    command: Optional[str] = None
    param: Optional[str] = None
    work_item_id: Optional[int] = None


@dataclass
class QueryFixResult:
    """Outcome of validating a generated WIQL query"""
    query: str
    was_fixed: bool
    fix_reason: Optional[str] = None


@dataclass
class HierarchicalWorkItem:
    """A work item placed in a display tree"""
    item: WorkItem
    children: List["HierarchicalWorkItem"] = field(default_factory=list)
    level: int = 0
    parent_badge: Optional[WorkItem] = None

    @property
    def has_children(self) -> bool:
        return bool(self.children)


@dataclass
class Hierarchy:
    """A forest of display trees"""
    roots: List[HierarchicalWorkItem]
    has_hierarchy: bool = False


@dataclass
class VelocityPoint:
    """Story point velocity for one sprint"""
    iteration: str
    iteration_path: str
    story_points_planned: float
    story_points_completed: float
    completion_rate: float
    items_planned: int = 0
    items_completed: int = 0


@dataclass
class TeamMetrics:
    """Story point load across a team"""
    story_points_by_member: Dict[str, float]
    work_items_by_member: Dict[str, int]
    team_members: List[str]
    total_story_points: float
    completed_story_points: float
    average_velocity: float


@dataclass
class VelocityTrend:
    """Direction and stability of a velocity series"""
    trend: str
    change_percentage: float
    consistency: float = 100.0
    recommendations: List[str] = field(default_factory=list)


@dataclass
class CycleTimeStats:
    """Days from creation to terminal state"""
    average_days: float
    median_days: float
    by_type: Dict[str, float]
    sample_size: int = 0


@dataclass
class ThroughputPoint:
    """Completed item count for one calendar month"""
    period: str
    value: int


def to_jsonable(value: Any) -> Any:
    """Convert models (and containers of them) into JSON-ready structures"""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if isinstance(value, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value
