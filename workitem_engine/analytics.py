"""
Agile analytics over work item lists.

All functions are pure and tolerate empty or partially populated input:
missing story points count as zero, missing timestamps exclude an item from
time-based statistics, and empty input yields zero-valued aggregates.
"""

import logging
import re
import statistics
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .constants import TrendThresholds, WorkItemStates
from .models import CycleTimeStats, Sprint, TeamMetrics, ThroughputPoint, VelocityPoint, VelocityTrend, WorkItem

logger = logging.getLogger(__name__)

NO_SPRINT = "No Sprint"
UNASSIGNED = "Unassigned"

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"
TREND_VOLATILE = "volatile"

TREND_RECOMMENDATIONS = {
    TREND_INCREASING: "Velocity is improving - make sure quality keeps pace with throughput",
    TREND_DECREASING: "Velocity is declining - check team capacity, technical debt and scope creep",
    TREND_VOLATILE: "Velocity is inconsistent - review sprint planning and estimation accuracy",
    TREND_STABLE: "Velocity is stable - team has predictable capacity",
}

INSUFFICIENT_DATA_RECOMMENDATION = "Need more sprint data for trend analysis"
UNESTIMATED_RECOMMENDATION = "Latest sprint has no estimated story points - estimate work items to track velocity"

MAX_RECOMMENDATIONS = 3


def is_completed(item: WorkItem) -> bool:
    return (item.state or '') in WorkItemStates.COMPLETED_STATES


def _points(item: WorkItem) -> float:
    points = item.story_points
    if points is None or points < 0:
        return 0.0
    return float(points)


def _natural_key(text: str) -> List:
    """Sort key treating digit runs as numbers ("Sprint 2" < "Sprint 10")."""
    return [int(token) if token.isdecimal() else token for token in re.split(r'(\d+)', text.lower())]


def _sprint_label(iteration_path: str) -> str:
    return iteration_path.rstrip('\\').split('\\')[-1] or iteration_path


def _sprint_order(sprints: List[Sprint]) -> Dict[str, Tuple]:
    """Chronological rank per sprint path: start date first, then listing order."""
    order = {}
    for index, sprint in enumerate(sprints):
        if not sprint or not sprint.path:
            continue
        start = _as_utc(sprint.start_date) if sprint.start_date else None
        order.setdefault(sprint.path.lower(), (start is None, start or datetime.min.replace(tzinfo=timezone.utc), index))
    return order


def calculate_sprint_velocity(
    items: Optional[List[WorkItem]],
    sprints: Optional[List[Sprint]] = None
) -> List[VelocityPoint]:
    """
    Story points planned and completed per iteration.

    Args:
        items: Work items, grouped by iteration_path
        sprints: Known sprints; when given, they fix the chronological order

    Returns:
        One VelocityPoint per iteration, oldest first, "No Sprint" last
    """
    groups: "OrderedDict[str, List[WorkItem]]" = OrderedDict()
    for item in items or []:
        path = (item.iteration_path or '').strip() or NO_SPRINT
        groups.setdefault(path, []).append(item)

    velocities = []
    for path, group in groups.items():
        completed = [item for item in group if is_completed(item)]
        planned_points = sum(_points(item) for item in group)
        completed_points = sum(_points(item) for item in completed)

        velocities.append(VelocityPoint(
            iteration=NO_SPRINT if path == NO_SPRINT else _sprint_label(path),
            iteration_path=path,
            story_points_planned=planned_points,
            story_points_completed=completed_points,
            completion_rate=(completed_points / planned_points) if planned_points > 0 else 0.0,
            items_planned=len(group),
            items_completed=len(completed),
        ))

    known = _sprint_order(sprints or [])

    def sort_key(point: VelocityPoint):
        if point.iteration_path == NO_SPRINT:
            return (2, (), [], "")
        rank = known.get(point.iteration_path.lower())
        if rank is not None:
            return (0, rank, [], "")
        return (1, (), _natural_key(point.iteration), point.iteration_path.lower())

    velocities.sort(key=sort_key)
    return velocities


def calculate_team_metrics(
    items: Optional[List[WorkItem]],
    sprints: Optional[List[Sprint]] = None
) -> TeamMetrics:
    """
    Story point load per assignee.

    Unassigned work is bucketed under "Unassigned" in the per-member maps but
    is not a team member. average_velocity is the mean completed points across
    the sprint velocity series.
    """
    items = items or []
    story_points_by_member: Dict[str, float] = {}
    work_items_by_member: Dict[str, int] = {}
    team_members: List[str] = []
    total = 0.0
    completed = 0.0

    for item in items:
        assignee = (item.assigned_to or '').strip()
        if assignee and assignee not in team_members:
            team_members.append(assignee)
        bucket = assignee or UNASSIGNED

        points = _points(item)
        total += points
        if is_completed(item):
            completed += points

        work_items_by_member[bucket] = work_items_by_member.get(bucket, 0) + 1
        story_points_by_member[bucket] = story_points_by_member.get(bucket, 0.0) + points

    velocities = calculate_sprint_velocity(items, sprints)
    average_velocity = (
        sum(v.story_points_completed for v in velocities) / len(velocities) if velocities else 0.0
    )

    return TeamMetrics(
        story_points_by_member=story_points_by_member,
        work_items_by_member=work_items_by_member,
        team_members=team_members,
        total_story_points=total,
        completed_story_points=completed,
        average_velocity=average_velocity,
    )


def _percent_difference(new: float, old: float) -> float:
    """Signed difference relative to the midpoint of both values."""
    midpoint = (new + old) / 2
    if midpoint == 0:
        return 0.0
    return (new - old) / midpoint * 100


def _consistency(values: List[float]) -> float:
    """100 minus the coefficient of variation, clamped to 0-100."""
    mean = statistics.fmean(values)
    if mean <= 0:
        return 100.0
    variation = statistics.pstdev(values) / mean * 100
    return max(0.0, min(100.0, 100.0 - variation))


def _is_volatile(values: List[float], swing_percent: float) -> bool:
    swings = [_percent_difference(b, a) for a, b in zip(values, values[1:])]
    for first, second in zip(swings, swings[1:]):
        if abs(first) > swing_percent and abs(second) > swing_percent and (first > 0) != (second > 0):
            return True
    return False


def analyze_velocity_trends(
    velocities: Optional[List[VelocityPoint]],
    thresholds: Optional[TrendThresholds] = None
) -> VelocityTrend:
    """
    Classify a velocity series.

    The latest completed value is compared to the mean of all prior points.
    Alternating sprint-to-sprint swings beyond the swing threshold make the
    series volatile; otherwise a change at or beyond the significance
    threshold makes it increasing or decreasing.

    Args:
        velocities: Velocity series, oldest first
        thresholds: Cutoffs; defaults to TrendThresholds()

    Returns:
        VelocityTrend with at most three recommendations
    """
    thresholds = thresholds or TrendThresholds()
    velocities = velocities or []

    if len(velocities) < 2:
        return VelocityTrend(
            trend=TREND_STABLE,
            change_percentage=0.0,
            consistency=100.0,
            recommendations=[INSUFFICIENT_DATA_RECOMMENDATION],
        )

    values = [float(v.story_points_completed or 0) for v in velocities]
    latest = values[-1]
    baseline = statistics.fmean(values[:-1])
    change = _percent_difference(latest, baseline)

    if _is_volatile(values, thresholds.volatility_swing_percent):
        trend = TREND_VOLATILE
    elif abs(change) >= thresholds.significant_change_percent:
        trend = TREND_INCREASING if change > 0 else TREND_DECREASING
    else:
        trend = TREND_STABLE

    recommendations = [TREND_RECOMMENDATIONS[trend]]

    average_completion = statistics.fmean(v.completion_rate or 0 for v in velocities)
    if average_completion < thresholds.low_completion_rate:
        recommendations.append(
            f"Average completion rate is {round(average_completion * 100)}% - consider reducing sprint commitments"
        )

    if not velocities[-1].story_points_planned:
        recommendations.append(UNESTIMATED_RECOMMENDATION)

    return VelocityTrend(
        trend=trend,
        change_percentage=round(change, 1),
        consistency=round(_consistency(values), 1),
        recommendations=recommendations[:MAX_RECOMMENDATIONS],
    )


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from the backend are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def cycle_time_days(item: WorkItem) -> Optional[int]:
    """Whole days from creation to close, or None if unknown or negative."""
    if not item.created_date or not item.closed_date:
        return None
    elapsed = _as_utc(item.closed_date) - _as_utc(item.created_date)
    if elapsed.total_seconds() < 0:
        return None
    return elapsed.days


def calculate_cycle_time(items: Optional[List[WorkItem]]) -> CycleTimeStats:
    """
    Days from creation to terminal state.

    Items without a close timestamp are excluded rather than counted as zero.
    """
    durations: List[int] = []
    by_type_durations: Dict[str, List[int]] = {}

    for item in items or []:
        days = cycle_time_days(item)
        if days is None:
            continue
        durations.append(days)
        by_type_durations.setdefault(item.work_item_type or 'Unknown', []).append(days)

    if not durations:
        return CycleTimeStats(average_days=0.0, median_days=0.0, by_type={}, sample_size=0)

    return CycleTimeStats(
        average_days=round(statistics.fmean(durations), 1),
        median_days=round(float(statistics.median(durations)), 1),
        by_type={
            work_item_type: round(statistics.fmean(values), 1)
            for work_item_type, values in by_type_durations.items()
        },
        sample_size=len(durations),
    )


def calculate_throughput(items: Optional[List[WorkItem]]) -> List[ThroughputPoint]:
    """Completed items per calendar month (YYYY-MM), oldest first."""
    monthly: Dict[str, int] = {}
    for item in items or []:
        if not is_completed(item) or not item.closed_date:
            continue
        period = _as_utc(item.closed_date).strftime('%Y-%m')
        monthly[period] = monthly.get(period, 0) + 1

    return [ThroughputPoint(period=period, value=monthly[period]) for period in sorted(monthly)]


def _format_number(value: float) -> str:
    return f"{value:g}" if value == int(value) else f"{value:.1f}"


def prepare_analytics_summary(
    items: Optional[List[WorkItem]],
    sprints: Optional[List[Sprint]] = None,
    thresholds: Optional[TrendThresholds] = None
) -> str:
    """Plain-text report combining velocity, trend, team and cycle time."""
    items = items or []
    velocities = calculate_sprint_velocity(items, sprints)
    team = calculate_team_metrics(items, sprints)
    trend = analyze_velocity_trends(velocities, thresholds)
    cycle = calculate_cycle_time(items)

    lines = [f"ANALYTICS SUMMARY FOR {len(items)} WORK ITEMS", "", "SPRINT VELOCITY:"]
    for v in velocities:
        lines.append(
            f"- {v.iteration}: {_format_number(v.story_points_completed)} SP completed "
            f"({round(v.completion_rate * 100)}% of {_format_number(v.story_points_planned)} SP planned)"
        )
    if not velocities:
        lines.append("- No sprint data")

    sign = '+' if trend.change_percentage > 0 else ''
    lines += [
        "",
        "VELOCITY TREND:",
        f"- Trend: {trend.trend.upper()}",
        f"- Change: {sign}{trend.change_percentage}%",
        f"- Consistency: {trend.consistency}/100",
    ]

    top = sorted(team.story_points_by_member.items(), key=lambda entry: entry[1], reverse=True)[:3]
    lines += [
        "",
        "TEAM METRICS:",
        f"- Average Velocity: {_format_number(round(team.average_velocity, 1))} SP per sprint",
        f"- Total Story Points: {_format_number(team.total_story_points)} "
        f"({_format_number(team.completed_story_points)} completed)",
        f"- Team Size: {len(team.team_members)} members",
        f"- Top Contributors: {', '.join(f'{name} ({_format_number(points)} SP)' for name, points in top) or 'none'}",
    ]

    by_type = ', '.join(f"{t}: {_format_number(d)}d" for t, d in cycle.by_type.items()) or 'n/a'
    lines += [
        "",
        "CYCLE TIME:",
        f"- Average: {_format_number(cycle.average_days)} days",
        f"- Median: {_format_number(cycle.median_days)} days",
        f"- By Type: {by_type}",
        "",
        "KEY INSIGHTS:",
    ]
    lines += [f"- {r}" for r in trend.recommendations]

    return '\n'.join(lines)
