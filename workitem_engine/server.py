"""
Work Item Query & Analytics MCP Server
Exposes command search, generated-query correction, hierarchies and agile
analytics for Azure DevOps projects
"""
from fastmcp import FastMCP, Context
from typing import Optional, List, Dict, Any
import logging
import os
import sys
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from dotenv import load_dotenv

from .analytics import (
    analyze_velocity_trends,
    calculate_cycle_time,
    calculate_sprint_velocity,
    calculate_team_metrics,
    calculate_throughput,
    prepare_analytics_summary
)
from .constants import QueryLimits, TrendThresholds
from .errors import AzureDevOpsError
from .hierarchy import build_hierarchy, count_by_relation_type
from .log_sanitizer import safe_log_error
from .models import Sprint, WorkItem, to_jsonable
from .query_builder import resolve_command
from .service_manager import ServiceManager, create_connection

logger = logging.getLogger(__name__)

# Analytics default to items changed in the last quarter
ANALYTICS_COMMAND = "recent"
ANALYTICS_DAYS = "90"

# Initialized during lifespan startup
_service_manager: Optional[ServiceManager] = None
_thresholds: TrendThresholds = TrendThresholds()


@asynccontextmanager
async def lifespan(app):
    """Initialize services on startup"""
    global _service_manager, _thresholds

    load_dotenv()

    org_url = os.getenv("AZURE_DEVOPS_ORG_URL")
    pat = os.getenv("AZURE_DEVOPS_PAT")
    default_project = os.getenv("AZURE_DEVOPS_PROJECT")

    if not org_url or not pat:
        raise ValueError(
            "Missing required environment variables: AZURE_DEVOPS_ORG_URL and AZURE_DEVOPS_PAT"
        )

    connection = create_connection(org_url, pat)
    _service_manager = ServiceManager(
        connection,
        default_project=default_project,
        sprint_cache_ttl=float(os.getenv("SPRINT_CACHE_TTL_SECONDS", 300)),
        relations_max_concurrency=int(os.getenv(
            "RELATIONS_MAX_CONCURRENCY", QueryLimits.RELATIONS_MAX_CONCURRENCY
        ))
    )
    _thresholds = TrendThresholds.from_env()

    print(f"Connected to {org_url} (default project: {default_project or 'none'})", file=sys.stderr)

    yield

    _service_manager.clear_all_services()


mcp = FastMCP(
    name="Work Item Query & Analytics",
    lifespan=lifespan
)


def _manager() -> ServiceManager:
    if _service_manager is None:
        raise RuntimeError("Service manager not initialized")
    return _service_manager


async def _known_sprints(project: Optional[str], team_name: Optional[str] = None) -> Optional[List[Sprint]]:
    """Sprint list, or None when the backend cannot provide one"""
    try:
        return await _manager().get_sprint_service(project).get_sprints(team_name)
    except AzureDevOpsError as e:
        logger.warning(safe_log_error(e, "Sprint lookup failed"))
        return None


async def _load_items(
    project: Optional[str],
    command: Optional[str],
    param: Optional[str],
    filters: Optional[Dict[str, Any]],
    limit: int
) -> List[WorkItem]:
    service = _manager().get_workitem_service(project)

    parsed = resolve_command(command, param)
    if parsed.work_item_id:
        return [await service.get_work_item(parsed.work_item_id)]

    return await service.search(parsed.command, parsed.param, filters, limit=limit)


async def _load_analytics_items(
    project: Optional[str],
    command: Optional[str],
    param: Optional[str],
    filters: Optional[Dict[str, Any]],
    limit: int
) -> List[WorkItem]:
    if not command:
        command, param = ANALYTICS_COMMAND, ANALYTICS_DAYS
    return await _load_items(project, command, param, filters, limit)


# ============================================================================
# QUERY TOOLS
# ============================================================================

@mcp.tool()
async def search_work_items(
    command: str,
    param: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    project: Optional[str] = None,
    include_relationships: bool = False,
    limit: int = QueryLimits.DEFAULT_LIMIT,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Search work items with a chat command.

    Args:
        command: Command keyword, e.g. "assigned_to", "/state", "tag", "recent",
            "sprint", "board", "priority", or a bare work item id ("#123").
            Without param, raw chat input such as "/state Active" or free
            text ("login bug") is also accepted.
        param: Command parameter (e.g. a name, state, comma-separated tags)
        filters: Optional global filters: ignoreClosed, ignoreStates,
            onlyMyTickets + currentUser, ignoreOlderThanDays, ignoreCreatedBy
        project: Azure DevOps project name. If None, uses default project.
        include_relationships: Attach relation_type/relation_source to each item
        limit: Maximum number of results

    Returns:
        Dictionary with the executed query and matching work items
    """
    service = _manager().get_workitem_service(project)
    query = service.query_builder.build_for_input(command, param, filters)
    await ctx.info(f"Searching {service.project}: {command} {param or ''}".strip())

    items = await _load_items(project, command, param, filters, limit)
    if include_relationships:
        items = await service.enrich(items)

    await ctx.info(f"Found {len(items)} work items")
    return {
        "query": query,
        "count": len(items),
        "work_items": to_jsonable(items)
    }


@mcp.tool()
async def run_generated_query(
    query: str,
    project: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    team_name: Optional[str] = None,
    include_relationships: bool = False,
    limit: int = QueryLimits.DEFAULT_LIMIT,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Correct and execute a WIQL query produced by a language model.

    CONTAINS predicates on System.IterationPath are rewritten to UNDER the
    matching sprint (or area) path before execution.

    Args:
        query: Generated WIQL
        project: Azure DevOps project name. If None, uses default project.
        filters: Optional global filters AND-ed onto the query
        team_name: Team whose sprints resolve iteration names
        include_relationships: Attach relationship data to each item
        limit: Maximum number of results

    Returns:
        Dictionary with the executed query, whether it was corrected and why,
        and the matching work items
    """
    service = _manager().get_workitem_service(project)
    sprints = await _known_sprints(project, team_name)

    fix, items = await service.run_generated_query(query, sprints=sprints, filters=filters, limit=limit)
    if fix.was_fixed:
        await ctx.info(f"Query corrected: {fix.fix_reason}")

    if include_relationships:
        items = await service.enrich(items)

    return {
        "query": fix.query,
        "was_fixed": fix.was_fixed,
        "fix_reason": fix.fix_reason,
        "count": len(items),
        "work_items": to_jsonable(items)
    }


@mcp.tool()
async def get_work_item_hierarchy(
    command: str,
    param: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    project: Optional[str] = None,
    limit: int = QueryLimits.DEFAULT_LIMIT,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Search work items and arrange them into parent/child trees.

    Args:
        command: Command keyword (see search_work_items)
        param: Command parameter
        filters: Optional global filters
        project: Azure DevOps project name. If None, uses default project.
        limit: Maximum number of results

    Returns:
        Dictionary with has_hierarchy, the tree roots and counts per relation type
    """
    service = _manager().get_workitem_service(project)
    items = await _load_items(project, command, param, filters, limit)

    await ctx.info(f"Looking up relationships for {len(items)} work items...")
    enriched = await service.enrich(items)
    hierarchy = build_hierarchy(enriched)

    return {
        "has_hierarchy": hierarchy.has_hierarchy,
        "count": len(enriched),
        "relation_counts": count_by_relation_type(enriched),
        "roots": to_jsonable(hierarchy.roots)
    }


# ============================================================================
# ANALYTICS TOOLS
# ============================================================================

@mcp.tool()
async def get_sprint_velocity(
    command: Optional[str] = None,
    param: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    project: Optional[str] = None,
    team_name: Optional[str] = None,
    limit: int = QueryLimits.MAX_LIMIT,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Story points planned and completed per sprint.

    Args:
        command: Command selecting the items (default: changed in the last 90 days)
        param: Command parameter
        filters: Optional global filters
        project: Azure DevOps project name. If None, uses default project.
        team_name: Team whose sprint dates order the result
        limit: Maximum number of work items analysed

    Returns:
        Dictionary with the velocity series, oldest sprint first
    """
    items = await _load_analytics_items(project, command, param, filters, limit)
    sprints = await _known_sprints(project, team_name)
    velocities = calculate_sprint_velocity(items, sprints)

    await ctx.info(f"Computed velocity for {len(velocities)} sprints from {len(items)} work items")
    return {"item_count": len(items), "velocities": to_jsonable(velocities)}


@mcp.tool()
async def get_team_metrics(
    command: Optional[str] = None,
    param: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    project: Optional[str] = None,
    team_name: Optional[str] = None,
    limit: int = QueryLimits.MAX_LIMIT,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Story point load per team member and average velocity.

    Args:
        command: Command selecting the items (default: changed in the last 90 days)
        param: Command parameter
        filters: Optional global filters
        project: Azure DevOps project name. If None, uses default project.
        team_name: Team whose sprint dates order the velocity series
        limit: Maximum number of work items analysed
    """
    items = await _load_analytics_items(project, command, param, filters, limit)
    sprints = await _known_sprints(project, team_name)
    return to_jsonable(calculate_team_metrics(items, sprints))


@mcp.tool()
async def get_velocity_trend(
    command: Optional[str] = None,
    param: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    project: Optional[str] = None,
    team_name: Optional[str] = None,
    limit: int = QueryLimits.MAX_LIMIT,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Classify the velocity series as increasing, decreasing, stable or volatile.

    Thresholds come from VELOCITY_SIGNIFICANT_CHANGE_PERCENT,
    VELOCITY_VOLATILITY_SWING_PERCENT and VELOCITY_LOW_COMPLETION_RATE.
    """
    items = await _load_analytics_items(project, command, param, filters, limit)
    sprints = await _known_sprints(project, team_name)
    velocities = calculate_sprint_velocity(items, sprints)
    trend = analyze_velocity_trends(velocities, _thresholds)

    return {"velocities": to_jsonable(velocities), **to_jsonable(trend)}


@mcp.tool()
async def get_cycle_time(
    command: Optional[str] = None,
    param: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    project: Optional[str] = None,
    limit: int = QueryLimits.MAX_LIMIT,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Days from creation to close, overall and per work item type, with
    monthly throughput.
    """
    items = await _load_analytics_items(project, command, param, filters, limit)
    stats = calculate_cycle_time(items)

    return {
        **to_jsonable(stats),
        "throughput": to_jsonable(calculate_throughput(items))
    }


@mcp.tool()
async def get_analytics_summary(
    command: Optional[str] = None,
    param: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    project: Optional[str] = None,
    team_name: Optional[str] = None,
    limit: int = QueryLimits.MAX_LIMIT,
    ctx: Context = None
) -> str:
    """
    Plain-text report of velocity, trend, team metrics and cycle time.
    """
    items = await _load_analytics_items(project, command, param, filters, limit)
    sprints = await _known_sprints(project, team_name)
    return prepare_analytics_summary(items, sprints, _thresholds)


# ============================================================================
# SPRINT TOOLS
# ============================================================================

@mcp.tool()
async def list_sprints(
    project: Optional[str] = None,
    team_name: Optional[str] = None,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    List a team's sprints (cached for SPRINT_CACHE_TTL_SECONDS).

    Args:
        project: Azure DevOps project name. If None, uses default project.
        team_name: Team name. If None, uses the project's default team.

    Returns:
        Dictionary with all sprints and the current one
    """
    sprint_service = _manager().get_sprint_service(project)
    sprints = await sprint_service.get_sprints(team_name)
    current = await sprint_service.get_current_sprint(team_name)

    await ctx.info(f"Found {len(sprints)} sprints in {sprint_service.project}")
    return {
        "sprints": to_jsonable(sprints),
        "current": to_jsonable(current) if current else None
    }


# ============================================================================
# MONITORING TOOLS
# ============================================================================

@mcp.tool()
async def health_check(ctx: Context = None) -> Dict[str, Any]:
    """
    Get server health status for monitoring.

    Returns:
        Dictionary with health status, service statistics and trend thresholds
    """
    if _service_manager is None:
        return {"status": "unhealthy", "error": "Service manager not initialized"}

    return {
        "status": "healthy",
        "service": "Work Item Query & Analytics",
        "service_manager": _service_manager.get_statistics(),
        "loaded_projects": _service_manager.get_loaded_projects(),
        "trend_thresholds": to_jsonable(_thresholds),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


def main():
    """Run the server over stdio or streamable HTTP (MCP_TRANSPORT)"""
    transport_mode = os.getenv("MCP_TRANSPORT", "stdio").lower()

    if transport_mode == "stdio":
        print("Starting MCP server in STDIO mode", file=sys.stderr)
        mcp.run()
    else:
        port = int(os.getenv("PORT", 8000))
        print(f"Starting MCP server with HTTP streaming on port {port}", file=sys.stderr)
        mcp.run(transport="streamable-http", port=port, host="0.0.0.0")


if __name__ == "__main__":
    main()
