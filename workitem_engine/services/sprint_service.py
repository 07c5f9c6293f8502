"""
Sprint/Iteration service for Azure DevOps operations
Lists team iterations with a TTL cache
"""
import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from azure.devops.v7_1.work.models import TeamContext

from ..decorators import azure_devops_operation
from ..cache import Cache, CachedService
from ..models import Sprint

DEFAULT_TEAM_KEY = '<default>'
CURRENT_TIME_FRAME = 'current'


class SprintService(CachedService):
    """Service for sprint/iteration lookups with caching support"""

    def __init__(self, connection, project: str, cache_ttl: float = 300, cache: Optional[Cache] = None):
        """
        Initialize sprint service

        Args:
            connection: azure.devops Connection
            project: Azure DevOps project name
            cache_ttl: Seconds a fetched sprint list stays valid
            cache: Optional cache to share; a private one is created otherwise
        """
        super().__init__(cache_namespace=f"sprints:{project}", cache_ttl=cache_ttl, cache=cache)

        self.connection = connection
        self.project = project
        self._work_client = None
        self._core_client = None

    @property
    def work_client(self):
        """Lazy load work client"""
        if not self._work_client:
            self._work_client = self.connection.clients.get_work_client()
        return self._work_client

    @property
    def core_client(self):
        """Lazy load core client"""
        if not self._core_client:
            self._core_client = self.connection.clients.get_core_client()
        return self._core_client

    @azure_devops_operation(timeout_seconds=30)
    async def get_sprints(self, team_name: Optional[str] = None) -> List[Sprint]:
        """
        Get the iterations of a team

        Args:
            team_name: Team name, or None for the project's first team

        Returns:
            Sprints in backend order
        """
        cache_key = team_name or DEFAULT_TEAM_KEY
        cached = self._get_cached('iterations', cache_key)
        if cached is not None:
            return list(cached)

        team = await self._get_team(team_name)
        iterations = await asyncio.to_thread(self.work_client.get_team_iterations, team_context=team)

        sprints = [self._to_sprint(iteration) for iteration in iterations or []]
        self._set_cached(sprints, 'iterations', cache_key)
        return list(sprints)

    async def get_current_sprint(self, team_name: Optional[str] = None) -> Optional[Sprint]:
        """
        Get the current sprint

        Uses the backend's time frame, falling back to the sprint whose dates
        span today.

        Returns:
            The current sprint, or None if the team has none
        """
        sprints = await self.get_sprints(team_name)

        for sprint in sprints:
            if (sprint.time_frame or '').lower() == CURRENT_TIME_FRAME:
                return sprint

        now = datetime.now(timezone.utc)
        for sprint in sprints:
            if sprint.start_date and sprint.finish_date:
                start = self._as_utc(sprint.start_date)
                finish = self._as_utc(sprint.finish_date)
                if start <= now <= finish:
                    return sprint

        return None

    def invalidate(self) -> None:
        """Drop cached sprint lists for this project"""
        self._invalidate_all()

    async def _get_team(self, team_name: Optional[str] = None) -> TeamContext:
        """
        Get team context

        Args:
            team_name: Team name, or None for default team
        """
        if not team_name:
            # Default team is the first team in the project
            teams = await asyncio.to_thread(self.core_client.get_teams, self.project)
            if not teams:
                raise ValueError(f"No teams found in project {self.project}")
            team_name = teams[0].name

        return TeamContext(project=self.project, team=team_name)

    @staticmethod
    def _to_sprint(iteration) -> Sprint:
        attributes = iteration.attributes
        time_frame = getattr(attributes, 'time_frame', None) if attributes else None
        return Sprint(
            name=iteration.name,
            path=iteration.path,
            time_frame=str(time_frame).lower() if time_frame else None,
            id=iteration.id,
            start_date=getattr(attributes, 'start_date', None) if attributes else None,
            finish_date=getattr(attributes, 'finish_date', None) if attributes else None
        )

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
