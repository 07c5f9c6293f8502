"""
Service Manager for handling multiple Azure DevOps projects
Provides lazy-loading service instances per project over one connection
"""
from typing import Dict, List, Optional, Any

from azure.devops.connection import Connection
from msrest.authentication import BasicAuthentication

from .constants import QueryLimits
from .services.sprint_service import SprintService
from .services.workitem_service import WorkItemService
from .validation import ValidationError


def create_connection(org_url: str, pat: str) -> Connection:
    """
    Create an Azure DevOps connection authenticated with a personal access token

    Args:
        org_url: Organization URL (https://dev.azure.com/<org>)
        pat: Personal access token

    Raises:
        ValueError: If either value is missing
    """
    if not org_url:
        raise ValueError("AZURE_DEVOPS_ORG_URL environment variable not set")
    if not pat:
        raise ValueError("AZURE_DEVOPS_PAT environment variable not set")

    credentials = BasicAuthentication('', pat)
    return Connection(base_url=org_url.rstrip('/'), creds=credentials)


class ServiceManager:
    """
    Manages service instances for multiple Azure DevOps projects

    Services are created on first access and reused afterwards; each
    project's SprintService keeps its own sprint cache.

    Example:
        connection = create_connection(org_url, pat)
        manager = ServiceManager(connection, default_project="AI-Proj")

        sprints = await manager.get_sprint_service().get_sprints()
        items = await manager.get_workitem_service("Marketing-Proj").search("state", "Active")
    """

    def __init__(
        self,
        connection,
        default_project: Optional[str] = None,
        sprint_cache_ttl: float = 300,
        relations_max_concurrency: int = QueryLimits.RELATIONS_MAX_CONCURRENCY
    ):
        """
        Initialize service manager

        Args:
            connection: azure.devops Connection shared by all services
            default_project: Project used when a call names none
            sprint_cache_ttl: TTL for cached sprint lists
            relations_max_concurrency: Concurrent relation lookups per enrichment
        """
        if connection is None:
            raise ValueError("ServiceManager requires an Azure DevOps connection. Use create_connection().")

        self.connection = connection
        self.default_project = default_project
        self.sprint_cache_ttl = sprint_cache_ttl
        self.relations_max_concurrency = relations_max_concurrency

        self._sprint_services: Dict[str, SprintService] = {}
        self._workitem_services: Dict[str, WorkItemService] = {}

        self._service_creation_count = 0
        self._cache_hit_count = 0

    def get_sprint_service(self, project: Optional[str] = None) -> SprintService:
        """
        Get or create the SprintService for a project

        Raises:
            ValidationError: If no project specified and no default set
        """
        project = self._resolve_project(project)

        if project in self._sprint_services:
            self._cache_hit_count += 1
            return self._sprint_services[project]

        service = SprintService(self.connection, project, cache_ttl=self.sprint_cache_ttl)
        self._sprint_services[project] = service
        self._service_creation_count += 1
        return service

    def get_workitem_service(self, project: Optional[str] = None) -> WorkItemService:
        """
        Get or create the WorkItemService for a project

        Raises:
            ValidationError: If no project specified and no default set
        """
        project = self._resolve_project(project)

        if project in self._workitem_services:
            self._cache_hit_count += 1
            return self._workitem_services[project]

        service = WorkItemService(self.connection, project, max_concurrency=self.relations_max_concurrency)
        self._workitem_services[project] = service
        self._service_creation_count += 1
        return service

    def _resolve_project(self, project: Optional[str]) -> str:
        if project and project.strip():
            return project.strip()

        if self.default_project:
            return self.default_project

        raise ValidationError(
            "Project name is required. Either specify project parameter or set "
            "AZURE_DEVOPS_PROJECT environment variable as default."
        )

    def get_loaded_projects(self) -> List[str]:
        return sorted(set(self._sprint_services) | set(self._workitem_services))

    def clear_all_services(self) -> None:
        self._sprint_services.clear()
        self._workitem_services.clear()

    def get_statistics(self) -> Dict[str, Any]:
        """Usage statistics for health reporting"""
        total_requests = self._service_creation_count + self._cache_hit_count
        cache_hit_rate = (self._cache_hit_count / total_requests * 100) if total_requests > 0 else 0.0

        return {
            "loaded_projects": len(self.get_loaded_projects()),
            "sprint_services": len(self._sprint_services),
            "workitem_services": len(self._workitem_services),
            "service_creations": self._service_creation_count,
            "cache_hits": self._cache_hit_count,
            "cache_hit_rate_percent": round(cache_hit_rate, 2),
            "default_project": self.default_project
        }

    def __repr__(self) -> str:
        return (
            f"ServiceManager(projects={len(self.get_loaded_projects())}, "
            f"default='{self.default_project}')"
        )
