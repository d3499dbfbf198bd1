"""
Org-scoped tables served by the generated CRUD endpoints.

Each entry is a model, its create/update payload schemas and the options
that switch on ACLs, soft delete, rate limiting and cascades.
"""

from tenantgate.core.rate_limit import RateLimitConfig
from tenantgate.models.project import Project
from tenantgate.models.task import Task
from tenantgate.models.wiki import Wiki
from tenantgate.services.registry import AclFrom, CascadeEdge, OrgCrudOptions, ResourceRegistry
from tenantgate_shared.schemas.resources import (
    ProjectCreate,
    ProjectUpdate,
    TaskCreate,
    TaskUpdate,
    WikiCreate,
    WikiUpdate,
)

WRITE_LIMIT = RateLimitConfig(max=10, window_ms=60_000)


def build_registry() -> ResourceRegistry:
    registry = ResourceRegistry()
    registry.register(
        "projects",
        Project,
        ProjectCreate,
        ProjectUpdate,
        OrgCrudOptions(
            acl=True,
            soft_delete=True,
            rate_limit=WRITE_LIMIT,
            cascade=(CascadeEdge(table="tasks", foreign_key="project_id"),),
        ),
    )
    registry.register(
        "tasks",
        Task,
        TaskCreate,
        TaskUpdate,
        OrgCrudOptions(acl_from=AclFrom(field="project_id", table="projects")),
    )
    registry.register(
        "wikis",
        Wiki,
        WikiCreate,
        WikiUpdate,
        OrgCrudOptions(soft_delete=True, rate_limit=WRITE_LIMIT),
    )
    registry.validate()
    return registry
