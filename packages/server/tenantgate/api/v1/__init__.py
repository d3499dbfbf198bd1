"""
API v1 Router

Org-scoped endpoints are prefixed with /orgs/{org_id}. Resource tables get
their routes from the registry at application start.
"""

from fastapi import APIRouter

from tenantgate.services.org_crud import OrgCrudHandlers
from tenantgate.services.registry import ResourceRegistry

from . import memberships, organizations
from .resources import build_resource_router

router = APIRouter()

# Static org routes (slug lookups) are registered before /orgs/{org_id}
router.include_router(organizations.router)
router.include_router(memberships.router_scoped)
router.include_router(memberships.router_global)


def build_api_router(
    registry: ResourceRegistry,
    handlers: dict[str, OrgCrudHandlers],
    bulk_max: int = 100,
) -> APIRouter:
    """The full v1 router: static routes plus one router per resource table."""
    api = APIRouter()
    api.include_router(router)
    for definition in registry:
        api.include_router(build_resource_router(definition, handlers[definition.name], bulk_max))

    @api.get("/", tags=["API"])
    async def api_root():
        """API root: returns version and the resource tables served."""
        return {
            "api": "v1",
            "version": "0.1.0",
            "resources": [d.name for d in registry],
        }

    return api
