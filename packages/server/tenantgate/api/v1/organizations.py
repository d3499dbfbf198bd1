"""
Organization API endpoints.

POST   /api/v1/orgs                         Create an org (caller becomes owner)
GET    /api/v1/orgs                         Orgs the caller owns or belongs to
GET    /api/v1/orgs/slug-available?slug=    Is a slug free
GET    /api/v1/orgs/by-slug/{slug}          Org by slug (no auth)
GET    /api/v1/orgs/public/{slug}           Public org card (no auth)
GET    /api/v1/orgs/{org_id}                Org details (member)
PATCH  /api/v1/orgs/{org_id}                Rename / re-slug (admin)
DELETE /api/v1/orgs/{org_id}                Delete org and all its data (owner)
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.api.deps import get_cascade_engine
from tenantgate.core.auth import RequestContext, get_request_context
from tenantgate.core.database import get_session
from tenantgate.services import organizations as org_service
from tenantgate.services.cascade import CascadeEngine
from tenantgate_shared.schemas.organizations import (
    SLUG_PATTERN,
    MyOrgItem,
    OrgCreatedResponse,
    OrgCreateRequest,
    OrgPublicResponse,
    OrgResponse,
    OrgUpdateRequest,
    SlugAvailability,
)

router = APIRouter(prefix="/orgs", tags=["Organizations"])


@router.post("", response_model=OrgCreatedResponse, status_code=201)
async def create_org(
    body: OrgCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    """Create a new organization. The creator becomes its owner."""
    org = await org_service.create_org(ctx, body)
    return OrgCreatedResponse(org_id=org.id)


@router.get("", response_model=list[MyOrgItem])
async def my_orgs(ctx: RequestContext = Depends(get_request_context)):
    """List orgs the caller owns or belongs to, with the caller's role."""
    items = await org_service.list_my_orgs(ctx)
    return [
        MyOrgItem(org=OrgResponse.model_validate(item["org"]), role=item["role"])
        for item in items
    ]


@router.get("/slug-available", response_model=SlugAvailability)
async def slug_available(
    slug: str = Query(..., min_length=2, max_length=50, pattern=SLUG_PATTERN),
    session: AsyncSession = Depends(get_session),
):
    return SlugAvailability(available=await org_service.is_slug_available(session, slug))


@router.get("/by-slug/{slug}", response_model=OrgResponse)
async def get_org_by_slug(slug: str, session: AsyncSession = Depends(get_session)):
    return OrgResponse.model_validate(await org_service.get_org_by_slug(session, slug))


@router.get("/public/{slug}", response_model=OrgPublicResponse)
async def get_public_org(slug: str, session: AsyncSession = Depends(get_session)):
    return OrgPublicResponse(**await org_service.get_public(session, slug))


@router.get("/{org_id}", response_model=OrgResponse)
async def get_org(org_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    return OrgResponse.model_validate(await org_service.get_org(ctx, org_id))


@router.patch("/{org_id}", response_model=OrgResponse)
async def update_org(
    org_id: uuid.UUID,
    body: OrgUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    """Update org name or slug (admin only)."""
    org = await org_service.update_org(ctx, org_id, body)
    return OrgResponse.model_validate(org)


@router.delete("/{org_id}")
async def delete_org(
    org_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    engine: CascadeEngine = Depends(get_cascade_engine),
):
    """Delete the org and everything it owns (owner only)."""
    result = await org_service.remove_org(ctx, org_id, engine)
    return {
        "org_id": str(org_id),
        "completed": result.completed,
        "deleted": result.deleted,
    }
