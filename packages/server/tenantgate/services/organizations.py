"""
Organization service: business logic for org CRUD and teardown.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantgate.core.auth import RequestContext
from tenantgate.core.errors import OrgError
from tenantgate.core.roles import require_org_member, require_org_role, resolve_role
from tenantgate.models.base import now_ms
from tenantgate.models.org_member import OrgMember
from tenantgate.models.organization import Organization
from tenantgate.services.cascade import CascadeEngine, CascadeResult
from tenantgate_shared.schemas.common import ErrorCode, OrgRole, OrgStatus
from tenantgate_shared.schemas.organizations import OrgCreateRequest, OrgUpdateRequest

log = structlog.get_logger()


async def _slug_owner(session: AsyncSession, slug: str) -> Optional[Organization]:
    result = await session.execute(select(Organization).where(Organization.slug == slug))
    return result.scalar_one_or_none()


async def is_slug_available(session: AsyncSession, slug: str) -> bool:
    return await _slug_owner(session, slug) is None


async def create_org(ctx: RequestContext, req: OrgCreateRequest) -> Organization:
    """Create an org owned by the caller, who also gets an admin membership row."""
    if not await is_slug_available(ctx.session, req.slug):
        raise OrgError(ErrorCode.ORG_SLUG_TAKEN)

    org = Organization(
        name=req.name,
        slug=req.slug,
        owner_user_id=ctx.user_id,
        status=OrgStatus.ACTIVE.value,
    )
    try:
        async with ctx.session.begin_nested():
            ctx.session.add(org)
            await ctx.session.flush()
    except IntegrityError as exc:
        # Only a concurrent insert of the same slug maps to ORG_SLUG_TAKEN
        if await _slug_owner(ctx.session, req.slug) is not None:
            raise OrgError(ErrorCode.ORG_SLUG_TAKEN) from exc
        raise

    ctx.session.add(OrgMember(org_id=org.id, user_id=ctx.user_id, is_admin=True))
    await ctx.session.flush()

    log.info("org.created", org_id=str(org.id), slug=req.slug, owner=str(ctx.user_id))
    return org


async def get_org(ctx: RequestContext, org_id: uuid.UUID) -> Organization:
    access = await require_org_member(ctx.session, org_id, ctx.user_id)
    return access.org


async def get_org_by_slug(session: AsyncSession, slug: str) -> Organization:
    """Look up an active org by slug; raises NOT_FOUND otherwise."""
    org = await _slug_owner(session, slug)
    if org is None or org.status != OrgStatus.ACTIVE.value:
        raise OrgError(ErrorCode.NOT_FOUND, "Organization not found")
    return org


async def get_public(session: AsyncSession, slug: str) -> dict:
    org = await get_org_by_slug(session, slug)
    return {"id": org.id, "name": org.name, "slug": org.slug}


async def update_org(ctx: RequestContext, org_id: uuid.UUID, req: OrgUpdateRequest) -> Organization:
    access = await require_org_role(ctx.session, org_id, ctx.user_id, OrgRole.ADMIN)
    org = access.org

    if req.slug is not None and req.slug != org.slug:
        holder = await _slug_owner(ctx.session, req.slug)
        if holder is not None and holder.id != org.id:
            raise OrgError(ErrorCode.ORG_SLUG_TAKEN)

    try:
        async with ctx.session.begin_nested():
            if req.slug is not None:
                org.slug = req.slug
            if req.name is not None:
                org.name = req.name
            org.updated_at = now_ms()
            ctx.session.add(org)
            await ctx.session.flush()
    except IntegrityError as exc:
        # The savepoint rollback expired org; compare against the argument
        holder = await _slug_owner(ctx.session, req.slug) if req.slug is not None else None
        if holder is not None and holder.id != org_id:
            raise OrgError(ErrorCode.ORG_SLUG_TAKEN) from exc
        raise

    log.info("org.updated", org_id=str(org.id), slug=org.slug)
    return org


async def list_my_orgs(ctx: RequestContext) -> list[dict]:
    """Orgs the caller owns or belongs to, each with the caller's role."""
    owned = await ctx.session.execute(
        select(Organization).where(
            Organization.owner_user_id == ctx.user_id,
            Organization.status == OrgStatus.ACTIVE.value,
        )
    )
    memberships = await ctx.session.execute(
        select(Organization, OrgMember)
        .join(OrgMember, OrgMember.org_id == Organization.id)
        .where(
            OrgMember.user_id == ctx.user_id,
            Organization.status == OrgStatus.ACTIVE.value,
        )
    )

    items: dict[uuid.UUID, dict] = {}
    for org in owned.scalars().all():
        items[org.id] = {"org": org, "role": OrgRole.OWNER}
    for org, member in memberships.all():
        if org.id not in items:
            items[org.id] = {"org": org, "role": resolve_role(org, member, ctx.user_id)}
    return list(items.values())


async def remove_org(
    ctx: RequestContext, org_id: uuid.UUID, engine: CascadeEngine
) -> CascadeResult:
    """Delete the org and all of its data (owner only)."""
    await require_org_role(ctx.session, org_id, ctx.user_id, OrgRole.OWNER)
    log.info("org.deletion_started", org_id=str(org_id), by=str(ctx.user_id))
    result = await engine.delete_org(ctx.session, org_id)
    log.info("org.deleted", org_id=str(org_id), completed=result.completed)
    return result
