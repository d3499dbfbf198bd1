"""
Invite lifecycle: issue, accept, revoke. Expiry is checked at use time.
"""

from __future__ import annotations

import secrets
import uuid

import structlog
from sqlmodel import select

from tenantgate.core.auth import RequestContext
from tenantgate.core.config import Settings
from tenantgate.core.errors import OrgError
from tenantgate.core.roles import get_active_org, get_org_member, require_org_role
from tenantgate.models.base import now_ms
from tenantgate.models.org_invite import OrgInvite, OrgJoinRequest
from tenantgate.models.org_member import OrgMember
from tenantgate_shared.schemas.common import ErrorCode, JoinRequestStatus, OrgRole

log = structlog.get_logger()

DAY_MS = 24 * 60 * 60 * 1000


def generate_token() -> str:
    return secrets.token_urlsafe(24)


async def create_invite(
    ctx: RequestContext,
    org_id: uuid.UUID,
    email: str,
    is_admin: bool,
    settings: Settings,
) -> OrgInvite:
    await require_org_role(ctx.session, org_id, ctx.user_id, OrgRole.ADMIN)
    invite = OrgInvite(
        org_id=org_id,
        email=email,
        token=generate_token(),
        is_admin=is_admin,
        expires_at=now_ms() + settings.invite_ttl_days * DAY_MS,
    )
    ctx.session.add(invite)
    await ctx.session.flush()
    log.info("invite.created", org_id=str(org_id), invite_id=str(invite.id), is_admin=is_admin)
    return invite


async def accept_invite(ctx: RequestContext, token: str) -> uuid.UUID:
    """Join the invite's org; returns its id."""
    result = await ctx.session.execute(select(OrgInvite).where(OrgInvite.token == token))
    invite = result.scalar_one_or_none()
    if invite is None:
        raise OrgError(ErrorCode.INVALID_INVITE)
    if now_ms() > invite.expires_at:
        raise OrgError(ErrorCode.INVITE_EXPIRED)

    try:
        org = await get_active_org(ctx.session, invite.org_id)
    except OrgError:
        raise OrgError(ErrorCode.INVALID_INVITE) from None
    if org.owner_user_id == ctx.user_id:
        raise OrgError(ErrorCode.ALREADY_ORG_MEMBER)
    if await get_org_member(ctx.session, org.id, ctx.user_id) is not None:
        raise OrgError(ErrorCode.ALREADY_ORG_MEMBER)

    ctx.session.add(OrgMember(org_id=org.id, user_id=ctx.user_id, is_admin=invite.is_admin))

    pending = await ctx.session.execute(
        select(OrgJoinRequest).where(
            OrgJoinRequest.org_id == org.id,
            OrgJoinRequest.user_id == ctx.user_id,
            OrgJoinRequest.status == JoinRequestStatus.PENDING.value,
        )
    )
    for request in pending.scalars().all():
        request.status = JoinRequestStatus.APPROVED.value
        request.updated_at = now_ms()
        ctx.session.add(request)

    await ctx.session.delete(invite)
    await ctx.session.flush()
    log.info("invite.accepted", org_id=str(org.id), user_id=str(ctx.user_id))
    return org.id


async def revoke_invite(ctx: RequestContext, invite_id: uuid.UUID) -> None:
    invite = await ctx.session.get(OrgInvite, invite_id)
    if invite is None:
        raise OrgError(ErrorCode.NOT_FOUND, "Invite not found")
    await require_org_role(ctx.session, invite.org_id, ctx.user_id, OrgRole.ADMIN)
    await ctx.session.delete(invite)
    await ctx.session.flush()
    log.info("invite.revoked", org_id=str(invite.org_id), invite_id=str(invite_id))


async def list_pending_invites(ctx: RequestContext, org_id: uuid.UUID) -> list[dict]:
    await require_org_role(ctx.session, org_id, ctx.user_id, OrgRole.ADMIN)
    result = await ctx.session.execute(
        select(OrgInvite).where(OrgInvite.org_id == org_id).order_by(OrgInvite.created_at)
    )
    now = now_ms()
    return [
        {
            "id": invite.id,
            "org_id": invite.org_id,
            "email": invite.email,
            "is_admin": invite.is_admin,
            "expires_at": invite.expires_at,
            "expired": now > invite.expires_at,
            "created_at": invite.created_at,
        }
        for invite in result.scalars().all()
    ]
