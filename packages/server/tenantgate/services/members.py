"""
Membership management: listing members, admin flags, removal, leaving and
ownership transfer.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlmodel import select

from tenantgate.core.auth import RequestContext
from tenantgate.core.errors import OrgError
from tenantgate.core.roles import (
    get_org_access,
    get_org_member,
    require_org_member,
    require_org_role,
    resolve_role,
)
from tenantgate.models.base import now_ms
from tenantgate.models.org_member import OrgMember
from tenantgate.models.user import User
from tenantgate_shared.schemas.common import ErrorCode, OrgRole

log = structlog.get_logger()


def user_info(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {"id": user.id, "email": user.email, "name": user.name}


async def get_membership(ctx: RequestContext, org_id: uuid.UUID) -> Optional[dict]:
    """The caller's membership in the org, or None for non-members."""
    access = await get_org_access(ctx.session, org_id, ctx.user_id)
    if access.role == OrgRole.NONE:
        return None
    return {
        "member_id": access.membership.id if access.membership else None,
        "role": access.role,
    }


async def list_members(ctx: RequestContext, org_id: uuid.UUID) -> list[dict]:
    """Owner first, then every membership row."""
    access = await require_org_member(ctx.session, org_id, ctx.user_id)
    org = access.org

    result = await ctx.session.execute(
        select(OrgMember, User)
        .join(User, User.id == OrgMember.user_id, isouter=True)
        .where(OrgMember.org_id == org_id)
        .order_by(OrgMember.created_at)
    )
    rows = result.all()

    owner_row = next((m for m, _ in rows if m.user_id == org.owner_user_id), None)
    owner = await ctx.session.get(User, org.owner_user_id)
    members = [
        {
            "member_id": owner_row.id if owner_row else None,
            "user_id": org.owner_user_id,
            "role": OrgRole.OWNER,
            "user": user_info(owner),
        }
    ]
    for member, user in rows:
        if member.user_id == org.owner_user_id:
            continue
        members.append(
            {
                "member_id": member.id,
                "user_id": member.user_id,
                "role": resolve_role(org, member),
                "user": user_info(user),
            }
        )
    return members


async def _load_member(ctx: RequestContext, member_id: uuid.UUID) -> OrgMember:
    member = await ctx.session.get(OrgMember, member_id)
    if member is None:
        raise OrgError(ErrorCode.NOT_FOUND, "Member not found")
    return member


async def set_admin(ctx: RequestContext, member_id: uuid.UUID, is_admin: bool) -> OrgMember:
    """Grant or revoke admin (owner only)."""
    member = await _load_member(ctx, member_id)
    access = await require_org_role(ctx.session, member.org_id, ctx.user_id, OrgRole.OWNER)
    if member.user_id == access.org.owner_user_id:
        raise OrgError(ErrorCode.CANNOT_MODIFY_OWNER)

    member.is_admin = is_admin
    member.updated_at = now_ms()
    ctx.session.add(member)
    await ctx.session.flush()

    log.info(
        "member.admin_set",
        org_id=str(member.org_id),
        user_id=str(member.user_id),
        is_admin=is_admin,
    )
    return member


async def remove_member(ctx: RequestContext, member_id: uuid.UUID) -> None:
    member = await _load_member(ctx, member_id)
    access = await require_org_role(ctx.session, member.org_id, ctx.user_id, OrgRole.ADMIN)
    target_role = resolve_role(access.org, member)

    if target_role == OrgRole.OWNER:
        raise OrgError(ErrorCode.CANNOT_MODIFY_OWNER)
    if target_role == OrgRole.ADMIN and not access.is_owner:
        raise OrgError(ErrorCode.CANNOT_MODIFY_ADMIN)

    await ctx.session.delete(member)
    await ctx.session.flush()
    log.info("member.removed", org_id=str(member.org_id), user_id=str(member.user_id))


async def leave_org(ctx: RequestContext, org_id: uuid.UUID) -> None:
    access = await require_org_member(ctx.session, org_id, ctx.user_id)
    if access.is_owner:
        raise OrgError(ErrorCode.MUST_TRANSFER_OWNERSHIP)

    await ctx.session.delete(access.membership)
    await ctx.session.flush()
    log.info("member.left", org_id=str(org_id), user_id=str(ctx.user_id))


async def transfer_ownership(
    ctx: RequestContext, org_id: uuid.UUID, new_owner_user_id: uuid.UUID
) -> None:
    """Hand the org to an existing admin. Membership rows are left as they are."""
    access = await require_org_role(ctx.session, org_id, ctx.user_id, OrgRole.OWNER)
    org = access.org

    target = await get_org_member(ctx.session, org_id, new_owner_user_id)
    if resolve_role(org, target, new_owner_user_id) != OrgRole.ADMIN:
        raise OrgError(ErrorCode.TARGET_MUST_BE_ADMIN)

    org.owner_user_id = new_owner_user_id
    org.updated_at = now_ms()
    ctx.session.add(org)
    await ctx.session.flush()

    log.info(
        "org.ownership_transferred",
        org_id=str(org_id),
        from_user=str(ctx.user_id),
        to_user=str(new_owner_user_id),
    )
