"""
Join-request lifecycle: pending -> approved | rejected, or cancelled by the
requester (row deleted). Approved and rejected rows are kept.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlmodel import select

from tenantgate.core.auth import RequestContext
from tenantgate.core.errors import OrgError
from tenantgate.core.roles import get_org_access, get_org_member, require_org_role
from tenantgate.models.base import now_ms
from tenantgate.models.org_invite import OrgJoinRequest
from tenantgate.models.org_member import OrgMember
from tenantgate.models.user import User
from tenantgate.services.members import user_info
from tenantgate_shared.schemas.common import ErrorCode, JoinRequestStatus, OrgRole

log = structlog.get_logger()

PENDING = JoinRequestStatus.PENDING.value


async def _pending_for(
    ctx: RequestContext, org_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[OrgJoinRequest]:
    result = await ctx.session.execute(
        select(OrgJoinRequest).where(
            OrgJoinRequest.org_id == org_id,
            OrgJoinRequest.user_id == user_id,
            OrgJoinRequest.status == PENDING,
        )
    )
    return result.scalars().first()


async def request_join(
    ctx: RequestContext, org_id: uuid.UUID, message: Optional[str] = None
) -> OrgJoinRequest:
    access = await get_org_access(ctx.session, org_id, ctx.user_id)
    if access.role != OrgRole.NONE:
        raise OrgError(ErrorCode.ALREADY_ORG_MEMBER)
    if await _pending_for(ctx, org_id, ctx.user_id) is not None:
        raise OrgError(ErrorCode.JOIN_REQUEST_EXISTS)

    request = OrgJoinRequest(org_id=org_id, user_id=ctx.user_id, message=message, status=PENDING)
    ctx.session.add(request)
    await ctx.session.flush()
    log.info("join_request.created", org_id=str(org_id), user_id=str(ctx.user_id))
    return request


def _require_pending(request: OrgJoinRequest) -> None:
    if request.status != PENDING:
        raise OrgError(ErrorCode.NOT_FOUND, "Join request not found")


async def approve_join_request(
    ctx: RequestContext, request_id: uuid.UUID, is_admin: bool = False
) -> OrgJoinRequest:
    request = await ctx.session.get(OrgJoinRequest, request_id)
    if request is None:
        raise OrgError(ErrorCode.NOT_FOUND, "Join request not found")
    access = await require_org_role(ctx.session, request.org_id, ctx.user_id, OrgRole.ADMIN)
    _require_pending(request)

    if request.user_id == access.org.owner_user_id:
        raise OrgError(ErrorCode.ALREADY_ORG_MEMBER)
    if await get_org_member(ctx.session, request.org_id, request.user_id) is not None:
        raise OrgError(ErrorCode.ALREADY_ORG_MEMBER)

    ctx.session.add(OrgMember(org_id=request.org_id, user_id=request.user_id, is_admin=is_admin))
    request.status = JoinRequestStatus.APPROVED.value
    request.updated_at = now_ms()
    ctx.session.add(request)
    await ctx.session.flush()
    log.info(
        "join_request.approved",
        org_id=str(request.org_id),
        user_id=str(request.user_id),
        is_admin=is_admin,
    )
    return request


async def reject_join_request(ctx: RequestContext, request_id: uuid.UUID) -> OrgJoinRequest:
    request = await ctx.session.get(OrgJoinRequest, request_id)
    if request is None:
        raise OrgError(ErrorCode.NOT_FOUND, "Join request not found")
    await require_org_role(ctx.session, request.org_id, ctx.user_id, OrgRole.ADMIN)
    _require_pending(request)

    request.status = JoinRequestStatus.REJECTED.value
    request.updated_at = now_ms()
    ctx.session.add(request)
    await ctx.session.flush()
    log.info("join_request.rejected", org_id=str(request.org_id), user_id=str(request.user_id))
    return request


async def cancel_join_request(ctx: RequestContext, request_id: uuid.UUID) -> None:
    request = await ctx.session.get(OrgJoinRequest, request_id)
    if request is None:
        raise OrgError(ErrorCode.NOT_FOUND, "Join request not found")
    if request.user_id != ctx.user_id:
        raise OrgError(ErrorCode.FORBIDDEN)
    _require_pending(request)

    await ctx.session.delete(request)
    await ctx.session.flush()
    log.info("join_request.cancelled", org_id=str(request.org_id), user_id=str(ctx.user_id))


async def list_pending_join_requests(ctx: RequestContext, org_id: uuid.UUID) -> list[dict]:
    await require_org_role(ctx.session, org_id, ctx.user_id, OrgRole.ADMIN)
    result = await ctx.session.execute(
        select(OrgJoinRequest, User)
        .join(User, User.id == OrgJoinRequest.user_id, isouter=True)
        .where(OrgJoinRequest.org_id == org_id, OrgJoinRequest.status == PENDING)
        .order_by(OrgJoinRequest.created_at)
    )
    return [{"request": request, "user": user_info(user)} for request, user in result.all()]


async def get_my_join_request(ctx: RequestContext, org_id: uuid.UUID) -> Optional[OrgJoinRequest]:
    return await _pending_for(ctx, org_id, ctx.user_id)
