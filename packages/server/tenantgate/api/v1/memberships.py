"""
Membership, invite and join-request endpoints.

Org-scoped:
GET    /api/v1/orgs/{org_id}/membership            Caller's membership (or null)
GET    /api/v1/orgs/{org_id}/members               Owner first, then members
POST   /api/v1/orgs/{org_id}/leave                 Leave the org
POST   /api/v1/orgs/{org_id}/transfer-ownership    Hand the org to an admin
POST   /api/v1/orgs/{org_id}/invites               Issue an invite (admin)
GET    /api/v1/orgs/{org_id}/invites               Pending invites (admin)
POST   /api/v1/orgs/{org_id}/join-requests         Ask to join
GET    /api/v1/orgs/{org_id}/join-requests         Pending requests (admin)
GET    /api/v1/orgs/{org_id}/join-requests/mine    Caller's pending request

By id:
PUT    /api/v1/members/{member_id}/admin           Grant / revoke admin (owner)
DELETE /api/v1/members/{member_id}                 Remove a member (admin)
POST   /api/v1/invites/accept                      Accept an invite by token
DELETE /api/v1/invites/{invite_id}                 Revoke an invite (admin)
POST   /api/v1/join-requests/{request_id}/approve  Approve (admin)
POST   /api/v1/join-requests/{request_id}/reject   Reject (admin)
DELETE /api/v1/join-requests/{request_id}          Cancel own pending request
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from tenantgate.api.deps import get_app_settings
from tenantgate.core.auth import RequestContext, get_request_context
from tenantgate.core.config import Settings
from tenantgate.services import invites as invite_service
from tenantgate.services import join_requests as join_service
from tenantgate.services import members as member_service
from tenantgate_shared.schemas.invites import (
    AcceptInviteRequest,
    AcceptInviteResponse,
    ApproveJoinRequest,
    InviteCreatedResponse,
    InviteCreateRequest,
    InviteResponse,
    JoinRequestCreate,
    JoinRequestCreatedResponse,
    JoinRequestItem,
    JoinRequestResponse,
)
from tenantgate_shared.schemas.organizations import (
    MemberItem,
    MembershipResponse,
    SetAdminRequest,
    TransferOwnershipRequest,
)

# ---------------------------------------------------------------------------
# Org-scoped routes
# ---------------------------------------------------------------------------
router_scoped = APIRouter(prefix="/orgs/{org_id}", tags=["Members"])


@router_scoped.get("/membership", response_model=Optional[MembershipResponse])
async def get_membership(org_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    return await member_service.get_membership(ctx, org_id)


@router_scoped.get("/members", response_model=list[MemberItem])
async def list_members(org_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    return await member_service.list_members(ctx, org_id)


@router_scoped.post("/leave", status_code=204)
async def leave_org(org_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    await member_service.leave_org(ctx, org_id)


@router_scoped.post("/transfer-ownership", status_code=204)
async def transfer_ownership(
    org_id: uuid.UUID,
    body: TransferOwnershipRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    await member_service.transfer_ownership(ctx, org_id, body.new_owner_user_id)


@router_scoped.post("/invites", response_model=InviteCreatedResponse, status_code=201)
async def create_invite(
    org_id: uuid.UUID,
    body: InviteCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    settings: Settings = Depends(get_app_settings),
):
    invite = await invite_service.create_invite(ctx, org_id, body.email, body.is_admin, settings)
    return InviteCreatedResponse(invite_id=invite.id, token=invite.token)


@router_scoped.get("/invites", response_model=list[InviteResponse])
async def pending_invites(org_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    return await invite_service.list_pending_invites(ctx, org_id)


@router_scoped.post("/join-requests", response_model=JoinRequestCreatedResponse, status_code=201)
async def request_join(
    org_id: uuid.UUID,
    body: Optional[JoinRequestCreate] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    request = await join_service.request_join(ctx, org_id, body.message if body else None)
    return JoinRequestCreatedResponse(request_id=request.id)


@router_scoped.get("/join-requests", response_model=list[JoinRequestItem])
async def pending_join_requests(
    org_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)
):
    items = await join_service.list_pending_join_requests(ctx, org_id)
    return [
        JoinRequestItem(request=JoinRequestResponse.model_validate(item["request"]), user=item["user"])
        for item in items
    ]


@router_scoped.get("/join-requests/mine", response_model=Optional[JoinRequestResponse])
async def my_join_request(org_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    request = await join_service.get_my_join_request(ctx, org_id)
    return JoinRequestResponse.model_validate(request) if request else None


# ---------------------------------------------------------------------------
# Routes addressed by member / invite / request id
# ---------------------------------------------------------------------------
router_global = APIRouter(tags=["Members"])


@router_global.put("/members/{member_id}/admin")
async def set_admin(
    member_id: uuid.UUID,
    body: SetAdminRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    member = await member_service.set_admin(ctx, member_id, body.is_admin)
    return {"member_id": str(member.id), "is_admin": member.is_admin}


@router_global.delete("/members/{member_id}", status_code=204)
async def remove_member(member_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    await member_service.remove_member(ctx, member_id)


@router_global.post("/invites/accept", response_model=AcceptInviteResponse)
async def accept_invite(
    body: AcceptInviteRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    org_id = await invite_service.accept_invite(ctx, body.token)
    return AcceptInviteResponse(org_id=org_id)


@router_global.delete("/invites/{invite_id}", status_code=204)
async def revoke_invite(invite_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)):
    await invite_service.revoke_invite(ctx, invite_id)


@router_global.post("/join-requests/{request_id}/approve", response_model=JoinRequestResponse)
async def approve_join_request(
    request_id: uuid.UUID,
    body: Optional[ApproveJoinRequest] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    request = await join_service.approve_join_request(
        ctx, request_id, body.is_admin if body else False
    )
    return JoinRequestResponse.model_validate(request)


@router_global.post("/join-requests/{request_id}/reject", response_model=JoinRequestResponse)
async def reject_join_request(
    request_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)
):
    request = await join_service.reject_join_request(ctx, request_id)
    return JoinRequestResponse.model_validate(request)


@router_global.delete("/join-requests/{request_id}", status_code=204)
async def cancel_join_request(
    request_id: uuid.UUID, ctx: RequestContext = Depends(get_request_context)
):
    await join_service.cancel_join_request(ctx, request_id)
