"""Invite and join-request schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .common import JoinRequestStatus
from .organizations import OrgUserInfo


class InviteCreateRequest(BaseModel):
    email: EmailStr
    is_admin: bool = False


class InviteCreatedResponse(BaseModel):
    invite_id: uuid.UUID
    token: str


class InviteResponse(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    email: str
    is_admin: bool
    expires_at: int
    expired: bool = False
    created_at: datetime

    model_config = {"from_attributes": True}


class AcceptInviteRequest(BaseModel):
    token: str = Field(..., min_length=1)


class AcceptInviteResponse(BaseModel):
    org_id: uuid.UUID


class JoinRequestCreate(BaseModel):
    message: Optional[str] = Field(None, max_length=500)


class JoinRequestCreatedResponse(BaseModel):
    request_id: uuid.UUID


class ApproveJoinRequest(BaseModel):
    is_admin: bool = False


class JoinRequestResponse(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    user_id: uuid.UUID
    message: Optional[str] = None
    status: JoinRequestStatus
    created_at: datetime
    updated_at: int

    model_config = {"from_attributes": True}


class JoinRequestItem(BaseModel):
    request: JoinRequestResponse
    user: Optional[OrgUserInfo] = None
