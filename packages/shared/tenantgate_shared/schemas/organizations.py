"""
Organization-related Pydantic schemas shared between server and clients.

Covers: org CRUD request/response, membership views, ownership transfer.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .common import OrgRole

SLUG_PATTERN = r"^[a-z0-9][a-z0-9-]*[a-z0-9]$"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Organization display name")
    slug: str = Field(
        ...,
        min_length=2,
        max_length=50,
        pattern=SLUG_PATTERN,
        description="URL-safe org identifier",
    )


class OrgUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=2, max_length=50, pattern=SLUG_PATTERN)


class SetAdminRequest(BaseModel):
    is_admin: bool


class TransferOwnershipRequest(BaseModel):
    new_owner_user_id: uuid.UUID


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    owner_user_id: uuid.UUID
    status: str
    created_at: datetime
    updated_at: int

    model_config = {"from_attributes": True}


class OrgPublicResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str

    model_config = {"from_attributes": True}


class OrgCreatedResponse(BaseModel):
    org_id: uuid.UUID


class MyOrgItem(BaseModel):
    org: OrgResponse
    role: OrgRole  # the requesting user's role in this org


class MembershipResponse(BaseModel):
    member_id: Optional[uuid.UUID] = None
    role: OrgRole


class OrgUserInfo(BaseModel):
    id: uuid.UUID
    email: Optional[str] = None
    name: Optional[str] = None

    model_config = {"from_attributes": True}


class MemberItem(BaseModel):
    member_id: Optional[uuid.UUID] = None  # the owner may have no membership row
    user_id: uuid.UUID
    role: OrgRole
    user: Optional[OrgUserInfo] = None


class SlugAvailability(BaseModel):
    available: bool
