"""
Role resolution for organization members.

A role is never stored. It is derived on every request from two facts: the
org's `owner_user_id` and the caller's membership row (if any).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantgate.core.errors import OrgError
from tenantgate.models.org_member import OrgMember
from tenantgate.models.organization import Organization
from tenantgate_shared.schemas.common import ROLE_LEVEL, ErrorCode, OrgRole, OrgStatus


def resolve_role(
    org: Organization, membership: Optional[OrgMember], user_id: Optional[uuid.UUID] = None
) -> OrgRole:
    """Owner beats everything; otherwise the membership row decides."""
    candidate = user_id if user_id is not None else (membership.user_id if membership else None)
    if candidate is not None and org.owner_user_id == candidate:
        return OrgRole.OWNER
    if membership is None:
        return OrgRole.NONE
    return OrgRole.ADMIN if membership.is_admin else OrgRole.MEMBER


def has_role(role: OrgRole, min_role: OrgRole) -> bool:
    return ROLE_LEVEL[role] >= ROLE_LEVEL[min_role]


async def get_org_member(
    session: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[OrgMember]:
    result = await session.execute(
        select(OrgMember).where(OrgMember.org_id == org_id, OrgMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_active_org(session: AsyncSession, org_id: uuid.UUID) -> Organization:
    """Load an org; missing and deleting orgs are both NOT_FOUND."""
    org = await session.get(Organization, org_id)
    if org is None or org.status != OrgStatus.ACTIVE.value:
        raise OrgError(ErrorCode.NOT_FOUND, "Organization not found")
    return org


@dataclass
class OrgAccess:
    """The caller's standing in one org, resolved for a single request."""

    org: Organization
    user_id: uuid.UUID
    membership: Optional[OrgMember]
    role: OrgRole

    @property
    def is_owner(self) -> bool:
        return self.role == OrgRole.OWNER


async def get_org_access(
    session: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID
) -> OrgAccess:
    org = await get_active_org(session, org_id)
    membership = await get_org_member(session, org_id, user_id)
    return OrgAccess(
        org=org,
        user_id=user_id,
        membership=membership,
        role=resolve_role(org, membership, user_id),
    )


async def require_org_member(
    session: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID
) -> OrgAccess:
    access = await get_org_access(session, org_id, user_id)
    if access.role == OrgRole.NONE:
        raise OrgError(ErrorCode.NOT_ORG_MEMBER)
    return access


async def require_org_role(
    session: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID, min_role: OrgRole
) -> OrgAccess:
    access = await require_org_member(session, org_id, user_id)
    if not has_role(access.role, min_role):
        raise OrgError(ErrorCode.INSUFFICIENT_ORG_ROLE)
    return access
