"""Organization invites and join requests."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, _utcnow


class OrgInvite(UUIDMixin, SQLModel, table=True):
    __tablename__ = "org_invites"

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    email: str = Field(nullable=False)
    token: str = Field(unique=True, nullable=False, index=True)
    is_admin: bool = Field(default=False, nullable=False)
    expires_at: int = Field(nullable=False, sa_type=sa.BigInteger)  # epoch ms
    created_at: datetime = Field(
        default_factory=_utcnow, nullable=False, sa_type=sa.DateTime(timezone=True)
    )


class OrgJoinRequest(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "org_join_requests"
    __table_args__ = (sa.Index("ix_org_join_requests_org_status", "org_id", "status"),)

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    message: Optional[str] = None
    status: str = Field(default="pending", nullable=False)  # pending | approved | rejected
