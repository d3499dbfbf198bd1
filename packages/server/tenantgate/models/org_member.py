"""Organization membership (one row per org and user)."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class OrgMember(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "org_members"
    __table_args__ = (sa.UniqueConstraint("org_id", "user_id", name="uq_org_members_org_user"),)

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    is_admin: bool = Field(default=False, nullable=False)
