"""Base mixins for SQLModel tables."""

from datetime import datetime, timezone
import time
import uuid
from typing import List, Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Wall-clock epoch milliseconds; the unit of every engine timestamp."""
    return int(time.time() * 1000)


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    # Epoch ms; compared verbatim by optimistic concurrency checks
    updated_at: int = Field(default_factory=now_ms, nullable=False, sa_type=sa.BigInteger)


class UUIDMixin(SQLModel):
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )


class OrgScopedMixin(UUIDMixin, TimestampMixin):
    """Columns every table served by the org CRUD factory carries."""

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)


class EditorsMixin(SQLModel):
    editors: List[str] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)


class SoftDeleteMixin(SQLModel):
    deleted: bool = Field(default=False, nullable=False, index=True)
    deleted_at: Optional[int] = Field(default=None, sa_type=sa.BigInteger)
