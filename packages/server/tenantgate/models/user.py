"""User model (identity rows, read for display)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, _utcnow


class User(UUIDMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: Optional[str] = Field(default=None, unique=True, index=True)
    name: Optional[str] = None
    created_at: datetime = Field(
        default_factory=_utcnow, nullable=False, sa_type=sa.DateTime(timezone=True)
    )
