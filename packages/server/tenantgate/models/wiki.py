"""Wiki page model (soft delete)."""

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import OrgScopedMixin, SoftDeleteMixin


class Wiki(OrgScopedMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "wikis"
    __table_args__ = (sa.Index("ix_wikis_org_slug", "org_id", "slug"),)

    title: str = Field(nullable=False)
    slug: str = Field(nullable=False)
    content: str = Field(default="", nullable=False)
    status: str = Field(default="draft", nullable=False)  # draft | published
