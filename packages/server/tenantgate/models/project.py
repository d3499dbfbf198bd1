"""Project model (ACL, soft delete; parent of tasks)."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import EditorsMixin, OrgScopedMixin, SoftDeleteMixin


class Project(OrgScopedMixin, EditorsMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "projects"

    name: str = Field(nullable=False)
    description: Optional[str] = None
    status: str = Field(default="active", nullable=False)  # active | paused | done
