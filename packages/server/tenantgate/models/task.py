"""Task model (belongs to a project, inherits the project's ACL)."""

import uuid

from sqlmodel import Field, SQLModel

from .base import OrgScopedMixin


class Task(OrgScopedMixin, SQLModel, table=True):
    __tablename__ = "tasks"

    project_id: uuid.UUID = Field(foreign_key="projects.id", nullable=False, index=True)
    title: str = Field(nullable=False)
    done: bool = Field(default=False, nullable=False)
    priority: str = Field(nullable=False, default="medium")  # low | medium | high | critical
