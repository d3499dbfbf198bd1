"""
Schemas for org-scoped resources: editor management and the demo tables
(projects, tasks, wikis) served by the generated CRUD endpoints.
"""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class OptimisticUpdate(BaseModel):
    """Mixin for update payloads: the last `updated_at` the client saw."""

    expected_updated_at: Optional[int] = Field(
        None,
        description="Reject the update with CONFLICT if the stored updated_at differs",
    )


class EditorAdd(BaseModel):
    editor_id: UUID


class EditorsSet(BaseModel):
    editor_ids: List[UUID] = Field(default_factory=list, max_length=100)


class EditorItem(BaseModel):
    user_id: UUID
    email: str = ""
    name: str = ""


class BulkRemoveRequest(BaseModel):
    ids: List[UUID] = Field(..., max_length=100)


class BulkRemoveResponse(BaseModel):
    deleted: int


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: str = Field(default="active", pattern=r"^(active|paused|done)$")


class ProjectUpdate(OptimisticUpdate):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern=r"^(active|paused|done)$")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    project_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    done: bool = False
    priority: str = Field(default="medium", pattern=r"^(low|medium|high|critical)$")


class TaskUpdate(OptimisticUpdate):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    done: Optional[bool] = None
    priority: Optional[str] = Field(None, pattern=r"^(low|medium|high|critical)$")


# ---------------------------------------------------------------------------
# Wiki pages
# ---------------------------------------------------------------------------


class WikiCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    content: str = ""
    status: str = Field(default="draft", pattern=r"^(draft|published)$")


class WikiUpdate(OptimisticUpdate):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = Field(None, min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    content: Optional[str] = None
    status: Optional[str] = Field(None, pattern=r"^(draft|published)$")
