"""
Generated endpoints for org-scoped resource tables.

For every registered table `{table}`:

GET    /api/v1/orgs/{org_id}/{table}                         List (paginated)
POST   /api/v1/orgs/{org_id}/{table}                         Create
POST   /api/v1/orgs/{org_id}/{table}/bulk                    Bulk create (admin)
PATCH  /api/v1/orgs/{org_id}/{table}/bulk                    Bulk update (admin)
POST   /api/v1/orgs/{org_id}/{table}/bulk-delete             Bulk remove (admin)
GET    /api/v1/orgs/{org_id}/{table}/{id}                    Read
PATCH  /api/v1/orgs/{org_id}/{table}/{id}                    Update
DELETE /api/v1/orgs/{org_id}/{table}/{id}                    Remove
POST   /api/v1/orgs/{org_id}/{table}/{id}/restore            Restore (soft delete tables)
GET    /api/v1/orgs/{org_id}/{table}/{id}/editors            Editors (acl tables)
POST   /api/v1/orgs/{org_id}/{table}/{id}/editors            Add editor
PUT    /api/v1/orgs/{org_id}/{table}/{id}/editors            Replace editors
DELETE /api/v1/orgs/{org_id}/{table}/{id}/editors/{user_id}  Remove editor
"""

# No `from __future__ import annotations`: endpoint signatures below use
# per-table schema classes that FastAPI must see as real types.

import uuid
from typing import Any, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, create_model
from sqlmodel import SQLModel

from tenantgate.core.auth import RequestContext, get_request_context
from tenantgate.services.org_crud import OrgCrudHandlers
from tenantgate.services.registry import ResourceDefinition
from tenantgate_shared.schemas.resources import (
    BulkRemoveRequest,
    BulkRemoveResponse,
    EditorAdd,
    EditorItem,
    EditorsSet,
)


def serialize(record: SQLModel) -> dict[str, Any]:
    return record.model_dump(mode="json")


def _bulk_models(definition: ResourceDefinition, bulk_max: int) -> tuple[type[BaseModel], type[BaseModel]]:
    base = definition.model.__name__
    bulk_create = create_model(
        f"{base}BulkCreate",
        items=(List[definition.create_schema], Field(..., max_length=bulk_max)),
    )
    bulk_update = create_model(
        f"{base}BulkUpdate",
        ids=(List[uuid.UUID], Field(..., max_length=bulk_max)),
        data=(definition.update_schema, ...),
    )
    return bulk_create, bulk_update


def build_resource_router(
    definition: ResourceDefinition, handlers: OrgCrudHandlers, bulk_max: int = 100
) -> APIRouter:
    name = definition.name
    CreateSchema = definition.create_schema
    UpdateSchema = definition.update_schema
    BulkCreate, BulkUpdate = _bulk_models(definition, bulk_max)

    router = APIRouter(prefix=f"/orgs/{{org_id}}/{name}", tags=[name.capitalize()])

    @router.get("")
    async def list_records(
        org_id: uuid.UUID,
        page: int = Query(1, ge=1),
        per_page: int = Query(50, ge=1, le=bulk_max),
        include_deleted: bool = False,
        ctx: RequestContext = Depends(get_request_context),
    ):
        result = await handlers.list(
            ctx, org_id, page=page, per_page=per_page, include_deleted=include_deleted
        )
        return {"data": [serialize(r) for r in result["data"]], "pagination": result["pagination"]}

    @router.post("", status_code=201)
    async def create_record(
        org_id: uuid.UUID,
        body: CreateSchema,
        ctx: RequestContext = Depends(get_request_context),
    ):
        return serialize(await handlers.create(ctx, org_id, body))

    # Bulk routes are declared before /{record_id} so "bulk" is never parsed as an id
    @router.post("/bulk", status_code=201)
    async def bulk_create(
        org_id: uuid.UUID,
        body: BulkCreate,
        ctx: RequestContext = Depends(get_request_context),
    ):
        records = await handlers.bulk_create(ctx, org_id, body.items)
        return {"data": [serialize(r) for r in records]}

    @router.patch("/bulk")
    async def bulk_update(
        org_id: uuid.UUID,
        body: BulkUpdate,
        ctx: RequestContext = Depends(get_request_context),
    ):
        records = await handlers.bulk_update(ctx, org_id, body.ids, body.data)
        return {"data": [serialize(r) for r in records]}

    @router.post("/bulk-delete", response_model=BulkRemoveResponse)
    async def bulk_remove(
        org_id: uuid.UUID,
        body: BulkRemoveRequest,
        ctx: RequestContext = Depends(get_request_context),
    ):
        return BulkRemoveResponse(deleted=await handlers.bulk_remove(ctx, org_id, body.ids))

    @router.get("/{record_id}")
    async def read_record(
        org_id: uuid.UUID,
        record_id: uuid.UUID,
        include_deleted: bool = False,
        ctx: RequestContext = Depends(get_request_context),
    ):
        record = await handlers.read(ctx, org_id, record_id, include_deleted=include_deleted)
        return serialize(record)

    @router.patch("/{record_id}")
    async def update_record(
        org_id: uuid.UUID,
        record_id: uuid.UUID,
        body: UpdateSchema,
        ctx: RequestContext = Depends(get_request_context),
    ):
        return serialize(await handlers.update(ctx, org_id, record_id, body))

    @router.delete("/{record_id}", status_code=204)
    async def remove_record(
        org_id: uuid.UUID,
        record_id: uuid.UUID,
        ctx: RequestContext = Depends(get_request_context),
    ):
        await handlers.remove(ctx, org_id, record_id)

    if handlers.restore is not None:

        @router.post("/{record_id}/restore")
        async def restore_record(
            org_id: uuid.UUID,
            record_id: uuid.UUID,
            ctx: RequestContext = Depends(get_request_context),
        ):
            return serialize(await handlers.restore(ctx, org_id, record_id))

    if handlers.editors is not None:

        @router.get("/{record_id}/editors", response_model=List[EditorItem])
        async def list_editors(
            org_id: uuid.UUID,
            record_id: uuid.UUID,
            ctx: RequestContext = Depends(get_request_context),
        ):
            return await handlers.editors(ctx, org_id, record_id)

        @router.post("/{record_id}/editors")
        async def add_editor(
            org_id: uuid.UUID,
            record_id: uuid.UUID,
            body: EditorAdd,
            ctx: RequestContext = Depends(get_request_context),
        ):
            return serialize(await handlers.add_editor(ctx, org_id, record_id, body.editor_id))

        @router.put("/{record_id}/editors")
        async def set_editors(
            org_id: uuid.UUID,
            record_id: uuid.UUID,
            body: EditorsSet,
            ctx: RequestContext = Depends(get_request_context),
        ):
            return serialize(await handlers.set_editors(ctx, org_id, record_id, body.editor_ids))

        @router.delete("/{record_id}/editors/{editor_id}")
        async def remove_editor(
            org_id: uuid.UUID,
            record_id: uuid.UUID,
            editor_id: uuid.UUID,
            ctx: RequestContext = Depends(get_request_context),
        ):
            return serialize(await handlers.remove_editor(ctx, org_id, record_id, editor_id))

    return router
