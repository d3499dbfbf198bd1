"""
Org-scoped CRUD factory.

`make_org_crud` turns a table and its options into a fixed set of async
handlers. Every handler runs the same pipeline:

    rate limit (writes) -> role -> permission -> before hooks
        -> storage -> after hooks

Handlers take a `RequestContext` (session + caller) and raise `OrgError`
on any failed check. The session is committed or rolled back by the caller.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, func
from sqlmodel import SQLModel, select

from tenantgate.core.acl import Operation, can_access, editor_ids
from tenantgate.core.auth import RequestContext
from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import OrgError, validation_failed
from tenantgate.core.hooks import HookContext, HookPipeline
from tenantgate.core.rate_limit import RateLimiter
from tenantgate.core.roles import OrgAccess, get_org_member, require_org_member
from tenantgate.models.base import now_ms
from tenantgate.models.user import User
from tenantgate.services.registry import (  # noqa: F401  re-exported
    AclFrom,
    CascadeEdge,
    OrgCrudOptions,
    ResourceDefinition,
    ResourceRegistry,
)
from tenantgate_shared.schemas.common import ErrorCode

log = structlog.get_logger()

Handler = Callable[..., Awaitable[Any]]

# Columns a payload can never write
PROTECTED_FIELDS = frozenset(
    {"id", "org_id", "user_id", "created_at", "updated_at", "editors", "deleted", "deleted_at"}
)


@dataclass
class OrgCrudHandlers:
    list: Handler
    read: Handler
    create: Handler
    update: Handler
    remove: Handler
    bulk_create: Handler
    bulk_remove: Handler
    bulk_update: Handler
    add_editor: Optional[Handler] = None
    remove_editor: Optional[Handler] = None
    set_editors: Optional[Handler] = None
    editors: Optional[Handler] = None
    restore: Optional[Handler] = None


def next_stamp(previous: Optional[int]) -> int:
    """A fresh `updated_at` that is strictly greater than the previous one."""
    now = now_ms()
    if previous is not None and now <= previous:
        return previous + 1
    return now


def snapshot(record: SQLModel) -> dict[str, Any]:
    return record.model_dump()


class _OrgCrud:
    def __init__(
        self,
        model: type[SQLModel],
        options: OrgCrudOptions,
        create_schema: type[BaseModel],
        update_schema: type[BaseModel],
        pipeline: Optional[HookPipeline],
        rate_limiter: Optional[RateLimiter],
        settings: Settings,
        table: str,
        registry: Optional[ResourceRegistry],
    ):
        self.model = model
        self.options = options
        self.create_schema = create_schema
        self.update_schema = update_schema
        self.pipeline = pipeline or HookPipeline()
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.table = table
        self.registry = registry
        self.use_acl = options.acl or options.acl_from is not None
        self.columns = set(model.model_fields) - PROTECTED_FIELDS

        if (options.acl_from or options.cascade) and registry is None:
            raise ValueError(f"{table}: acl_from and cascade need a resource registry")

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _throttle(self, ctx: RequestContext, endpoint: str) -> None:
        if self.options.rate_limit and self.rate_limiter:
            await self.rate_limiter.hit(self.options.rate_limit, self.table, endpoint, ctx.user_id)

    def _hook_ctx(self, ctx: RequestContext, org_id: uuid.UUID) -> HookContext:
        return HookContext(session=ctx.session, user_id=ctx.user_id, org_id=org_id, table=self.table)

    def _validate(self, schema: type[BaseModel], payload: Any) -> BaseModel:
        if isinstance(payload, schema):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_unset=True)
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            raise validation_failed(exc) from exc

    def _check_bulk_size(self, count: int, field: str) -> None:
        if count > self.settings.bulk_max:
            message = f"At most {self.settings.bulk_max} items per bulk operation"
            raise OrgError(ErrorCode.VALIDATION_FAILED, message, field_errors={field: message})

    def _writable(self, data: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in data.items() if k in self.columns}

    async def _get_record(
        self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID, include_deleted: bool = False
    ) -> SQLModel:
        record = await ctx.session.get(self.model, record_id)
        if record is None or record.org_id != org_id:
            raise OrgError(ErrorCode.NOT_FOUND, f"{self.table} not found")
        if self.options.soft_delete and record.deleted and not include_deleted:
            raise OrgError(ErrorCode.NOT_FOUND, f"{self.table} not found")
        return record

    async def _acl_source(self, ctx: RequestContext, org_id: uuid.UUID, record: SQLModel):
        """The row whose creator and editors govern `record`."""
        acl_from = self.options.acl_from
        if acl_from is None:
            return record
        parent_model = self.registry.get(acl_from.table).model
        parent_id = getattr(record, acl_from.field, None)
        parent = await ctx.session.get(parent_model, parent_id) if parent_id else None
        if parent is None or parent.org_id != org_id:
            return None
        return parent

    def _authorize(
        self,
        access: OrgAccess,
        operation: Operation,
        resource: Any = None,
    ) -> None:
        if can_access(access.role, operation, resource, access.user_id, self.use_acl):
            return
        if operation == Operation.UPDATE:
            raise OrgError(ErrorCode.FORBIDDEN, f"Cannot modify this {self.table} record")
        raise OrgError(ErrorCode.INSUFFICIENT_ORG_ROLE)

    async def _delete_dependents(self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID) -> None:
        for edge in self.options.cascade:
            child = self.registry.get(edge.table).model
            await ctx.session.execute(
                delete(child).where(
                    getattr(child, edge.foreign_key) == record_id,
                    child.org_id == org_id,
                )
            )

    async def _check_parent(self, ctx: RequestContext, org_id: uuid.UUID, data: dict[str, Any]) -> None:
        acl_from = self.options.acl_from
        if acl_from is None or data.get(acl_from.field) is None:
            return
        parent_def = self.registry.get(acl_from.table)
        parent = await ctx.session.get(parent_def.model, data[acl_from.field])
        missing = parent is None or parent.org_id != org_id
        if not missing and parent_def.options.soft_delete and parent.deleted:
            missing = True
        if missing:
            raise OrgError(
                ErrorCode.NOT_FOUND,
                f"{acl_from.table} not found",
                field_errors={acl_from.field: "Unknown parent record"},
            )

    async def _insert(self, ctx: RequestContext, org_id: uuid.UUID, item: BaseModel) -> SQLModel:
        data = item.model_dump()
        await self._check_parent(ctx, org_id, data)
        hook_ctx = self._hook_ctx(ctx, org_id)
        data = await self.pipeline.before_create(hook_ctx, data)

        record = self.model(**self._writable(data), org_id=org_id, user_id=ctx.user_id)
        ctx.session.add(record)
        await ctx.session.flush()

        await self.pipeline.after_create(hook_ctx, record.id, data)
        return record

    async def _patch(
        self, ctx: RequestContext, org_id: uuid.UUID, record: SQLModel, patch: dict[str, Any]
    ) -> SQLModel:
        hook_ctx = self._hook_ctx(ctx, org_id)
        prev = snapshot(record)
        patch = await self.pipeline.before_update(hook_ctx, record.id, patch, prev)

        for key, value in self._writable(patch).items():
            setattr(record, key, value)
        record.updated_at = next_stamp(record.updated_at)
        ctx.session.add(record)
        await ctx.session.flush()

        await self.pipeline.after_update(hook_ctx, record.id, patch, prev)
        return record

    async def _drop(self, ctx: RequestContext, org_id: uuid.UUID, record: SQLModel) -> None:
        """Soft- or hard-delete one record, with delete hooks."""
        hook_ctx = self._hook_ctx(ctx, org_id)
        doc = snapshot(record)
        await self.pipeline.before_delete(hook_ctx, record.id, doc)

        if self.options.soft_delete:
            record.deleted = True
            record.deleted_at = now_ms()
            record.updated_at = next_stamp(record.updated_at)
            ctx.session.add(record)
        else:
            await self._delete_dependents(ctx, org_id, record.id)
            await ctx.session.delete(record)
        await ctx.session.flush()

        await self.pipeline.after_delete(hook_ctx, record.id, doc)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def list(
        self,
        ctx: RequestContext,
        org_id: uuid.UUID,
        *,
        page: int = 1,
        per_page: int = 50,
        include_deleted: bool = False,
    ) -> dict[str, Any]:
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.LIST)
        page = max(page, 1)
        per_page = min(max(per_page, 1), self.settings.bulk_max)

        conditions = [self.model.org_id == org_id]
        if self.options.soft_delete and not include_deleted:
            conditions.append(self.model.deleted == False)  # noqa: E712

        total = (
            await ctx.session.execute(select(func.count()).select_from(self.model).where(*conditions))
        ).scalar_one()
        result = await ctx.session.execute(
            select(self.model)
            .where(*conditions)
            .order_by(self.model.created_at.desc(), self.model.updated_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return {
            "data": list(result.scalars().all()),
            "pagination": {"page": page, "per_page": per_page, "total": total},
        }

    async def read(
        self,
        ctx: RequestContext,
        org_id: uuid.UUID,
        record_id: uuid.UUID,
        *,
        include_deleted: bool = False,
    ) -> SQLModel:
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.READ)
        return await self._get_record(ctx, org_id, record_id, include_deleted)

    async def create(self, ctx: RequestContext, org_id: uuid.UUID, payload: Any) -> SQLModel:
        await self._throttle(ctx, "create")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.CREATE)
        item = self._validate(self.create_schema, payload)
        record = await self._insert(ctx, org_id, item)
        log.info("crud.created", table=self.table, id=str(record.id), org_id=str(org_id))
        return record

    async def update(
        self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID, payload: Any
    ) -> SQLModel:
        await self._throttle(ctx, "update")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        item = self._validate(self.update_schema, payload)
        record = await self._get_record(ctx, org_id, record_id)
        source = await self._acl_source(ctx, org_id, record)
        self._authorize(access, Operation.UPDATE, source)

        expected = getattr(item, "expected_updated_at", None)
        if expected is not None and record.updated_at != expected:
            raise OrgError(
                ErrorCode.CONFLICT,
                f"{self.table} was modified by someone else",
                current_updated_at=record.updated_at,
            )

        patch = item.model_dump(exclude_unset=True, exclude={"expected_updated_at"})
        return await self._patch(ctx, org_id, record, patch)

    async def remove(self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID) -> SQLModel:
        await self._throttle(ctx, "remove")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        record = await self._get_record(ctx, org_id, record_id)
        if self.options.soft_delete:
            source = await self._acl_source(ctx, org_id, record)
            self._authorize(access, Operation.UPDATE, source)
        else:
            self._authorize(access, Operation.DELETE)
        await self._drop(ctx, org_id, record)
        log.info(
            "crud.removed",
            table=self.table,
            id=str(record_id),
            soft=self.options.soft_delete,
        )
        return record

    async def restore(self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID) -> SQLModel:
        await self._throttle(ctx, "restore")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.RESTORE)
        record = await self._get_record(ctx, org_id, record_id, include_deleted=True)
        if record.deleted:
            record.deleted = False
            record.deleted_at = None
            record.updated_at = next_stamp(record.updated_at)
            ctx.session.add(record)
            await ctx.session.flush()
            log.info("crud.restored", table=self.table, id=str(record_id))
        return record

    async def bulk_create(
        self, ctx: RequestContext, org_id: uuid.UUID, items: Sequence[Any]
    ) -> list[SQLModel]:
        self._check_bulk_size(len(items), "items")
        await self._throttle(ctx, "bulk_create")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.BULK)
        validated = [self._validate(self.create_schema, item) for item in items]
        records = [await self._insert(ctx, org_id, item) for item in validated]
        log.info("crud.bulk_created", table=self.table, count=len(records), org_id=str(org_id))
        return records

    async def _bulk_targets(
        self, ctx: RequestContext, org_id: uuid.UUID, ids: Iterable[uuid.UUID]
    ) -> list[SQLModel]:
        records = []
        for record_id in dict.fromkeys(ids):
            record = await ctx.session.get(self.model, record_id)
            if record is None or record.org_id != org_id:
                continue
            if self.options.soft_delete and record.deleted:
                continue
            records.append(record)
        return records

    async def bulk_update(
        self, ctx: RequestContext, org_id: uuid.UUID, ids: Sequence[uuid.UUID], payload: Any
    ) -> list[SQLModel]:
        self._check_bulk_size(len(ids), "ids")
        await self._throttle(ctx, "bulk_update")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.BULK)
        item = self._validate(self.update_schema, payload)
        patch = item.model_dump(exclude_unset=True, exclude={"expected_updated_at"})

        updated = []
        for record in await self._bulk_targets(ctx, org_id, ids):
            updated.append(await self._patch(ctx, org_id, record, dict(patch)))
        log.info("crud.bulk_updated", table=self.table, count=len(updated), org_id=str(org_id))
        return updated

    async def bulk_remove(self, ctx: RequestContext, org_id: uuid.UUID, ids: Sequence[uuid.UUID]) -> int:
        self._check_bulk_size(len(ids), "ids")
        await self._throttle(ctx, "bulk_remove")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.BULK)

        deleted = 0
        for record in await self._bulk_targets(ctx, org_id, ids):
            await self._drop(ctx, org_id, record)
            deleted += 1
        log.info("crud.bulk_removed", table=self.table, count=deleted, org_id=str(org_id))
        return deleted

    # ------------------------------------------------------------------
    # Editors (acl / acl_from tables). With acl_from the editor list of the
    # parent row is the one read and written.
    # ------------------------------------------------------------------

    async def _editor_record(self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID):
        record = await self._get_record(ctx, org_id, record_id)
        source = await self._acl_source(ctx, org_id, record)
        if source is None:
            raise OrgError(ErrorCode.NOT_FOUND, f"{self.options.acl_from.table} not found")
        return source

    async def _require_eligible(self, ctx: RequestContext, access: OrgAccess, editor_id: uuid.UUID) -> None:
        if access.org.owner_user_id == editor_id:
            return
        if await get_org_member(ctx.session, access.org.id, editor_id) is None:
            raise OrgError(ErrorCode.NOT_ORG_MEMBER, "Editor must be a member of this organization")

    def _store_editors(self, record: SQLModel, editors: list[str]) -> None:
        record.editors = editors
        record.updated_at = next_stamp(record.updated_at)

    async def add_editor(
        self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID, editor_id: uuid.UUID
    ) -> SQLModel:
        await self._throttle(ctx, "editors")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.EDITORS)
        record = await self._editor_record(ctx, org_id, record_id)
        await self._require_eligible(ctx, access, editor_id)

        current = editor_ids(record)
        if str(editor_id) in current:
            return record
        if len(current) >= self.settings.max_editors:
            raise OrgError(
                ErrorCode.LIMIT_EXCEEDED,
                f"At most {self.settings.max_editors} editors",
                limit=self.settings.max_editors,
            )
        self._store_editors(record, current + [str(editor_id)])
        ctx.session.add(record)
        await ctx.session.flush()
        log.info("crud.editor_added", table=self.table, id=str(record_id), editor_id=str(editor_id))
        return record

    async def remove_editor(
        self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID, editor_id: uuid.UUID
    ) -> SQLModel:
        await self._throttle(ctx, "editors")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.EDITORS)
        record = await self._editor_record(ctx, org_id, record_id)

        current = editor_ids(record)
        if str(editor_id) in current:
            self._store_editors(record, [e for e in current if e != str(editor_id)])
            ctx.session.add(record)
            await ctx.session.flush()
            log.info("crud.editor_removed", table=self.table, id=str(record_id), editor_id=str(editor_id))
        return record

    async def set_editors(
        self,
        ctx: RequestContext,
        org_id: uuid.UUID,
        record_id: uuid.UUID,
        new_editor_ids: Sequence[uuid.UUID],
    ) -> SQLModel:
        await self._throttle(ctx, "editors")
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.EDITORS)
        record = await self._editor_record(ctx, org_id, record_id)

        unique = list(dict.fromkeys(new_editor_ids))
        if len(unique) > self.settings.max_editors:
            raise OrgError(
                ErrorCode.LIMIT_EXCEEDED,
                f"At most {self.settings.max_editors} editors",
                limit=self.settings.max_editors,
            )
        for editor_id in unique:
            await self._require_eligible(ctx, access, editor_id)

        self._store_editors(record, [str(e) for e in unique])
        ctx.session.add(record)
        await ctx.session.flush()
        return record

    async def editors(
        self, ctx: RequestContext, org_id: uuid.UUID, record_id: uuid.UUID
    ) -> list[dict[str, Any]]:
        access = await require_org_member(ctx.session, org_id, ctx.user_id)
        self._authorize(access, Operation.READ)
        record = await self._editor_record(ctx, org_id, record_id)

        items = []
        for raw_id in editor_ids(record):
            user_id = uuid.UUID(raw_id)
            user = await ctx.session.get(User, user_id)
            items.append(
                {
                    "user_id": user_id,
                    "email": (user.email if user else None) or "",
                    "name": (user.name if user else None) or "",
                }
            )
        return items


def make_org_crud(
    model: type[SQLModel],
    options: Optional[OrgCrudOptions] = None,
    create_schema: Optional[type[BaseModel]] = None,
    update_schema: Optional[type[BaseModel]] = None,
    pipeline: Optional[HookPipeline] = None,
    rate_limiter: Optional[RateLimiter] = None,
    settings: Optional[Settings] = None,
    *,
    table: Optional[str] = None,
    registry: Optional[ResourceRegistry] = None,
) -> OrgCrudHandlers:
    """Build the handler set for one org-scoped table."""
    options = options or OrgCrudOptions()
    if options.acl and "editors" not in model.model_fields:
        raise ValueError(f"{model.__name__} uses acl but has no 'editors' column")
    if options.soft_delete and "deleted" not in model.model_fields:
        raise ValueError(f"{model.__name__} uses soft_delete but has no 'deleted' column")

    crud = _OrgCrud(
        model=model,
        options=options,
        create_schema=create_schema or model,
        update_schema=update_schema or create_schema or model,
        pipeline=pipeline,
        rate_limiter=rate_limiter,
        settings=settings or get_settings(),
        table=table or model.__tablename__,
        registry=registry,
    )
    with_editors = crud.use_acl
    return OrgCrudHandlers(
        list=crud.list,
        read=crud.read,
        create=crud.create,
        update=crud.update,
        remove=crud.remove,
        bulk_create=crud.bulk_create,
        bulk_remove=crud.bulk_remove,
        bulk_update=crud.bulk_update,
        add_editor=crud.add_editor if with_editors else None,
        remove_editor=crud.remove_editor if with_editors else None,
        set_editors=crud.set_editors if with_editors else None,
        editors=crud.editors if with_editors else None,
        restore=crud.restore if options.soft_delete else None,
    )


def build_handlers(
    registry: ResourceRegistry,
    pipeline: Optional[HookPipeline] = None,
    rate_limiter: Optional[RateLimiter] = None,
    settings: Optional[Settings] = None,
) -> dict[str, OrgCrudHandlers]:
    """One handler set per registered table."""
    registry.validate()
    return {
        definition.name: make_org_crud(
            definition.model,
            definition.options,
            definition.create_schema,
            definition.update_schema,
            pipeline,
            rate_limiter,
            settings,
            table=definition.name,
            registry=registry,
        )
        for definition in registry
    }
