"""
Hook pipeline run around every generated create/update/delete.

Middleware are plain classes; every hook defaults to a pass-through, so a
subclass overrides only what it needs. `before_*` hooks chain: each one
receives the payload returned by the previous one. `after_*` hooks are
observers and cannot fail the request.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

log = structlog.get_logger()

Record = dict[str, Any]


@dataclass
class HookContext:
    session: AsyncSession
    user_id: uuid.UUID
    org_id: uuid.UUID
    table: str
    operation: str = ""
    # Scratch space shared by the before/after hooks of one operation
    state: dict[str, Any] = field(default_factory=dict)


class Middleware:
    name = "middleware"

    async def before_create(self, ctx: HookContext, data: Record) -> Record:
        return data

    async def after_create(self, ctx: HookContext, record_id: uuid.UUID, data: Record) -> None:
        return None

    async def before_update(
        self, ctx: HookContext, record_id: uuid.UUID, patch: Record, prev: Record
    ) -> Record:
        return patch

    async def after_update(
        self, ctx: HookContext, record_id: uuid.UUID, patch: Record, prev: Record
    ) -> None:
        return None

    async def before_delete(self, ctx: HookContext, record_id: uuid.UUID, doc: Record) -> None:
        return None

    async def after_delete(self, ctx: HookContext, record_id: uuid.UUID, doc: Record) -> None:
        return None


class HookPipeline:
    """An ordered list of middleware invoked sequentially."""

    def __init__(self, middlewares: Iterable[Middleware] = ()):
        self.middlewares: list[Middleware] = list(middlewares)

    def _with_op(self, ctx: HookContext, operation: str) -> HookContext:
        ctx.operation = operation
        return ctx

    async def _observe(self, hook: str, ctx: HookContext, *args: Any) -> None:
        for mw in self.middlewares:
            try:
                await getattr(mw, hook)(ctx, *args)
            except Exception as exc:
                log.warning(
                    "hook.after_failed",
                    middleware=mw.name,
                    hook=hook,
                    table=ctx.table,
                    error=str(exc),
                )

    async def before_create(self, ctx: HookContext, data: Record) -> Record:
        ctx = self._with_op(ctx, "create")
        for mw in self.middlewares:
            data = await mw.before_create(ctx, data)
        return data

    async def after_create(self, ctx: HookContext, record_id: uuid.UUID, data: Record) -> None:
        await self._observe("after_create", self._with_op(ctx, "create"), record_id, data)

    async def before_update(
        self, ctx: HookContext, record_id: uuid.UUID, patch: Record, prev: Record
    ) -> Record:
        ctx = self._with_op(ctx, "update")
        for mw in self.middlewares:
            patch = await mw.before_update(ctx, record_id, patch, prev)
        return patch

    async def after_update(
        self, ctx: HookContext, record_id: uuid.UUID, patch: Record, prev: Record
    ) -> None:
        await self._observe("after_update", self._with_op(ctx, "update"), record_id, patch, prev)

    async def before_delete(self, ctx: HookContext, record_id: uuid.UUID, doc: Record) -> None:
        ctx = self._with_op(ctx, "delete")
        for mw in self.middlewares:
            await mw.before_delete(ctx, record_id, doc)

    async def after_delete(self, ctx: HookContext, record_id: uuid.UUID, doc: Record) -> None:
        await self._observe("after_delete", self._with_op(ctx, "delete"), record_id, doc)


# ---------------------------------------------------------------------------
# Built-in middleware
# ---------------------------------------------------------------------------


class AuditLog(Middleware):
    """Emit `audit.<op>` entries after each successful write."""

    name = "audit_log"

    def __init__(self, level: str = "info", verbose: bool = False):
        self.level = level
        self.verbose = verbose

    def _emit(self, event: str, **fields: Any) -> None:
        getattr(log, self.level)(event, **fields)

    async def after_create(self, ctx, record_id, data):
        extra = {"data": data} if self.verbose else {}
        self._emit(
            "audit.create", id=str(record_id), table=ctx.table, user_id=str(ctx.user_id), **extra
        )

    async def after_update(self, ctx, record_id, patch, prev):
        extra = {"fields": sorted(patch)} if self.verbose else {}
        self._emit(
            "audit.update", id=str(record_id), table=ctx.table, user_id=str(ctx.user_id), **extra
        )

    async def after_delete(self, ctx, record_id, doc):
        self._emit("audit.delete", id=str(record_id), table=ctx.table, user_id=str(ctx.user_id))


class SlowOperationWarning(Middleware):
    """Warn when a write takes longer than `threshold_ms` between its hooks."""

    name = "slow_operation_warning"

    def __init__(self, threshold_ms: int = 500, clock: Callable[[], float] = time.monotonic):
        self.threshold_ms = threshold_ms
        self._clock = clock

    def _start(self, ctx: HookContext) -> None:
        ctx.state["started_at"] = self._clock()

    def _check(self, ctx: HookContext, record_id: uuid.UUID) -> None:
        started = ctx.state.get("started_at")
        if started is None:
            return
        duration_ms = int((self._clock() - started) * 1000)
        if duration_ms > self.threshold_ms:
            log.warning(
                f"slow.{ctx.operation}",
                id=str(record_id),
                table=ctx.table,
                duration_ms=duration_ms,
                threshold_ms=self.threshold_ms,
            )

    async def before_create(self, ctx, data):
        self._start(ctx)
        return data

    async def after_create(self, ctx, record_id, data):
        self._check(ctx, record_id)

    async def before_update(self, ctx, record_id, patch, prev):
        self._start(ctx)
        return patch

    async def after_update(self, ctx, record_id, patch, prev):
        self._check(ctx, record_id)

    async def before_delete(self, ctx, record_id, doc):
        self._start(ctx)

    async def after_delete(self, ctx, record_id, doc):
        self._check(ctx, record_id)


SCRIPT_TAG_PATTERN = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
EVENT_HANDLER_PATTERN = re.compile(r"\bon\w+\s*=", re.IGNORECASE)


def sanitize_string(value: str) -> str:
    """Strip `<script>` blocks and inline `on*=` event handlers."""
    return EVENT_HANDLER_PATTERN.sub("", SCRIPT_TAG_PATTERN.sub("", value))


def sanitize_record(data: Record, fields: Optional[set[str]] = None) -> Record:
    result = dict(data)
    for key, value in data.items():
        if isinstance(value, str) and (fields is None or key in fields):
            result[key] = sanitize_string(value)
    return result


class InputSanitizer(Middleware):
    """Sanitize string fields (all of them, or only `fields`) before writes."""

    name = "input_sanitizer"

    def __init__(self, fields: Optional[Iterable[str]] = None):
        self.fields = set(fields) if fields is not None else None

    async def before_create(self, ctx, data):
        return sanitize_record(data, self.fields)

    async def before_update(self, ctx, record_id, patch, prev):
        return sanitize_record(patch, self.fields)
