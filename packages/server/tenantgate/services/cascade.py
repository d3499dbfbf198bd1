"""
Cascade delete engine: tears down everything an organization owns.

Teardown runs in three phases:

  A. membership, invites and join requests are deleted and the org is
     switched to `deleting`, in one transaction. A failure aborts.
  B. every registered table is emptied of the org's rows, deepest
     dependents first, in committed batches. A row that fails to delete
     is logged and skipped.
  C. the organization row is deleted, once no dependent row is left.

Every phase only deletes what is still there, so re-running teardown on a
half-deleted org (see `tasks.org_deletion`) finishes the job.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel, select

from tenantgate.models.base import now_ms
from tenantgate.models.org_invite import OrgInvite, OrgJoinRequest
from tenantgate.models.org_member import OrgMember
from tenantgate.models.organization import Organization
from tenantgate.services.registry import ResourceRegistry
from tenantgate_shared.schemas.common import OrgStatus

log = structlog.get_logger()

MEMBERSHIP_MODELS = (OrgMember, OrgInvite, OrgJoinRequest)


@dataclass(frozen=True)
class CascadeTarget:
    """Rows of `model` whose `foreign_key` references the org (parent None)
    or a row of `parent_model` that itself belongs to the org."""

    model: type[SQLModel]
    foreign_key: str
    parent_model: Optional[type[SQLModel]] = None


@dataclass
class CascadeResult:
    org_id: uuid.UUID
    deleted: dict[str, int] = field(default_factory=dict)
    failed: dict[str, int] = field(default_factory=dict)
    completed: bool = False


def build_cascade_targets(registry: ResourceRegistry) -> list[CascadeTarget]:
    targets = [CascadeTarget(d.model, "org_id") for d in registry]
    for definition in registry:
        for edge in definition.options.cascade:
            child = registry.get(edge.table).model
            targets.append(CascadeTarget(child, edge.foreign_key, definition.model))
    return targets


def _depths(targets: list[CascadeTarget]) -> dict[type[SQLModel], int]:
    """Distance of each model from the org; raises on a cyclic graph."""
    parents: dict[type[SQLModel], set[type[SQLModel]]] = {}
    for target in targets:
        parents.setdefault(target.model, set())
        if target.parent_model is not None:
            parents[target.model].add(target.parent_model)
            parents.setdefault(target.parent_model, set())

    depths: dict[type[SQLModel], int] = {}
    visiting: set[type[SQLModel]] = set()

    def visit(model: type[SQLModel]) -> int:
        if model in depths:
            return depths[model]
        if model in visiting:
            raise ValueError(f"cascade cycle through {model.__name__}")
        visiting.add(model)
        depth = 1 + max((visit(p) for p in parents[model]), default=0)
        visiting.discard(model)
        depths[model] = depth
        return depth

    for model in parents:
        visit(model)
    return depths


class CascadeEngine:
    def __init__(self, registry: ResourceRegistry, batch_size: int = 200):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self.targets = build_cascade_targets(registry)
        self.depths = _depths(self.targets)
        # Deepest dependents first
        self.ordered = sorted(self.targets, key=lambda t: self.depths[t.model], reverse=True)

    async def _owned_ids(
        self, session: AsyncSession, model: type[SQLModel], org_id: uuid.UUID
    ) -> set[uuid.UUID]:
        """Ids of `model` rows that belong to the org through any target."""
        ids: set[uuid.UUID] = set()
        for target in self.targets:
            if target.model is not model:
                continue
            condition = await self._condition(session, target, org_id)
            if condition is None:
                continue
            result = await session.execute(select(model.id).where(condition))
            ids.update(result.scalars().all())
        return ids

    async def _condition(self, session: AsyncSession, target: CascadeTarget, org_id: uuid.UUID):
        column = getattr(target.model, target.foreign_key)
        if target.parent_model is None:
            return column == org_id
        parent_ids = await self._owned_ids(session, target.parent_model, org_id)
        if not parent_ids:
            return None
        return column.in_(parent_ids)

    async def _clear_memberships(self, session: AsyncSession, org: Organization) -> None:
        for model in MEMBERSHIP_MODELS:
            await session.execute(delete(model).where(model.org_id == org.id))
        org.status = OrgStatus.DELETING.value
        org.updated_at = now_ms()
        session.add(org)
        await session.commit()

    async def _purge_target(
        self,
        session: AsyncSession,
        target: CascadeTarget,
        org_id: uuid.UUID,
        result: CascadeResult,
        skipped: set[uuid.UUID],
    ) -> None:
        name = target.model.__tablename__
        while True:
            condition = await self._condition(session, target, org_id)
            if condition is None:
                return
            query = select(target.model).where(condition)
            if skipped:
                query = query.where(target.model.id.not_in(skipped))
            rows = (await session.execute(query.limit(self.batch_size))).scalars().all()
            if not rows:
                return

            for row in rows:
                row_id = row.id
                try:
                    async with session.begin_nested():
                        await session.delete(row)
                    result.deleted[name] = result.deleted.get(name, 0) + 1
                except SQLAlchemyError as exc:
                    skipped.add(row_id)
                    result.failed[name] = result.failed.get(name, 0) + 1
                    log.warning(
                        "cascade.row_failed",
                        org_id=str(org_id),
                        table=name,
                        id=str(row_id),
                        error=str(exc),
                    )
            await session.commit()

    async def delete_org(self, session: AsyncSession, org_id: uuid.UUID) -> CascadeResult:
        """Remove the org and everything it owns. Safe to call repeatedly."""
        result = CascadeResult(org_id=org_id)
        org = await session.get(Organization, org_id)
        if org is None:
            result.completed = True
            return result

        log.info("cascade.started", org_id=str(org_id), status=org.status)
        await self._clear_memberships(session, org)

        # Rows that failed once are not retried by another target of the same model
        skipped: dict[type[SQLModel], set[uuid.UUID]] = {}
        for target in self.ordered:
            await self._purge_target(
                session, target, org_id, result, skipped.setdefault(target.model, set())
            )

        if result.failed:
            # Dependents remain; the org stays `deleting` for the next resume
            log.warning("cascade.incomplete", org_id=str(org_id), failed=result.failed)
            return result

        await session.delete(org)
        await session.commit()
        result.completed = True
        log.info(
            "cascade.completed",
            org_id=str(org_id),
            deleted=result.deleted,
            failed=result.failed,
        )
        return result
