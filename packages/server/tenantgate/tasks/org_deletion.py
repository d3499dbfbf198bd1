"""
ARQ background task: resume org teardowns that were interrupted.

An org whose removal crashed part-way stays in status `deleting`; re-running
the cascade engine on it is safe and finishes the job. Scheduled to run
periodically (e.g. every 10 minutes).
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlmodel import select

from tenantgate.core.config import get_settings
from tenantgate.core.database import get_session_context
from tenantgate.models.organization import Organization
from tenantgate.resources import build_registry
from tenantgate.services.cascade import CascadeEngine
from tenantgate_shared.schemas.common import OrgStatus

log = structlog.get_logger()


async def resume_interrupted_deletions(ctx: dict, engine: Optional[CascadeEngine] = None) -> int:
    """Re-run teardown for every org still marked `deleting`.

    Returns the number of orgs fully removed.
    """
    if engine is None:
        engine = ctx.get("cascade_engine") or CascadeEngine(
            build_registry(), batch_size=get_settings().cascade_batch_size
        )
    session_context = ctx.get("session_context", get_session_context)

    count = 0
    async with session_context() as session:
        result = await session.execute(
            select(Organization.id).where(Organization.status == OrgStatus.DELETING.value)
        )
        org_ids = list(result.scalars().all())

        for org_id in org_ids:
            outcome = await engine.delete_org(session, org_id)
            if outcome.completed:
                count += 1

    if org_ids:
        log.info("org_deletion.resumed", pending=len(org_ids), completed=count)
    return count


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [resume_interrupted_deletions]
    cron_jobs = [
        {
            "coroutine": resume_interrupted_deletions,
            "minute": {0, 10, 20, 30, 40, 50},
        },
    ]
