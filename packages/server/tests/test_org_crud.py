"""
Tests for the org-scoped CRUD factory.
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func
from sqlmodel import select

from conftest import FakeRedis, add_member, ctx_for, make_org, make_user
from tenantgate.core.config import Settings
from tenantgate.core.errors import OrgError
from tenantgate.core.hooks import HookPipeline, InputSanitizer
from tenantgate.core.rate_limit import RateLimitConfig, RateLimiter
from tenantgate.models.project import Project
from tenantgate.models.task import Task
from tenantgate.models.wiki import Wiki
from tenantgate.resources import build_registry
from tenantgate.services.org_crud import (
    CascadeEdge,
    OrgCrudOptions,
    build_handlers,
    make_org_crud,
    next_stamp,
)
from tenantgate_shared.schemas.common import ErrorCode
from tenantgate_shared.schemas.resources import ProjectCreate, ProjectUpdate, WikiCreate, WikiUpdate

SETTINGS = Settings(bulk_max=3, max_editors=2)


@pytest.fixture
def handlers():
    return build_handlers(build_registry(), HookPipeline(), None, SETTINGS)


@pytest.fixture
async def org_setup(session):
    owner = await make_user(session, "Owner")
    admin = await make_user(session, "Admin")
    alice = await make_user(session, "Alice")
    bob = await make_user(session, "Bob")
    org = await make_org(session, owner)
    await add_member(session, org, admin, is_admin=True)
    await add_member(session, org, alice)
    await add_member(session, org, bob)
    return {"org": org, "owner": owner, "admin": admin, "alice": alice, "bob": bob}


class TestNextStamp:
    def test_strictly_increasing(self):
        future = next_stamp(None) + 10_000
        assert next_stamp(future) == future + 1

    def test_uses_clock_when_ahead(self):
        assert next_stamp(1) > 1


class TestCreateAndRead:
    @pytest.mark.asyncio
    async def test_member_creates(self, session, handlers, org_setup):
        s = org_setup
        project = await handlers["projects"].create(
            ctx_for(session, s["alice"]), s["org"].id, {"name": "Roadmap"}
        )
        assert project.user_id == s["alice"].id
        assert project.org_id == s["org"].id
        assert project.editors == []
        assert isinstance(project.updated_at, int)

        fetched = await handlers["projects"].read(ctx_for(session, s["bob"]), s["org"].id, project.id)
        assert fetched.id == project.id

    @pytest.mark.asyncio
    async def test_non_member_rejected(self, session, handlers, org_setup):
        stranger = await make_user(session)
        with pytest.raises(OrgError) as exc:
            await handlers["projects"].create(
                ctx_for(session, stranger), org_setup["org"].id, {"name": "Nope"}
            )
        assert exc.value.code == ErrorCode.NOT_ORG_MEMBER

    @pytest.mark.asyncio
    async def test_invalid_payload(self, session, handlers, org_setup):
        with pytest.raises(OrgError) as exc:
            await handlers["projects"].create(
                ctx_for(session, org_setup["alice"]), org_setup["org"].id, {"name": ""}
            )
        assert exc.value.code == ErrorCode.VALIDATION_FAILED
        assert "name" in exc.value.extra["field_errors"]

    @pytest.mark.asyncio
    async def test_protected_fields_ignored(self, session, handlers, org_setup):
        s = org_setup
        project = await handlers["projects"].create(
            ctx_for(session, s["alice"]),
            s["org"].id,
            {"name": "Mine", "user_id": str(s["bob"].id), "editors": [str(s["bob"].id)]},
        )
        assert project.user_id == s["alice"].id
        assert project.editors == []

    @pytest.mark.asyncio
    async def test_other_org_record_is_not_found(self, session, handlers, org_setup):
        s = org_setup
        other = await make_org(session, s["owner"])
        project = await handlers["projects"].create(ctx_for(session, s["owner"]), other.id, {"name": "X"})

        with pytest.raises(OrgError) as exc:
            await handlers["projects"].read(ctx_for(session, s["alice"]), s["org"].id, project.id)
        assert exc.value.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_list_paginates(self, session, handlers, org_setup):
        s = org_setup
        ctx = ctx_for(session, s["alice"])
        for i in range(3):
            await handlers["wikis"].create(ctx, s["org"].id, {"title": f"Page {i}", "slug": f"page-{i}"})

        page = await handlers["wikis"].list(ctx, s["org"].id, page=1, per_page=2)
        assert len(page["data"]) == 2
        assert page["pagination"] == {"page": 1, "per_page": 2, "total": 3}


class TestUpdate:
    @pytest.mark.asyncio
    async def test_creator_admin_and_others(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["projects"]
        project = await crud.create(ctx_for(session, s["alice"]), s["org"].id, {"name": "A"})

        await crud.update(ctx_for(session, s["alice"]), s["org"].id, project.id, {"name": "B"})
        await crud.update(ctx_for(session, s["admin"]), s["org"].id, project.id, {"name": "C"})
        with pytest.raises(OrgError) as exc:
            await crud.update(ctx_for(session, s["bob"]), s["org"].id, project.id, {"name": "D"})
        assert exc.value.code == ErrorCode.FORBIDDEN
        assert project.name == "C"

    @pytest.mark.asyncio
    async def test_editor_can_update(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["projects"]
        project = await crud.create(ctx_for(session, s["alice"]), s["org"].id, {"name": "A"})
        await crud.add_editor(ctx_for(session, s["admin"]), s["org"].id, project.id, s["bob"].id)

        updated = await crud.update(ctx_for(session, s["bob"]), s["org"].id, project.id, {"name": "Bob's"})
        assert updated.name == "Bob's"

    @pytest.mark.asyncio
    async def test_stale_write_conflicts(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["projects"]
        ctx = ctx_for(session, s["alice"])
        project = await crud.create(ctx, s["org"].id, {"name": "v1"})
        seen = project.updated_at

        await crud.update(ctx, s["org"].id, project.id, {"name": "v2", "expected_updated_at": seen})
        assert project.updated_at > seen

        with pytest.raises(OrgError) as exc:
            await crud.update(ctx, s["org"].id, project.id, {"name": "v3", "expected_updated_at": seen})
        assert exc.value.code == ErrorCode.CONFLICT
        assert exc.value.extra["current_updated_at"] == project.updated_at
        assert project.name == "v2"

    @pytest.mark.asyncio
    async def test_permission_checked_before_conflict(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["projects"]
        project = await crud.create(ctx_for(session, s["alice"]), s["org"].id, {"name": "v1"})

        with pytest.raises(OrgError) as exc:
            await crud.update(
                ctx_for(session, s["bob"]), s["org"].id, project.id, {"name": "x", "expected_updated_at": 1}
            )
        assert exc.value.code == ErrorCode.FORBIDDEN


class TestAclFrom:
    @pytest.mark.asyncio
    async def test_task_follows_project_acl(self, session, handlers, org_setup):
        s = org_setup
        project = await handlers["projects"].create(ctx_for(session, s["alice"]), s["org"].id, {"name": "P"})
        task = await handlers["tasks"].create(
            ctx_for(session, s["admin"]), s["org"].id, {"project_id": str(project.id), "title": "T"}
        )

        # Alice created the project, not the task
        await handlers["tasks"].update(ctx_for(session, s["alice"]), s["org"].id, task.id, {"done": True})
        assert task.done

        with pytest.raises(OrgError):
            await handlers["tasks"].update(ctx_for(session, s["bob"]), s["org"].id, task.id, {"done": False})

        await handlers["tasks"].add_editor(ctx_for(session, s["admin"]), s["org"].id, task.id, s["bob"].id)
        assert str(s["bob"].id) in project.editors
        await handlers["tasks"].update(ctx_for(session, s["bob"]), s["org"].id, task.id, {"done": False})
        assert not task.done

    @pytest.mark.asyncio
    async def test_unknown_parent(self, session, handlers, org_setup):
        s = org_setup
        with pytest.raises(OrgError) as exc:
            await handlers["tasks"].create(
                ctx_for(session, s["alice"]), s["org"].id, {"project_id": str(uuid.uuid4()), "title": "T"}
            )
        assert exc.value.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_soft_deleted_parent(self, session, handlers, org_setup):
        s = org_setup
        ctx = ctx_for(session, s["alice"])
        project = await handlers["projects"].create(ctx, s["org"].id, {"name": "P"})
        await handlers["projects"].remove(ctx, s["org"].id, project.id)

        with pytest.raises(OrgError) as exc:
            await handlers["tasks"].create(ctx, s["org"].id, {"project_id": str(project.id), "title": "T"})
        assert exc.value.code == ErrorCode.NOT_FOUND


class TestRemoveAndRestore:
    @pytest.mark.asyncio
    async def test_soft_delete_and_restore(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["wikis"]
        ctx = ctx_for(session, s["alice"])
        wiki = await crud.create(ctx, s["org"].id, {"title": "Doc", "slug": "doc"})

        await crud.remove(ctx, s["org"].id, wiki.id)
        assert wiki.deleted and wiki.deleted_at is not None
        with pytest.raises(OrgError) as exc:
            await crud.read(ctx, s["org"].id, wiki.id)
        assert exc.value.code == ErrorCode.NOT_FOUND
        assert (await crud.read(ctx, s["org"].id, wiki.id, include_deleted=True)).id == wiki.id
        assert (await crud.list(ctx, s["org"].id))["pagination"]["total"] == 0
        assert (await crud.list(ctx, s["org"].id, include_deleted=True))["pagination"]["total"] == 1

        with pytest.raises(OrgError) as exc:
            await crud.restore(ctx, s["org"].id, wiki.id)
        assert exc.value.code == ErrorCode.INSUFFICIENT_ORG_ROLE

        restored = await crud.restore(ctx_for(session, s["admin"]), s["org"].id, wiki.id)
        assert not restored.deleted and restored.deleted_at is None

    @pytest.mark.asyncio
    async def test_soft_remove_follows_update_rule(self, session, handlers, org_setup):
        s = org_setup
        wiki = await handlers["wikis"].create(
            ctx_for(session, s["alice"]), s["org"].id, {"title": "Doc", "slug": "doc"}
        )
        with pytest.raises(OrgError) as exc:
            await handlers["wikis"].remove(ctx_for(session, s["bob"]), s["org"].id, wiki.id)
        assert exc.value.code == ErrorCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_hard_delete_needs_admin(self, session, handlers, org_setup):
        s = org_setup
        project = await handlers["projects"].create(ctx_for(session, s["alice"]), s["org"].id, {"name": "P"})
        task = await handlers["tasks"].create(
            ctx_for(session, s["alice"]), s["org"].id, {"project_id": str(project.id), "title": "T"}
        )

        with pytest.raises(OrgError) as exc:
            await handlers["tasks"].remove(ctx_for(session, s["alice"]), s["org"].id, task.id)
        assert exc.value.code == ErrorCode.INSUFFICIENT_ORG_ROLE

        await handlers["tasks"].remove(ctx_for(session, s["admin"]), s["org"].id, task.id)
        assert await session.get(Task, task.id) is None

    @pytest.mark.asyncio
    async def test_hard_delete_removes_dependents(self, session, org_setup):
        s = org_setup
        crud = make_org_crud(
            Project,
            OrgCrudOptions(acl=True, cascade=(CascadeEdge("tasks", "project_id"),)),
            ProjectCreate,
            ProjectUpdate,
            settings=SETTINGS,
            registry=build_registry(),
        )
        ctx = ctx_for(session, s["admin"])
        project = await crud.create(ctx, s["org"].id, {"name": "P"})
        for i in range(2):
            session.add(Task(org_id=s["org"].id, user_id=s["admin"].id, project_id=project.id, title=f"t{i}"))
        await session.flush()

        await crud.remove(ctx, s["org"].id, project.id)
        remaining = (
            await session.execute(select(func.count()).select_from(Task).where(Task.project_id == project.id))
        ).scalar_one()
        assert remaining == 0


class TestBulk:
    @pytest.mark.asyncio
    async def test_bulk_create_cap(self, session, handlers, org_setup):
        s = org_setup
        items = [{"title": f"P{i}", "slug": f"p{i}"} for i in range(4)]
        with pytest.raises(OrgError) as exc:
            await handlers["wikis"].bulk_create(ctx_for(session, s["admin"]), s["org"].id, items)
        assert exc.value.code == ErrorCode.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_bulk_is_admin_only(self, session, handlers, org_setup):
        s = org_setup
        with pytest.raises(OrgError) as exc:
            await handlers["wikis"].bulk_create(
                ctx_for(session, s["alice"]), s["org"].id, [{"title": "A", "slug": "a"}]
            )
        assert exc.value.code == ErrorCode.INSUFFICIENT_ORG_ROLE

    @pytest.mark.asyncio
    async def test_bulk_update_and_remove_skip_foreign_ids(self, session, handlers, org_setup):
        s = org_setup
        ctx = ctx_for(session, s["admin"])
        created = await handlers["wikis"].bulk_create(
            ctx, s["org"].id, [{"title": "A", "slug": "a"}, {"title": "B", "slug": "b"}]
        )
        other = await make_org(session, s["owner"])
        foreign = await handlers["wikis"].create(ctx_for(session, s["owner"]), other.id, {"title": "F", "slug": "f"})
        ids = [w.id for w in created] + [foreign.id]

        updated = await handlers["wikis"].bulk_update(ctx, s["org"].id, ids, {"status": "published"})
        assert {w.id for w in updated} == {w.id for w in created}
        assert foreign.status == "draft"

        assert await handlers["wikis"].bulk_remove(ctx, s["org"].id, ids) == 2
        assert not foreign.deleted


class TestEditors:
    @pytest.mark.asyncio
    async def test_editor_rules(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["projects"]
        ctx = ctx_for(session, s["admin"])
        project = await crud.create(ctx_for(session, s["alice"]), s["org"].id, {"name": "P"})

        stranger = await make_user(session)
        with pytest.raises(OrgError) as exc:
            await crud.add_editor(ctx, s["org"].id, project.id, stranger.id)
        assert exc.value.code == ErrorCode.NOT_ORG_MEMBER

        await crud.add_editor(ctx, s["org"].id, project.id, s["bob"].id)
        stamp = project.updated_at
        await crud.add_editor(ctx, s["org"].id, project.id, s["bob"].id)
        assert project.editors == [str(s["bob"].id)]
        assert project.updated_at == stamp

        await crud.add_editor(ctx, s["org"].id, project.id, s["owner"].id)
        with pytest.raises(OrgError) as exc:
            await crud.add_editor(ctx, s["org"].id, project.id, s["alice"].id)
        assert exc.value.code == ErrorCode.LIMIT_EXCEEDED

        listed = await crud.editors(ctx_for(session, s["alice"]), s["org"].id, project.id)
        assert [e["name"] for e in listed] == ["Bob", "Owner"]

        await crud.remove_editor(ctx, s["org"].id, project.id, s["bob"].id)
        assert project.editors == [str(s["owner"].id)]

    @pytest.mark.asyncio
    async def test_set_editors(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["projects"]
        ctx = ctx_for(session, s["admin"])
        project = await crud.create(ctx, s["org"].id, {"name": "P"})

        await crud.set_editors(ctx, s["org"].id, project.id, [s["alice"].id, s["bob"].id, s["alice"].id])
        assert project.editors == [str(s["alice"].id), str(s["bob"].id)]

        with pytest.raises(OrgError) as exc:
            await crud.set_editors(
                ctx, s["org"].id, project.id, [s["alice"].id, s["bob"].id, s["owner"].id]
            )
        assert exc.value.code == ErrorCode.LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_members_cannot_manage_editors(self, session, handlers, org_setup):
        s = org_setup
        crud = handlers["projects"]
        project = await crud.create(ctx_for(session, s["alice"]), s["org"].id, {"name": "P"})
        with pytest.raises(OrgError) as exc:
            await crud.add_editor(ctx_for(session, s["alice"]), s["org"].id, project.id, s["bob"].id)
        assert exc.value.code == ErrorCode.INSUFFICIENT_ORG_ROLE


class TestFactory:
    def test_handler_sets_follow_options(self, handlers):
        assert handlers["projects"].add_editor is not None
        assert handlers["projects"].restore is not None
        assert handlers["tasks"].editors is not None
        assert handlers["tasks"].restore is None
        assert handlers["wikis"].add_editor is None

    def test_acl_requires_editors_column(self):
        with pytest.raises(ValueError):
            make_org_crud(Wiki, OrgCrudOptions(acl=True), WikiCreate, WikiUpdate, settings=SETTINGS)

    def test_soft_delete_requires_deleted_column(self):
        with pytest.raises(ValueError):
            make_org_crud(Task, OrgCrudOptions(soft_delete=True), settings=SETTINGS)

    @pytest.mark.asyncio
    async def test_hooks_run_on_create(self, session, org_setup):
        s = org_setup
        crud = make_org_crud(
            Wiki,
            OrgCrudOptions(soft_delete=True),
            WikiCreate,
            WikiUpdate,
            pipeline=HookPipeline([InputSanitizer(fields=["content"])]),
            settings=SETTINGS,
        )
        wiki = await crud.create(
            ctx_for(session, s["alice"]),
            s["org"].id,
            {"title": "T", "slug": "t", "content": "ok<script>bad()</script>"},
        )
        assert wiki.content == "ok"

    @pytest.mark.asyncio
    async def test_writes_are_rate_limited(self, session, org_setup):
        s = org_setup
        redis = FakeRedis()

        async def _client():
            return redis

        crud = make_org_crud(
            Wiki,
            OrgCrudOptions(soft_delete=True, rate_limit=RateLimitConfig(max=2, window_ms=60_000)),
            WikiCreate,
            WikiUpdate,
            rate_limiter=RateLimiter(_client),
            settings=SETTINGS,
        )
        ctx = ctx_for(session, s["alice"])
        await crud.create(ctx, s["org"].id, {"title": "A", "slug": "a"})
        await crud.create(ctx, s["org"].id, {"title": "B", "slug": "b"})
        with pytest.raises(OrgError) as exc:
            await crud.create(ctx, s["org"].id, {"title": "C", "slug": "c"})
        assert exc.value.code == ErrorCode.RATE_LIMITED

        # Reads are never throttled
        listing = await crud.list(ctx, s["org"].id)
        assert listing["pagination"]["total"] == 2
