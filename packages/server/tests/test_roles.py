"""
Tests for role resolution and the record permission evaluator.
"""

from __future__ import annotations

import uuid
from types import SimpleNamespace

import pytest

from conftest import add_member, make_org, make_user
from tenantgate.core.acl import Operation, can_access
from tenantgate.core.errors import OrgError
from tenantgate.core.roles import require_org_member, require_org_role, resolve_role
from tenantgate.models.org_member import OrgMember
from tenantgate.models.organization import Organization
from tenantgate_shared.schemas.common import ErrorCode, OrgRole


def _org(owner: uuid.UUID) -> Organization:
    return Organization(id=uuid.uuid4(), name="Acme", slug="acme", owner_user_id=owner)


class TestResolveRole:
    def test_owner_without_membership_row(self):
        owner = uuid.uuid4()
        assert resolve_role(_org(owner), None, owner) == OrgRole.OWNER

    def test_owner_wins_over_member_row(self):
        owner = uuid.uuid4()
        org = _org(owner)
        row = OrgMember(org_id=org.id, user_id=owner, is_admin=False)
        assert resolve_role(org, row) == OrgRole.OWNER

    def test_admin_and_member_rows(self):
        org = _org(uuid.uuid4())
        user = uuid.uuid4()
        assert resolve_role(org, OrgMember(org_id=org.id, user_id=user, is_admin=True)) == OrgRole.ADMIN
        assert resolve_role(org, OrgMember(org_id=org.id, user_id=user, is_admin=False)) == OrgRole.MEMBER

    def test_no_row_is_none(self):
        assert resolve_role(_org(uuid.uuid4()), None, uuid.uuid4()) == OrgRole.NONE


class TestRequireRole:
    @pytest.mark.asyncio
    async def test_non_member_rejected(self, session):
        owner = await make_user(session)
        stranger = await make_user(session)
        org = await make_org(session, owner)

        with pytest.raises(OrgError) as exc:
            await require_org_member(session, org.id, stranger.id)
        assert exc.value.code == ErrorCode.NOT_ORG_MEMBER

    @pytest.mark.asyncio
    async def test_member_below_threshold(self, session):
        owner = await make_user(session)
        user = await make_user(session)
        org = await make_org(session, owner)
        await add_member(session, org, user)

        access = await require_org_member(session, org.id, user.id)
        assert access.role == OrgRole.MEMBER
        with pytest.raises(OrgError) as exc:
            await require_org_role(session, org.id, user.id, OrgRole.ADMIN)
        assert exc.value.code == ErrorCode.INSUFFICIENT_ORG_ROLE

    @pytest.mark.asyncio
    async def test_deleting_org_is_not_found(self, session):
        owner = await make_user(session)
        org = await make_org(session, owner)
        org.status = "deleting"
        await session.flush()

        with pytest.raises(OrgError) as exc:
            await require_org_member(session, org.id, owner.id)
        assert exc.value.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_org_is_not_found(self, session):
        with pytest.raises(OrgError) as exc:
            await require_org_member(session, uuid.uuid4(), uuid.uuid4())
        assert exc.value.code == ErrorCode.NOT_FOUND


class TestCanAccess:
    def setup_method(self):
        self.creator = uuid.uuid4()
        self.editor = uuid.uuid4()
        self.other = uuid.uuid4()
        self.doc = SimpleNamespace(user_id=self.creator, editors=[str(self.editor)])

    def test_members_can_list_read_create(self):
        for op in (Operation.LIST, Operation.READ, Operation.CREATE):
            assert can_access(OrgRole.MEMBER, op)
            assert not can_access(OrgRole.NONE, op)

    def test_update_by_creator(self):
        assert can_access(OrgRole.MEMBER, Operation.UPDATE, self.doc, self.creator)
        assert not can_access(OrgRole.MEMBER, Operation.UPDATE, self.doc, self.other)

    def test_update_by_editor_needs_acl(self):
        assert can_access(OrgRole.MEMBER, Operation.UPDATE, self.doc, self.editor, acl=True)
        assert not can_access(OrgRole.MEMBER, Operation.UPDATE, self.doc, self.editor, acl=False)

    def test_admin_updates_anything(self):
        assert can_access(OrgRole.ADMIN, Operation.UPDATE, self.doc, self.other)
        assert can_access(OrgRole.OWNER, Operation.UPDATE, None, self.other)

    def test_non_member_creator_is_denied(self):
        assert not can_access(OrgRole.NONE, Operation.UPDATE, self.doc, self.creator)

    def test_admin_only_operations(self):
        for op in (Operation.DELETE, Operation.BULK, Operation.EDITORS, Operation.RESTORE):
            assert can_access(OrgRole.ADMIN, op)
            assert not can_access(OrgRole.MEMBER, op, self.doc, self.creator, acl=True)
