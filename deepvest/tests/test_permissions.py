"""Tests for project roles and role management."""
from __future__ import annotations

import uuid

import pytest

from conftest import grant, seed_project
from deepvest.errors import NotFoundError, PermissionDeniedError, ValidationError
from deepvest.models import Role
from deepvest.permissions import (
    check_role, get_user_role, grant_role, list_permissions, require_author_or_admin,
    require_role, revoke_role, role_satisfies, update_role,
)

OWNER_ID = uuid.UUID("cccccccc-cccc-4ccc-8ccc-cccccccccccc")


class TestRoleOrdering:
    @pytest.mark.parametrize("held,required,expected", [
        (Role.OWNER, Role.ADMIN, True),
        (Role.ADMIN, Role.ADMIN, True),
        (Role.EDITOR, Role.ADMIN, False),
        (Role.VIEWER, Role.EDITOR, False),
        (Role.EDITOR, Role.VIEWER, True),
        (Role.ADMIN, Role.OWNER, False),
    ])
    def test_role_satisfies(self, held, required, expected):
        assert role_satisfies(held, required) is expected


class TestChecks:
    def test_no_row_denies(self, session):
        project, _ = seed_project(session, OWNER_ID)
        assert get_user_role(session, uuid.uuid4(), project.id) is None
        assert check_role(session, uuid.uuid4(), project.id, Role.VIEWER) is False

    def test_anonymous_denies(self, session):
        project, _ = seed_project(session, OWNER_ID)
        assert check_role(session, None, project.id, Role.VIEWER) is False

    def test_owner_passes_everything(self, session):
        project, _ = seed_project(session, OWNER_ID)
        for role in Role:
            assert check_role(session, OWNER_ID, project.id, role) is True

    def test_require_role_message(self, session):
        project, _ = seed_project(session, OWNER_ID)
        viewer = uuid.uuid4()
        grant(session, project, viewer, Role.VIEWER)
        with pytest.raises(PermissionDeniedError, match="requires the editor role or higher"):
            require_role(session, viewer, project.id, Role.EDITOR)


class TestRoleManagement:
    def test_grant_new_member(self, session):
        project, _ = seed_project(session, OWNER_ID)
        member = uuid.uuid4()
        grant_role(session, project.id, member, Role.EDITOR)
        session.commit()
        assert get_user_role(session, member, project.id) is Role.EDITOR

    def test_grant_existing_member_changes_role(self, session):
        project, _ = seed_project(session, OWNER_ID)
        member = uuid.uuid4()
        grant(session, project, member, Role.VIEWER)
        grant_role(session, project.id, member, Role.ADMIN)
        session.commit()
        assert get_user_role(session, member, project.id) is Role.ADMIN

    def test_cannot_grant_second_owner(self, session):
        project, _ = seed_project(session, OWNER_ID)
        with pytest.raises(ValidationError):
            grant_role(session, project.id, uuid.uuid4(), Role.OWNER)

    def test_ownership_transfer(self, session):
        project, _ = seed_project(session, OWNER_ID)
        successor = uuid.uuid4()
        grant(session, project, successor, Role.ADMIN)
        update_role(session, project.id, successor, Role.OWNER)
        session.commit()
        assert get_user_role(session, successor, project.id) is Role.OWNER
        assert get_user_role(session, OWNER_ID, project.id) is Role.ADMIN
        owners = [p for p in list_permissions(session, project.id) if p.role is Role.OWNER]
        assert len(owners) == 1

    def test_owner_cannot_be_demoted(self, session):
        project, _ = seed_project(session, OWNER_ID)
        with pytest.raises(ValidationError, match="Cannot change the role of the project owner"):
            update_role(session, project.id, OWNER_ID, Role.ADMIN)

    def test_update_non_member(self, session):
        project, _ = seed_project(session, OWNER_ID)
        with pytest.raises(NotFoundError):
            update_role(session, project.id, uuid.uuid4(), Role.EDITOR)

    def test_revoke(self, session):
        project, _ = seed_project(session, OWNER_ID)
        member = uuid.uuid4()
        grant(session, project, member, Role.EDITOR)
        revoke_role(session, project.id, member)
        session.commit()
        assert get_user_role(session, member, project.id) is None

    def test_owner_cannot_be_revoked(self, session):
        project, _ = seed_project(session, OWNER_ID)
        with pytest.raises(ValidationError):
            revoke_role(session, project.id, OWNER_ID)

    def test_list_sorted_by_rank(self, session):
        project, _ = seed_project(session, OWNER_ID)
        grant(session, project, uuid.uuid4(), Role.VIEWER)
        grant(session, project, uuid.uuid4(), Role.ADMIN)
        roles = [p.role for p in list_permissions(session, project.id)]
        assert roles == [Role.OWNER, Role.ADMIN, Role.VIEWER]


class TestAuthorOrAdmin:
    def test_editor_may_change_own_rows(self, session):
        project, _ = seed_project(session, OWNER_ID)
        editor = uuid.uuid4()
        grant(session, project, editor, Role.EDITOR)
        require_author_or_admin(session, editor, project.id, editor)

    def test_editor_may_not_change_others_rows(self, session):
        project, _ = seed_project(session, OWNER_ID)
        editor = uuid.uuid4()
        grant(session, project, editor, Role.EDITOR)
        with pytest.raises(PermissionDeniedError):
            require_author_or_admin(session, editor, project.id, OWNER_ID)

    def test_viewer_author_is_not_enough(self, session):
        project, _ = seed_project(session, OWNER_ID)
        viewer = uuid.uuid4()
        grant(session, project, viewer, Role.VIEWER)
        with pytest.raises(PermissionDeniedError):
            require_author_or_admin(session, viewer, project.id, viewer)

    def test_admin_may_change_anything(self, session):
        project, _ = seed_project(session, OWNER_ID)
        admin = uuid.uuid4()
        grant(session, project, admin, Role.ADMIN)
        require_author_or_admin(session, admin, project.id, None)
