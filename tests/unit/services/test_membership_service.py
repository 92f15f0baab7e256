"""Unit tests for the membership lifecycle"""

import pytest

from realty_access.database.models import (
    AuditLog,
    MembershipStatus,
    Session as UserSession,
    UserRole,
)
from realty_access.errors import InvalidState, NotFound, ValidationFailed
from realty_access.security.password import verify_password
from realty_access.seed import PLATFORM_SUPER_ADMIN, TENANT_ACCOUNTANT, TENANT_AGENT, TENANT_MANAGER
from realty_access.services.membership_service import MembershipService
from realty_access.services.permission_cache import TenantScope
from realty_access.services.permission_service import PermissionService
from realty_access.services.session_service import SessionService


@pytest.fixture
def agency(make_tenant):
    return make_tenant("agency")


@pytest.fixture
def agent(db, seeded, make_user, agency, add_member):
    user = make_user("agent@example.com", full_name="Alice Agent")
    add_member(user, agency, seeded[TENANT_AGENT])
    return user


def _live_sessions(db, user_id):
    return db.query(UserSession).filter(
        UserSession.user_id == user_id,
        UserSession.revoked.is_(False),
    ).count()


@pytest.mark.unit
class TestDisable:
    def test_disable_revokes_sessions_and_cache(self, db, cache, agency, agent):
        SessionService.create_session(db, agent.id)
        SessionService.create_session(db, agent.id)
        db.commit()
        PermissionService(db, cache).resolve(agent.id, agency.id)
        assert cache.get(agent.id, TenantScope(agency.id)) is not None

        membership = MembershipService(db, cache).disable(agent.id, agency.id, actor_user_id="admin")

        assert membership.status == MembershipStatus.DISABLED.value
        assert _live_sessions(db, agent.id) == 0
        assert cache.get(agent.id, TenantScope(agency.id)) is None
        audit = db.query(AuditLog).filter(AuditLog.action_key == "MEMBER_DISABLED").one()
        assert audit.payload["sessions_revoked"] == 2

    def test_disable_twice_is_rejected(self, db, cache, agency, agent):
        service = MembershipService(db, cache)
        service.disable(agent.id, agency.id)

        with pytest.raises(InvalidState) as exc:
            service.disable(agent.id, agency.id)
        assert exc.value.reason == "membership_already_disabled"

    def test_disable_keeps_roles(self, db, cache, agency, agent):
        MembershipService(db, cache).disable(agent.id, agency.id)
        assert db.query(UserRole).filter(UserRole.user_id == agent.id).count() == 1

    def test_unknown_membership(self, db, cache, agency, make_user):
        outsider = make_user("outsider@example.com")
        with pytest.raises(NotFound) as exc:
            MembershipService(db, cache).disable(outsider.id, agency.id)
        assert exc.value.reason == "membership_not_found"


@pytest.mark.unit
class TestEnable:
    def test_enable_after_disable(self, db, cache, agency, agent):
        service = MembershipService(db, cache)
        service.disable(agent.id, agency.id)

        membership = service.enable(agent.id, agency.id)

        assert membership.status == MembershipStatus.ACTIVE.value
        assert "CRM_DEALS_VIEW" in PermissionService(db, cache).resolve(agent.id, agency.id)

    def test_enable_active_member_is_rejected(self, db, cache, agency, agent):
        with pytest.raises(InvalidState) as exc:
            MembershipService(db, cache).enable(agent.id, agency.id)
        assert exc.value.reason == "membership_already_active"

    def test_enable_pending_invite_is_rejected(self, db, cache, agency, make_user, add_member):
        invitee = make_user("invitee@example.com")
        add_member(invitee, agency, status=MembershipStatus.PENDING_INVITE.value)

        with pytest.raises(InvalidState) as exc:
            MembershipService(db, cache).enable(invitee.id, agency.id)
        assert exc.value.reason == "membership_pending_invite"


@pytest.mark.unit
class TestUpdateRoles:
    def test_replace_roles(self, db, cache, seeded, agency, agent):
        PermissionService(db, cache).resolve(agent.id, agency.id)

        view = MembershipService(db, cache).update_roles(
            agent.id, agency.id, [seeded[TENANT_ACCOUNTANT].id, seeded[TENANT_MANAGER].id]
        )

        assert [role["key"] for role in view["roles"]] == [TENANT_ACCOUNTANT, TENANT_MANAGER]
        permissions = PermissionService(db, cache).resolve(agent.id, agency.id)
        assert "BILLING_VIEW" in permissions
        assert "PROPERTIES_PUBLISH" not in permissions

    def test_platform_role_rejects_whole_request(self, db, cache, seeded, agency, agent):
        with pytest.raises(InvalidState) as exc:
            MembershipService(db, cache).update_roles(
                agent.id, agency.id, [seeded[TENANT_MANAGER].id, seeded[PLATFORM_SUPER_ADMIN].id]
            )

        assert exc.value.reason == "role_scope_mismatch"
        held = db.query(UserRole.role_id).filter(UserRole.user_id == agent.id).all()
        assert [row.role_id for row in held] == [seeded[TENANT_AGENT].id]

    def test_roles_in_other_tenants_are_untouched(
        self, db, cache, seeded, agency, agent, make_tenant, add_member
    ):
        other = make_tenant("other-agency")
        add_member(agent, other, seeded[TENANT_MANAGER])

        MembershipService(db, cache).update_roles(agent.id, agency.id, [])

        assert PermissionService(db, cache).resolve(agent.id, agency.id) == frozenset()
        assert "USERS_EDIT" in PermissionService(db, cache).resolve(agent.id, other.id)

    def test_member_view_only_shows_this_tenant(self, db, cache, seeded, agency, agent, make_tenant, add_member):
        other = make_tenant("other-agency")
        add_member(agent, other, seeded[TENANT_MANAGER])

        view = MembershipService(db, cache).get_by_id(agent.id, agency.id)

        assert view["user"]["email"] == "agent@example.com"
        assert [role["key"] for role in view["roles"]] == [TENANT_AGENT]


@pytest.mark.unit
class TestListMembers:
    @pytest.fixture
    def roster(self, db, seeded, agency, make_user, add_member):
        members = []
        for i in range(5):
            user = make_user(f"agent{i}@example.com", full_name=f"Agent {i}")
            add_member(user, agency, seeded[TENANT_AGENT])
            members.append(user)
        accountant = make_user("books@example.com", full_name="Bob Books")
        add_member(accountant, agency, seeded[TENANT_ACCOUNTANT], status=MembershipStatus.DISABLED.value)
        members.append(accountant)
        return members

    def test_pagination(self, db, cache, agency, roster):
        page = MembershipService(db, cache).list_members(agency.id, page=2, limit=4)

        assert page["total"] == 6
        assert page["pages"] == 2
        assert len(page["items"]) == 2

    def test_search_matches_email_or_name(self, db, cache, agency, roster):
        service = MembershipService(db, cache)

        assert service.list_members(agency.id, search="BOOKS")["total"] == 1
        assert service.list_members(agency.id, search="agent")["total"] == 5

    def test_filter_by_status_and_role(self, db, cache, seeded, agency, roster):
        service = MembershipService(db, cache)

        disabled = service.list_members(agency.id, status=MembershipStatus.DISABLED.value)
        agents = service.list_members(agency.id, role_id=seeded[TENANT_AGENT].id)

        assert [item["user"]["email"] for item in disabled["items"]] == ["books@example.com"]
        assert agents["total"] == 5

    def test_limit_is_capped(self, db, cache, agency, roster):
        assert MembershipService(db, cache).list_members(agency.id, limit=1000)["limit"] == 100

    def test_empty_tenant(self, db, cache, make_tenant):
        empty = make_tenant("empty")
        page = MembershipService(db, cache).list_members(empty.id)
        assert page["items"] == []
        assert page["pages"] == 0


@pytest.mark.unit
class TestCredentials:
    def test_reset_password_generates_and_revokes(self, db, cache, agency, agent):
        SessionService.create_session(db, agent.id)
        db.commit()

        user, password = MembershipService(db, cache).reset_password(agent.id, agency.id)

        assert verify_password(password, user.password_hash)
        assert _live_sessions(db, agent.id) == 0

    def test_reset_password_rejects_weak_password(self, db, cache, agency, agent):
        with pytest.raises(ValidationFailed) as exc:
            MembershipService(db, cache).reset_password(agent.id, agency.id, new_password="short")
        assert exc.value.reason == "weak_password"

    def test_revoke_sessions_counts(self, db, cache, agency, agent):
        SessionService.create_session(db, agent.id)
        SessionService.create_session(db, agent.id)
        db.commit()
        service = MembershipService(db, cache)

        assert service.revoke_sessions(agent.id, agency.id) == 2
        assert service.revoke_sessions(agent.id, agency.id) == 0
