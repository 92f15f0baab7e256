"""Integration tests for invitation API"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import status

from realty_access.config import settings
from realty_access.database.models import Invitation, TenantStatus
from realty_access.middleware import rate_limiting
from realty_access.seed import TENANT_ADMIN, TENANT_AGENT
from realty_access.services.notification_service import notification_service

NEW_PASSWORD = "N3w!Member-pass"


@pytest.fixture
def agency(make_tenant):
    return make_tenant("agency")


@pytest.fixture
def admin(seeded, make_user, agency, add_member):
    user = make_user("admin@example.com")
    add_member(user, agency, seeded[TENANT_ADMIN])
    return user


@pytest.fixture
def sent_invites():
    """Capture invite emails instead of sending them."""
    with patch.object(notification_service, "send_invite", new=AsyncMock(return_value=None)) as mock_send:
        yield mock_send


def _invite(client, agency, headers, email="new@example.com", role_ids=()):
    return client.post(
        f"/api/v1/tenants/{agency.id}/invitations",
        json={"email": email, "role_ids": list(role_ids)},
        headers=headers,
    )


def _last_token(sent_invites):
    return sent_invites.call_args.kwargs["token"]


@pytest.mark.integration
def test_create_invitation_sends_email(client, seeded, agency, admin, auth_headers, sent_invites):
    """Test invitation creation queues the invite email"""
    response = _invite(client, agency, auth_headers(admin), role_ids=[seeded[TENANT_AGENT].id])

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["email"] == "new@example.com"
    assert data["status"] == "PENDING"
    assert data["invited_by_email"] == "admin@example.com"
    assert "token" not in data
    sent_invites.assert_called_once()
    assert sent_invites.call_args.kwargs["tenant_name"] == agency.name
    assert sent_invites.call_args.kwargs["role_label"] == "Agent"


@pytest.mark.integration
def test_duplicate_invitation_conflicts(client, agency, admin, auth_headers, sent_invites):
    """Test a second pending invite for the same email is rejected"""
    headers = auth_headers(admin)
    _invite(client, agency, headers)

    response = _invite(client, agency, headers)

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["reason"] == "invitation_pending"


@pytest.mark.integration
def test_invite_existing_member_conflicts(client, agency, admin, auth_headers, sent_invites):
    """Test active members cannot be invited again"""
    response = _invite(client, agency, auth_headers(admin), email=admin.email)

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["reason"] == "already_member"


@pytest.mark.integration
def test_invite_requires_permission(client, seeded, agency, make_user, add_member, auth_headers, sent_invites):
    """Test agents cannot invite"""
    agent = make_user("agent@example.com")
    add_member(agent, agency, seeded[TENANT_AGENT])

    response = _invite(client, agency, auth_headers(agent))

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["reason"] == "missing_permission"
    sent_invites.assert_not_called()


@pytest.mark.integration
def test_suspended_tenant_cannot_invite(client, db, agency, admin, auth_headers, sent_invites):
    """Test a read-only subscription blocks invitations"""
    headers = auth_headers(admin)
    agency.status = TenantStatus.SUSPENDED.value
    db.commit()

    response = _invite(client, agency, headers)

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["reason"] == "subscription_read_only"


@pytest.mark.integration
def test_validate_and_accept(client, seeded, agency, admin, auth_headers, sent_invites):
    """Test the public accept flow signs the new member in"""
    _invite(client, agency, auth_headers(admin), role_ids=[seeded[TENANT_AGENT].id])
    token = _last_token(sent_invites)

    validated = client.post("/api/v1/invitations/validate", json={"token": token})
    assert validated.status_code == status.HTTP_200_OK
    assert validated.json()["email"] == "new@example.com"
    assert validated.json()["tenant_name"] == agency.name

    accepted = client.post(
        "/api/v1/invitations/accept",
        json={"token": token, "password": NEW_PASSWORD, "full_name": "New Member"},
    )
    assert accepted.status_code == status.HTTP_200_OK
    data = accepted.json()
    assert data["is_new_user"] is True
    assert data["tenant_id"] == agency.id

    members = client.get(
        f"/api/v1/tenants/{agency.id}/members",
        headers={"Authorization": f"Bearer {data['access_token']}"},
    )
    assert members.status_code == status.HTTP_200_OK


@pytest.mark.integration
def test_accept_twice(client, agency, admin, auth_headers, sent_invites):
    """Test a consumed token reports why it cannot be used"""
    _invite(client, agency, auth_headers(admin))
    token = _last_token(sent_invites)
    client.post("/api/v1/invitations/accept", json={"token": token, "password": NEW_PASSWORD})

    response = client.post("/api/v1/invitations/accept", json={"token": token, "password": NEW_PASSWORD})

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["reason"] == "invitation_already_accepted"


@pytest.mark.integration
def test_accept_unknown_token(client):
    """Test unknown tokens return 404"""
    response = client.post("/api/v1/invitations/accept", json={"token": "nope", "password": NEW_PASSWORD})

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["reason"] == "invitation_not_found"


@pytest.mark.integration
def test_accept_weak_password(client, agency, admin, auth_headers, sent_invites):
    """Test weak passwords are rejected before anything is created"""
    _invite(client, agency, auth_headers(admin))

    response = client.post(
        "/api/v1/invitations/accept",
        json={"token": _last_token(sent_invites), "password": "weak"},
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["reason"] == "weak_password"


@pytest.mark.integration
def test_resend_rotates_token(client, agency, admin, auth_headers, sent_invites):
    """Test resend invalidates the previous link"""
    headers = auth_headers(admin)
    invitation_id = _invite(client, agency, headers).json()["id"]
    old_token = _last_token(sent_invites)

    response = client.post(f"/api/v1/tenants/{agency.id}/invitations/{invitation_id}/resend", headers=headers)

    assert response.status_code == status.HTTP_200_OK
    new_token = _last_token(sent_invites)
    assert new_token != old_token
    old = client.post("/api/v1/invitations/validate", json={"token": old_token})
    assert old.status_code == status.HTTP_404_NOT_FOUND
    assert client.post("/api/v1/invitations/validate", json={"token": new_token}).status_code == status.HTTP_200_OK


@pytest.mark.integration
def test_revoke_and_list(client, db, agency, admin, auth_headers, sent_invites):
    """Test revoked invitations are listed and cannot be accepted"""
    headers = auth_headers(admin)
    invitation_id = _invite(client, agency, headers).json()["id"]
    token = _last_token(sent_invites)
    _invite(client, agency, headers, email="other@example.com")

    revoked = client.post(f"/api/v1/tenants/{agency.id}/invitations/{invitation_id}/revoke", headers=headers)
    assert revoked.status_code == status.HTTP_200_OK
    assert revoked.json()["status"] == "REVOKED"

    pending = client.get(
        f"/api/v1/tenants/{agency.id}/invitations", params={"status": "PENDING"}, headers=headers
    )
    assert [inv["email"] for inv in pending.json()] == ["other@example.com"]

    response = client.post("/api/v1/invitations/accept", json={"token": token, "password": NEW_PASSWORD})
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["reason"] == "invitation_revoked"
    assert db.query(Invitation).count() == 2


class _CountingRedis:
    def __init__(self):
        self.counts = {}

    def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, window):
        pass

    def ttl(self, key):
        return 42


@pytest.mark.integration
def test_accept_is_rate_limited(client, monkeypatch):
    """Test the public accept route is throttled by its configured budget"""
    monkeypatch.setattr(rate_limiting.limiter, "client", _CountingRedis())
    monkeypatch.setattr(settings, "RATE_LIMIT_INVITATION_ACCEPT", "1/60")

    first = client.post("/api/v1/invitations/accept", json={"token": "nope", "password": NEW_PASSWORD})
    second = client.post("/api/v1/invitations/accept", json={"token": "nope", "password": NEW_PASSWORD})

    assert first.status_code == status.HTTP_404_NOT_FOUND
    assert second.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert second.json()["reason"] == "rate_limited"
    assert second.headers["Retry-After"] == "42"
