"""Integration tests for authentication API"""

import pytest
from fastapi import status

from realty_access.seed import TENANT_AGENT

TEST_PASSWORD = "Str0ng!Passw0rd"


@pytest.fixture
def agency(make_tenant):
    return make_tenant("agency")


@pytest.fixture
def agent(seeded, make_user, agency, add_member):
    user = make_user("agent@example.com")
    add_member(user, agency, seeded[TENANT_AGENT])
    return user


@pytest.mark.integration
def test_login_success(client, agent):
    """Test successful login"""
    response = client.post("/api/v1/auth/login", json={"email": "agent@example.com", "password": TEST_PASSWORD})

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert "access_token" in data
    assert "refresh_token" in data
    assert data["token_type"] == "bearer"


@pytest.mark.integration
def test_login_invalid_credentials(client, agent):
    """Test login with wrong password"""
    response = client.post("/api/v1/auth/login", json={"email": "agent@example.com", "password": "wrong"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["reason"] == "invalid_credentials"


@pytest.mark.integration
def test_refresh_and_logout(client, agent):
    """Test refresh works until logout revokes the session"""
    tokens = client.post(
        "/api/v1/auth/login", json={"email": "agent@example.com", "password": TEST_PASSWORD}
    ).json()
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    refreshed = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == status.HTTP_200_OK

    assert client.post("/api/v1/auth/logout", headers=headers).status_code == status.HTTP_200_OK

    after = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert after.status_code == status.HTTP_401_UNAUTHORIZED
    assert after.json()["reason"] == "session_revoked"
    me = client.get("/api/v1/auth/me", headers=headers)
    assert me.status_code == status.HTTP_401_UNAUTHORIZED
    assert me.json()["reason"] == "session_revoked"


@pytest.mark.integration
def test_me(client, agency, agent, auth_headers):
    """Test current user includes memberships"""
    response = client.get("/api/v1/auth/me", headers=auth_headers(agent))

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["email"] == "agent@example.com"
    assert data["platform_permissions"] == []
    assert data["memberships"] == [{
        "tenant_id": agency.id,
        "tenant_name": agency.name,
        "tenant_status": "ACTIVE",
        "status": "ACTIVE",
    }]


@pytest.mark.integration
def test_token_without_session(client, agent, unbound_access_token):
    """Test access tokens must be backed by a live session"""
    response = client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {unbound_access_token(agent)}"}
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["reason"] == "session_revoked"


@pytest.mark.integration
def test_check_returns_decision(client, agency, agent, auth_headers):
    """Test the check endpoint reports denials without raising"""
    headers = auth_headers(agent)

    allowed = client.post(
        "/api/v1/auth/check",
        json={"permissions": ["CRM_DEALS_VIEW"], "tenant_id": agency.id},
        headers=headers,
    )
    denied = client.post(
        "/api/v1/auth/check",
        json={"permissions": ["BILLING_VIEW", "USERS_DISABLE"], "mode": "any", "tenant_id": agency.id},
        headers=headers,
    )

    assert allowed.status_code == status.HTTP_200_OK
    assert allowed.json()["allowed"] is True
    assert denied.status_code == status.HTTP_200_OK
    assert denied.json() == {
        "allowed": False,
        "reason": "missing_permission",
        "user_id": agent.id,
        "tenant_id": agency.id,
    }


@pytest.mark.integration
def test_register_tenant(client, seeded):
    """Test agency signup creates an admin who can manage members"""
    response = client.post(
        "/api/v1/tenants/register",
        json={
            "name": "Casa Realty",
            "owner_email": "owner@example.com",
            "owner_password": "Own3r!Secret",
        },
    )

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["tenant"]["slug"] == "casa-realty"
    members = client.get(
        f"/api/v1/tenants/{data['tenant']['id']}/members",
        headers={"Authorization": f"Bearer {data['access_token']}"},
    )
    assert members.status_code == status.HTTP_200_OK


@pytest.mark.integration
def test_register_duplicate_email(client, seeded, agent):
    """Test registration with an email that already exists"""
    response = client.post(
        "/api/v1/tenants/register",
        json={"name": "Other", "owner_email": agent.email, "owner_password": "Own3r!Secret"},
    )

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["reason"] == "email_taken"


@pytest.mark.integration
def test_suspend_tenant_is_platform_only(client, agency, agent, make_user, auth_headers):
    """Test tenant suspension needs a platform operator and signs members out"""
    agent_headers = auth_headers(agent)
    denied = client.post(f"/api/v1/tenants/{agency.id}/suspend", headers=agent_headers)
    assert denied.status_code == status.HTTP_403_FORBIDDEN

    operator = make_user("root@example.com", super_admin=True)
    response = client.post(f"/api/v1/tenants/{agency.id}/suspend", headers=auth_headers(operator))

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "SUSPENDED"
    assert client.get("/api/v1/auth/me", headers=agent_headers).status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.integration
def test_health(client):
    """Test health endpoint"""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "healthy"
