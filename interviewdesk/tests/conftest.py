"""
Shared fixtures: an in-memory Mongo swapped into every module, a TestClient,
and factories for employers, candidates and interviews
"""
import sys
import uuid

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from interviewdesk import config, rate_limit
from interviewdesk.server import app
from interviewdesk.tests.helpers import auth_headers


@pytest.fixture(autouse=True)
def mock_db(monkeypatch):
    """Every interviewdesk module that imported `db` gets the same mock database"""
    database = AsyncMongoMockClient()[f"interviewdesk_test_{uuid.uuid4().hex[:6]}"]
    for name, module in list(sys.modules.items()):
        if name.startswith("interviewdesk") and hasattr(module, "db"):
            monkeypatch.setattr(module, "db", database)
    return database


@pytest.fixture(autouse=True)
def reset_rate_limits():
    for limiter in rate_limit.ALL_LIMITERS:
        limiter.reset()
    yield
    for limiter in rate_limit.ALL_LIMITERS:
        limiter.reset()


@pytest.fixture(autouse=True)
def no_email_provider(monkeypatch):
    monkeypatch.setattr(config, "RESEND_API_KEY", None)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def register_user(client):
    """Register and log in; returns (token, user)"""
    def _register(account_type="employer", email=None, password="secret123", name="Test User"):
        email = email or f"{account_type}_{uuid.uuid4().hex[:8]}@example.com"
        response = client.post("/api/auth/register", json={
            "email": email,
            "password": password,
            "name": name,
            "account_type": account_type
        })
        assert response.status_code == 200, response.text

        login = client.post("/api/auth/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        client.cookies.clear()
        return login.json()["access_token"], login.json()["user"]
    return _register


@pytest.fixture
def owner(client, register_user):
    """An onboarded employer who owns a tenant; returns dict(token, user, tenant)"""
    token, user = register_user("employer", name="Olivia Owner")
    response = client.post("/api/onboarding", json={
        "company_name": "Acme Corp",
        "subdomain": f"acme{uuid.uuid4().hex[:6]}"
    }, headers=auth_headers(token))
    assert response.status_code == 200, response.text
    return {"token": token, "user": user, "tenant": response.json()["tenant"]}


@pytest.fixture
def create_interview(client):
    """Create an interview with questions as the given employer"""
    def _create(token, title="Backend Engineer", questions=("Tell us about yourself",)):
        response = client.post("/api/interviews", json={"title": title}, headers=auth_headers(token))
        assert response.status_code == 200, response.text
        interview = response.json()
        for text in questions:
            q = client.post(f"/api/interviews/{interview['interview_id']}/questions",
                            json={"text": text}, headers=auth_headers(token))
            assert q.status_code == 200, q.text
        return interview
    return _create


@pytest.fixture
def create_invitation(client):
    def _invite(token, interview_id, email="candidate@example.com", name="Casey Candidate"):
        response = client.post(f"/api/interviews/{interview_id}/invitations",
                               json={"email": email, "name": name}, headers=auth_headers(token))
        assert response.status_code == 200, response.text
        return response.json()["invitation"]
    return _invite
