"""
Smoke test against a running deployment:
1. Health and embed config respond
2. Owner can log in and list admin jobs
3. API key round trip (create, use, delete)

Set INTERVIEWDESK_BACKEND_URL and seed users with scripts/seed_test_users.py.
"""
import os

import pytest
import requests

BASE_URL = os.environ.get('INTERVIEWDESK_BACKEND_URL', '').rstrip('/')

OWNER_EMAIL = os.environ.get('INTERVIEWDESK_OWNER_EMAIL', "owner@acme.com")
OWNER_PASSWORD = os.environ.get('INTERVIEWDESK_OWNER_PASSWORD', "owner123")

pytestmark = pytest.mark.skipif(not BASE_URL, reason="INTERVIEWDESK_BACKEND_URL not set")


@pytest.fixture(scope="module")
def owner_session():
    """Get owner session with token"""
    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})

    login_response = session.post(f"{BASE_URL}/api/auth/login", json={
        "email": OWNER_EMAIL,
        "password": OWNER_PASSWORD
    })
    assert login_response.status_code == 200, f"Owner login failed: {login_response.text}"
    token = login_response.json()["access_token"]
    session.headers.update({"Authorization": f"Bearer {token}"})

    return session


class TestLiveHealth:
    """Public endpoints"""

    def test_health(self):
        response = requests.get(f"{BASE_URL}/api/health")
        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_embed_config(self):
        response = requests.get(f"{BASE_URL}/api/embed/config")
        assert response.status_code == 200
        assert "conductorUrl" in response.json()


class TestLiveAdminApi:
    """Admin API with a session JWT and an API key"""

    def test_list_jobs(self, owner_session):
        response = owner_session.get(f"{BASE_URL}/api/admin/jobs")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert "items" in body["data"]

    def test_api_key_round_trip(self, owner_session):
        created = owner_session.post(f"{BASE_URL}/api/admin/api-keys", json={"name": "smoke test", "scopes": ["jobs"]})
        assert created.status_code == 201, created.text
        key = created.json()["data"]

        try:
            response = requests.get(f"{BASE_URL}/api/admin/jobs",
                                    headers={"Authorization": f"Bearer {key['rawKeyOnce']}"})
            assert response.status_code == 200
        finally:
            owner_session.delete(f"{BASE_URL}/api/admin/api-keys/{key['id']}")
