"""
Registration, login, password reset, onboarding, tenant resolution and branding
"""
import asyncio

import pytest

from interviewdesk import auth, config
from interviewdesk.tenants import DEVELOPMENT_TENANT, build_theme, resolve_tenant_for_host
from interviewdesk.tests.helpers import auth_headers


class TestRegistration:
    def test_employer_registers_without_role(self, client):
        response = client.post("/api/auth/register", json={
            "email": "new@acme.com", "password": "secret123", "name": "New Employer"
        })
        assert response.status_code == 200
        data = response.json()
        assert data["role"] is None
        assert data["onboarding_completed"] is False

    def test_candidate_is_onboarded_immediately(self, client):
        response = client.post("/api/auth/register", json={
            "email": "cand@example.com", "password": "secret123", "name": "Cand", "account_type": "candidate"
        })
        assert response.json()["role"] == "candidate"
        assert response.json()["onboarding_completed"] is True

    def test_duplicate_email(self, client, register_user):
        register_user(email="dup@acme.com")
        response = client.post("/api/auth/register", json={
            "email": "dup@acme.com", "password": "secret123", "name": "Again"
        })
        assert response.status_code == 400
        assert response.json()["detail"] == "Email already registered"

    def test_short_password_rejected(self, client):
        response = client.post("/api/auth/register", json={
            "email": "x@acme.com", "password": "123", "name": "X"
        })
        assert response.status_code == 422


class TestLogin:
    def test_wrong_password(self, client, register_user):
        register_user(email="login@acme.com")
        response = client.post("/api/auth/login", json={"email": "login@acme.com", "password": "nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_login_sets_cookie_usable_for_me(self, client, register_user):
        register_user(email="cookie@acme.com")
        response = client.post("/api/auth/login", json={"email": "cookie@acme.com", "password": "secret123"})
        assert response.status_code == 200
        assert "access_token" in response.cookies

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == "cookie@acme.com"

    def test_me_requires_auth(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_invalid_bearer(self, client):
        response = client.get("/api/auth/me", headers=auth_headers("garbage"))
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"


class TestPasswordReset:
    @pytest.fixture
    def sent_links(self, monkeypatch):
        sent = []

        async def record(email, reset_url, expires_at):
            sent.append({"email": email, "reset_url": reset_url, "expires_at": expires_at})
            return {"success": True}
        monkeypatch.setattr(auth, "send_password_reset_email", record)
        return sent

    def request_reset(self, client, email, sent_links):
        response = client.post("/api/auth/reset-request", json={"email": email})
        assert response.status_code == 200
        return sent_links[-1]["reset_url"].split("token=", 1)[1] if sent_links else None

    def test_reset_and_login_with_new_password(self, client, register_user, sent_links, mock_db):
        register_user("employer", email="forgetful@acme.com", password="oldpass1")
        token = self.request_reset(client, "forgetful@acme.com", sent_links)
        assert sent_links[0]["email"] == "forgetful@acme.com"

        stored = asyncio.run(mock_db.password_resets.find_one({}))
        assert stored["token_hash"] != token

        response = client.post("/api/auth/reset", json={"token": token, "new_password": "newpass1"})
        assert response.status_code == 200

        assert client.post("/api/auth/login", json={"email": "forgetful@acme.com", "password": "oldpass1"}).status_code == 401
        assert client.post("/api/auth/login", json={"email": "forgetful@acme.com", "password": "newpass1"}).status_code == 200

    def test_token_is_single_use(self, client, register_user, sent_links):
        register_user("employer", email="once@acme.com")
        token = self.request_reset(client, "once@acme.com", sent_links)
        assert client.post("/api/auth/reset", json={"token": token, "new_password": "newpass1"}).status_code == 200

        again = client.post("/api/auth/reset", json={"token": token, "new_password": "newpass2"})
        assert again.status_code == 400
        assert again.json()["detail"] == "Invalid or expired reset token"

    def test_new_request_replaces_old_link(self, client, register_user, sent_links):
        register_user("employer", email="twice@acme.com")
        first = self.request_reset(client, "twice@acme.com", sent_links)
        second = self.request_reset(client, "twice@acme.com", sent_links)

        assert client.post("/api/auth/reset", json={"token": first, "new_password": "newpass1"}).status_code == 400
        assert client.post("/api/auth/reset", json={"token": second, "new_password": "newpass1"}).status_code == 200

    def test_expired_token(self, client, register_user, sent_links, mock_db):
        register_user("employer", email="late@acme.com")
        token = self.request_reset(client, "late@acme.com", sent_links)
        asyncio.run(mock_db.password_resets.update_many({}, {"$set": {"expires_at": "2020-01-01T00:00:00+00:00"}}))

        response = client.post("/api/auth/reset", json={"token": token, "new_password": "newpass1"})
        assert response.status_code == 400

    def test_unknown_email_gets_same_answer(self, client, sent_links):
        response = client.post("/api/auth/reset-request", json={"email": "nobody@acme.com"})
        assert response.status_code == 200
        assert response.json()["message"] == auth.RESET_REQUESTED_MESSAGE
        assert sent_links == []

    def test_short_new_password_rejected(self, client):
        response = client.post("/api/auth/reset", json={"token": "abc", "new_password": "123"})
        assert response.status_code == 422


class TestOnboarding:
    def test_creates_tenant_and_owner_membership(self, client, register_user, mock_db):
        token, user = register_user()
        response = client.post("/api/onboarding", json={
            "company_name": "  Globex  ", "subdomain": "Globex", "primary_color": "#112233"
        }, headers=auth_headers(token))

        assert response.status_code == 200
        data = response.json()
        assert data["redirect"] == "/dashboard"
        assert data["tenant"]["name"] == "Globex"
        assert data["tenant"]["subdomain"] == "globex"

        me = client.get("/api/auth/me", headers=auth_headers(token)).json()
        assert me["role"] == "owner"
        assert me["onboarding_completed"] is True

        member = asyncio.run(mock_db.tenant_members.find_one({"user_id": user["user_id"]}))
        assert member["role"] == "owner"
        audit = asyncio.run(mock_db.audit_log.find_one({"action": "tenant_created"}))
        assert audit["actor_id"] == user["user_id"]

    def test_second_onboarding_rejected(self, client, owner):
        response = client.post("/api/onboarding", json={"company_name": "Again"},
                               headers=auth_headers(owner["token"]))
        assert response.status_code == 400

    def test_candidates_cannot_onboard(self, client, register_user):
        token, _ = register_user("candidate")
        response = client.post("/api/onboarding", json={"company_name": "Nope"}, headers=auth_headers(token))
        assert response.status_code == 403

    def test_subdomain_taken(self, client, owner, register_user):
        token, _ = register_user()
        response = client.post("/api/onboarding", json={
            "company_name": "Copycat", "subdomain": owner["tenant"]["subdomain"]
        }, headers=auth_headers(token))
        assert response.status_code == 400
        assert response.json()["detail"] == "Subdomain is already taken"

    def test_blank_company_and_bad_color(self, client, register_user):
        token, _ = register_user()
        assert client.post("/api/onboarding", json={"company_name": "   "},
                           headers=auth_headers(token)).status_code == 422
        assert client.post("/api/onboarding", json={"company_name": "Ok", "primary_color": "blue"},
                           headers=auth_headers(token)).status_code == 422


class TestBranding:
    def test_owner_updates_colors(self, client, owner):
        response = client.put("/api/settings/branding", json={"primary_color": "#ff0000"},
                              headers=auth_headers(owner["token"]))
        assert response.status_code == 200

        branding = client.get("/api/settings/branding", headers=auth_headers(owner["token"])).json()
        assert branding["theme"]["css_variables"]["--primary"] == "#ff0000"

    def test_non_owner_forbidden(self, client, register_user):
        token, _ = register_user("candidate")
        response = client.get("/api/settings/branding", headers=auth_headers(token))
        assert response.status_code == 403


class TestTenantResolution:
    def test_localhost_is_development_tenant(self):
        assert asyncio.run(resolve_tenant_for_host("localhost:3000")) == DEVELOPMENT_TENANT

    def test_subdomain_lookup(self, mock_db, monkeypatch):
        monkeypatch.setattr(config, "BASE_DOMAIN", "interviewdesk.app")
        asyncio.run(mock_db.tenants.insert_one({"tenant_id": "tenant_x", "name": "X", "subdomain": "xco"}))
        tenant = asyncio.run(resolve_tenant_for_host("xco.interviewdesk.app"))
        assert tenant["tenant_id"] == "tenant_x"
        assert asyncio.run(resolve_tenant_for_host("interviewdesk.app")) is None

    def test_verified_custom_domain(self, mock_db, monkeypatch):
        monkeypatch.setattr(config, "BASE_DOMAIN", "interviewdesk.app")
        asyncio.run(mock_db.tenants.insert_many([
            {"tenant_id": "tenant_v", "name": "V", "custom_domain": "jobs.v.com", "domain_verified": True},
            {"tenant_id": "tenant_u", "name": "U", "custom_domain": "jobs.u.com", "domain_verified": False},
        ]))
        assert asyncio.run(resolve_tenant_for_host("jobs.v.com"))["tenant_id"] == "tenant_v"
        assert asyncio.run(resolve_tenant_for_host("jobs.u.com")) is None

    def test_theme_variables(self):
        theme = build_theme({"name": "Acme", "logo_url": "https://cdn/logo.png",
                             "theme": {"primary_color": "#000000"}})
        assert theme["css_variables"]["--primary"] == "#000000"
        assert theme["brand_name"] == "Acme"

    def test_middleware_sets_tenant_headers(self, client, mock_db):
        response = client.get("/api/health", headers={"host": "localhost"})
        assert response.headers["x-tenant-id"] == DEVELOPMENT_TENANT["tenant_id"]
