"""
Page access table and the /api/routecheck diagnostic
"""
import asyncio

import pytest

from interviewdesk.access import get_access_state, resolve_access, why_redirect
from interviewdesk.tests.helpers import auth_headers


def decide(path, has_session=False, role=None, tenant_id=None, onboarding_completed=False):
    return resolve_access(path, has_session, role, tenant_id, onboarding_completed)


class TestPublicRoutes:
    """Public prefixes are always allowed"""

    @pytest.mark.parametrize("path", ["/pricing", "/invite/abc", "/api/health", "/favicon.ico", "/authors"])
    def test_public_paths_allowed_without_session(self, path):
        assert decide(path).reason == "public route"

    def test_unknown_path_falls_through_to_allow(self):
        decision = decide("/something-else")
        assert decision.action == "allow"
        assert decision.reason == "default"


class TestAuthPages:
    """/auth is a public prefix, so the session state never redirects away from it"""

    def test_signed_in_onboarded_user_may_view_auth(self):
        assert why_redirect("/auth/login", True, "owner", "tenant_1", True) == "allow - public route"

    def test_signed_in_without_role_may_view_auth(self):
        assert decide("/auth/signup", has_session=True).reason == "public route"

    def test_anonymous_visitor_may_sign_in(self):
        assert decide("/auth/login").action == "allow"


class TestEmployerPages:
    def test_no_session_redirects_to_login_with_next(self):
        decision = decide("/dashboard/jobs")
        assert decision.action == "redirect"
        assert decision.target == "/auth/login?next=/dashboard/jobs"

    def test_prefix_match_is_not_segment_bound(self):
        assert decide("/jobsboard").target == "/auth/login?next=/jobsboard"

    def test_candidate_is_sent_to_onboarding(self):
        decision = decide("/dashboard", has_session=True, role="candidate", onboarding_completed=True)
        assert decision.target == "/onboarding"

    def test_employer_not_onboarded(self):
        decision = decide("/settings", has_session=True, role="admin")
        assert decision.target == "/onboarding"
        assert decision.reason == "not onboarded"

    def test_onboarded_employer_allowed(self):
        decision = decide("/question-bank", has_session=True, role="reviewer",
                          tenant_id="tenant_1", onboarding_completed=True)
        assert decision.action == "allow"


class TestOnboardingAndCandidatePages:
    def test_onboarding_requires_session(self):
        assert decide("/onboarding").target == "/auth/login"

    def test_onboarded_employer_skips_onboarding(self):
        decision = decide("/onboarding", has_session=True, role="owner", onboarding_completed=True)
        assert decision.target == "/dashboard"

    def test_only_exact_onboarding_path_is_checked(self):
        assert decide("/onboarding/step-2").reason == "default"

    def test_candidate_page_allows_candidates(self):
        decision = decide("/interview/sess_1", has_session=True, role="candidate", onboarding_completed=True)
        assert decision.action == "allow"

    def test_candidate_page_sends_employers_to_dashboard(self):
        decision = decide("/candidate/history", has_session=True, role="owner", onboarding_completed=True)
        assert decision.target == "/dashboard"

    def test_candidate_pages_need_trailing_slash(self):
        assert decide("/candidate", has_session=True, role="owner").reason == "default"

    def test_why_redirect_describes_decision(self):
        assert why_redirect("/dashboard", False, None, None, False) == \
            "redirect to /auth/login?next=/dashboard - no session"
        assert why_redirect("/pricing", False, None, None, False) == "allow - public route"


class TestAccessState:
    def test_no_user(self):
        state = asyncio.run(get_access_state(None))
        assert state == {"has_session": False, "role": None, "tenant_id": None, "onboarding_completed": False}

    def test_missing_flag_falls_back_to_membership(self, mock_db):
        asyncio.run(mock_db.tenant_members.insert_one(
            {"user_id": "user_1", "tenant_id": "tenant_1", "role": "admin"}
        ))
        state = asyncio.run(get_access_state({"user_id": "user_1", "role": "admin", "tenant_id": "tenant_1"}))
        assert state["onboarding_completed"] is True

    def test_routecheck_endpoint(self, client, owner):
        response = client.get("/api/routecheck", params={"path": "/onboarding"},
                              headers=auth_headers(owner["token"]))
        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "owner"
        assert data["onboarding_completed"] is True
        assert data["decision"] == "redirect to /dashboard - already onboarded"

    def test_routecheck_anonymous(self, client):
        response = client.get("/api/routecheck", params={"path": "/jobs"})
        assert response.json()["decision"].startswith("redirect to /auth/login?next=/jobs")
