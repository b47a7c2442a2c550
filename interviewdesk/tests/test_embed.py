"""
Embeddable widget: config, invite-token exchange, conductor callbacks and embed.js
"""
import asyncio
from datetime import datetime, timezone, timedelta

import jwt
import pytest

from interviewdesk import config
from interviewdesk.tests.helpers import auth_headers


@pytest.fixture
def invite(client, owner, create_interview, create_invitation):
    interview = create_interview(owner["token"], questions=("Q1", "Q2"))
    questions = client.get(f"/api/interviews/{interview['interview_id']}/questions",
                           headers=auth_headers(owner["token"])).json()
    invitation = create_invitation(owner["token"], interview["interview_id"], email="widget@example.com")
    return {"interview": interview, "questions": questions, "invitation": invitation}


def exchange(client, invite_token):
    return client.post("/api/embed/token", json={"inviteToken": invite_token})


class TestEmbedConfig:
    def test_config_shape(self, client):
        response = client.get("/api/embed/config")
        assert response.status_code == 200
        data = response.json()
        assert data["conductorUrl"] == config.CONDUCTOR_URL
        assert data["webOrigin"] == config.APP_URL
        assert response.headers["X-RateLimit-Limit"] == "30"

    def test_script_is_served(self, client):
        response = client.get("/embed.js")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/javascript")
        assert "data-invite-token" in response.text


class TestTokenExchange:
    def test_valid_invite(self, client, invite):
        response = exchange(client, invite["invitation"]["token"])
        assert response.status_code == 200
        data = response.json()
        assert data["interviewId"] == invite["interview"]["interview_id"]
        assert data["candidateId"] is None

        claims = jwt.decode(data["wsToken"], config.EMBED_JWT_SECRET, algorithms=["HS256"])
        assert claims["session_id"] == data["sessionId"]
        assert claims["invite_id"] == invite["invitation"]["invitation_id"]
        lifetime = claims["exp"] - datetime.now(timezone.utc).timestamp()
        assert 0 < lifetime <= config.EMBED_TOKEN_TTL_SECONDS

    def test_exchange_reuses_session(self, client, invite):
        first = exchange(client, invite["invitation"]["token"]).json()
        second = exchange(client, invite["invitation"]["token"]).json()
        assert first["sessionId"] == second["sessionId"]

    def test_missing_and_unknown_tokens(self, client):
        missing = client.post("/api/embed/token", json={})
        assert missing.status_code == 400
        assert missing.json()["detail"] == "Invite token is required"

        unknown = exchange(client, "deadbeef")
        assert unknown.status_code == 404

    def test_used_and_expired(self, client, invite, mock_db):
        token = invite["invitation"]["token"]
        asyncio.run(mock_db.invitations.update_one({"token": token}, {"$set": {"used": True}}))
        assert exchange(client, token).json()["detail"] == "Invite token has already been used"

        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        asyncio.run(mock_db.invitations.update_one({"token": token}, {"$set": {"used": False, "expires_at": past}}))
        assert exchange(client, token).json()["detail"] == "Invite token has expired"

    def test_token_exchange_rate_limited(self, client):
        for _ in range(5):
            exchange(client, "deadbeef")
        response = exchange(client, "deadbeef")
        assert response.status_code == 429


class TestConductorCallbacks:
    def test_session_lifecycle(self, client, invite, mock_db):
        ws = auth_headers(exchange(client, invite["invitation"]["token"]).json()["wsToken"])

        session = client.get("/api/embed/session", headers=ws).json()
        assert session["session"]["status"] == "pending"
        assert [q["text"] for q in session["questions"]] == ["Q1", "Q2"]

        answer = client.post("/api/embed/session/responses", json={
            "question_id": invite["questions"][0]["question_id"], "transcript": "Hello", "score": 7
        }, headers=ws)
        assert answer.status_code == 200
        assert answer.json()["response_id"].startswith("resp_")

        progress = client.post("/api/embed/session/progress", json={
            "current_question_index": 1, "running_score": 7.0
        }, headers=ws).json()
        assert progress["status"] == "in_progress"
        assert progress["started_at"] is not None
        assert progress["current_question_index"] == 1

        submitted = client.post("/api/embed/session/submit", headers=ws).json()
        assert submitted["status"] == "submitted"
        invitation = asyncio.run(mock_db.invitations.find_one({"token": invite["invitation"]["token"]}))
        assert invitation["used"] is True

        again = client.post("/api/embed/session/submit", headers=ws)
        assert again.status_code == 400
        late = client.post("/api/embed/session/responses", json={
            "question_id": invite["questions"][1]["question_id"]
        }, headers=ws)
        assert late.status_code == 400

    def test_question_from_other_interview(self, client, invite):
        ws = auth_headers(exchange(client, invite["invitation"]["token"]).json()["wsToken"])
        response = client.post("/api/embed/session/responses", json={"question_id": "q_other"}, headers=ws)
        assert response.status_code == 404

    def test_callbacks_require_valid_token(self, client):
        assert client.get("/api/embed/session").status_code == 401

        expired = jwt.encode({"session_id": "sess_x", "exp": datetime.now(timezone.utc) - timedelta(seconds=1)},
                             config.EMBED_JWT_SECRET, algorithm="HS256")
        response = client.get("/api/embed/session", headers=auth_headers(expired))
        assert response.json()["detail"] == "Embed token has expired"

        forged = jwt.encode({"session_id": "sess_x"}, "wrong-secret", algorithm="HS256")
        assert client.get("/api/embed/session", headers=auth_headers(forged)).status_code == 401
