"""
Candidate-facing endpoints: invite lookup, accepting an invite, session history
and the interview room payload
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from interviewdesk.auth import get_current_user, get_optional_user
from interviewdesk.database import db
from interviewdesk.models import AcceptInviteRequest, is_past

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def is_expired(invitation: dict) -> bool:
    return is_past(invitation.get("expires_at"))


async def find_or_create_session(invitation: dict, interview: dict, match: dict,
                                 candidate_id: Optional[str], candidate_name: Optional[str]) -> dict:
    """Reuse the session for (interview, candidate) or start a pending one"""
    query = {"interview_id": interview["interview_id"], **match}
    session = await db.sessions.find_one(query, {"_id": 0})
    if session:
        return session

    now = datetime.now(timezone.utc).isoformat()
    session = {
        "session_id": f"sess_{uuid.uuid4().hex[:12]}",
        "interview_id": interview["interview_id"],
        "tenant_id": interview["tenant_id"],
        "invitation_id": invitation["invitation_id"],
        "candidate_id": candidate_id,
        "candidate_email": invitation["email"],
        "candidate_name": candidate_name or invitation.get("name"),
        "status": "pending",
        "current_question_index": 0,
        "running_score": None,
        "started_at": None,
        "submitted_at": None,
        "created_at": now,
        "updated_at": now
    }
    await db.sessions.insert_one(session)
    session.pop("_id", None)
    logger.info(f"[ACTION] Created session {session['session_id']} for {invitation['email']}")
    return session


@router.get("/invite/{token}")
async def get_invite(token: str):
    """Public invite lookup"""
    invitation = await db.invitations.find_one({"token": token}, {"_id": 0})
    if not invitation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invitation not found"
        )

    interview = await db.interviews.find_one({"interview_id": invitation["interview_id"]}, {"_id": 0}) or {}
    tenant = await db.tenants.find_one({"tenant_id": invitation["tenant_id"]}, {"_id": 0}) or {}

    expired = is_expired(invitation)
    used = bool(invitation.get("used"))

    return {
        "interview_title": interview.get("title"),
        "company_name": tenant.get("name"),
        "candidate_email": invitation["email"],
        "expires_at": invitation.get("expires_at"),
        "used": used,
        "expired": expired,
        "valid": not used and not expired
    }


@router.post("/accept-invite")
async def accept_invite(
    request_data: AcceptInviteRequest,
    current_user: Optional[dict] = Depends(get_optional_user)
):
    if not request_data.token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Token is required"
        )

    invitation = await db.invitations.find_one({"token": request_data.token}, {"_id": 0})
    if not invitation or invitation.get("used") or is_expired(invitation):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired invitation"
        )

    interview = await db.interviews.find_one({"interview_id": invitation["interview_id"]}, {"_id": 0})
    if not interview:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired invitation"
        )

    if not current_user or current_user.get("role") != "candidate":
        return {
            "requires_auth": True,
            "message": "Sign in or create a candidate account to start this interview",
            "invitation": {
                "interview_title": interview["title"],
                "candidate_email": invitation["email"],
                "expires_at": invitation.get("expires_at")
            }
        }

    session = await find_or_create_session(
        invitation,
        interview,
        {"candidate_id": current_user["user_id"]},
        candidate_id=current_user["user_id"],
        candidate_name=current_user.get("name")
    )

    await db.invitations.update_one({"invitation_id": invitation["invitation_id"]}, {"$set": {"used": True}})
    logger.info(f"[ACTION] Invitation {invitation['invitation_id']} accepted by {current_user['email']}")

    return {"session": session, "message": "Invitation accepted"}


@router.get("/candidate/sessions")
async def list_candidate_sessions(current_user: dict = Depends(get_current_user)):
    """Candidate's interview history"""
    sessions = await db.sessions.find(
        {"candidate_id": current_user["user_id"]}, {"_id": 0}
    ).sort("created_at", -1).to_list(100)

    for session in sessions:
        interview = await db.interviews.find_one(
            {"interview_id": session["interview_id"]}, {"_id": 0, "title": 1}
        )
        session["interview_title"] = (interview or {}).get("title")

    return sessions


@router.get("/candidate/sessions/{session_id}")
async def get_interview_room(session_id: str, current_user: dict = Depends(get_current_user)):
    """Interview room payload; ideal answers are never sent to candidates"""
    session = await db.sessions.find_one({"session_id": session_id}, {"_id": 0})
    if not session or session.get("candidate_id") != current_user["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )

    interview = await db.interviews.find_one(
        {"interview_id": session["interview_id"]},
        {"_id": 0, "interview_id": 1, "title": 1, "description": 1, "brand": 1, "status": 1}
    )
    questions = await db.questions.find(
        {"interview_id": session["interview_id"]}, {"_id": 0, "ideal_answer": 0}
    ).sort([("position", 1), ("created_at", 1)]).to_list(1000)

    return {"interview": interview, "questions": questions, "session": session}
