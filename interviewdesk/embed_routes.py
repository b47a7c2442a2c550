import logging
import uuid
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import FileResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from interviewdesk.candidate_routes import find_or_create_session, is_expired
from interviewdesk.config import APP_URL, CONDUCTOR_URL, EMBED_JWT_SECRET, EMBED_TOKEN_TTL_SECONDS, JWT_ALGORITHM
from interviewdesk.database import db
from interviewdesk.models import EmbedProgressUpdate, EmbedResponseCreate, EmbedTokenRequest
from interviewdesk.rate_limit import check_rate_limit, embed_config_limiter, embed_token_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
script_router = APIRouter()

STATIC_DIR = Path(__file__).parent / "static"

embed_security = HTTPBearer(auto_error=False)


def _enforce_rate_limit(limiter, request: Request) -> dict:
    result = check_rate_limit(limiter, request)
    if not result["allowed"]:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers=result["headers"]
        )
    return result["headers"]


def create_embed_token(claims: dict) -> str:
    """Short-lived token the widget hands to the conductor"""
    to_encode = claims.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(seconds=EMBED_TOKEN_TTL_SECONDS)
    return jwt.encode(to_encode, EMBED_JWT_SECRET, algorithm=JWT_ALGORITHM)


async def get_embed_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(embed_security)
) -> dict:
    """Dependency for conductor callbacks: the session named by a valid wsToken"""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing embed token"
        )
    try:
        claims = jwt.decode(credentials.credentials, EMBED_JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Embed token has expired"
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid embed token"
        )

    session = await db.sessions.find_one({"session_id": claims.get("session_id")}, {"_id": 0})
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    return session


# ============ WIDGET BOOTSTRAP ============

@router.get("/embed/config")
async def get_embed_config(request: Request, response: Response):
    headers = _enforce_rate_limit(embed_config_limiter, request)
    response.headers.update(headers)

    return {
        "conductorUrl": CONDUCTOR_URL,
        "webOrigin": APP_URL,
        "features": {"captions": True, "progress": True}
    }


@router.post("/embed/token")
async def create_embed_session_token(token_request: EmbedTokenRequest, request: Request, response: Response):
    """Exchange an invite token for a session and a 7 minute wsToken"""
    headers = _enforce_rate_limit(embed_token_limiter, request)
    response.headers.update(headers)

    if not token_request.inviteToken:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invite token is required"
        )

    invitation = await db.invitations.find_one({"token": token_request.inviteToken}, {"_id": 0})
    if not invitation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid invite token"
        )
    if invitation.get("used"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invite token has already been used"
        )
    if is_expired(invitation):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invite token has expired"
        )

    interview = await db.interviews.find_one({"interview_id": invitation["interview_id"]}, {"_id": 0})
    if not interview:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid invite token"
        )

    session = await find_or_create_session(
        invitation,
        interview,
        {"candidate_email": invitation["email"]},
        candidate_id=None,
        candidate_name=invitation.get("name")
    )

    ws_token = create_embed_token({
        "tenant_id": interview["tenant_id"],
        "session_id": session["session_id"],
        "interview_id": interview["interview_id"],
        "candidate_id": session.get("candidate_id"),
        "invite_id": invitation["invitation_id"]
    })

    return {
        "wsToken": ws_token,
        "sessionId": session["session_id"],
        "interviewId": interview["interview_id"],
        "candidateId": session.get("candidate_id")
    }


# ============ CONDUCTOR CALLBACKS ============

@router.get("/embed/session")
async def get_embed_session_details(session: dict = Depends(get_embed_session)):
    interview = await db.interviews.find_one(
        {"interview_id": session["interview_id"]},
        {"_id": 0, "interview_id": 1, "title": 1, "description": 1, "competencies": 1, "brand": 1}
    )
    questions = await db.questions.find(
        {"interview_id": session["interview_id"]}, {"_id": 0}
    ).sort([("position", 1), ("created_at", 1)]).to_list(1000)

    return {"session": session, "interview": interview, "questions": questions}


@router.post("/embed/session/responses")
async def record_embed_response(
    response_data: EmbedResponseCreate,
    session: dict = Depends(get_embed_session)
):
    """Store one answer; the first answer starts the session"""
    if session["status"] == "submitted":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Session already submitted"
        )

    question = await db.questions.find_one(
        {"question_id": response_data.question_id, "interview_id": session["interview_id"]}, {"_id": 0}
    )
    if not question:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Question not found"
        )

    now = datetime.now(timezone.utc).isoformat()
    response_doc = {
        "response_id": f"resp_{uuid.uuid4().hex[:12]}",
        "session_id": session["session_id"],
        "interview_id": session["interview_id"],
        "question_id": response_data.question_id,
        "transcript": response_data.transcript,
        "audio_url": response_data.audio_url,
        "duration_sec": response_data.duration_sec,
        "score": response_data.score,
        "flags": response_data.flags,
        "created_at": now
    }
    await db.responses.insert_one(response_doc)
    response_doc.pop("_id", None)

    if session["status"] == "pending":
        await db.sessions.update_one(
            {"session_id": session["session_id"]},
            {"$set": {"status": "in_progress", "started_at": now, "updated_at": now}}
        )

    return response_doc


@router.post("/embed/session/progress")
async def update_embed_progress(
    progress: EmbedProgressUpdate,
    session: dict = Depends(get_embed_session)
):
    update = {
        "current_question_index": progress.current_question_index,
        "updated_at": datetime.now(timezone.utc).isoformat()
    }
    if progress.running_score is not None:
        update["running_score"] = progress.running_score

    await db.sessions.update_one({"session_id": session["session_id"]}, {"$set": update})
    return await db.sessions.find_one({"session_id": session["session_id"]}, {"_id": 0})


@router.post("/embed/session/submit")
async def submit_embed_session(session: dict = Depends(get_embed_session)):
    """Finish the session and burn its invitation"""
    if session["status"] == "submitted":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Session already submitted"
        )

    now = datetime.now(timezone.utc).isoformat()
    await db.sessions.update_one(
        {"session_id": session["session_id"]},
        {"$set": {"status": "submitted", "submitted_at": now, "updated_at": now}}
    )
    if session.get("invitation_id"):
        await db.invitations.update_one(
            {"invitation_id": session["invitation_id"]}, {"$set": {"used": True}}
        )
    logger.info(f"[ACTION] Session {session['session_id']} submitted")

    return await db.sessions.find_one({"session_id": session["session_id"]}, {"_id": 0})


# ============ PUBLIC SCRIPT ============

@script_router.get("/embed.js")
async def get_embed_script():
    return FileResponse(
        STATIC_DIR / "embed.js",
        media_type="application/javascript",
        headers={"Cache-Control": "public, max-age=3600"}
    )
