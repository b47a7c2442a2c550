"""
Admin REST API (/api/admin)

Every route authenticates through ``admin_context(scope)`` (bearer API key or
session JWT), is rate limited, and answers with the ``{success, data, error}``
envelope. Admin "jobs" are the tenant's interviews.
"""
import base64
import binascii
import csv
import logging
import re
import secrets
import uuid
from datetime import datetime, timezone, timedelta
from typing import Literal, Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pymongo.errors import PyMongoError

from interviewdesk.admin_auth import (
    AdminApiError,
    AdminAuthContext,
    admin_context,
    generate_api_key,
    hash_api_key,
    paginate,
    success_response,
)
from interviewdesk.audit import log_audit
from interviewdesk.config import APP_URL, BULK_INVITE_EXPIRY_DAYS, INVITE_EXPIRY_DAYS
from interviewdesk.csv_export import csv_response
from interviewdesk.dashboard_routes import EXPORT_COLUMNS, build_export_rows, invitation_status, next_question_position
from interviewdesk.database import db
from interviewdesk.models import (
    ApiKeyCreate,
    InviteCreate,
    JobCreate,
    JobQuestionCreate,
    JobQuestionUpdate,
    JobUpdate,
    QuestionBankCreate,
    QuestionBankUpdate,
    QuestionReorder,
    ResponseScore,
    TeamMemberCreate,
    TeamMemberUpdate,
    is_past,
)
from interviewdesk.notification_service import send_invitation_email, send_team_invitation_email
from interviewdesk.rate_limit import admin_bulk_limiter, check_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin")


# ============ HELPERS ============

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def _with_id(doc: dict, id_field: str) -> dict:
    return {"id": doc[id_field], **doc}

async def _actor(ctx: AdminAuthContext) -> Optional[dict]:
    """Audit actor for the caller; API keys act as the user who created them"""
    if not ctx.user_id:
        return None
    user = await db.users.find_one({"user_id": ctx.user_id}, {"_id": 0, "user_id": 1, "email": 1})
    if not user:
        return None
    return {**user, "tenant_id": ctx.tenant_id}

async def get_tenant_job(job_id: str, ctx: AdminAuthContext) -> dict:
    job = await db.interviews.find_one({"interview_id": job_id, "tenant_id": ctx.tenant_id}, {"_id": 0})
    if not job:
        raise AdminApiError(404, "NOT_FOUND", "Job not found")
    return job

async def get_job_question(job_id: str, question_id: str) -> dict:
    question = await db.questions.find_one({"question_id": question_id, "interview_id": job_id}, {"_id": 0})
    if not question:
        raise AdminApiError(404, "NOT_FOUND", "Question not found")
    return question

async def get_tenant_session(session_id: str, ctx: AdminAuthContext) -> dict:
    session = await db.sessions.find_one({"session_id": session_id, "tenant_id": ctx.tenant_id}, {"_id": 0})
    if not session:
        raise AdminApiError(404, "NOT_FOUND", "Response not found")
    return session

def _text_search(fields, search: Optional[str]) -> dict:
    if not search:
        return {}
    pattern = {"$regex": re.escape(search), "$options": "i"}
    return {"$or": [{field: pattern} for field in fields]}

def _magic_link(token: str) -> str:
    return f"{APP_URL}/invite/{token}"


# ============ JOBS ============

@router.get("/jobs")
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[Literal["draft", "open", "closed"]] = None,
    ctx: AdminAuthContext = Depends(admin_context("jobs"))
):
    query = {"tenant_id": ctx.tenant_id, **_text_search(["title", "location"], search)}
    if status:
        query["status"] = status

    page = await paginate(db.interviews, query, "interview_id", limit, cursor,
                          serialize=lambda doc: _with_id(doc, "interview_id"))
    return success_response(page)

@router.post("/jobs")
async def create_job(job_data: JobCreate, ctx: AdminAuthContext = Depends(admin_context("jobs"))):
    now = _now()
    job_id = f"int_{uuid.uuid4().hex[:12]}"

    await db.interviews.insert_one({
        "interview_id": job_id,
        "tenant_id": ctx.tenant_id,
        **job_data.model_dump(),
        "created_by": ctx.user_id,
        "created_at": now,
        "updated_at": now
    })
    logger.info(f"[ACTION] Admin API created job {job_id} ({ctx.auth_method})")
    await log_audit(await _actor(ctx), "interview_created", "interview", job_id,
                    meta={"title": job_data.title, "via": ctx.auth_method}, tenant_id=ctx.tenant_id)

    return success_response({"id": job_id}, status_code=201)

@router.get("/jobs/{job_id}")
async def get_job(job_id: str, ctx: AdminAuthContext = Depends(admin_context("jobs"))):
    job = await get_tenant_job(job_id, ctx)
    return success_response(_with_id(job, "interview_id"))

@router.patch("/jobs/{job_id}")
async def update_job(job_id: str, job_data: JobUpdate, ctx: AdminAuthContext = Depends(admin_context("jobs"))):
    await get_tenant_job(job_id, ctx)

    changes = job_data.model_dump(exclude_unset=True)
    await db.interviews.update_one(
        {"interview_id": job_id},
        {"$set": {**changes, "updated_at": _now()}}
    )

    job = await get_tenant_job(job_id, ctx)
    return success_response(_with_id(job, "interview_id"))

@router.post("/jobs/{job_id}/close")
async def close_job(job_id: str, ctx: AdminAuthContext = Depends(admin_context("jobs"))):
    job = await get_tenant_job(job_id, ctx)
    if job["status"] == "closed":
        raise AdminApiError(409, "ALREADY_CLOSED", "Job is already closed")

    await db.interviews.update_one(
        {"interview_id": job_id},
        {"$set": {"status": "closed", "updated_at": _now()}}
    )
    await log_audit(await _actor(ctx), "interview_status_changed", "interview", job_id,
                    meta={"from": job["status"], "to": "closed"}, tenant_id=ctx.tenant_id)

    return success_response({"id": job_id, "status": "closed"})


# ============ JOB QUESTIONS ============

@router.get("/jobs/{job_id}/questions")
async def list_job_questions(job_id: str, ctx: AdminAuthContext = Depends(admin_context("questions"))):
    await get_tenant_job(job_id, ctx)
    questions = await db.questions.find({"interview_id": job_id}, {"_id": 0}).sort(
        [("position", 1), ("created_at", 1)]
    ).to_list(1000)
    return success_response([_with_id(q, "question_id") for q in questions])

@router.post("/jobs/{job_id}/questions")
async def create_job_question(
    job_id: str,
    question_data: JobQuestionCreate,
    ctx: AdminAuthContext = Depends(admin_context("questions"))
):
    await get_tenant_job(job_id, ctx)

    position = question_data.position
    if position is None:
        position = await next_question_position(job_id)

    now = _now()
    question_id = f"q_{uuid.uuid4().hex[:12]}"
    await db.questions.insert_one({
        "question_id": question_id,
        "interview_id": job_id,
        "text": question_data.text,
        "ideal_answer": question_data.ideal_answer,
        "time_limit_sec": question_data.time_limit_sec,
        "position": position,
        "created_at": now,
        "updated_at": now
    })

    return success_response({"id": question_id, "position": position}, status_code=201)

@router.post("/jobs/{job_id}/questions/reorder")
async def reorder_job_questions(
    job_id: str,
    reorder: QuestionReorder,
    ctx: AdminAuthContext = Depends(admin_context("questions"))
):
    """Sequential per-row position updates, no transaction"""
    await get_tenant_job(job_id, ctx)

    ids = {p.id for p in reorder.positions}
    owned = await db.questions.count_documents({"interview_id": job_id, "question_id": {"$in": list(ids)}})
    if owned != len(ids):
        raise AdminApiError(404, "NOT_FOUND", "One or more questions not found")

    now = _now()
    for item in reorder.positions:
        await db.questions.update_one(
            {"question_id": item.id, "interview_id": job_id},
            {"$set": {"position": item.position, "updated_at": now}}
        )

    return success_response({"updated": len(reorder.positions)})

@router.patch("/jobs/{job_id}/questions/{question_id}")
async def update_job_question(
    job_id: str,
    question_id: str,
    question_data: JobQuestionUpdate,
    ctx: AdminAuthContext = Depends(admin_context("questions"))
):
    await get_tenant_job(job_id, ctx)
    await get_job_question(job_id, question_id)

    changes = question_data.model_dump(exclude_unset=True)
    await db.questions.update_one(
        {"question_id": question_id},
        {"$set": {**changes, "updated_at": _now()}}
    )

    question = await get_job_question(job_id, question_id)
    return success_response(_with_id(question, "question_id"))

@router.delete("/jobs/{job_id}/questions/{question_id}")
async def delete_job_question(
    job_id: str,
    question_id: str,
    ctx: AdminAuthContext = Depends(admin_context("questions"))
):
    await get_tenant_job(job_id, ctx)
    await get_job_question(job_id, question_id)

    await db.questions.delete_one({"question_id": question_id})
    return success_response({"id": question_id, "deleted": True})


# ============ QUESTION BANK ============

async def get_bank_question(question_id: str, ctx: AdminAuthContext) -> dict:
    question = await db.question_bank.find_one(
        {"question_id": question_id, "tenant_id": ctx.tenant_id}, {"_id": 0}
    )
    if not question:
        raise AdminApiError(404, "NOT_FOUND", "Question not found")
    return question

@router.get("/question-bank")
async def list_question_bank(
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    search: Optional[str] = None,
    tag: Optional[str] = None,
    ctx: AdminAuthContext = Depends(admin_context("questions"))
):
    query = {"tenant_id": ctx.tenant_id, **_text_search(["text"], search)}
    if tag:
        query["tags"] = tag

    page = await paginate(db.question_bank, query, "question_id", limit, cursor,
                          serialize=lambda doc: _with_id(doc, "question_id"))
    return success_response(page)

@router.post("/question-bank")
async def create_bank_question(
    question_data: QuestionBankCreate,
    ctx: AdminAuthContext = Depends(admin_context("questions"))
):
    question_id = f"qb_{uuid.uuid4().hex[:12]}"
    await db.question_bank.insert_one({
        "question_id": question_id,
        "tenant_id": ctx.tenant_id,
        **question_data.model_dump(),
        "created_by": ctx.user_id,
        "created_at": _now()
    })
    return success_response({"id": question_id}, status_code=201)

@router.patch("/question-bank/{question_id}")
async def update_bank_question(
    question_id: str,
    question_data: QuestionBankUpdate,
    ctx: AdminAuthContext = Depends(admin_context("questions"))
):
    await get_bank_question(question_id, ctx)

    changes = question_data.model_dump(exclude_unset=True)
    if changes:
        await db.question_bank.update_one({"question_id": question_id}, {"$set": changes})

    question = await get_bank_question(question_id, ctx)
    return success_response(_with_id(question, "question_id"))

@router.delete("/question-bank/{question_id}")
async def delete_bank_question(question_id: str, ctx: AdminAuthContext = Depends(admin_context("questions"))):
    await get_bank_question(question_id, ctx)
    await db.question_bank.delete_one({"question_id": question_id})
    return success_response({"id": question_id, "deleted": True})


# ============ INVITES ============

def _new_invite(job_id: str, tenant_id: str, email: str, name: Optional[str], notes: Optional[str],
                expires_at: str, reminders: dict, created_by: Optional[str]) -> dict:
    return {
        "invitation_id": f"inv_{uuid.uuid4().hex[:12]}",
        "interview_id": job_id,
        "tenant_id": tenant_id,
        "email": email,
        "name": name,
        "notes": notes,
        "token": secrets.token_hex(32),
        "used": False,
        "expires_at": expires_at,
        "reminders": reminders,
        "created_by": created_by,
        "created_at": _now()
    }

@router.get("/jobs/{job_id}/invites")
async def list_job_invites(
    job_id: str,
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    status: Optional[Literal["used", "unused", "expired"]] = None,
    ctx: AdminAuthContext = Depends(admin_context("invites"))
):
    await get_tenant_job(job_id, ctx)

    query = {"interview_id": job_id}
    if status == "used":
        query["used"] = True
    elif status == "unused":
        query["used"] = False
    elif status == "expired":
        query["expires_at"] = {"$lt": _now()}

    def serialize(doc):
        return {**_with_id(doc, "invitation_id"), "status": invitation_status(doc)}

    page = await paginate(db.invitations, query, "invitation_id", limit, cursor, serialize=serialize)
    return success_response(page)

async def _bulk_create_invites(job_id: str, encoded_csv: str, ctx: AdminAuthContext) -> dict:
    """Import email,name,notes rows; bad rows are reported, not fatal"""
    try:
        content = base64.b64decode(encoded_csv, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise AdminApiError(422, "VALIDATION_ERROR", "CSV must be base64 encoded UTF-8", field="csv")

    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        raise AdminApiError(422, "VALIDATION_ERROR", "CSV file is empty", field="csv")

    expires_at = (datetime.now(timezone.utc) + timedelta(days=BULK_INVITE_EXPIRY_DAYS)).isoformat()
    created = []
    errors = []

    for row_number, row in enumerate(csv.reader(lines), start=1):
        fields = [field.strip() for field in row] + ["", "", ""]
        email, name, notes = fields[0], fields[1], fields[2]

        # Optional header row
        if row_number == 1 and email.lower() == "email":
            continue

        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError:
            errors.append({"row": row_number, "error": "Invalid email address"})
            continue

        invite = _new_invite(job_id, ctx.tenant_id, email, name or None, notes or None,
                             expires_at, {}, ctx.user_id)
        await db.invitations.insert_one(invite)
        created.append({"id": invite["invitation_id"], "email": email, "token": invite["token"]})

    logger.info(f"[ACTION] Bulk invite import for {job_id}: {len(created)} created, {len(errors)} failed")
    return {"created": created, "errors": errors, "total": len(created), "failed": len(errors)}

@router.post("/jobs/{job_id}/invites")
async def create_job_invites(
    job_id: str,
    invite_data: InviteCreate,
    request: Request,
    ctx: AdminAuthContext = Depends(admin_context("invites"))
):
    """Single invite, or a bulk import when a base64 csv is supplied"""
    if invite_data.csv is not None:
        result = check_rate_limit(admin_bulk_limiter, request)
        if not result["allowed"]:
            raise AdminApiError(429, "RATE_LIMIT_EXCEEDED", "Too many bulk requests", headers=result["headers"])

    await get_tenant_job(job_id, ctx)

    if invite_data.csv is not None:
        return success_response(await _bulk_create_invites(job_id, invite_data.csv, ctx), status_code=201)

    expires_at = (
        invite_data.expires_at or datetime.now(timezone.utc) + timedelta(days=INVITE_EXPIRY_DAYS)
    ).isoformat()
    invite = _new_invite(job_id, ctx.tenant_id, invite_data.email, invite_data.name, invite_data.notes,
                         expires_at, invite_data.reminders.model_dump(), ctx.user_id)
    await db.invitations.insert_one(invite)

    await log_audit(await _actor(ctx), "invitation_created", "invitation", invite["invitation_id"],
                    meta={"email": invite_data.email, "interview_id": job_id}, tenant_id=ctx.tenant_id)

    return success_response({"id": invite["invitation_id"], "token": invite["token"]}, status_code=201)

async def _get_invite_for_tenant(invite_id: str, ctx: AdminAuthContext) -> dict:
    invite = await db.invitations.find_one({"invitation_id": invite_id}, {"_id": 0})
    if not invite:
        raise AdminApiError(404, "NOT_FOUND", "Invite not found")
    if invite["tenant_id"] != ctx.tenant_id:
        raise AdminApiError(403, "FORBIDDEN", "Access denied to this invite")
    return invite

@router.post("/invites/{invite_id}/send")
async def send_invite(invite_id: str, ctx: AdminAuthContext = Depends(admin_context("invites"))):
    invite = await _get_invite_for_tenant(invite_id, ctx)

    if invite.get("used"):
        raise AdminApiError(409, "INVITE_USED", "Invite has already been used")
    if is_past(invite["expires_at"]):
        raise AdminApiError(409, "INVITE_EXPIRED", "Invite has expired")

    job = await db.interviews.find_one({"interview_id": invite["interview_id"]}, {"_id": 0, "title": 1})
    tenant = await db.tenants.find_one({"tenant_id": ctx.tenant_id}, {"_id": 0, "name": 1})
    magic_link = _magic_link(invite["token"])

    result = await send_invitation_email(
        email=invite["email"],
        candidate_name=invite.get("name"),
        company_name=(tenant or {}).get("name", "our team"),
        interview_title=(job or {}).get("title", "Interview"),
        invite_url=magic_link,
        expires_at=invite["expires_at"]
    )

    return success_response({
        "sent": result["success"],
        "email": invite["email"],
        "magicLink": magic_link,
        "expiresAt": invite["expires_at"]
    })

@router.post("/invites/{invite_id}/regenerate")
async def regenerate_invite(invite_id: str, ctx: AdminAuthContext = Depends(admin_context("invites"))):
    """Issue a fresh token and reopen the invite"""
    await _get_invite_for_tenant(invite_id, ctx)

    new_token = secrets.token_hex(32)
    expires_at = (datetime.now(timezone.utc) + timedelta(days=INVITE_EXPIRY_DAYS)).isoformat()
    await db.invitations.update_one(
        {"invitation_id": invite_id},
        {"$set": {"token": new_token, "used": False, "expires_at": expires_at}}
    )
    await log_audit(await _actor(ctx), "invitation_regenerated", "invitation", invite_id, tenant_id=ctx.tenant_id)

    return success_response({
        "regenerated": True,
        "newToken": new_token,
        "newMagicLink": _magic_link(new_token)
    })


# ============ RESPONSES ============

async def _session_summary(session: dict) -> dict:
    responses = await db.responses.find({"session_id": session["session_id"]}, {"_id": 0, "score": 1}).to_list(1000)
    scores = [r["score"] for r in responses if r.get("score") is not None]
    return {
        **_with_id(session, "session_id"),
        "answers_count": len(responses),
        "avg_score": round(sum(scores) / len(scores), 1) if scores else None
    }

@router.get("/jobs/{job_id}/responses")
async def list_job_responses(
    job_id: str,
    status: Optional[Literal["pending", "in_progress", "submitted"]] = None,
    minScore: Optional[float] = Query(None, ge=0, le=10),
    ctx: AdminAuthContext = Depends(admin_context("responses"))
):
    await get_tenant_job(job_id, ctx)

    query = {"interview_id": job_id}
    if status:
        query["status"] = status

    sessions = await db.sessions.find(query, {"_id": 0}).sort("created_at", -1).to_list(1000)
    items = [await _session_summary(session) for session in sessions]
    if minScore is not None:
        items = [item for item in items if item["avg_score"] is not None and item["avg_score"] >= minScore]

    return success_response({"items": items, "total": len(items)})

@router.get("/responses/{session_id}/detail")
async def get_response_detail(session_id: str, ctx: AdminAuthContext = Depends(admin_context("responses"))):
    session = await get_tenant_session(session_id, ctx)
    job = await db.interviews.find_one({"interview_id": session["interview_id"]}, {"_id": 0, "interview_id": 1, "title": 1})

    questions = await db.questions.find({"interview_id": session["interview_id"]}, {"_id": 0}).sort(
        [("position", 1), ("created_at", 1)]
    ).to_list(1000)
    responses = {r["question_id"]: r for r in await db.responses.find({"session_id": session_id}, {"_id": 0}).to_list(1000)}

    answers = []
    for question in questions:
        response = responses.get(question["question_id"])
        evaluations = []
        if response:
            evaluations = await db.evaluations.find({"response_id": response["response_id"]}, {"_id": 0}).to_list(100)
        answers.append({"question": question, "response": response, "evaluations": evaluations})

    return success_response({
        "session": await _session_summary(session),
        "job": {"id": job["interview_id"], "title": job["title"]} if job else None,
        "answers": answers
    })

@router.post("/responses/{session_id}/score")
async def score_response(
    session_id: str,
    score_data: ResponseScore,
    ctx: AdminAuthContext = Depends(admin_context("responses"))
):
    await get_tenant_session(session_id, ctx)

    response = await db.responses.find_one(
        {"session_id": session_id, "question_id": score_data.question_id}, {"_id": 0}
    )
    if not response:
        raise AdminApiError(404, "NOT_FOUND", "Response not found")

    await db.responses.update_one({"response_id": response["response_id"]}, {"$set": {"score": score_data.score}})

    if score_data.notes and ctx.user_id:
        now = _now()
        try:
            await db.evaluations.update_one(
                {"response_id": response["response_id"], "reviewer_id": ctx.user_id},
                {
                    "$set": {"score": round(score_data.score), "notes": score_data.notes, "updated_at": now},
                    "$setOnInsert": {"evaluation_id": f"eval_{uuid.uuid4().hex[:12]}", "created_at": now}
                },
                upsert=True
            )
        except PyMongoError as e:
            logger.error(f"Failed to store evaluation notes for {response['response_id']}: {e}")

    await log_audit(await _actor(ctx), "evaluate", "response", response["response_id"],
                    meta={"score": score_data.score}, tenant_id=ctx.tenant_id)

    return success_response({"response_id": response["response_id"], "score": score_data.score})

@router.get("/jobs/{job_id}/export.csv")
async def export_job_responses(job_id: str, ctx: AdminAuthContext = Depends(admin_context("responses"))):
    job = await get_tenant_job(job_id, ctx)

    rows = await build_export_rows(job_id)
    if not rows:
        raise AdminApiError(404, "NOT_FOUND", "No data to export")

    safe_title = re.sub(r'[^A-Za-z0-9]+', '_', job["title"]).strip('_') or "job"
    filename = f"{safe_title}_responses_{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.csv"

    return csv_response(rows, filename, headers=EXPORT_COLUMNS, extra_headers={"Cache-Control": "no-cache"})


# ============ TEAM ============

@router.get("/team")
async def list_team(ctx: AdminAuthContext = Depends(admin_context("team"))):
    members = await db.tenant_members.find({"tenant_id": ctx.tenant_id}, {"_id": 0}).sort("created_at", 1).to_list(1000)
    for member in members:
        user = await db.users.find_one({"user_id": member["user_id"]}, {"_id": 0, "email": 1, "name": 1})
        member["email"] = (user or {}).get("email")
        member["name"] = (user or {}).get("name")
    return success_response(members)

@router.post("/team")
async def add_team_member(
    member_data: TeamMemberCreate,
    background_tasks: BackgroundTasks,
    ctx: AdminAuthContext = Depends(admin_context("team"))
):
    user = await db.users.find_one({"email": member_data.email}, {"_id": 0, "password_hash": 0})
    if not user:
        raise AdminApiError(404, "USER_NOT_FOUND", "User with this email does not exist")

    existing = await db.tenant_members.find_one({"user_id": user["user_id"]})
    if existing:
        raise AdminApiError(409, "ALREADY_MEMBER", "User is already a team member")

    now = _now()
    await db.tenant_members.insert_one({
        "member_id": f"mem_{uuid.uuid4().hex[:12]}",
        "tenant_id": ctx.tenant_id,
        "user_id": user["user_id"],
        "role": member_data.role,
        "created_at": now
    })
    await db.users.update_one(
        {"user_id": user["user_id"]},
        {"$set": {"role": member_data.role, "tenant_id": ctx.tenant_id, "onboarding_completed": True, "updated_at": now}}
    )

    tenant = await db.tenants.find_one({"tenant_id": ctx.tenant_id}, {"_id": 0, "name": 1})
    background_tasks.add_task(
        send_team_invitation_email,
        email=user["email"],
        role=member_data.role,
        company_name=(tenant or {}).get("name", "your team"),
        login_url=f"{APP_URL}/auth/login"
    )
    await log_audit(await _actor(ctx), "team_member_added", "user", user["user_id"],
                    meta={"role": member_data.role}, tenant_id=ctx.tenant_id)

    return success_response({"user_id": user["user_id"], "email": user["email"], "role": member_data.role},
                            status_code=201)

async def _get_member(user_id: str, ctx: AdminAuthContext) -> dict:
    member = await db.tenant_members.find_one({"user_id": user_id, "tenant_id": ctx.tenant_id}, {"_id": 0})
    if not member:
        raise AdminApiError(404, "NOT_FOUND", "Team member not found")
    return member

@router.patch("/team/{user_id}")
async def update_team_member(
    user_id: str,
    member_data: TeamMemberUpdate,
    ctx: AdminAuthContext = Depends(admin_context("team"))
):
    member = await _get_member(user_id, ctx)

    if user_id == ctx.user_id and member["role"] == "owner" and member_data.role != "owner":
        raise AdminApiError(409, "CANNOT_DEMOTE_SELF", "Owners cannot demote themselves")

    await db.tenant_members.update_one(
        {"user_id": user_id, "tenant_id": ctx.tenant_id}, {"$set": {"role": member_data.role}}
    )
    await db.users.update_one({"user_id": user_id}, {"$set": {"role": member_data.role, "updated_at": _now()}})
    await log_audit(await _actor(ctx), "team_role_changed", "user", user_id,
                    meta={"from": member["role"], "to": member_data.role}, tenant_id=ctx.tenant_id)

    return success_response({"user_id": user_id, "role": member_data.role})

@router.delete("/team/{user_id}")
async def remove_team_member(user_id: str, ctx: AdminAuthContext = Depends(admin_context("team"))):
    await _get_member(user_id, ctx)

    if user_id == ctx.user_id:
        raise AdminApiError(409, "CANNOT_REMOVE_SELF", "You cannot remove yourself from the team")

    await db.tenant_members.delete_one({"user_id": user_id, "tenant_id": ctx.tenant_id})
    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"role": None, "tenant_id": None, "onboarding_completed": False, "updated_at": _now()}}
    )
    await log_audit(await _actor(ctx), "team_member_removed", "user", user_id, tenant_id=ctx.tenant_id)

    return success_response({"user_id": user_id, "removed": True})

@router.get("/audit-log")
async def list_audit_log(
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    ctx: AdminAuthContext = Depends(admin_context("team"))
):
    query = {"tenant_id": ctx.tenant_id}
    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type

    page = await paginate(db.audit_log, query, "log_id", limit, cursor,
                          serialize=lambda doc: _with_id(doc, "log_id"))
    return success_response(page)


# ============ API KEYS ============

def _api_key_out(doc: dict) -> dict:
    return {
        "id": doc["api_key_id"],
        "name": doc["name"],
        "scopes": doc.get("scopes", []),
        "preview": "***" + doc["key_hash"][-4:],
        "created_at": doc["created_at"],
        "last_used_at": doc.get("last_used_at")
    }

async def _get_api_key(key_id: str, ctx: AdminAuthContext) -> dict:
    api_key = await db.api_keys.find_one({"api_key_id": key_id, "tenant_id": ctx.tenant_id}, {"_id": 0})
    if not api_key:
        raise AdminApiError(404, "NOT_FOUND", "API key not found")
    return api_key

@router.get("/api-keys")
async def list_api_keys(ctx: AdminAuthContext = Depends(admin_context("api_keys"))):
    keys = await db.api_keys.find({"tenant_id": ctx.tenant_id}, {"_id": 0}).sort("created_at", -1).to_list(100)
    return success_response([_api_key_out(k) for k in keys])

@router.post("/api-keys")
async def create_api_key(key_data: ApiKeyCreate, ctx: AdminAuthContext = Depends(admin_context("api_keys"))):
    """Create a key; the raw value is returned exactly once"""
    raw_key = generate_api_key()
    key_id = f"key_{uuid.uuid4().hex[:12]}"

    await db.api_keys.insert_one({
        "api_key_id": key_id,
        "tenant_id": ctx.tenant_id,
        "name": key_data.name,
        "key_hash": hash_api_key(raw_key),
        "scopes": list(key_data.scopes),
        "created_by": ctx.user_id,
        "created_at": _now(),
        "last_used_at": None
    })
    await log_audit(await _actor(ctx), "api_key_created", "api_key", key_id,
                    meta={"name": key_data.name, "scopes": list(key_data.scopes)}, tenant_id=ctx.tenant_id)

    return success_response(
        {"id": key_id, "name": key_data.name, "rawKeyOnce": raw_key, "scopes": list(key_data.scopes)},
        status_code=201
    )

@router.delete("/api-keys/{key_id}")
async def delete_api_key(key_id: str, ctx: AdminAuthContext = Depends(admin_context("api_keys"))):
    await _get_api_key(key_id, ctx)
    await db.api_keys.delete_one({"api_key_id": key_id})
    await log_audit(await _actor(ctx), "api_key_deleted", "api_key", key_id, tenant_id=ctx.tenant_id)
    return success_response({"id": key_id, "deleted": True})

@router.post("/api-keys/{key_id}/rotate")
async def rotate_api_key(key_id: str, ctx: AdminAuthContext = Depends(admin_context("api_keys"))):
    api_key = await _get_api_key(key_id, ctx)

    raw_key = generate_api_key()
    await db.api_keys.update_one(
        {"api_key_id": key_id},
        {"$set": {"key_hash": hash_api_key(raw_key), "last_used_at": None}}
    )
    await log_audit(await _actor(ctx), "api_key_rotated", "api_key", key_id, tenant_id=ctx.tenant_id)

    return success_response({
        "id": key_id,
        "name": api_key["name"],
        "newRawKeyOnce": raw_key,
        "scopes": api_key.get("scopes", [])
    })
