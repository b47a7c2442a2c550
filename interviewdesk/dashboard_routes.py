import logging
import secrets
import uuid
from datetime import datetime, timezone, timedelta
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from interviewdesk.audit import log_audit
from interviewdesk.auth import get_current_user, get_membership
from interviewdesk.config import APP_URL, INVITE_EXPIRY_DAYS
from interviewdesk.csv_export import csv_response
from interviewdesk.database import db
from interviewdesk.models import (
    AssignmentCreate,
    CommentCreate,
    EvaluationCreate,
    InterviewCreate,
    InterviewStatusUpdate,
    InvitationCreate,
    QuestionCreate,
    QuestionReorder,
    is_past,
)
from interviewdesk.notification_service import send_invitation_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

EMPLOYER_WRITE_ROLES = ("owner", "admin", "recruiter")
EXPORT_COLUMNS = [
    "candidate_email", "candidate_name", "question", "duration_sec", "transcript", "score", "submitted_at"
]


# ============ HELPERS ============

async def require_membership(current_user: dict = Depends(get_current_user)) -> dict:
    """Dependency: the caller's tenant membership"""
    membership = await get_membership(current_user["user_id"])
    if not membership:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No tenant membership"
        )
    return membership

def require_employer(membership: dict, detail: str = "Only employers can perform this action"):
    if membership["role"] not in EMPLOYER_WRITE_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )

async def get_tenant_interview(interview_id: str, membership: dict) -> dict:
    """Load an interview of the caller's tenant; reviewers only see assigned ones"""
    interview = await db.interviews.find_one(
        {"interview_id": interview_id, "tenant_id": membership["tenant_id"]}, {"_id": 0}
    )
    if not interview:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Interview not found"
        )

    if membership["role"] == "reviewer":
        assigned = await db.assignments.find_one(
            {"interview_id": interview_id, "reviewer_id": membership["user_id"]}
        )
        if not assigned:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Interview not found"
            )

    return interview

async def get_ordered_questions(interview_id: str) -> List[dict]:
    return await db.questions.find({"interview_id": interview_id}, {"_id": 0}).sort(
        [("position", 1), ("created_at", 1)]
    ).to_list(1000)

def _avg_score(responses: List[dict]):
    scores = [r["score"] for r in responses if r.get("score") is not None]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 1)


# ============ INTERVIEWS ============

@router.post("/interviews")
async def create_interview(
    interview_data: InterviewCreate,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    """Create a draft interview"""
    require_employer(membership, "Only employers can create interviews")

    now = datetime.now(timezone.utc).isoformat()
    interview_id = f"int_{uuid.uuid4().hex[:12]}"

    interview_doc = {
        "interview_id": interview_id,
        "tenant_id": membership["tenant_id"],
        "title": interview_data.title,
        "description": interview_data.description,
        "location": interview_data.location,
        "competencies": interview_data.competencies,
        "due_date": interview_data.due_date.isoformat() if interview_data.due_date else None,
        "status": "draft",
        "brand": {},
        "created_by": current_user["user_id"],
        "created_at": now,
        "updated_at": now
    }

    await db.interviews.insert_one(interview_doc)
    interview_doc.pop("_id", None)
    logger.info(f"[ACTION] Created interview {interview_id} for tenant {membership['tenant_id']}")

    await log_audit(current_user, "interview_created", "interview", interview_id,
                    meta={"title": interview_data.title}, tenant_id=membership["tenant_id"])

    return interview_doc

@router.get("/interviews")
async def list_interviews(membership: dict = Depends(require_membership)):
    """Tenant interviews, newest first, with question/invitation/session counts"""
    query = {"tenant_id": membership["tenant_id"]}

    if membership["role"] == "reviewer":
        assignments = await db.assignments.find(
            {"reviewer_id": membership["user_id"]}, {"_id": 0, "interview_id": 1}
        ).to_list(1000)
        query["interview_id"] = {"$in": [a["interview_id"] for a in assignments]}

    interviews = await db.interviews.find(query, {"_id": 0}).sort("created_at", -1).to_list(1000)

    for interview in interviews:
        interview_id = interview["interview_id"]
        interview["question_count"] = await db.questions.count_documents({"interview_id": interview_id})
        interview["invitation_count"] = await db.invitations.count_documents({"interview_id": interview_id})
        interview["session_count"] = await db.sessions.count_documents({"interview_id": interview_id})

    return interviews

@router.get("/interviews/{interview_id}")
async def get_interview(interview_id: str, membership: dict = Depends(require_membership)):
    interview = await get_tenant_interview(interview_id, membership)
    interview["questions"] = await get_ordered_questions(interview_id)
    return interview

@router.patch("/interviews/{interview_id}/status")
async def update_interview_status(
    interview_id: str,
    status_update: InterviewStatusUpdate,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    require_employer(membership)
    interview = await get_tenant_interview(interview_id, membership)

    await db.interviews.update_one(
        {"interview_id": interview_id},
        {"$set": {"status": status_update.status, "updated_at": datetime.now(timezone.utc).isoformat()}}
    )
    logger.info(f"[ACTION] Interview {interview_id} status {interview['status']} -> {status_update.status}")

    await log_audit(current_user, "interview_status_changed", "interview", interview_id,
                    meta={"from": interview["status"], "to": status_update.status},
                    tenant_id=membership["tenant_id"])

    return await db.interviews.find_one({"interview_id": interview_id}, {"_id": 0})

@router.delete("/interviews/{interview_id}")
async def delete_interview(
    interview_id: str,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    """Delete an interview with its questions, invitations and assignments"""
    require_employer(membership)
    await get_tenant_interview(interview_id, membership)

    questions = await db.questions.delete_many({"interview_id": interview_id})
    invitations = await db.invitations.delete_many({"interview_id": interview_id})
    assignments = await db.assignments.delete_many({"interview_id": interview_id})
    await db.interviews.delete_one({"interview_id": interview_id})

    deleted = {
        "questions": questions.deleted_count,
        "invitations": invitations.deleted_count,
        "assignments": assignments.deleted_count
    }
    logger.info(f"[ACTION] Deleted interview {interview_id} ({deleted})")

    await log_audit(current_user, "interview_deleted", "interview", interview_id,
                    meta=deleted, tenant_id=membership["tenant_id"])

    return {"message": "Interview deleted", "deleted": deleted}


# ============ QUESTIONS ============

@router.get("/interviews/{interview_id}/questions")
async def list_questions(interview_id: str, membership: dict = Depends(require_membership)):
    await get_tenant_interview(interview_id, membership)
    return await get_ordered_questions(interview_id)

async def next_question_position(interview_id: str) -> int:
    last = await db.questions.find(
        {"interview_id": interview_id}, {"_id": 0, "position": 1}
    ).sort("position", -1).limit(1).to_list(1)
    if not last:
        return 0
    return last[0]["position"] + 1

@router.post("/interviews/{interview_id}/questions")
async def create_question(
    interview_id: str,
    question_data: QuestionCreate,
    membership: dict = Depends(require_membership)
):
    require_employer(membership)
    await get_tenant_interview(interview_id, membership)

    now = datetime.now(timezone.utc).isoformat()
    question_doc = {
        "question_id": f"q_{uuid.uuid4().hex[:12]}",
        "interview_id": interview_id,
        "text": question_data.text,
        "ideal_answer": question_data.ideal_answer,
        "time_limit_sec": question_data.time_limit_sec,
        "position": await next_question_position(interview_id),
        "created_at": now,
        "updated_at": now
    }

    await db.questions.insert_one(question_doc)
    question_doc.pop("_id", None)
    logger.info(f"[ACTION] Added question {question_doc['question_id']} to {interview_id}")

    return question_doc

@router.put("/interviews/{interview_id}/questions/reorder")
async def reorder_questions(
    interview_id: str,
    reorder: QuestionReorder,
    membership: dict = Depends(require_membership)
):
    """Apply new positions one row at a time (no transaction)"""
    require_employer(membership)
    await get_tenant_interview(interview_id, membership)

    ids = {p.id for p in reorder.positions}
    owned = await db.questions.find(
        {"interview_id": interview_id, "question_id": {"$in": list(ids)}}, {"_id": 0, "question_id": 1}
    ).to_list(len(ids) or 1)
    if len(owned) != len(ids):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Question not found"
        )

    now = datetime.now(timezone.utc).isoformat()
    for item in reorder.positions:
        await db.questions.update_one(
            {"question_id": item.id, "interview_id": interview_id},
            {"$set": {"position": item.position, "updated_at": now}}
        )

    return {"updated": len(reorder.positions)}

@router.delete("/questions/{question_id}")
async def delete_question(question_id: str, membership: dict = Depends(require_membership)):
    require_employer(membership)

    question = await db.questions.find_one({"question_id": question_id}, {"_id": 0})
    if not question:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Question not found"
        )
    await get_tenant_interview(question["interview_id"], membership)

    await db.questions.delete_one({"question_id": question_id})
    return {"message": "Question deleted"}


# ============ INVITATIONS ============

def invitation_status(invitation: dict) -> str:
    if invitation.get("used"):
        return "used"
    if is_past(invitation.get("expires_at")):
        return "expired"
    return "pending"

@router.post("/interviews/{interview_id}/invitations")
async def create_invitation(
    interview_id: str,
    invitation_data: InvitationCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    """Create a tokenized invite link for one candidate"""
    require_employer(membership)
    interview = await get_tenant_interview(interview_id, membership)

    now = datetime.now(timezone.utc)
    expires_at = (invitation_data.expires_at or now + timedelta(days=INVITE_EXPIRY_DAYS)).isoformat()
    token = secrets.token_hex(32)

    invitation_doc = {
        "invitation_id": f"inv_{uuid.uuid4().hex[:12]}",
        "interview_id": interview_id,
        "tenant_id": membership["tenant_id"],
        "email": invitation_data.email,
        "name": invitation_data.name,
        "notes": invitation_data.notes,
        "token": token,
        "used": False,
        "expires_at": expires_at,
        "reminders": {"t72": False, "t24": False, "t4": False},
        "created_by": current_user["user_id"],
        "created_at": now.isoformat()
    }

    await db.invitations.insert_one(invitation_doc)
    invitation_doc.pop("_id", None)
    invite_url = f"{APP_URL}/invite/{token}"
    logger.info(f"[ACTION] Created invitation {invitation_doc['invitation_id']} for {invitation_data.email}")

    if invitation_data.send_email:
        tenant = await db.tenants.find_one({"tenant_id": membership["tenant_id"]}, {"_id": 0, "name": 1})
        background_tasks.add_task(
            send_invitation_email,
            email=invitation_data.email,
            candidate_name=invitation_data.name,
            company_name=(tenant or {}).get("name", "our team"),
            interview_title=interview["title"],
            invite_url=invite_url,
            expires_at=expires_at
        )

    await log_audit(current_user, "invitation_created", "invitation", invitation_doc["invitation_id"],
                    meta={"email": invitation_data.email, "interview_id": interview_id},
                    tenant_id=membership["tenant_id"])

    return {"invitation": invitation_doc, "invite_url": invite_url}

@router.get("/interviews/{interview_id}/invitations")
async def list_invitations(interview_id: str, membership: dict = Depends(require_membership)):
    require_employer(membership)
    await get_tenant_interview(interview_id, membership)

    invitations = await db.invitations.find(
        {"interview_id": interview_id}, {"_id": 0}
    ).sort("created_at", -1).to_list(1000)
    for invitation in invitations:
        invitation["status"] = invitation_status(invitation)
    return invitations


# ============ REVIEWER ASSIGNMENTS ============

@router.post("/interviews/{interview_id}/assignments")
async def assign_reviewer(
    interview_id: str,
    assignment_data: AssignmentCreate,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    """Assign an HR reviewer of the same tenant to an interview"""
    require_employer(membership)
    await get_tenant_interview(interview_id, membership)

    reviewer = await db.users.find_one({"email": assignment_data.email}, {"_id": 0, "password_hash": 0})
    if not reviewer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="HR user not found"
        )

    reviewer_membership = await db.tenant_members.find_one(
        {"user_id": reviewer["user_id"], "tenant_id": membership["tenant_id"], "role": "reviewer"}
    )
    if not reviewer_membership:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is not an HR member of this tenant"
        )

    existing = await db.assignments.find_one(
        {"interview_id": interview_id, "reviewer_id": reviewer["user_id"]}
    )
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reviewer already assigned to this interview"
        )

    assignment_doc = {
        "assignment_id": f"asg_{uuid.uuid4().hex[:12]}",
        "interview_id": interview_id,
        "reviewer_id": reviewer["user_id"],
        "created_at": datetime.now(timezone.utc).isoformat()
    }
    await db.assignments.insert_one(assignment_doc)
    assignment_doc.pop("_id", None)

    await log_audit(current_user, "reviewer_assigned", "assignment", assignment_doc["assignment_id"],
                    meta={"reviewer_email": reviewer["email"], "interview_id": interview_id},
                    tenant_id=membership["tenant_id"])

    return assignment_doc

@router.get("/interviews/{interview_id}/assignments")
async def list_assignments(interview_id: str, membership: dict = Depends(require_membership)):
    await get_tenant_interview(interview_id, membership)

    assignments = await db.assignments.find({"interview_id": interview_id}, {"_id": 0}).to_list(1000)
    for assignment in assignments:
        reviewer = await db.users.find_one(
            {"user_id": assignment["reviewer_id"]}, {"_id": 0, "email": 1, "name": 1}
        )
        assignment["reviewer_email"] = (reviewer or {}).get("email")
        assignment["reviewer_name"] = (reviewer or {}).get("name")
    return assignments


# ============ RESULTS ============

@router.get("/interviews/{interview_id}/sessions")
async def list_interview_sessions(interview_id: str, membership: dict = Depends(require_membership)):
    """Session summaries with answer counts and average score"""
    await get_tenant_interview(interview_id, membership)

    sessions = await db.sessions.find({"interview_id": interview_id}, {"_id": 0}).sort("created_at", -1).to_list(1000)
    for session in sessions:
        responses = await db.responses.find(
            {"session_id": session["session_id"]}, {"_id": 0, "score": 1}
        ).to_list(1000)
        session["answers_count"] = len(responses)
        session["avg_score"] = _avg_score(responses)
    return sessions

@router.get("/sessions/{session_id}")
async def get_session_detail(session_id: str, membership: dict = Depends(require_membership)):
    """Session with responses in question order and their evaluations"""
    session = await db.sessions.find_one({"session_id": session_id}, {"_id": 0})
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    interview = await get_tenant_interview(session["interview_id"], membership)

    questions = {q["question_id"]: q for q in await get_ordered_questions(interview["interview_id"])}
    responses = await db.responses.find({"session_id": session_id}, {"_id": 0}).to_list(1000)

    for response in responses:
        question = questions.get(response["question_id"], {})
        response["question_text"] = question.get("text")
        response["position"] = question.get("position")
        response["evaluations"] = await db.evaluations.find(
            {"response_id": response["response_id"]}, {"_id": 0}
        ).to_list(100)

    responses.sort(key=lambda r: (r["position"] is None, r["position"] or 0))

    return {
        "session": session,
        "interview_title": interview["title"],
        "responses": responses
    }


# ============ EVALUATIONS & COMMENTS ============

@router.post("/responses/{response_id}/evaluations")
async def evaluate_response(
    response_id: str,
    evaluation_data: EvaluationCreate,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    """Score a response (one evaluation per reviewer, later scores replace earlier ones)"""
    response = await db.responses.find_one({"response_id": response_id}, {"_id": 0})
    if not response:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Response not found"
        )

    interview = await db.interviews.find_one({"interview_id": response["interview_id"]}, {"_id": 0, "tenant_id": 1})
    if not interview or interview["tenant_id"] != membership["tenant_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this response's tenant"
        )

    now = datetime.now(timezone.utc).isoformat()
    await db.evaluations.update_one(
        {"response_id": response_id, "reviewer_id": current_user["user_id"]},
        {
            "$set": {"score": evaluation_data.score, "notes": evaluation_data.notes, "updated_at": now},
            "$setOnInsert": {"evaluation_id": f"eval_{uuid.uuid4().hex[:12]}", "created_at": now}
        },
        upsert=True
    )
    evaluation = await db.evaluations.find_one(
        {"response_id": response_id, "reviewer_id": current_user["user_id"]}, {"_id": 0}
    )

    await log_audit(current_user, "evaluate", "response", response_id,
                    meta={"score": evaluation_data.score}, tenant_id=membership["tenant_id"])

    return evaluation

@router.post("/interviews/{interview_id}/comments")
async def add_comment(
    interview_id: str,
    comment_data: CommentCreate,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    await get_tenant_interview(interview_id, membership)

    comment_doc = {
        "comment_id": f"cmt_{uuid.uuid4().hex[:12]}",
        "interview_id": interview_id,
        "author_id": current_user["user_id"],
        "body": comment_data.body,
        "created_at": datetime.now(timezone.utc).isoformat()
    }
    await db.comments.insert_one(comment_doc)
    comment_doc.pop("_id", None)

    await log_audit(current_user, "comment", "interview", interview_id,
                    meta={"comment_id": comment_doc["comment_id"]}, tenant_id=membership["tenant_id"])

    return comment_doc

@router.get("/interviews/{interview_id}/comments")
async def list_comments(interview_id: str, membership: dict = Depends(require_membership)):
    await get_tenant_interview(interview_id, membership)

    comments = await db.comments.find({"interview_id": interview_id}, {"_id": 0}).sort("created_at", 1).to_list(1000)
    for comment in comments:
        author = await db.users.find_one({"user_id": comment["author_id"]}, {"_id": 0, "name": 1, "email": 1})
        comment["author_name"] = (author or {}).get("name")
        comment["author_email"] = (author or {}).get("email")
    return comments


# ============ HR VIEWS ============

@router.get("/hr/assignments")
async def get_my_assignments(membership: dict = Depends(require_membership)):
    """Interviews assigned to the calling reviewer with pending-review counts"""
    reviewer_id = membership["user_id"]
    assignments = await db.assignments.find({"reviewer_id": reviewer_id}, {"_id": 0}).to_list(1000)

    results = []
    for assignment in assignments:
        interview = await db.interviews.find_one(
            {"interview_id": assignment["interview_id"], "tenant_id": membership["tenant_id"]}, {"_id": 0}
        )
        if not interview:
            continue

        response_ids = [
            r["response_id"] for r in await db.responses.find(
                {"interview_id": interview["interview_id"]}, {"_id": 0, "response_id": 1}
            ).to_list(10000)
        ]
        reviewed = await db.evaluations.count_documents(
            {"reviewer_id": reviewer_id, "response_id": {"$in": response_ids}}
        )

        results.append({
            "assignment_id": assignment["assignment_id"],
            "interview_id": interview["interview_id"],
            "title": interview["title"],
            "status": interview["status"],
            "total_responses": len(response_ids),
            "pending_reviews": len(response_ids) - reviewed,
            "assigned_at": assignment["created_at"]
        })

    return results

@router.get("/hr/reviews")
async def get_my_reviews(
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    """The caller's evaluation history, newest first"""
    evaluations = await db.evaluations.find(
        {"reviewer_id": current_user["user_id"]}, {"_id": 0}
    ).sort("updated_at", -1).to_list(500)

    for evaluation in evaluations:
        response = await db.responses.find_one(
            {"response_id": evaluation["response_id"]}, {"_id": 0, "interview_id": 1, "question_id": 1, "session_id": 1}
        ) or {}
        evaluation.update(response)
        if response.get("interview_id"):
            interview = await db.interviews.find_one(
                {"interview_id": response["interview_id"]}, {"_id": 0, "title": 1}
            )
            evaluation["interview_title"] = (interview or {}).get("title")

    return evaluations


# ============ EXPORT ============

async def build_export_rows(interview_id: str) -> List[dict]:
    """One row per recorded answer, joined to its session and question"""
    questions = {q["question_id"]: q for q in await get_ordered_questions(interview_id)}
    sessions = {
        s["session_id"]: s
        for s in await db.sessions.find({"interview_id": interview_id}, {"_id": 0}).to_list(10000)
    }
    responses = await db.responses.find({"interview_id": interview_id}, {"_id": 0}).to_list(100000)

    rows = []
    for response in responses:
        session = sessions.get(response["session_id"], {})
        rows.append({
            "candidate_email": session.get("candidate_email"),
            "candidate_name": session.get("candidate_name"),
            "question": questions.get(response["question_id"], {}).get("text"),
            "duration_sec": response.get("duration_sec"),
            "transcript": response.get("transcript"),
            "score": response.get("score"),
            "submitted_at": session.get("submitted_at")
        })
    return rows


@router.get("/export/interview/{interview_id}")
async def export_interview_responses(
    interview_id: str,
    current_user: dict = Depends(get_current_user),
    membership: dict = Depends(require_membership)
):
    """CSV of every response to an interview"""
    await get_tenant_interview(interview_id, membership)

    rows = await build_export_rows(interview_id)
    export = csv_response(rows, f"interview_{interview_id}_responses.csv", headers=EXPORT_COLUMNS)

    await log_audit(current_user, "export", "interview", interview_id,
                    meta={"rows": len(rows)}, tenant_id=membership["tenant_id"])

    return export
