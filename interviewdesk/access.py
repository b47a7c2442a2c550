"""
Tenant-aware route access decisions.

The page router asks one question for every navigation: given the session
state, may this path render or where should the browser go instead? The
answer is a pure function of the path and four facts about the caller, so
it can be evaluated server-side (``GET /api/routecheck``) and unit tested
without a database.

Rules are checked in order and the first match wins:

1. public prefixes (``/auth``, ``/invite``, ``/api`` and friends) are allowed
2. employer pages need a session, an employer role and finished onboarding
3. ``/onboarding`` is only for users who still need it
4. ``/candidate/*`` and ``/interview/*`` need the candidate role
5. anything else is allowed

Prefixes match on the raw path, so ``/jobsboard`` counts as an employer page
and ``/authors`` as public.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from interviewdesk.auth import EMPLOYER_ROLES, get_optional_user
from interviewdesk.database import db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

PUBLIC_ROUTE = re.compile(
    r"^/(_next|auth|invite|api|debug|public|favicon|robots|sitemap|docs|blog|help|pricing|about|careers|contact)"
)
EMPLOYER_PAGES = ("/dashboard", "/jobs", "/question-bank", "/invites", "/responses", "/analytics", "/settings")
CANDIDATE_PAGES = ("/candidate/", "/interview/")


class AccessDecision(BaseModel):
    action: str
    target: Optional[str] = None
    reason: str

    def describe(self) -> str:
        if self.action == "redirect":
            return f"redirect to {self.target} - {self.reason}"
        return f"allow - {self.reason}"


def _allow(reason: str) -> AccessDecision:
    return AccessDecision(action="allow", reason=reason)

def _redirect(target: str, reason: str) -> AccessDecision:
    return AccessDecision(action="redirect", target=target, reason=reason)

def _login_with_next(path: str) -> str:
    return f"/auth/login?next={path}"


def resolve_access(path: str, has_session: bool, role: Optional[str],
                   tenant_id: Optional[str], onboarding_completed: bool) -> AccessDecision:
    """Evaluate the access table. tenant_id is carried for diagnostics only."""
    is_employer = role in EMPLOYER_ROLES

    if PUBLIC_ROUTE.match(path):
        return _allow("public route")

    if path.startswith(EMPLOYER_PAGES):
        if not has_session:
            return _redirect(_login_with_next(path), "no session")
        if not is_employer:
            return _redirect("/onboarding", "no employer role")
        if not onboarding_completed:
            return _redirect("/onboarding", "not onboarded")
        return _allow("employer with completed onboarding")

    if path == "/onboarding":
        if not has_session:
            return _redirect("/auth/login", "no session")
        if onboarding_completed and is_employer:
            return _redirect("/dashboard", "already onboarded")
        return _allow("needs onboarding")

    if path.startswith(CANDIDATE_PAGES):
        if not has_session:
            return _redirect(_login_with_next(path), "no session")
        if role == "candidate":
            return _allow("candidate access")
        return _redirect("/dashboard", "not a candidate")

    return _allow("default")


def why_redirect(path: str, has_session: bool, role: Optional[str],
                 tenant_id: Optional[str], onboarding_completed: bool) -> str:
    return resolve_access(path, has_session, role, tenant_id, onboarding_completed).describe()


async def get_access_state(user: Optional[dict]) -> dict:
    """Session facts the access table needs, derived from the profile"""
    if not user:
        return {"has_session": False, "role": None, "tenant_id": None, "onboarding_completed": False}

    role = user.get("role")
    tenant_id = user.get("tenant_id")

    onboarding_completed = user.get("onboarding_completed")
    if onboarding_completed is None:
        # Older profiles lack the flag: an employer with a tenant membership is onboarded
        onboarding_completed = False
        if role in EMPLOYER_ROLES and tenant_id:
            membership = await db.tenant_members.find_one(
                {"user_id": user["user_id"], "tenant_id": tenant_id}, {"_id": 0}
            )
            onboarding_completed = membership is not None

    return {
        "has_session": True,
        "role": role,
        "tenant_id": tenant_id,
        "onboarding_completed": bool(onboarding_completed)
    }


@router.get("/routecheck")
async def routecheck(path: str = "/", current_user: Optional[dict] = Depends(get_optional_user)):
    """Explain what the page router would do for a path"""
    state = await get_access_state(current_user)
    decision = why_redirect(path, **state)

    logger.info(f"[routecheck] {path} -> {decision}")

    return {
        **state,
        "path": path,
        "decision": decision,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
