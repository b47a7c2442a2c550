"""
Admin API authentication, scopes, response envelope and cursor pagination
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Callable, List, Literal, Optional

import jwt
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from interviewdesk.config import ADMIN_API_ALLOWED_ORIGINS, API_KEY_SALT, JWT_ALGORITHM, JWT_SECRET
from interviewdesk.database import db
from interviewdesk.rate_limit import RateLimiter, admin_api_limiter, check_rate_limit

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "qsk_"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

ROLE_SCOPES = {
    "owner": ["jobs", "questions", "invites", "responses", "team", "api_keys"],
    "admin": ["jobs", "questions", "invites", "responses", "team"],
    "recruiter": ["jobs", "questions", "invites", "responses"],
    "reviewer": ["responses"]
}


class AdminAuthContext(BaseModel):
    tenant_id: str
    user_id: Optional[str] = None
    scopes: List[str] = []
    auth_method: Literal["api_key", "session_jwt"]


class AdminApiError(Exception):
    """Raised by admin routes; rendered as an error envelope"""

    def __init__(self, status_code: int, code: str, message: str,
                 field: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.field = field
        self.headers = headers


# ============ API KEYS ============

def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(32)

def is_valid_api_key_format(key: str) -> bool:
    return key.startswith(API_KEY_PREFIX) and len(key) > 10

def hash_api_key(key: str) -> str:
    """Salted SHA-256 (HMAC) of a raw key, as 64 lowercase hex chars"""
    return hmac.new(API_KEY_SALT.encode('utf-8'), key.encode('utf-8'), hashlib.sha256).hexdigest()


# ============ AUTHENTICATION ============

async def authenticate_admin_request(request: Request) -> Optional[AdminAuthContext]:
    """Resolve the caller from a bearer API key, falling back to a session JWT"""
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header[len("Bearer "):]

    if is_valid_api_key_format(token):
        api_key = await db.api_keys.find_one({"key_hash": hash_api_key(token)}, {"_id": 0})
        if not api_key:
            return None

        await db.api_keys.update_one(
            {"api_key_id": api_key["api_key_id"]},
            {"$set": {"last_used_at": datetime.now(timezone.utc).isoformat()}}
        )

        return AdminAuthContext(
            tenant_id=api_key["tenant_id"],
            user_id=api_key.get("created_by"),
            scopes=api_key.get("scopes") or [],
            auth_method="api_key"
        )

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None

    user_id = payload.get("user_id")
    if not user_id:
        return None

    membership = await db.tenant_members.find_one({"user_id": user_id}, {"_id": 0})
    if not membership:
        return None

    return AdminAuthContext(
        tenant_id=membership["tenant_id"],
        user_id=user_id,
        scopes=ROLE_SCOPES.get(membership["role"], []),
        auth_method="session_jwt"
    )

def has_scope(ctx: AdminAuthContext, scope: str) -> bool:
    return scope in ctx.scopes or "admin" in ctx.scopes

def admin_context(scope: str, limiter: RateLimiter = admin_api_limiter) -> Callable:
    """Dependency factory: rate limit, then authenticate, then check scope"""
    async def dependency(request: Request) -> AdminAuthContext:
        result = check_rate_limit(limiter, request)
        if not result["allowed"]:
            raise AdminApiError(429, "RATE_LIMIT_EXCEEDED", "Too many requests", headers=result["headers"])
        request.state.rate_limit_headers = result["headers"]

        ctx = await authenticate_admin_request(request)
        if not ctx:
            raise AdminApiError(401, "UNAUTHORIZED", "Invalid or missing authentication")

        if not has_scope(ctx, scope):
            raise AdminApiError(403, "FORBIDDEN", f"Insufficient permissions for {scope} access")

        return ctx
    return dependency


# ============ RESPONSE ENVELOPE ============

def admin_cors_headers() -> dict:
    return {
        "Access-Control-Allow-Origin": ADMIN_API_ALLOWED_ORIGINS,
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization"
    }

def success_response(data, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": data},
        headers=admin_cors_headers()
    )

def error_response(code: str, message: str, status_code: int,
                   field: Optional[str] = None, headers: Optional[dict] = None) -> JSONResponse:
    error = {"code": code, "message": message}
    if field:
        error["field"] = field

    response_headers = admin_cors_headers()
    if headers:
        response_headers.update(headers)

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=response_headers
    )

async def admin_api_error_handler(request: Request, exc: AdminApiError) -> JSONResponse:
    return error_response(exc.code, exc.message, exc.status_code, field=exc.field, headers=exc.headers)


# ============ CURSOR PAGINATION ============

def create_cursor(created_at: str, id: str) -> str:
    raw = json.dumps({"createdAt": created_at, "id": id}).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('utf-8').rstrip("=")

def parse_cursor(cursor: Optional[str]) -> Optional[dict]:
    if not cursor:
        return None
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        decoded = json.loads(base64.urlsafe_b64decode(padded.encode('utf-8')).decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(decoded, dict) or "createdAt" not in decoded or "id" not in decoded:
        return None
    return decoded

async def paginate(collection, query: dict, id_field: str, limit: int = DEFAULT_PAGE_SIZE,
                   cursor: Optional[str] = None, serialize: Optional[Callable] = None) -> dict:
    """Keyset page over (created_at desc, id desc)"""
    parsed = parse_cursor(cursor)
    if parsed:
        after_cursor = {"$or": [
            {"created_at": {"$lt": parsed["createdAt"]}},
            {"created_at": parsed["createdAt"], id_field: {"$lt": parsed["id"]}}
        ]}
        query = {"$and": [query, after_cursor]} if query else after_cursor

    docs = await collection.find(query, {"_id": 0}).sort(
        [("created_at", -1), (id_field, -1)]
    ).limit(limit + 1).to_list(limit + 1)

    has_more = len(docs) > limit
    docs = docs[:limit]
    next_cursor = create_cursor(docs[-1]["created_at"], docs[-1][id_field]) if has_more and docs else None

    return {
        "items": [serialize(doc) for doc in docs] if serialize else docs,
        "nextCursor": next_cursor,
        "hasMore": has_more
    }
