import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional

import bcrypt
import jwt
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from interviewdesk.config import APP_URL, JWT_ALGORITHM, JWT_EXPIRATION_HOURS, JWT_SECRET, PASSWORD_RESET_TTL_MINUTES
from interviewdesk.database import db
from interviewdesk.models import (
    PasswordReset,
    PasswordResetRequest,
    TokenResponse,
    UserLogin,
    UserRegister,
    UserResponse,
    is_past,
)
from interviewdesk.notification_service import send_password_reset_email, send_welcome_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Security
security = HTTPBearer(auto_error=False)

ACCESS_TOKEN_COOKIE = "access_token"
EMPLOYER_ROLES = ("owner", "admin", "recruiter", "reviewer")


# ============ UTILITIES ============

def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))

def create_access_token(data: dict) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRATION_HOURS)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return encoded_jwt

def decode_token(token: str) -> dict:
    """Decode and verify JWT token"""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

async def load_user_from_token(token: str) -> dict:
    payload = decode_token(token)

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )

    user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "password_hash": 0})
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return user

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """Dependency to get current authenticated user from the bearer header or session cookie"""
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return await load_user_from_token(token)

async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[dict]:
    try:
        return await get_current_user(request, credentials)
    except HTTPException:
        return None

def require_role(*required_roles: str):
    """Dependency factory to require specific roles"""
    async def role_checker(current_user: dict = Depends(get_current_user)):
        if current_user.get("role") not in required_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current_user
    return role_checker

async def get_membership(user_id: str) -> Optional[dict]:
    """Tenant membership for a user (one tenant per user)"""
    return await db.tenant_members.find_one({"user_id": user_id}, {"_id": 0})

def to_user_response(user: dict) -> UserResponse:
    return UserResponse(
        user_id=user["user_id"],
        email=user["email"],
        name=user["name"],
        role=user.get("role"),
        tenant_id=user.get("tenant_id"),
        onboarding_completed=bool(user.get("onboarding_completed"))
    )


# ============ AUTH ROUTES ============

@router.post("/auth/register", response_model=UserResponse)
async def register_user(user_data: UserRegister, background_tasks: BackgroundTasks):
    """Register an employer (onboarding pending) or a candidate account"""

    # Check if user already exists
    existing_user = await db.users.find_one({"email": user_data.email})
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    is_candidate = user_data.account_type == "candidate"
    now = datetime.now(timezone.utc).isoformat()

    user_doc = {
        "user_id": f"user_{uuid.uuid4().hex[:12]}",
        "email": user_data.email,
        "name": user_data.name,
        "role": "candidate" if is_candidate else None,
        "tenant_id": None,
        "onboarding_completed": is_candidate,
        "password_hash": hash_password(user_data.password),
        "created_at": now,
        "updated_at": now
    }

    await db.users.insert_one(user_doc)
    logger.info(f"[ACTION] Registered {user_data.account_type} account {user_data.email}")

    background_tasks.add_task(
        send_welcome_email,
        email=user_data.email,
        user_name=user_data.name,
        user_role=user_doc["role"] or "employer",
        login_url=f"{APP_URL}/auth/login"
    )

    return to_user_response(user_doc)

@router.post("/auth/login", response_model=TokenResponse)
async def login(credentials: UserLogin, response: Response):
    """Login and receive JWT token (also set as an httponly cookie)"""

    user = await db.users.find_one({"email": credentials.email}, {"_id": 0})
    if not user or not verify_password(credentials.password, user["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    token_data = {
        "user_id": user["user_id"],
        "email": user["email"],
        "role": user.get("role")
    }
    access_token = create_access_token(token_data)

    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        max_age=JWT_EXPIRATION_HOURS * 3600
    )

    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        user=to_user_response(user)
    )

@router.get("/auth/me", response_model=UserResponse)
async def get_me(current_user: dict = Depends(get_current_user)):
    """Get current authenticated user"""
    return to_user_response(current_user)

@router.post("/auth/logout")
async def logout(response: Response):
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return {"message": "Logged out"}


# ============ PASSWORD RESET ============

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a reset link has been sent"

def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()

@router.post("/auth/reset-request")
async def request_password_reset(reset_data: PasswordResetRequest, background_tasks: BackgroundTasks):
    """Email a one-time reset link; the answer is the same whether or not the account exists"""
    user = await db.users.find_one({"email": reset_data.email}, {"_id": 0, "user_id": 1, "email": 1})
    if not user:
        logger.info(f"[ACTION] Password reset requested for unknown email {reset_data.email}")
        return {"message": RESET_REQUESTED_MESSAGE}

    token = secrets.token_urlsafe(32)
    now = datetime.now(timezone.utc)
    expires_at = (now + timedelta(minutes=PASSWORD_RESET_TTL_MINUTES)).isoformat()

    # Earlier links stop working once a new one is issued
    await db.password_resets.update_many(
        {"user_id": user["user_id"], "used": False},
        {"$set": {"used": True}}
    )
    await db.password_resets.insert_one({
        "reset_id": f"reset_{uuid.uuid4().hex[:12]}",
        "user_id": user["user_id"],
        "token_hash": hash_reset_token(token),
        "used": False,
        "expires_at": expires_at,
        "created_at": now.isoformat()
    })
    logger.info(f"[ACTION] Password reset link issued for {user['email']}")

    background_tasks.add_task(
        send_password_reset_email,
        email=user["email"],
        reset_url=f"{APP_URL}/auth/reset/confirm?token={token}",
        expires_at=expires_at
    )

    return {"message": RESET_REQUESTED_MESSAGE}

@router.post("/auth/reset")
async def reset_password(reset_data: PasswordReset):
    """Set a new password with a token from the reset email"""
    reset = await db.password_resets.find_one(
        {"token_hash": hash_reset_token(reset_data.token)}, {"_id": 0}
    )
    if not reset or reset.get("used") or is_past(reset.get("expires_at")):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token"
        )

    await db.users.update_one(
        {"user_id": reset["user_id"]},
        {"$set": {
            "password_hash": hash_password(reset_data.new_password),
            "updated_at": datetime.now(timezone.utc).isoformat()
        }}
    )
    await db.password_resets.update_one({"reset_id": reset["reset_id"]}, {"$set": {"used": True}})
    logger.info(f"[ACTION] Password reset completed for {reset['user_id']}")

    return {"message": "Password reset successfully"}
