"""
InterviewDesk - Request/Response Models and Validation
"""
import re
from datetime import datetime, timezone
from pydantic import AfterValidator, BaseModel, Field, EmailStr, PlainSerializer, field_validator, model_validator
from typing import Annotated, Optional, Literal, List

EmployerRole = Literal["owner", "admin", "recruiter", "reviewer"]
InterviewStatus = Literal["draft", "open", "closed"]
ApiScope = Literal["jobs", "questions", "invites", "responses", "team"]

HEX_COLOR_RE = re.compile(r'^#[0-9a-fA-F]{6}$')
SUBDOMAIN_RE = re.compile(r'^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$')


def _check_color(value: Optional[str]) -> Optional[str]:
    if value and not HEX_COLOR_RE.match(value):
        raise ValueError('Color must be a hex value like #1e3a8a')
    return value


def _check_subdomain(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip().lower()
    if not value:
        return None
    if not SUBDOMAIN_RE.match(value):
        raise ValueError('Subdomain may only contain lowercase letters, digits and hyphens')
    return value


# ============ TIMESTAMPS ============

def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

# Stored as UTC ISO strings so "$lt now" filters compare chronologically
UtcTimestamp = Annotated[
    datetime,
    AfterValidator(_as_utc),
    PlainSerializer(lambda value: value.isoformat(), return_type=str)
]


def parse_timestamp(value: str) -> datetime:
    return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))

def is_past(value: Optional[str]) -> bool:
    """True when a stored ISO timestamp lies before now; empty means never"""
    if not value:
        return False
    return parse_timestamp(value) < datetime.now(timezone.utc)


# ============ AUTH MODELS ============

class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    account_type: Literal["employer", "candidate"] = "employer"

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class PasswordResetRequest(BaseModel):
    email: EmailStr

class PasswordReset(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=6)

class UserResponse(BaseModel):
    user_id: str
    email: str
    name: str
    role: Optional[str] = None
    tenant_id: Optional[str] = None
    onboarding_completed: bool = False

class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse


# ============ TENANT MODELS ============

class OnboardingRequest(BaseModel):
    """Company + tenant creation for a freshly registered employer"""
    company_name: str
    subdomain: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None

    @field_validator('company_name')
    @classmethod
    def validate_company_name(cls, company_name):
        company_name = company_name.strip()
        if not company_name:
            raise ValueError('Company name is required')
        return company_name

    @field_validator('subdomain')
    @classmethod
    def validate_subdomain(cls, value):
        return _check_subdomain(value)

    @field_validator('primary_color')
    @classmethod
    def validate_color(cls, value):
        return _check_color(value)

class BrandingUpdate(BaseModel):
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    accent_color: Optional[str] = None
    subdomain: Optional[str] = None

    @field_validator('primary_color', 'secondary_color', 'accent_color')
    @classmethod
    def validate_colors(cls, value):
        return _check_color(value)

    @field_validator('subdomain')
    @classmethod
    def validate_subdomain(cls, value):
        return _check_subdomain(value)


# ============ INTERVIEW MODELS ============

class InterviewCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=100)
    competencies: List[str] = []
    due_date: Optional[UtcTimestamp] = None

class InterviewStatusUpdate(BaseModel):
    status: InterviewStatus

class QuestionCreate(BaseModel):
    text: str = Field(min_length=1, max_length=1000)
    ideal_answer: Optional[str] = None
    time_limit_sec: int = Field(default=120, ge=30, le=600)

class QuestionPosition(BaseModel):
    id: str
    position: int = Field(ge=0)

class QuestionReorder(BaseModel):
    positions: List[QuestionPosition]

class InvitationCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    notes: Optional[str] = None
    expires_at: Optional[UtcTimestamp] = None
    send_email: bool = False

class AssignmentCreate(BaseModel):
    email: EmailStr

class EvaluationCreate(BaseModel):
    score: int = Field(ge=0, le=10)
    notes: Optional[str] = None

class CommentCreate(BaseModel):
    body: str = Field(min_length=1, max_length=5000)


# ============ CANDIDATE / EMBED MODELS ============

class AcceptInviteRequest(BaseModel):
    token: Optional[str] = None

class EmbedTokenRequest(BaseModel):
    inviteToken: Optional[str] = None

class EmbedResponseCreate(BaseModel):
    """Answer recorded by the conductor for one question"""
    question_id: str
    transcript: str = ""
    audio_url: Optional[str] = None
    duration_sec: Optional[float] = Field(None, ge=0)
    score: Optional[float] = Field(None, ge=0, le=10)
    flags: dict = {}

class EmbedProgressUpdate(BaseModel):
    current_question_index: int = Field(ge=0)
    running_score: Optional[float] = None


# ============ ADMIN API MODELS ============

class JobCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=100)
    competencies: List[str] = []
    due_date: Optional[UtcTimestamp] = None
    status: InterviewStatus = "draft"
    brand: dict = {}

class JobUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=100)
    competencies: Optional[List[str]] = None
    due_date: Optional[UtcTimestamp] = None
    status: Optional[InterviewStatus] = None
    brand: Optional[dict] = None

class JobQuestionCreate(BaseModel):
    text: str = Field(min_length=1, max_length=1000)
    ideal_answer: Optional[str] = None
    time_limit_sec: int = Field(default=120, ge=30, le=600)
    position: Optional[int] = Field(None, ge=0)

class JobQuestionUpdate(BaseModel):
    text: Optional[str] = Field(None, min_length=1, max_length=1000)
    ideal_answer: Optional[str] = None
    time_limit_sec: Optional[int] = Field(None, ge=30, le=600)
    position: Optional[int] = Field(None, ge=0)

class QuestionBankCreate(BaseModel):
    text: str = Field(min_length=1, max_length=1000)
    tags: List[str] = []
    time_limit_sec: int = Field(default=120, ge=30, le=600)
    ideal_answer: Optional[str] = None

class QuestionBankUpdate(BaseModel):
    text: Optional[str] = Field(None, min_length=1, max_length=1000)
    tags: Optional[List[str]] = None
    time_limit_sec: Optional[int] = Field(None, ge=30, le=600)
    ideal_answer: Optional[str] = None

class InviteReminders(BaseModel):
    t72: bool = False
    t24: bool = False
    t4: bool = False

class InviteCreate(BaseModel):
    """Either a single invite (email) or a bulk import (base64 csv)"""
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    notes: Optional[str] = None
    expires_at: Optional[UtcTimestamp] = None
    reminders: InviteReminders = InviteReminders()
    csv: Optional[str] = None

    @model_validator(mode='after')
    def validate_target(self):
        if not self.email and self.csv is None:
            raise ValueError('Either email or csv is required')
        return self

class ResponseScore(BaseModel):
    question_id: str
    score: float = Field(ge=0, le=10)
    notes: Optional[str] = None

class TeamMemberCreate(BaseModel):
    email: EmailStr
    role: EmployerRole

class TeamMemberUpdate(BaseModel):
    role: EmployerRole

class ApiKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    scopes: List[ApiScope] = ["jobs", "questions", "invites", "responses", "team"]
