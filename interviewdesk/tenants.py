import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pymongo.errors import PyMongoError

from interviewdesk import config
from interviewdesk.audit import log_audit
from interviewdesk.auth import get_current_user, require_role
from interviewdesk.database import db
from interviewdesk.models import BrandingUpdate, OnboardingRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

DEVELOPMENT_TENANT = {"tenant_id": "development", "name": "Development"}
LOCAL_HOSTS = {"localhost", "127.0.0.1"}
TENANT_SKIP_PREFIXES = ("/static", "/api/public", "/embed.js")


# ============ TENANT RESOLUTION ============

async def resolve_tenant_for_host(host: Optional[str]) -> Optional[dict]:
    """Map a request host to its tenant via custom domain or subdomain"""
    if not host:
        return None
    hostname = host.split(":", 1)[0].lower()

    if hostname in LOCAL_HOSTS:
        return dict(DEVELOPMENT_TENANT)

    base_domain = config.BASE_DOMAIN.lower()
    under_base = hostname == base_domain or hostname.endswith("." + base_domain)

    if not under_base:
        return await db.tenants.find_one(
            {"custom_domain": hostname, "domain_verified": True}, {"_id": 0}
        )

    if hostname == base_domain:
        return None
    subdomain = hostname.split(".", 1)[0]
    return await db.tenants.find_one({"subdomain": subdomain}, {"_id": 0})


def build_theme(tenant: dict) -> dict:
    """CSS custom properties for the colours a tenant has set"""
    theme = tenant.get("theme") or {}
    css_vars = {}
    if theme.get("primary_color"):
        css_vars["--primary"] = theme["primary_color"]
    if theme.get("secondary_color"):
        css_vars["--secondary"] = theme["secondary_color"]
    if theme.get("accent_color"):
        css_vars["--accent"] = theme["accent_color"]

    return {
        "css_variables": css_vars,
        "logo_url": tenant.get("logo_url"),
        "brand_name": tenant.get("name")
    }


async def tenant_middleware(request: Request, call_next):
    """Attach the host's tenant to request.state and echo it in response headers"""
    if config.SKIP_TENANT_CHECK or request.url.path.startswith(TENANT_SKIP_PREFIXES):
        request.state.tenant = None
        return await call_next(request)

    try:
        tenant = await resolve_tenant_for_host(request.headers.get("host"))
    except PyMongoError as e:
        # Routes report database failures in their own formats
        logger.error(f"Tenant lookup failed for {request.headers.get('host')}: {str(e)}")
        tenant = None
    request.state.tenant = tenant

    response = await call_next(request)
    if tenant:
        response.headers["x-tenant-id"] = tenant["tenant_id"]
        response.headers["x-tenant-name"] = tenant.get("name") or ""
    return response


# ============ TENANT ROUTES ============

@router.get("/tenant")
async def get_current_tenant(request: Request):
    """Tenant for the current host, with theme"""
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        tenant = await resolve_tenant_for_host(request.headers.get("host"))
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )
    return {"tenant": tenant, "theme": build_theme(tenant)}


@router.post("/onboarding")
async def complete_onboarding(
    onboarding: OnboardingRequest,
    current_user: dict = Depends(get_current_user)
):
    """Create the company tenant and make the caller its owner"""
    if current_user.get("onboarding_completed") and current_user.get("tenant_id"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Onboarding already completed"
        )
    if current_user.get("role") == "candidate":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Candidate accounts cannot create a company"
        )

    if onboarding.subdomain:
        taken = await db.tenants.find_one({"subdomain": onboarding.subdomain})
        if taken:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Subdomain is already taken"
            )

    now = datetime.now(timezone.utc).isoformat()
    tenant_id = f"tenant_{uuid.uuid4().hex[:12]}"

    tenant_doc = {
        "tenant_id": tenant_id,
        "name": onboarding.company_name,
        "subdomain": onboarding.subdomain,
        "custom_domain": None,
        "domain_verified": False,
        "logo_url": onboarding.logo_url,
        "theme": {"primary_color": onboarding.primary_color},
        "created_at": now,
        "updated_at": now
    }
    await db.tenants.insert_one(tenant_doc)
    tenant_doc.pop("_id", None)

    await db.tenant_members.insert_one({
        "member_id": f"mem_{uuid.uuid4().hex[:12]}",
        "tenant_id": tenant_id,
        "user_id": current_user["user_id"],
        "role": "owner",
        "created_at": now
    })

    await db.users.update_one(
        {"user_id": current_user["user_id"]},
        {"$set": {
            "role": "owner",
            "tenant_id": tenant_id,
            "onboarding_completed": True,
            "updated_at": now
        }}
    )

    await log_audit(
        current_user,
        "tenant_created",
        "tenant",
        tenant_id,
        meta={"name": onboarding.company_name, "subdomain": onboarding.subdomain},
        tenant_id=tenant_id
    )
    logger.info(f"[onboarding] completed for {current_user['email']} -> {tenant_id}")

    return {"tenant": tenant_doc, "redirect": "/dashboard"}


@router.get("/settings/branding")
async def get_branding(current_user: dict = Depends(require_role("owner", "admin"))):
    tenant = await db.tenants.find_one({"tenant_id": current_user.get("tenant_id")}, {"_id": 0})
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )
    return {"tenant": tenant, "theme": build_theme(tenant)}


@router.put("/settings/branding")
async def update_branding(
    branding: BrandingUpdate,
    current_user: dict = Depends(require_role("owner", "admin"))
):
    """Update logo, colours and subdomain"""
    tenant_id = current_user.get("tenant_id")
    tenant = await db.tenants.find_one({"tenant_id": tenant_id}, {"_id": 0})
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )

    changes = branding.model_dump(exclude_unset=True)
    update = {}

    if "subdomain" in changes and changes["subdomain"] != tenant.get("subdomain"):
        if changes["subdomain"]:
            taken = await db.tenants.find_one(
                {"subdomain": changes["subdomain"], "tenant_id": {"$ne": tenant_id}}
            )
            if taken:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Subdomain is already taken"
                )
        update["subdomain"] = changes["subdomain"]

    if "logo_url" in changes:
        update["logo_url"] = changes["logo_url"]
    for color in ("primary_color", "secondary_color", "accent_color"):
        if color in changes:
            update[f"theme.{color}"] = changes[color]

    if update:
        update["updated_at"] = datetime.now(timezone.utc).isoformat()
        await db.tenants.update_one({"tenant_id": tenant_id}, {"$set": update})
        await log_audit(current_user, "branding_updated", "tenant", tenant_id, meta=changes)

    tenant = await db.tenants.find_one({"tenant_id": tenant_id}, {"_id": 0})
    return {"tenant": tenant, "theme": build_theme(tenant)}
