import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from interviewdesk import config
from interviewdesk.auth import get_membership, get_optional_user
from interviewdesk.database import column_exists, db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

CONDUCTOR_PROBE_TIMEOUT = 5.0


def conductor_health_url(conductor_url: str) -> str:
    """The conductor speaks websockets; its health probe is plain HTTP"""
    if conductor_url.startswith("wss://"):
        conductor_url = "https://" + conductor_url[len("wss://"):]
    elif conductor_url.startswith("ws://"):
        conductor_url = "http://" + conductor_url[len("ws://"):]
    return conductor_url.rstrip("/") + "/health"


async def probe_conductor() -> dict:
    try:
        async with httpx.AsyncClient(timeout=CONDUCTOR_PROBE_TIMEOUT) as http_client:
            response = await http_client.get(conductor_health_url(config.CONDUCTOR_URL))
    except httpx.HTTPError as e:
        logger.warning(f"Conductor probe failed: {e}")
        return {"ok": False, "error": "Conductor unreachable"}

    if response.status_code != 200:
        return {"ok": False, "error": f"Conductor returned {response.status_code}"}
    try:
        return response.json()
    except ValueError:
        return {"ok": True}


@router.get("/health")
async def health_check():
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        await db.tenants.find_one({}, {"_id": 1})
    except PyMongoError as e:
        logger.error(f"Health check database probe failed: {e}")
        return JSONResponse(status_code=503, content={
            "ok": False,
            "status": "unhealthy",
            "timestamp": timestamp,
            "services": {"database": "unhealthy", "api": "healthy"},
            "version": config.APP_VERSION
        })

    return {
        "ok": True,
        "status": "healthy",
        "timestamp": timestamp,
        "services": {"database": "healthy", "api": "healthy"},
        "version": config.APP_VERSION
    }


@router.get("/selfcheck")
async def selfcheck(current_user: Optional[dict] = Depends(get_optional_user)):
    """Deployment diagnostics for the signed-in user and the conductor"""
    user_role = None
    tenant = None

    if current_user:
        user_role = current_user.get("role")
        membership = await get_membership(current_user["user_id"])
        if membership:
            tenant_doc = await db.tenants.find_one(
                {"tenant_id": membership["tenant_id"]}, {"_id": 0, "tenant_id": 1, "name": 1, "subdomain": 1}
            )
            if tenant_doc:
                tenant = {"id": tenant_doc["tenant_id"], "name": tenant_doc["name"],
                          "subdomain": tenant_doc.get("subdomain")}

    conductor_health = await probe_conductor()

    logger.info(f"[selfcheck] user={current_user['email'] if current_user else 'none'} role={user_role or 'none'}")

    return {
        "ok": True,
        "userRole": user_role,
        "tenant": tenant,
        "conductorHealth": conductor_health,
        "embed": {
            "hasJwtSecret": bool(config.EMBED_JWT_SECRET),
            "configOk": bool(config.CONDUCTOR_URL and config.APP_URL)
        }
    }


@router.get("/db/meta")
async def db_meta():
    result = {
        "hasOnboardingCompleted": await column_exists("users", "onboarding_completed"),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"[db/meta] {result}")
    return result
