import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from interviewdesk.auth import require_role
from interviewdesk.csv_export import csv_response
from interviewdesk.database import db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

AUDIT_EXPORT_COLUMNS = [
    "log_id", "created_at", "actor_email", "action", "entity_type", "entity_id", "meta"
]


async def log_audit(
    actor: Optional[dict],
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    meta: Optional[dict] = None,
    tenant_id: Optional[str] = None
):
    """Log an audit event to the audit_log collection"""
    if not actor:
        return None

    log_entry = {
        "log_id": f"log_{uuid.uuid4().hex[:12]}",
        "tenant_id": tenant_id or actor.get("tenant_id"),
        "actor_id": actor.get("user_id"),
        "actor_email": actor.get("email"),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "meta": meta or {},
        "created_at": datetime.now(timezone.utc).isoformat()
    }

    await db.audit_log.insert_one(log_entry)
    log_entry.pop("_id", None)
    logger.info(f"[AUDIT] {action} by {actor.get('email')} on {entity_type} {entity_id}")
    return log_entry


def _audit_query(tenant_id: str, action: Optional[str], entity_type: Optional[str],
                 from_date: Optional[str], to_date: Optional[str]) -> dict:
    query = {"tenant_id": tenant_id}
    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type
    if from_date:
        query["created_at"] = {"$gte": from_date}
    if to_date:
        query.setdefault("created_at", {})["$lte"] = to_date
    return query


@router.get("/audit")
async def get_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role("owner", "admin"))
):
    """Get the tenant's audit trail with filtering"""
    query = _audit_query(current_user["tenant_id"], action, entity_type, from_date, to_date)

    logs = await db.audit_log.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.audit_log.count_documents(query)

    return {"logs": logs, "total": total, "skip": skip, "limit": limit}


@router.get("/audit/export")
async def export_audit_logs_csv(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    current_user: dict = Depends(require_role("owner", "admin"))
):
    """Export audit logs as CSV"""
    query = _audit_query(current_user["tenant_id"], action, entity_type, from_date, to_date)
    logs = await db.audit_log.find(query, {"_id": 0}).sort("created_at", -1).to_list(10000)

    rows = [
        {**log, "meta": json.dumps(log.get("meta")) if log.get("meta") else ""}
        for log in logs
    ]

    filename = f"audit_log_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.csv"
    response = csv_response(rows, filename, headers=AUDIT_EXPORT_COLUMNS)

    # Log the export action
    await log_audit(
        current_user,
        "audit_log_export",
        "audit_log",
        meta={"count": len(rows), "filters": {"action": action, "from": from_date, "to": to_date}}
    )

    return response
