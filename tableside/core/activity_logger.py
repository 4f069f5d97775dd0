from typing import Optional
import logging

from fastapi import Request

from ..database import DocumentStore
from ..models.activity import ActivityLog

logger = logging.getLogger(__name__)

async def log_activity(
    db: Optional[DocumentStore],
    user: Optional[dict],
    action: str,
    resource: str,
    resource_id: Optional[str] = None,
    details: Optional[dict] = None,
    request: Optional[Request] = None,
):
    """Log staff activity to the audit table; never fails the request"""
    if db is None:
        return
    activity = ActivityLog(
        user_id=(user or {}).get("id"),
        user_role=(user or {}).get("role"),
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details,
        ip_address=request.client.host if request and request.client else None,
    )
    try:
        await db.insert("activity_logs", activity.model_dump(mode="json", exclude={"id", "created_at"}))
    except Exception:
        logger.exception("Failed to write activity log for %s %s", action, resource)
