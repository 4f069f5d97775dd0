from datetime import datetime
from typing import Optional
from pydantic import BaseModel

class ActivityLog(BaseModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    action: str  # "create", "update_status", "cancel", "complete", "payment", "refund", ...
    resource: str  # "order", "order_item", "payment", "table"
    resource_id: Optional[str] = None
    details: Optional[dict] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None
