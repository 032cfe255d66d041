from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    actor_user_id: Optional[uuid.UUID] = None
    actor_type: str
    action: str
    category: str
    severity: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    request_data: Optional[Dict[str, Any]] = None
    tags: List[str] = []
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuditLogPage(BaseModel):
    logs: List[AuditLogOut]
    total: int
    has_more: bool


class ActivitySummaryOut(BaseModel):
    days: int
    total: int
    by_category: Dict[str, int]
    by_severity: Dict[str, int]
    top_actions: List[Dict[str, Any]]
