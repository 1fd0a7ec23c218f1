from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UpdateStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UpdateSource(str, Enum):
    MANUAL = "manual"
    RULE = "rule"
    CAMPAIGN = "campaign"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class PendingUpdate(BaseModel):
    id: str
    sku_id: str
    old_price: Decimal
    new_price: Decimal
    margin_impact: str
    source: UpdateSource
    priority: Priority = Priority.MEDIUM
    requested_by: str
    reason: Optional[str] = None
    status: UpdateStatus = UpdateStatus.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
