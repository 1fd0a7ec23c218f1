from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from margin_engine.engine.workflow.models import Priority


class RuleScope(str, Enum):
    REGION = "region"
    STORE = "store"


class PricingMethod(str, Enum):
    FIXED = "fixed"
    COST_PLUS = "cost-plus"
    COMPETITOR_INDEX = "competitor-index"


class RuleStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"


class PriceRuleDraft(BaseModel):
    name: str
    description: Optional[str] = None
    scope: RuleScope = RuleScope.REGION
    pricing_method: PricingMethod = PricingMethod.FIXED
    margin_min: Optional[Decimal] = None
    margin_max: Optional[Decimal] = None
    start_date: date
    end_date: Optional[date] = None
    priority: Priority = Priority.MEDIUM


class PriceRule(PriceRuleDraft):
    id: str
    status: RuleStatus = RuleStatus.DRAFT
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
