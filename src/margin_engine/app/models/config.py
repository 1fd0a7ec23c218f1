from __future__ import annotations

from decimal import Decimal
from typing import Dict

from pydantic import BaseModel, Field, model_validator

from margin_engine.engine.margin.classifier import MarginThresholds
from margin_engine.engine.workflow.models import Priority


class MarginThresholdsConfig(BaseModel):
    critical_below: Decimal = Decimal("10")
    warning_below: Decimal = Decimal("15")
    urgent_below: Decimal = Decimal("5")

    @model_validator(mode="after")
    def ordered(self) -> "MarginThresholdsConfig":
        if not self.urgent_below <= self.critical_below <= self.warning_below:
            raise ValueError("thresholds must satisfy urgent_below <= critical_below <= warning_below")
        return self

    def to_thresholds(self) -> MarginThresholds:
        return MarginThresholds(
            critical_below=self.critical_below,
            warning_below=self.warning_below,
            urgent_below=self.urgent_below,
        )


class BulkConfig(BaseModel):
    max_workers: int = Field(default=1, ge=1)


class LedgerConfig(BaseModel):
    cas_attempts: int = Field(default=3, ge=1)
    history_limit: int = Field(default=20, ge=0)


class ApprovalConfig(BaseModel):
    default_priority: Priority = Priority.MEDIUM


class SnapshotConfig(BaseModel):
    column_map: Dict[str, str] = Field(default_factory=dict)


class EngineConfig(BaseModel):
    schema_version: int = 1
    currency: str = "INR"
    margin_thresholds: MarginThresholdsConfig = Field(default_factory=MarginThresholdsConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
