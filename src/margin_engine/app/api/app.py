from __future__ import annotations

import os
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from margin_engine.app.auth.api_key import ApiKeyAuth, parse_api_keys
from margin_engine.app.config.loader import load_engine_config
from margin_engine.app.models.config import EngineConfig
from margin_engine.app.models.requests import (
    BulkOperationRequest,
    BulkProposalRequest,
    MarginRiskView,
    PendingUpdateRequest,
    PreviewRequest,
    PriceUpdateRequest,
    RejectRequest,
)
from margin_engine.engine.bulk.executor import BulkOperationResult
from margin_engine.engine.ledger.models import PriceHistoryEntry, Sku
from margin_engine.engine.margin.classifier import MarginStatus
from margin_engine.engine.pricing.strategies import PricePreview
from margin_engine.engine.rules.models import (
    PriceRule,
    PriceRuleDraft,
    PricingMethod,
    RuleScope,
    RuleStatus,
)
from margin_engine.engine.service import PricingEngine, build_engine
from margin_engine.engine.workflow.models import PendingUpdate, Priority, UpdateSource
from margin_engine.persistence.dynamo_pending_updates import DynamoPendingUpdates
from margin_engine.persistence.dynamo_price_rules import DynamoPriceRules
from margin_engine.persistence.dynamo_skus import DynamoSkus
from margin_engine.util.errors import (
    AlreadyResolved,
    ConcurrentUpdate,
    NotFound,
    PricingError,
)
from margin_engine.util.logging import get_logger, log_event

logger = get_logger("margin_engine.api")


def _status_for(exc: Exception) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, (AlreadyResolved, ConcurrentUpdate)):
        return 409
    return 400


def create_app(engine: PricingEngine, auth: ApiKeyAuth) -> FastAPI:
    app = FastAPI(title="Margin Engine")

    @app.exception_handler(PricingError)
    @app.exception_handler(ConcurrentUpdate)
    async def pricing_error_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=_status_for(exc),
            content={"error": exc.__class__.__name__, "detail": str(exc)},
        )

    def _targets(sku_ids: List[str]) -> List[str]:
        return sku_ids or [sku.id for sku in engine.ledger.get_all()]

    @app.get("/v1/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/skus", dependencies=[Depends(auth)])
    def list_skus(margin_status: Optional[MarginStatus] = None) -> List[Sku]:
        skus = sorted(engine.ledger.get_all(), key=lambda sku: sku.id)
        if margin_status is not None:
            skus = [sku for sku in skus if sku.margin_status == margin_status]
        return skus

    @app.get("/v1/skus/{sku_id}", dependencies=[Depends(auth)])
    def get_sku(sku_id: str) -> Sku:
        return engine.ledger.get_by_id(sku_id)

    @app.put("/v1/skus/{sku_id}/price", dependencies=[Depends(auth)])
    def update_sku_price(sku_id: str, request: PriceUpdateRequest) -> Sku:
        return engine.ledger.apply_price(sku_id, request.selling_price, request.base_price)

    @app.get("/v1/skus/{sku_id}/history", dependencies=[Depends(auth)])
    def get_sku_history(sku_id: str) -> List[PriceHistoryEntry]:
        return engine.ledger.history(sku_id)

    @app.post("/v1/previews", dependencies=[Depends(auth)])
    def preview_prices(request: PreviewRequest) -> List[PricePreview]:
        strategy = request.strategy.to_strategy()
        return [engine.preview(strategy, sku_id) for sku_id in request.sku_ids]

    @app.post("/v1/bulk-operations", dependencies=[Depends(auth)])
    def run_bulk_operation(request: BulkOperationRequest) -> BulkOperationResult:
        return engine.executor.execute(request.strategy.to_strategy(), _targets(request.sku_ids))

    @app.post("/v1/bulk-operations/proposals")
    def propose_bulk_operation(
        request: BulkProposalRequest,
        principal: str = Depends(auth),
    ) -> BulkOperationResult:
        return engine.executor.propose(
            request.strategy.to_strategy(),
            _targets(request.sku_ids),
            requested_by=principal,
            source=request.source,
            priority=request.priority or engine.config.approval.default_priority,
            reason=request.reason,
        )

    @app.get("/v1/margin-risks", dependencies=[Depends(auth)])
    def list_margin_risks(
        category: Optional[str] = None,
        region: Optional[str] = None,
        urgent_only: bool = False,
    ) -> List[MarginRiskView]:
        risks = engine.margin_risks(category=category, region=region, urgent_only=urgent_only)
        return [MarginRiskView(sku=risk.sku, urgent=risk.urgent) for risk in risks]

    @app.get("/v1/pending-updates", dependencies=[Depends(auth)])
    def list_pending_updates(
        source: Optional[UpdateSource] = None,
        priority: Optional[Priority] = None,
        requested_by: Optional[str] = None,
    ) -> List[PendingUpdate]:
        return engine.workflow.list(source=source, priority=priority, requested_by=requested_by)

    @app.post("/v1/pending-updates")
    def create_pending_update(
        request: PendingUpdateRequest,
        principal: str = Depends(auth),
    ) -> PendingUpdate:
        return engine.workflow.create(
            request.sku_id,
            request.new_price,
            source=request.source,
            requested_by=principal,
            priority=request.priority or engine.config.approval.default_priority,
            reason=request.reason,
        )

    @app.get("/v1/pending-updates/resolved", dependencies=[Depends(auth)])
    def list_resolved_updates() -> List[PendingUpdate]:
        return engine.workflow.resolved()

    @app.get("/v1/pending-updates/{update_id}", dependencies=[Depends(auth)])
    def get_pending_update(update_id: str) -> PendingUpdate:
        return engine.workflow.get(update_id)

    @app.post("/v1/pending-updates/{update_id}/approve")
    def approve_pending_update(update_id: str, principal: str = Depends(auth)) -> PendingUpdate:
        return engine.workflow.approve(update_id, approved_by=principal)

    @app.post("/v1/pending-updates/{update_id}/reject")
    def reject_pending_update(
        update_id: str,
        request: RejectRequest,
        principal: str = Depends(auth),
    ) -> PendingUpdate:
        return engine.workflow.reject(update_id, request.reason, rejected_by=principal)

    @app.get("/v1/price-rules", dependencies=[Depends(auth)])
    def list_price_rules(
        status: Optional[RuleStatus] = None,
        scope: Optional[RuleScope] = None,
        priority: Optional[Priority] = None,
        pricing_method: Optional[PricingMethod] = None,
    ) -> List[PriceRule]:
        return engine.registry.list(
            status=status, scope=scope, priority=priority, pricing_method=pricing_method
        )

    @app.post("/v1/price-rules", dependencies=[Depends(auth)])
    def create_price_rule(draft: PriceRuleDraft) -> PriceRule:
        return engine.registry.create(draft)

    @app.post("/v1/price-rules/{rule_id}/activate", dependencies=[Depends(auth)])
    def activate_price_rule(rule_id: str) -> PriceRule:
        return engine.registry.activate(rule_id)

    @app.post("/v1/price-rules/{rule_id}/expire", dependencies=[Depends(auth)])
    def expire_price_rule(rule_id: str) -> PriceRule:
        return engine.registry.expire(rule_id)

    return app


def engine_from_env() -> PricingEngine:
    config_path = os.getenv("ENGINE_CONFIG")
    config = load_engine_config(config_path) if config_path else EngineConfig()
    skus_table = os.getenv("SKUS_TABLE")
    pending_table = os.getenv("PENDING_UPDATES_TABLE")
    rules_table = os.getenv("PRICE_RULES_TABLE")
    log_event(
        logger,
        "engine_configured",
        skus_table=skus_table,
        pending_updates_table=pending_table,
        price_rules_table=rules_table,
    )
    return build_engine(
        config,
        sku_store=DynamoSkus(skus_table) if skus_table else None,
        pending_store=DynamoPendingUpdates(pending_table) if pending_table else None,
        rule_store=DynamoPriceRules(rules_table) if rules_table else None,
    )


app = create_app(engine_from_env(), ApiKeyAuth(parse_api_keys(os.getenv("API_KEYS", ""))))
