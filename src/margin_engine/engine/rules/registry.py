from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import ValidationError

from margin_engine.engine.rules.models import (
    PriceRule,
    PriceRuleDraft,
    PricingMethod,
    RuleScope,
    RuleStatus,
)
from margin_engine.engine.workflow.models import PRIORITY_RANK, Priority
from margin_engine.persistence.memory import InMemoryPriceRules
from margin_engine.util.errors import InvalidRule, NotFound
from margin_engine.util.logging import get_logger, log_event


class PriceRuleStore(Protocol):
    def put(self, rule: PriceRule) -> None: ...

    def get(self, rule_id: str) -> Optional[PriceRule]: ...

    def list(self) -> List[PriceRule]: ...


def _draft_fields(draft: PriceRuleDraft) -> Dict[str, Any]:
    return draft.model_dump(include=set(PriceRuleDraft.model_fields))


def validate_draft(draft: PriceRuleDraft) -> None:
    problems: List[str] = []
    if not draft.name or not draft.name.strip():
        problems.append("name is required")
    for field in ("margin_min", "margin_max"):
        value = getattr(draft, field)
        if value is not None and not value.is_finite():
            problems.append(f"{field} must be finite")
    if (
        not problems
        and draft.margin_min is not None
        and draft.margin_max is not None
        and draft.margin_min > draft.margin_max
    ):
        problems.append(f"margin_min {draft.margin_min} exceeds margin_max {draft.margin_max}")
    if draft.end_date is not None and draft.start_date > draft.end_date:
        problems.append(f"start_date {draft.start_date} is after end_date {draft.end_date}")
    if problems:
        raise InvalidRule("; ".join(problems))


class PriceRuleRegistry:
    """Storage and shape validation for price rules.

    Rules are evaluated by an external scheduler; the registry never prices
    anything. Rules are never deleted, and once a rule leaves ``draft`` only
    its status may change.
    """

    def __init__(self, store: PriceRuleStore | None = None) -> None:
        self.store = store if store is not None else InMemoryPriceRules()
        self.logger = get_logger(self.__class__.__name__)

    def create(self, rule: Union[PriceRuleDraft, Dict[str, Any]]) -> PriceRule:
        draft = self._coerce_draft(rule)
        validate_draft(draft)
        created = PriceRule(id=str(uuid.uuid4()), **_draft_fields(draft))
        self.store.put(created)
        log_event(self.logger, "price_rule_created", rule_id=created.id, name=created.name)
        return created

    def revise(self, rule_id: str, rule: Union[PriceRuleDraft, Dict[str, Any]]) -> PriceRule:
        current = self.get(rule_id)
        if current.status != RuleStatus.DRAFT:
            raise InvalidRule(f"rule {rule_id} is {current.status.value} and can no longer be edited")
        draft = self._coerce_draft(rule)
        validate_draft(draft)
        revised = current.model_copy(update=_draft_fields(draft))
        self.store.put(revised)
        log_event(self.logger, "price_rule_revised", rule_id=rule_id)
        return revised

    def get(self, rule_id: str) -> PriceRule:
        rule = self.store.get(rule_id)
        if rule is None:
            raise NotFound("price rule", rule_id)
        return rule

    def list(
        self,
        *,
        status: Optional[RuleStatus] = None,
        scope: Optional[RuleScope] = None,
        priority: Optional[Priority] = None,
        pricing_method: Optional[PricingMethod] = None,
    ) -> List[PriceRule]:
        rules = [
            rule
            for rule in self.store.list()
            if (status is None or rule.status == status)
            and (scope is None or rule.scope == scope)
            and (priority is None or rule.priority == priority)
            and (pricing_method is None or rule.pricing_method == pricing_method)
        ]
        return sorted(rules, key=lambda rule: (PRIORITY_RANK[rule.priority], rule.created_at, rule.id))

    def activate(self, rule_id: str) -> PriceRule:
        return self._transition(rule_id, {RuleStatus.DRAFT}, RuleStatus.ACTIVE)

    def expire(self, rule_id: str) -> PriceRule:
        return self._transition(rule_id, {RuleStatus.DRAFT, RuleStatus.ACTIVE}, RuleStatus.EXPIRED)

    def expire_due(self, today: date) -> List[PriceRule]:
        due = [
            rule
            for rule in self.store.list()
            if rule.status == RuleStatus.ACTIVE and rule.end_date is not None and rule.end_date < today
        ]
        return [self.expire(rule.id) for rule in due]

    def _transition(self, rule_id: str, allowed: set, target: RuleStatus) -> PriceRule:
        current = self.get(rule_id)
        if current.status not in allowed:
            raise InvalidRule(
                f"rule {rule_id} cannot move from {current.status.value} to {target.value}"
            )
        updated = current.model_copy(update={"status": target})
        self.store.put(updated)
        log_event(
            self.logger,
            "price_rule_status_changed",
            rule_id=rule_id,
            from_status=current.status.value,
            to_status=target.value,
        )
        return updated

    @staticmethod
    def _coerce_draft(rule: Union[PriceRuleDraft, Dict[str, Any]]) -> PriceRuleDraft:
        if isinstance(rule, PriceRuleDraft):
            return rule
        try:
            return PriceRuleDraft.model_validate(rule)
        except ValidationError as exc:
            raise InvalidRule(str(exc)) from exc
