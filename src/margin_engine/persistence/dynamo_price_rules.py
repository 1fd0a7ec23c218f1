from __future__ import annotations

from typing import List, Optional

import boto3

from margin_engine.engine.rules.models import PriceRule
from margin_engine.persistence.dynamo_skus import scan_all


class DynamoPriceRules:
    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)

    def put(self, rule: PriceRule) -> None:
        self.table.put_item(Item=rule.model_dump(mode="json"))

    def get(self, rule_id: str) -> Optional[PriceRule]:
        response = self.table.get_item(Key={"id": rule_id})
        item = response.get("Item")
        if not item:
            return None
        return PriceRule.model_validate(item)

    def list(self) -> List[PriceRule]:
        return [PriceRule.model_validate(item) for item in scan_all(self.table)]
