from __future__ import annotations

from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from margin_engine.engine.ledger.models import Sku


def is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def scan_all(table: Any, **kwargs: Any) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    response = table.scan(**kwargs)
    items.extend(response.get("Items", []))
    while "LastEvaluatedKey" in response:
        response = table.scan(ExclusiveStartKey=response["LastEvaluatedKey"], **kwargs)
        items.extend(response.get("Items", []))
    return items


def _to_sku(item: Dict[str, Any]) -> Sku:
    item = dict(item)
    item["version"] = int(item.get("version", 0))
    return Sku.model_validate(item)


class DynamoSkus:
    """SKU records keyed by ``id`` with optimistic writes on ``version``."""

    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)

    def get(self, sku_id: str) -> Optional[Sku]:
        response = self.table.get_item(Key={"id": sku_id})
        item = response.get("Item")
        if not item:
            return None
        return _to_sku(item)

    def list(self) -> List[Sku]:
        return [_to_sku(item) for item in scan_all(self.table)]

    def compare_and_set(self, sku: Sku, expected_version: Optional[int]) -> bool:
        item = sku.model_dump(mode="json")
        try:
            if expected_version is None:
                self.table.put_item(
                    Item=item,
                    ConditionExpression="attribute_not_exists(#id)",
                    ExpressionAttributeNames={"#id": "id"},
                )
            else:
                self.table.put_item(
                    Item=item,
                    ConditionExpression="#version = :expected",
                    ExpressionAttributeNames={"#version": "version"},
                    ExpressionAttributeValues={":expected": expected_version},
                )
        except ClientError as exc:
            if is_conditional_failure(exc):
                return False
            raise
        return True
