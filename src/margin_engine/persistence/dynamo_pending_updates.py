from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from margin_engine.engine.workflow.models import PendingUpdate, UpdateStatus
from margin_engine.persistence.dynamo_skus import is_conditional_failure, scan_all


def _attribute(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


class DynamoPendingUpdates:
    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)

    def create(self, update: PendingUpdate) -> None:
        self.table.put_item(
            Item=update.model_dump(mode="json"),
            ConditionExpression="attribute_not_exists(#id)",
            ExpressionAttributeNames={"#id": "id"},
        )

    def get(self, update_id: str) -> Optional[PendingUpdate]:
        response = self.table.get_item(Key={"id": update_id})
        item = response.get("Item")
        if not item:
            return None
        return PendingUpdate.model_validate(item)

    def list(self, status: Optional[UpdateStatus] = None) -> List[PendingUpdate]:
        kwargs: Dict[str, Any] = {}
        if status is not None:
            kwargs["FilterExpression"] = Attr("status").eq(status.value)
        return [PendingUpdate.model_validate(item) for item in scan_all(self.table, **kwargs)]

    def transition(
        self,
        update_id: str,
        *,
        expected: UpdateStatus,
        status: UpdateStatus,
        **fields: Any,
    ) -> Optional[PendingUpdate]:
        expression = ["#status = :status"]
        names = {"#status": "status"}
        values: Dict[str, Any] = {":status": status.value, ":expected": expected.value}
        for index, (name, value) in enumerate(sorted(fields.items())):
            names[f"#f{index}"] = name
            values[f":f{index}"] = _attribute(value)
            expression.append(f"#f{index} = :f{index}")
        try:
            response = self.table.update_item(
                Key={"id": update_id},
                UpdateExpression="SET " + ", ".join(expression),
                ConditionExpression="#status = :expected",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if is_conditional_failure(exc):
                return None
            raise
        return PendingUpdate.model_validate(response["Attributes"])
