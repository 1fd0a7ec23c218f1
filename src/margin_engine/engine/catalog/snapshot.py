from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import IO, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from margin_engine.engine.ledger.models import Sku

REQUIRED_COLUMNS = ["id", "selling_price"]
SNAPSHOT_COLUMNS = [
    "id",
    "name",
    "category",
    "region",
    "cost",
    "base_price",
    "selling_price",
    "competitor_average",
    "margin",
    "margin_status",
]


@dataclass
class ParseError:
    row_number: int
    reason: str
    row_data: Dict[str, Any]


def _parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    try:
        return Decimal(stripped)
    except InvalidOperation as exc:
        raise ValueError(f"invalid decimal: {value}") from exc


def _text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def parse_sku_csv(
    handle: IO[str],
    *,
    column_map: Optional[Dict[str, str]] = None,
) -> Tuple[List[Sku], List[ParseError]]:
    """Read a catalog snapshot into SKUs, collecting bad rows instead of failing.

    ``margin`` is only read as a seed for SKUs without a cost; the ledger
    recomputes it on registration.
    """
    column_map = column_map or {}
    reader = csv.DictReader(handle)
    missing = []
    for field in REQUIRED_COLUMNS:
        mapped = column_map.get(field, field)
        if not reader.fieldnames or mapped not in reader.fieldnames:
            missing.append(mapped)
    if missing:
        raise ValueError(f"missing columns: {', '.join(missing)}")

    def column(row: Dict[str, str], field: str) -> Optional[str]:
        return row.get(column_map.get(field, field))

    skus: List[Sku] = []
    errors: List[ParseError] = []
    for row_number, row in enumerate(reader, start=2):
        try:
            margin = _parse_decimal(column(row, "margin"))
            sku = Sku(
                id=column(row, "id") or "",
                name=_text(column(row, "name")),
                category=_text(column(row, "category")),
                region=_text(column(row, "region")),
                cost=_parse_decimal(column(row, "cost")),
                base_price=_parse_decimal(column(row, "base_price")) or Decimal("0"),
                selling_price=_parse_decimal(column(row, "selling_price")) or Decimal("0"),
                competitor_average=_parse_decimal(column(row, "competitor_average")),
                margin=margin if margin is not None else Decimal("0"),
            )
            skus.append(sku)
        except (ValueError, ValidationError) as exc:
            errors.append(ParseError(row_number=row_number, reason=str(exc), row_data=dict(row)))
    return skus, errors


def load_sku_snapshot(
    path: str,
    *,
    column_map: Optional[Dict[str, str]] = None,
) -> Tuple[List[Sku], List[ParseError]]:
    with open(path, "r", newline="", encoding="utf-8") as handle:
        return parse_sku_csv(handle, column_map=column_map)


def _format_value(value: object) -> object:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return str(value.quantize(Decimal("0.01")))
    return getattr(value, "value", value)


def write_sku_csv(skus: Iterable[Sku], columns: Sequence[str] = SNAPSHOT_COLUMNS) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(columns), extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for sku in sorted(skus, key=lambda item: item.id):
        row = {name: _format_value(getattr(sku, name, None)) for name in columns}
        writer.writerow(row)
    return buffer.getvalue()
