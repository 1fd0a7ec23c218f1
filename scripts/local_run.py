#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from decimal import Decimal
from pathlib import Path

from margin_engine.app.config.loader import load_engine_config
from margin_engine.app.models.config import EngineConfig
from margin_engine.engine.catalog.snapshot import load_sku_snapshot, write_sku_csv
from margin_engine.engine.pricing.strategies import (
    AdjustmentUnit,
    CompetitorAlignedAdjustment,
    CompetitorMode,
    Direction,
    FlatAdjustment,
    PriceAdjustmentStrategy,
    TargetMarginAdjustment,
)
from margin_engine.engine.service import build_engine


def build_strategy(args: argparse.Namespace) -> PriceAdjustmentStrategy:
    if args.strategy == "flat":
        return FlatAdjustment(
            value=Decimal(args.value),
            direction=Direction(args.direction),
            unit=AdjustmentUnit(args.unit),
        )
    if args.strategy == "target_margin":
        return TargetMarginAdjustment(target_margin_percent=Decimal(args.value))
    return CompetitorAlignedAdjustment(
        mode=CompetitorMode(args.mode),
        offset_percent=Decimal(args.value or "0"),
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Reprice a SKU snapshot with one bulk strategy")
    parser.add_argument("--config", help="Path to engine config YAML")
    parser.add_argument("--snapshot", required=True, help="SKU snapshot CSV")
    parser.add_argument(
        "--strategy",
        choices=["flat", "target_margin", "competitor_aligned"],
        required=True,
    )
    parser.add_argument("--value", help="Adjustment value, target margin or competitor offset")
    parser.add_argument("--direction", default="increase", choices=["increase", "decrease"])
    parser.add_argument("--unit", default="percent", choices=["percent", "amount"])
    parser.add_argument("--mode", default="match", choices=["match", "beat", "premium"])
    parser.add_argument("--output", default="outputs/repriced_skus.csv")
    args = parser.parse_args()

    if args.strategy != "competitor_aligned" and args.value is None:
        raise ValueError("--value is required for flat and target_margin strategies")

    config = load_engine_config(args.config) if args.config else EngineConfig()
    engine = build_engine(config)
    skus, errors = load_sku_snapshot(args.snapshot, column_map=config.snapshot.column_map)
    for sku in skus:
        engine.ledger.register(sku)

    result = engine.executor.execute(build_strategy(args), skus)

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(write_sku_csv(engine.ledger.get_all()), encoding="utf-8")
    print(
        json.dumps(
            {
                "parse_errors": [{"row": error.row_number, "reason": error.reason} for error in errors],
                "result": result.model_dump(),
                "output": str(output),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
