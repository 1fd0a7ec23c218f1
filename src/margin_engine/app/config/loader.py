from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml

from margin_engine.app.models.config import EngineConfig

SUPPORTED_SCHEMA_VERSIONS = {1}


def load_engine_config(path: str | Path) -> EngineConfig:
    data: Dict[str, Any]
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    config = EngineConfig.model_validate(data)
    if config.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"Unsupported schema_version {config.schema_version}")
    return config
