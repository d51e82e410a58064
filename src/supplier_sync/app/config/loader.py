from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from supplier_sync.app.models.config import SyncConfig

SUPPORTED_SCHEMA_VERSIONS = {1}


def load_sync_config(path: str | Path) -> SyncConfig:
    data: Dict[str, Any]
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    config = SyncConfig.model_validate(data)
    if config.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"Unsupported schema_version {config.schema_version}")
    return config


@dataclass(frozen=True)
class RuntimeSettings:
    price_cache_table: Optional[str]
    credentials_table: Optional[str]
    metrics_enabled: bool
    metrics_namespace: str


def load_runtime_settings() -> RuntimeSettings:
    return RuntimeSettings(
        price_cache_table=os.getenv("PRICE_CACHE_TABLE") or None,
        credentials_table=os.getenv("CREDENTIALS_TABLE") or None,
        metrics_enabled=os.getenv("CLOUDWATCH_METRICS_ENABLED", "false").lower() == "true",
        metrics_namespace=os.getenv("CLOUDWATCH_METRICS_NAMESPACE", "SupplierSync"),
    )
