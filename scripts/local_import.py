#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, Optional

from supplier_sync.app.config.loader import RuntimeSettings, load_sync_config
from supplier_sync.app.models.config import SyncConfig
from supplier_sync.app.services import build_services
from supplier_sync.engine.canonical.models import ExistingProduct
from supplier_sync.engine.run import run_catalog_import

LOCAL_RUNTIME = RuntimeSettings(
    price_cache_table=None,
    credentials_table=None,
    metrics_enabled=False,
    metrics_namespace="SupplierSync",
)


def load_existing_products(path: Optional[str]) -> Dict[str, ExistingProduct]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    return {sku: ExistingProduct.model_validate(entry) for sku, entry in data.items()}


def parse_mapping_overrides(values: list[str]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for value in values:
        if "=" not in value:
            raise ValueError("column mapping must be field=header")
        field, header = value.split("=", 1)
        mapping[field.strip()] = header.strip()
    return mapping


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Dry-run a supplier catalog file through the import engine")
    parser.add_argument("file", help="Catalog file to parse")
    parser.add_argument("--supplier", required=True, help="Supplier code, e.g. AO or LM")
    parser.add_argument("--config", help="Path to sync config YAML")
    parser.add_argument("--existing", help="JSON file of sku -> {id, cost_price, list_price}")
    parser.add_argument("--encoding", help="Override the supplier's file encoding")
    parser.add_argument("--delimiter", help="Override the supplier's delimiter")
    parser.add_argument(
        "--column",
        action="append",
        default=[],
        help="Column mapping override (field=header)",
    )
    parser.add_argument("--output", help="Write the result JSON here instead of stdout")
    args = parser.parse_args(argv)

    config = load_sync_config(args.config) if args.config else SyncConfig()
    services = build_services(config, LOCAL_RUNTIME)
    overrides: dict[str, object] = {"encoding": args.encoding, "delimiter": args.delimiter}
    columns = parse_mapping_overrides(args.column)
    if columns:
        overrides["column_mappings"] = columns

    result = run_catalog_import(
        content=Path(args.file).read_bytes(),
        supplier_code=args.supplier,
        sync_engine=services.sync_engine,
        existing_products=load_existing_products(args.existing),
        overrides=overrides,
        dry_run=True,
    )
    payload = result.model_dump_json(indent=2)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(payload + "\n", encoding="utf-8")
    else:
        print(payload)
    return 1 if result.status == "failed" else 0


if __name__ == "__main__":
    raise SystemExit(main())
