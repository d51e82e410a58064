from __future__ import annotations

import uuid
from typing import Mapping, Optional

from supplier_sync.engine.canonical.models import ExistingProduct, ImportResult, ImportStatus
from supplier_sync.engine.parsing.csv_parser import create_import_result
from supplier_sync.engine.suppliers.base import CatalogContent
from supplier_sync.engine.sync_engine import SyncEngine
from supplier_sync.util.logging import get_logger, log_event
from supplier_sync.util.metrics import CloudWatchMetrics

logger = get_logger(__name__)


def _failed_result(batch_id: str, message: str) -> ImportResult:
    return ImportResult.model_validate(
        {
            "batch_id": batch_id,
            "total_rows": 0,
            "new_products": 0,
            "updated_products": 0,
            "skipped_rows": 0,
            "errors": [{"row": 0, "message": message}],
            "status": "failed",
        }
    )


def run_catalog_import(
    *,
    content: CatalogContent,
    supplier_code: Optional[str],
    sync_engine: SyncEngine,
    existing_products: Optional[Mapping[str, ExistingProduct]] = None,
    overrides: Optional[Mapping[str, object]] = None,
    dry_run: bool = False,
    batch_id: Optional[str] = None,
    metrics: Optional[CloudWatchMetrics] = None,
) -> ImportResult:
    """Parse, validate and price-diff one catalog file.

    Never raises: decode or parse failures come back as a ``failed`` result
    carrying the exception text as a row 0 error. Persisting the rows is the
    caller's job.
    """
    batch_id = batch_id or str(uuid.uuid4())
    snapshot = existing_products or {}
    code = supplier_code or "UNKNOWN"

    try:
        rows = sync_engine.process_file(content, supplier_code, overrides)
        validated = sync_engine.validate_rows(rows, snapshot)
        price_changes = sync_engine.calculate_price_changes(
            [row for row in validated if row.is_valid],
            snapshot,
        )
    except Exception as exc:  # noqa: BLE001 - every failure is reported on the result
        log_event(logger, "catalog_import_failed", supplier_code=code, batch_id=batch_id, error=str(exc))
        result = _failed_result(batch_id, str(exc))
    else:
        status: ImportStatus
        if dry_run:
            status = "dry_run"
        elif validated and not any(row.is_valid for row in validated):
            status = "failed"
        else:
            status = "completed"
        result = create_import_result(batch_id, validated, price_changes, status)
        log_event(
            logger,
            "catalog_import_finished",
            supplier_code=code,
            batch_id=batch_id,
            status=status,
            total_rows=result.total_rows,
            new_products=result.new_products,
            updated_products=result.updated_products,
            skipped_rows=result.skipped_rows,
            price_changes=len(result.price_changes),
        )

    if metrics:
        metrics.record_import(supplier_code=code, status=result.status)
    return result
