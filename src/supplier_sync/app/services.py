from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from supplier_sync.adapters.ftp.client import FtpCatalogClient, FtpFactory, default_ftp_factory
from supplier_sync.adapters.storage.s3 import S3CatalogStore
from supplier_sync.adapters.supplier_api.factory import SupplierApiClientFactory
from supplier_sync.app.config.loader import RuntimeSettings, load_runtime_settings
from supplier_sync.app.models.config import SupplierConfig, SyncConfig
from supplier_sync.engine.canonical.models import ExistingProduct, ImportResult
from supplier_sync.engine.ftp_sync import FtpSyncResult, build_ftp_credentials, execute_ftp_sync
from supplier_sync.engine.run import run_catalog_import
from supplier_sync.engine.suppliers.registry import AdapterRegistry, build_default_registry
from supplier_sync.engine.sync_engine import SyncEngine
from supplier_sync.persistence.credentials import CredentialStore, InMemoryCredentialStore
from supplier_sync.persistence.dynamo_credentials import DynamoCredentialStore
from supplier_sync.persistence.dynamo_price_cache import DynamoPriceCache
from supplier_sync.persistence.price_cache import InMemoryPriceCache, PriceCache
from supplier_sync.util.errors import ConfigurationError
from supplier_sync.util.logging import get_logger, log_event
from supplier_sync.util.metrics import CloudWatchMetrics

logger = get_logger(__name__)


@dataclass
class SyncServices:
    config: SyncConfig
    registry: AdapterRegistry
    sync_engine: SyncEngine
    credential_store: CredentialStore
    price_cache: PriceCache
    api_clients: SupplierApiClientFactory
    metrics: CloudWatchMetrics


def build_services(
    config: SyncConfig,
    runtime: Optional[RuntimeSettings] = None,
) -> SyncServices:
    """Wire the engine and its collaborators once per process.

    Without table names the stores fall back to in-memory implementations,
    which is what local runs and tests use.
    """
    runtime = runtime or load_runtime_settings()
    registry = build_default_registry(ao_empty_sku_threshold=config.ao_empty_sku_threshold)
    credential_store: CredentialStore
    if runtime.credentials_table:
        credential_store = DynamoCredentialStore(runtime.credentials_table)
    else:
        credential_store = InMemoryCredentialStore()
    price_cache: PriceCache
    if runtime.price_cache_table:
        price_cache = DynamoPriceCache(runtime.price_cache_table)
    else:
        price_cache = InMemoryPriceCache()
    metrics = CloudWatchMetrics(namespace=runtime.metrics_namespace, enabled=runtime.metrics_enabled)
    api_settings = {entry.code: entry.api for entry in config.suppliers if entry.api}
    return SyncServices(
        config=config,
        registry=registry,
        sync_engine=SyncEngine(registry),
        credential_store=credential_store,
        price_cache=price_cache,
        api_clients=SupplierApiClientFactory(
            credential_store=credential_store,
            price_cache=price_cache,
            settings=api_settings,
            metrics=metrics,
        ),
        metrics=metrics,
    )


def import_latest_upload(
    services: SyncServices,
    supplier: SupplierConfig,
    *,
    store: Optional[S3CatalogStore] = None,
    existing_products: Optional[Mapping[str, ExistingProduct]] = None,
    dry_run: bool = False,
) -> Optional[ImportResult]:
    """Import the newest uploaded catalog for ``supplier``; ``None`` when nothing was uploaded.

    Completed imports are archived under ``processed/<batch_id>/``.
    """
    if supplier.storage is None:
        raise ValueError(f"supplier {supplier.supplier_id} has no storage configured")
    store = store or S3CatalogStore(supplier.storage.bucket)
    location = store.list_latest(supplier.storage.prefix, supplier.storage.file_pattern)
    if location is None:
        log_event(logger, "catalog_upload_missing", supplier_id=supplier.supplier_id, prefix=supplier.storage.prefix)
        return None
    result = run_catalog_import(
        content=store.download_bytes(location.key),
        supplier_code=supplier.code,
        sync_engine=services.sync_engine,
        existing_products=existing_products,
        overrides=supplier.import_overrides,
        dry_run=dry_run,
        metrics=services.metrics,
    )
    if result.status == "completed":
        archive_key = store.archive(location, result.batch_id)
        log_event(logger, "catalog_upload_archived", supplier_id=supplier.supplier_id, key=archive_key)
    return result


def sync_latest_ftp_file(
    services: SyncServices,
    supplier: SupplierConfig,
    *,
    ftp_factory: FtpFactory = default_ftp_factory,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[FtpSyncResult]:
    """Download and parse the newest catalog on ``supplier``'s FTP server.

    Uses the stored ``ftp`` credentials, the supplier's ``ftp`` download
    options on top of the per-supplier defaults, and its import overrides.
    """
    stored = services.credential_store.load_decrypted_credentials(supplier.supplier_id, "ftp")
    if stored is None:
        raise ConfigurationError(f"no active FTP credentials for supplier {supplier.supplier_id}")
    credentials = build_ftp_credentials(stored, supplier.code)
    client = FtpCatalogClient(
        credentials,
        ftp_factory=ftp_factory,
        sleep=sleep,
        metrics=services.metrics,
        supplier_code=supplier.code,
    )
    return execute_ftp_sync(
        credentials,
        supplier.code,
        sync_engine=services.sync_engine,
        overrides=supplier.ftp.model_dump(exclude_unset=True) if supplier.ftp else None,
        import_overrides=supplier.import_overrides,
        client=client,
    )
