import json
from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

from scripts.local_import import main as local_import_main
from supplier_sync.adapters.storage.s3 import S3CatalogStore
from supplier_sync.app.config.loader import RuntimeSettings, load_runtime_settings, load_sync_config
from supplier_sync.app.models.config import StorageConfig, SupplierConfig, SyncConfig
from supplier_sync.app.services import build_services, import_latest_upload
from supplier_sync.persistence.credentials import InMemoryCredentialStore
from supplier_sync.persistence.dynamo_credentials import DynamoCredentialStore
from supplier_sync.persistence.dynamo_price_cache import DynamoPriceCache
from supplier_sync.persistence.price_cache import InMemoryPriceCache

LOCAL = RuntimeSettings(
    price_cache_table=None,
    credentials_table=None,
    metrics_enabled=False,
    metrics_namespace="SupplierSync",
)

AO_EXPORT = (
    "Varenummer;Beskrivelse;Indkøbspris;Enhed\n"
    "AO-100;Stikkontakt;45,50;stk\n"
    "200;Kabelrør;12,00;m\n"
).encode("latin-1")

CONFIG_YAML = """
schema_version: 1
ao_empty_sku_threshold: 0.75
suppliers:
  - supplier_id: sup-ao
    code: ao
    import_overrides:
      skip_header_rows: 0
    ftp:
      remote_directory: /prislister
      file_pattern: prisliste*.csv
      encoding: latin-1
    storage:
      bucket: catalogs
      prefix: uploads/ao/
      file_pattern: "*.csv"
  - supplier_id: sup-lm
    code: LM
    api:
      base_url: https://api.lfrm.dk/v1/
      max_concurrency: 3
"""


class ListingClient:
    def __init__(self, contents) -> None:
        self.contents = contents

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self

    def paginate(self, Bucket, Prefix):
        return [{"Contents": self.contents[:2]}, {"Contents": self.contents[2:]}]


def test_load_sync_config(tmp_path) -> None:
    path = tmp_path / "sync.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")

    config = load_sync_config(path)

    assert config.ao_empty_sku_threshold == 0.75
    ao = config.supplier("sup-ao")
    assert ao.code == "AO"
    assert ao.ftp.encoding == "latin-1"
    assert ao.storage.prefix == "uploads/ao/"
    lm = config.supplier("sup-lm")
    assert lm.api.base_url == "https://api.lfrm.dk/v1"
    assert lm.api.max_concurrency == 3
    assert config.supplier("missing") is None


def test_invalid_schema_version(tmp_path) -> None:
    path = tmp_path / "sync.yaml"
    path.write_text("schema_version: 2\nsuppliers: []\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported schema_version"):
        load_sync_config(path)


def test_load_runtime_settings(monkeypatch) -> None:
    monkeypatch.setenv("PRICE_CACHE_TABLE", "price-cache")
    monkeypatch.setenv("CLOUDWATCH_METRICS_NAMESPACE", "Custom")

    settings = load_runtime_settings()

    assert settings.price_cache_table == "price-cache"
    assert settings.credentials_table is None
    assert settings.metrics_enabled is False
    assert settings.metrics_namespace == "Custom"


def test_build_services_uses_in_memory_stores_locally() -> None:
    config = SyncConfig.model_validate(
        {"ao_empty_sku_threshold": 0.9, "suppliers": [{"supplier_id": "sup-lm", "code": "lm", "api": {"base_url": "https://x"}}]}
    )

    services = build_services(config, LOCAL)

    assert isinstance(services.credential_store, InMemoryCredentialStore)
    assert isinstance(services.price_cache, InMemoryPriceCache)
    assert services.metrics.enabled is False
    assert services.registry.get("AO").empty_sku_threshold == 0.9
    assert services.api_clients.get_client("sup-lm", "LM").settings.base_url == "https://x"


def test_build_services_uses_dynamo_when_tables_configured() -> None:
    runtime = RuntimeSettings(
        price_cache_table="price-cache",
        credentials_table="credentials",
        metrics_enabled=False,
        metrics_namespace="SupplierSync",
    )

    services = build_services(SyncConfig(), runtime)

    assert isinstance(services.credential_store, DynamoCredentialStore)
    assert isinstance(services.price_cache, DynamoPriceCache)


def test_list_latest_picks_newest_matching_key() -> None:
    contents = [
        {"Key": "uploads/ao/prisliste-1.csv", "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc)},
        {"Key": "uploads/ao/", "LastModified": datetime(2024, 6, 1, tzinfo=timezone.utc)},
        {"Key": "uploads/ao/PRISLISTE-3.CSV", "LastModified": datetime(2024, 3, 1, tzinfo=timezone.utc), "Size": 10},
        {"Key": "uploads/ao/noter.txt", "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc)},
    ]
    store = S3CatalogStore("catalogs", client=ListingClient(contents))

    latest = store.list_latest("uploads/ao/", "prisliste*.csv")

    assert latest.key == "uploads/ao/PRISLISTE-3.CSV"
    assert latest.file_name == "PRISLISTE-3.CSV"
    assert latest.size == 10
    assert store.list_latest("uploads/ao/", "*.xml") is None


@mock_aws
def test_s3_catalog_store_round_trip_and_archive() -> None:
    boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="catalogs")
    store = S3CatalogStore("catalogs")
    store.upload_bytes("uploads/ao/prisliste.csv", AO_EXPORT)

    latest = store.list_latest("uploads/ao/")
    archive_key = store.archive(latest, "batch-1")

    assert latest.key == "uploads/ao/prisliste.csv"
    assert archive_key == "processed/batch-1/prisliste.csv"
    assert store.download_bytes(archive_key) == AO_EXPORT
    assert store.list_latest("uploads/lm/") is None


@mock_aws
def test_import_latest_upload_archives_completed_import() -> None:
    boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="catalogs")
    store = S3CatalogStore("catalogs")
    store.upload_bytes("uploads/ao/prisliste.csv", AO_EXPORT)
    supplier = SupplierConfig(
        supplier_id="sup-ao",
        code="AO",
        storage=StorageConfig(bucket="catalogs", prefix="uploads/ao/", file_pattern="*.csv"),
    )
    services = build_services(SyncConfig(suppliers=[supplier]), LOCAL)

    result = import_latest_upload(services, supplier, store=store)

    assert result.status == "completed"
    assert result.new_products == 2
    assert store.download_bytes(f"processed/{result.batch_id}/prisliste.csv") == AO_EXPORT


@mock_aws
def test_import_latest_upload_dry_run_is_not_archived() -> None:
    boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="catalogs")
    store = S3CatalogStore("catalogs")
    store.upload_bytes("uploads/ao/prisliste.csv", AO_EXPORT)
    supplier = SupplierConfig(
        supplier_id="sup-ao",
        code="AO",
        storage=StorageConfig(bucket="catalogs", prefix="uploads/ao/"),
    )
    services = build_services(SyncConfig(suppliers=[supplier]), LOCAL)

    result = import_latest_upload(services, supplier, store=store, dry_run=True)

    assert result.status == "dry_run"
    assert store.list_latest("processed/") is None


@mock_aws
def test_import_latest_upload_without_file() -> None:
    boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="catalogs")
    supplier = SupplierConfig(
        supplier_id="sup-ao",
        code="AO",
        storage=StorageConfig(bucket="catalogs", prefix="uploads/ao/"),
    )
    services = build_services(SyncConfig(suppliers=[supplier]), LOCAL)

    assert import_latest_upload(services, supplier, store=S3CatalogStore("catalogs")) is None


def test_import_latest_upload_requires_storage() -> None:
    supplier = SupplierConfig(supplier_id="sup-lm", code="LM")
    services = build_services(SyncConfig(suppliers=[supplier]), LOCAL)
    with pytest.raises(ValueError, match="no storage configured"):
        import_latest_upload(services, supplier)


def test_local_import_writes_dry_run_result(tmp_path) -> None:
    catalog = tmp_path / "prisliste.csv"
    catalog.write_bytes(AO_EXPORT)
    existing = tmp_path / "existing.json"
    existing.write_text(json.dumps({"100": {"id": "p-100", "cost_price": "40.00"}}), encoding="utf-8")
    output = tmp_path / "out" / "result.json"

    exit_code = local_import_main(
        [str(catalog), "--supplier", "ao", "--existing", str(existing), "--output", str(output)]
    )

    payload = json.loads(output.read_text(encoding="utf-8"))
    assert exit_code == 0
    assert payload["status"] == "dry_run"
    assert payload["total_rows"] == 2
    assert payload["updated_products"] == 1
    assert payload["price_changes"][0]["supplier_sku"] == "100"


def test_local_import_column_override(tmp_path, capsys) -> None:
    catalog = tmp_path / "custom.csv"
    catalog.write_text("Nr,Tekst\nX1,Kabel\n", encoding="utf-8")

    exit_code = local_import_main(
        [
            str(catalog),
            "--supplier",
            "XX",
            "--delimiter",
            ",",
            "--column",
            "sku=Nr",
            "--column",
            "name=Tekst",
        ]
    )

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["new_products"] == 1


def test_local_import_rejects_malformed_column_override(tmp_path) -> None:
    catalog = tmp_path / "custom.csv"
    catalog.write_text("Nr\n", encoding="utf-8")
    with pytest.raises(ValueError, match="field=header"):
        local_import_main([str(catalog), "--supplier", "AO", "--column", "sku"])
