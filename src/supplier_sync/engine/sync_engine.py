from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from supplier_sync.engine.canonical.models import (
    ColumnMappings,
    ExistingProduct,
    ImportConfig,
    ImportPreview,
    ImportRowError,
    ParsedRow,
    PriceChange,
    SupplierAdapterInfo,
    ValidatedRow,
)
from supplier_sync.engine.parsing.csv_parser import (
    ImportEngine,
    calculate_price_change,
    validate_rows,
)
from supplier_sync.engine.parsing.locale import FALLBACK_ENCODING, decode_bytes
from supplier_sync.engine.suppliers.base import CatalogContent, SupplierAdapter
from supplier_sync.engine.suppliers.registry import AdapterRegistry

PREVIEW_SAMPLE_SIZE = 10


class SyncEngine:
    """Routes catalog files to the registered supplier adapter.

    Suppliers without an adapter are parsed by a plain ``ImportEngine`` using
    the caller's column mappings. The engine holds no state beyond the registry.
    """

    def __init__(self, registry: AdapterRegistry) -> None:
        self.registry = registry

    def get_adapter(self, supplier_code: Optional[str]) -> Optional[SupplierAdapter]:
        if not supplier_code:
            return None
        return self.registry.get(supplier_code)

    def build_config(
        self,
        supplier_code: Optional[str],
        overrides: Optional[Mapping[str, object]] = None,
    ) -> ImportConfig:
        adapter = self.get_adapter(supplier_code)
        if adapter:
            return adapter.build_config(overrides)
        return ImportConfig(encoding=FALLBACK_ENCODING).merged(dict(overrides) if overrides else None)

    def process_file(
        self,
        content: CatalogContent,
        supplier_code: Optional[str],
        overrides: Optional[Mapping[str, object]] = None,
    ) -> List[ParsedRow]:
        adapter = self.get_adapter(supplier_code)
        if adapter:
            return adapter.parse_file(content, overrides)
        config = self.build_config(None, overrides)
        if isinstance(content, bytes):
            content = decode_bytes(content, config.encoding)
        return ImportEngine(config).parse(content)

    def detect_mappings(self, headers: List[str], supplier_code: Optional[str]) -> ColumnMappings:
        adapter = self.get_adapter(supplier_code)
        if not adapter:
            return {}
        return adapter.detect_mappings(headers)

    def validate_rows(
        self,
        rows: Iterable[ParsedRow],
        existing_products: Mapping[str, ExistingProduct],
    ) -> List[ValidatedRow]:
        return validate_rows(rows, existing_products)

    def calculate_price_changes(
        self,
        rows: Iterable[ValidatedRow],
        existing_products: Mapping[str, ExistingProduct],
    ) -> List[PriceChange]:
        changes: List[PriceChange] = []
        for row in rows:
            new_cost = row.parsed.cost_price
            if not row.is_update or new_cost is None:
                continue
            existing = existing_products.get(row.parsed.sku)
            if existing is None or existing.cost_price is None or existing.cost_price == new_cost:
                continue
            changes.append(
                PriceChange(
                    supplier_product_id=row.existing_product_id or existing.id,
                    supplier_sku=row.parsed.sku,
                    product_name=row.parsed.name,
                    old_cost_price=existing.cost_price,
                    new_cost_price=new_cost,
                    old_list_price=existing.list_price,
                    new_list_price=row.parsed.list_price,
                    change_percentage=calculate_price_change(existing.cost_price, new_cost),
                )
            )
        return changes

    def preview(
        self,
        content: CatalogContent,
        supplier_code: Optional[str],
        existing_products: Mapping[str, ExistingProduct],
        overrides: Optional[Mapping[str, object]] = None,
        *,
        sample_size: int = PREVIEW_SAMPLE_SIZE,
    ) -> ImportPreview:
        config = self.build_config(supplier_code, overrides)
        if isinstance(content, bytes):
            text = decode_bytes(content, config.encoding)
        else:
            text = content
        headers = ImportEngine(config).get_headers(text)
        rows = self.validate_rows(self.process_file(content, supplier_code, overrides), existing_products)

        valid_rows = [row for row in rows if row.is_valid]
        warnings: List[str] = []
        for row in rows:
            for warning in row.warnings:
                if warning not in warnings:
                    warnings.append(warning)
        return ImportPreview(
            total_rows=len(rows),
            valid_rows=len(valid_rows),
            invalid_rows=len(rows) - len(valid_rows),
            new_products=sum(1 for row in valid_rows if not row.is_update),
            updated_products=sum(1 for row in valid_rows if row.is_update),
            skipped_rows=len(rows) - len(valid_rows),
            sample_rows=rows[:sample_size],
            errors=[
                ImportRowError(row=row.row_number, message=message)
                for row in rows
                for message in row.errors
            ],
            warnings=warnings,
            column_headers=headers,
            detected_mappings=self.detect_mappings(headers, supplier_code),
        )

    def get_adapter_info(self, supplier_code: Optional[str]) -> Optional[Dict[str, object]]:
        adapter = self.get_adapter(supplier_code)
        if not adapter:
            return None
        return {
            "info": adapter.info,
            "supports_api": adapter.supports_api_sync(),
            "supports_ftp": adapter.supports_ftp_sync(),
            "column_mappings": adapter.get_column_mappings(),
        }

    def get_registered_adapters(self) -> List[str]:
        return self.registry.codes()

    def get_all_adapter_info(self) -> List[SupplierAdapterInfo]:
        return self.registry.get_all_info()
