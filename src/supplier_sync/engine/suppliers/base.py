from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Union

from supplier_sync.engine.canonical.models import (
    ColumnMappings,
    ImportConfig,
    ParsedRow,
    SupplierAdapterInfo,
)
from supplier_sync.engine.parsing.csv_parser import (
    ImportEngine,
    detect_column_mappings,
    validate_product,
)
from supplier_sync.engine.parsing.locale import decode_bytes, parse_danish_number

UNCATEGORIZED = "Andet"

CatalogContent = Union[str, bytes]


class SupplierAdapter(ABC):
    """Per-supplier translation of exported catalog files into ``ParsedRow`` objects.

    Subclasses provide the descriptor, known column headers, category table
    and SKU normalization; everything else has a generic default.
    """

    info: SupplierAdapterInfo

    @abstractmethod
    def get_column_mappings(self) -> ColumnMappings:
        """Known header name per logical field for this supplier's export."""

    @abstractmethod
    def get_category_map(self) -> Dict[str, str]:
        """Supplier category label -> internal category."""

    @abstractmethod
    def normalize_sku(self, raw_sku: str) -> str:
        """Strip supplier-specific decoration from an article number."""

    def get_default_config(self) -> ImportConfig:
        return ImportConfig(
            format=self.info.supported_formats[0] if self.info.supported_formats else "csv",
            delimiter=self.info.default_delimiter,
            encoding=self.info.default_encoding,
            column_mappings=self.get_column_mappings(),
            skip_header_rows=0,
            has_header=True,
        )

    def build_config(self, overrides: Optional[Mapping[str, object]] = None) -> ImportConfig:
        return self.get_default_config().merged(dict(overrides) if overrides else None)

    def map_category(self, category: Optional[str], sub_category: Optional[str] = None) -> str:
        if not category:
            return UNCATEGORIZED
        category_map = self.get_category_map()
        if category in category_map:
            return category_map[category]
        lowered = category.lower()
        for key, value in category_map.items():
            if key.lower() in lowered:
                return value
        if sub_category:
            lowered_sub = sub_category.lower()
            for key, value in category_map.items():
                if key.lower() in lowered_sub:
                    return value
        return category

    def parse_price(self, value: str) -> Optional[Decimal]:
        return parse_danish_number(value)

    def transform_row(self, row: ParsedRow) -> ParsedRow:
        parsed = row.parsed
        update: Dict[str, object] = {"sku": self.normalize_sku(parsed.sku)}
        if parsed.category:
            update["category"] = self.map_category(parsed.category, parsed.sub_category)
        return row.model_copy(update={"parsed": parsed.model_copy(update=update)})

    def validate_row(self, row: ParsedRow) -> List[str]:
        return validate_product(row.parsed)

    def decode(self, content: CatalogContent, config: ImportConfig) -> str:
        if isinstance(content, bytes):
            return decode_bytes(content, config.encoding)
        return content

    def parse_file(
        self,
        content: CatalogContent,
        overrides: Optional[Mapping[str, object]] = None,
    ) -> List[ParsedRow]:
        config = self.build_config(overrides)
        rows = ImportEngine(config).parse(self.decode(content, config))
        return [self._finalize(self.transform_row(row)) for row in rows]

    def detect_mappings(self, headers: List[str]) -> ColumnMappings:
        return detect_column_mappings(headers, self.get_column_mappings())

    def supports_api_sync(self) -> bool:
        return False

    def supports_ftp_sync(self) -> bool:
        return False

    def validate_credentials(self, credentials: Mapping[str, object]) -> bool:
        return bool(credentials.get("username") and credentials.get("password"))

    def _finalize(self, row: ParsedRow) -> ParsedRow:
        # Normalization can change or empty a SKU, so rules are re-run on the transformed row.
        errors = self.validate_row(row)
        if errors == row.errors:
            return row
        return row.model_copy(update={"errors": errors})
