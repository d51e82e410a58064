from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

ImportFormat = Literal["csv", "xml", "api"]
ImportStatus = Literal["completed", "failed", "dry_run"]

# Logical field -> header name (as shipped by adapters) or column index.
ColumnMappings = Dict[str, Union[int, str]]
ResolvedMappings = Dict[str, int]

MAPPABLE_FIELDS = (
    "sku",
    "name",
    "cost_price",
    "list_price",
    "gross_price",
    "discount_pct",
    "unit",
    "category",
    "sub_category",
    "manufacturer",
    "ean",
    "min_order_quantity",
)

DEFAULT_UNIT = "stk"


class ImportConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: ImportFormat = "csv"
    delimiter: str = ";"
    encoding: str = "utf-8"
    column_mappings: ColumnMappings = Field(default_factory=dict)
    skip_header_rows: int = 0
    has_header: bool = True

    @field_validator("delimiter")
    @classmethod
    def single_character_delimiter(cls, value: str) -> str:
        if len(value) != 1:
            raise ValueError("delimiter must be a single character")
        return value

    @field_validator("skip_header_rows")
    @classmethod
    def non_negative_skip(cls, value: int) -> int:
        if value < 0:
            raise ValueError("skip_header_rows must be >= 0")
        return value

    def merged(self, overrides: Optional[Dict[str, object]] = None) -> "ImportConfig":
        """Return a copy with ``overrides`` applied; column mappings merge key by key."""
        if not overrides:
            return self
        update = {key: value for key, value in overrides.items() if value is not None}
        if "column_mappings" in update:
            update["column_mappings"] = {
                **self.column_mappings,
                **dict(update["column_mappings"]),
            }
        return ImportConfig.model_validate({**self.model_dump(), **update})


class ParsedProduct(BaseModel):
    sku: str = ""
    name: str = ""
    cost_price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    gross_price: Optional[Decimal] = None
    discount_pct: Optional[Decimal] = None
    unit: str = DEFAULT_UNIT
    category: Optional[str] = None
    sub_category: Optional[str] = None
    manufacturer: Optional[str] = None
    ean: Optional[str] = None
    min_order_quantity: Optional[int] = None


class ParsedRow(BaseModel):
    row_number: int
    raw: Dict[str, str] = Field(default_factory=dict)
    parsed: ParsedProduct
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ValidatedRow(ParsedRow):
    is_valid: bool
    existing_product_id: Optional[str] = None
    is_update: bool = False


class ExistingProduct(BaseModel):
    id: str
    cost_price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None


class PriceChange(BaseModel):
    supplier_product_id: str
    supplier_sku: str
    product_name: str
    old_cost_price: Optional[Decimal]
    new_cost_price: Decimal
    old_list_price: Optional[Decimal] = None
    new_list_price: Optional[Decimal] = None
    change_percentage: Decimal


class ImportRowError(BaseModel):
    row: int
    message: str
    column: Optional[str] = None
    value: Optional[str] = None


class ImportResult(BaseModel):
    batch_id: str
    total_rows: int
    new_products: int
    updated_products: int
    skipped_rows: int
    errors: List[ImportRowError] = Field(default_factory=list)
    price_changes: List[PriceChange] = Field(default_factory=list)
    status: ImportStatus


class ImportPreview(BaseModel):
    total_rows: int
    valid_rows: int
    invalid_rows: int
    new_products: int
    updated_products: int
    skipped_rows: int
    sample_rows: List[ValidatedRow] = Field(default_factory=list)
    errors: List[ImportRowError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    column_headers: List[str] = Field(default_factory=list)
    detected_mappings: ColumnMappings = Field(default_factory=dict)


class SupplierAdapterInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    description: str = ""
    website: str = ""
    supported_formats: List[ImportFormat] = Field(default_factory=lambda: ["csv"])
    features: List[str] = Field(default_factory=list)
    default_encoding: str = "utf-8"
    default_delimiter: str = ";"
