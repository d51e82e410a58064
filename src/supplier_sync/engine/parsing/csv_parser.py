from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from supplier_sync.engine.canonical.models import (
    DEFAULT_UNIT,
    ColumnMappings,
    ExistingProduct,
    ImportConfig,
    ImportResult,
    ImportRowError,
    ImportStatus,
    ParsedProduct,
    ParsedRow,
    PriceChange,
    ResolvedMappings,
    ValidatedRow,
)
from supplier_sync.engine.parsing.locale import parse_danish_number, parse_delimited_line

MAX_SKU_LENGTH = 100
MAX_NAME_LENGTH = 500
MAX_PRICE = Decimal("10000000")
CENT = Decimal("0.01")
PRICE_FIELDS = ("cost_price", "list_price", "gross_price")

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


def validate_sku(sku: str) -> bool:
    return 0 < len(sku) <= MAX_SKU_LENGTH


def validate_name(name: str) -> bool:
    return 0 < len(name) <= MAX_NAME_LENGTH


def validate_price(price: Optional[Decimal]) -> bool:
    if price is None:
        return True
    return Decimal("0") <= price < MAX_PRICE


def validate_product(product: ParsedProduct) -> List[str]:
    errors: List[str] = []
    if not product.sku:
        errors.append("sku is required")
    elif not validate_sku(product.sku):
        errors.append(f"sku exceeds {MAX_SKU_LENGTH} characters")
    if not product.name:
        errors.append("name is required")
    elif not validate_name(product.name):
        errors.append(f"name exceeds {MAX_NAME_LENGTH} characters")
    for field in PRICE_FIELDS:
        if not validate_price(getattr(product, field)):
            errors.append(f"{field} must be >= 0 and < {MAX_PRICE}")
    return errors


def derive_cost_price(
    gross_price: Optional[Decimal],
    discount_pct: Optional[Decimal],
) -> Optional[Decimal]:
    if gross_price is None or discount_pct is None or gross_price <= 0:
        return None
    net = gross_price * (Decimal("1") - discount_pct / Decimal("100"))
    return net.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_price_change(old_price: Optional[Decimal], new_price: Decimal) -> Decimal:
    if old_price is None or old_price == 0:
        return Decimal("0")
    change = (new_price - old_price) / old_price * Decimal("100")
    return change.quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_column_mappings(mappings: ColumnMappings, headers: Sequence[str]) -> ResolvedMappings:
    """Resolve header-name mappings to column indices; unknown names are dropped."""
    header_lookup: Dict[str, int] = {}
    for index, header in enumerate(headers):
        header_lookup.setdefault(header.strip().lower(), index)
    resolved: ResolvedMappings = {}
    for field, target in mappings.items():
        if isinstance(target, int):
            resolved[field] = target
            continue
        index = header_lookup.get(str(target).strip().lower())
        if index is not None:
            resolved[field] = index
    return resolved


def _detect_by_heuristic(header: str, detected: ColumnMappings) -> Optional[str]:
    if "varenr" in header or "artikelnr" in header or "sku" in header:
        return "sku"
    if "beskriv" in header or "benævn" in header or header in {"navn", "name"}:
        return "name"
    if "indkøb" in header or header == "nettopris" or "kostpris" in header:
        return "cost_price"
    if header == "netto" and "cost_price" not in detected:
        return "cost_price"
    if "bruttopris" in header or header == "brutto":
        return "gross_price"
    if "rabat" in header or header == "discount":
        return "discount_pct"
    if "vejl" in header or "liste" in header or "udsalg" in header:
        return "list_price"
    if header in {"enhed", "unit"}:
        return "unit"
    if "varegruppe" in header or "hovedgruppe" in header or "kategori" in header:
        return "category"
    if "undergruppe" in header or "subkat" in header:
        return "sub_category"
    if "leverandør" in header or "fabrikant" in header or "manufacturer" in header:
        return "manufacturer"
    if header == "ean" or "stregkode" in header or "barcode" in header:
        return "ean"
    return None


def detect_column_mappings(headers: Sequence[str], known_mappings: ColumnMappings) -> ColumnMappings:
    """Infer field -> column index from a header row.

    Tries an exact (case-insensitive) match against the supplier's known
    header names, then a substring match either way, then Danish header
    heuristics. Fields that match nothing are left out.
    """
    known_by_header: Dict[str, str] = {}
    for field, target in known_mappings.items():
        if isinstance(target, str) and target.strip():
            known_by_header[target.strip().lower()] = field

    detected: ColumnMappings = {}
    for index, raw_header in enumerate(headers):
        header = raw_header.strip().lower()
        if not header:
            continue
        exact = known_by_header.get(header)
        if exact:
            detected[exact] = index
            continue
        partial = next(
            (
                field
                for known_name, field in known_by_header.items()
                if known_name in header or header in known_name
            ),
            None,
        )
        if partial:
            detected[partial] = index
            continue
        guessed = _detect_by_heuristic(header, detected)
        if guessed:
            detected[guessed] = index
    return detected


def _parse_min_order_quantity(value: str) -> Optional[int]:
    if not value.strip():
        return None
    number = parse_danish_number(value)
    if number is None or number < 1:
        return 1
    return int(number)


class ImportEngine:
    """Turns decoded catalog text into ``ParsedRow`` objects for one ``ImportConfig``."""

    def __init__(self, config: ImportConfig) -> None:
        self.config = config

    def _lines(self, content: str) -> List[str]:
        return [line for line in _LINE_SPLIT.split(content) if line.strip()]

    def get_headers(self, content: str) -> List[str]:
        lines = self._lines(content)
        skip = self.config.skip_header_rows
        if not self.config.has_header or len(lines) <= skip:
            return []
        return parse_delimited_line(lines[skip], self.config.delimiter)

    def parse(self, content: str) -> List[ParsedRow]:
        lines = self._lines(content)
        skip = self.config.skip_header_rows
        if len(lines) <= skip:
            return []

        if self.config.has_header:
            headers = parse_delimited_line(lines[skip], self.config.delimiter)
            first_data_line = skip + 1
        else:
            headers = []
            first_data_line = skip
        mappings = resolve_column_mappings(self.config.column_mappings, headers)

        rows: List[ParsedRow] = []
        for line_index in range(first_data_line, len(lines)):
            values = parse_delimited_line(lines[line_index], self.config.delimiter)
            parsed = self._parse_values(values, mappings)
            rows.append(
                ParsedRow(
                    row_number=line_index + 1,
                    raw=self._raw_snapshot(headers, values),
                    parsed=parsed,
                    errors=validate_product(parsed),
                    warnings=[],
                )
            )
        return rows

    @staticmethod
    def _raw_snapshot(headers: Sequence[str], values: Sequence[str]) -> Dict[str, str]:
        if not headers:
            return {str(index): value for index, value in enumerate(values)}
        return {
            header: values[index] if index < len(values) else ""
            for index, header in enumerate(headers)
        }

    @staticmethod
    def _parse_values(values: Sequence[str], mappings: ResolvedMappings) -> ParsedProduct:
        def value_for(field: str) -> str:
            index = mappings.get(field)
            if index is None or index < 0 or index >= len(values):
                return ""
            return values[index]

        gross_price = parse_danish_number(value_for("gross_price"))
        discount_pct = parse_danish_number(value_for("discount_pct"))
        cost_price = parse_danish_number(value_for("cost_price"))
        if cost_price is None:
            cost_price = derive_cost_price(gross_price, discount_pct)

        return ParsedProduct(
            sku=value_for("sku").strip(),
            name=value_for("name").strip(),
            cost_price=cost_price,
            list_price=parse_danish_number(value_for("list_price")),
            gross_price=gross_price,
            discount_pct=discount_pct,
            unit=value_for("unit").strip() or DEFAULT_UNIT,
            category=value_for("category").strip() or None,
            sub_category=value_for("sub_category").strip() or None,
            manufacturer=value_for("manufacturer").strip() or None,
            ean=value_for("ean").strip() or None,
            min_order_quantity=_parse_min_order_quantity(value_for("min_order_quantity")),
        )


def validate_rows(
    rows: Iterable[ParsedRow],
    existing_products: Mapping[str, ExistingProduct],
) -> List[ValidatedRow]:
    validated: List[ValidatedRow] = []
    for row in rows:
        existing = existing_products.get(row.parsed.sku)
        validated.append(
            ValidatedRow(
                **row.model_dump(),
                is_valid=not row.errors,
                existing_product_id=existing.id if existing else None,
                is_update=existing is not None,
            )
        )
    return validated


def create_import_result(
    batch_id: str,
    rows: Sequence[ValidatedRow],
    price_changes: Sequence[PriceChange],
    status: ImportStatus,
) -> ImportResult:
    valid_rows = [row for row in rows if row.is_valid]
    errors = [
        ImportRowError(row=row.row_number, message=message)
        for row in rows
        if not row.is_valid
        for message in row.errors
    ]
    return ImportResult(
        batch_id=batch_id,
        total_rows=len(rows),
        new_products=sum(1 for row in valid_rows if not row.is_update),
        updated_products=sum(1 for row in valid_rows if row.is_update),
        skipped_rows=len(rows) - len(valid_rows),
        errors=errors,
        price_changes=list(price_changes),
        status=status,
    )
