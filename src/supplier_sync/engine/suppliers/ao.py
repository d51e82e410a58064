from __future__ import annotations

import re
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from supplier_sync.engine.canonical.models import ColumnMappings, ParsedRow, SupplierAdapterInfo
from supplier_sync.engine.suppliers.base import CatalogContent, SupplierAdapter
from supplier_sync.engine.parsing.locale import FALLBACK_ENCODING

AO_COLUMN_MAPPINGS: ColumnMappings = {
    "sku": "Varenummer",
    "name": "Beskrivelse",
    "cost_price": "Indkøbspris",
    "list_price": "Vejl. udsalgspris",
    "gross_price": "Bruttopris",
    "discount_pct": "Rabat%",
    "unit": "Enhed",
    "category": "Varegruppe",
    "ean": "EAN",
    "manufacturer": "Leverandør",
}

AO_CATEGORY_MAP: Dict[str, str] = {
    "Installationsmateriel": "Installation",
    "Stikdåser": "Stikdåser",
    "Kontakter": "Kontakter",
    "Afbrydere": "Afbrydere",
    "Dåser": "Installation",
    "Kabelkanaler": "Kabelføring",
    "Kabelrør": "Kabelføring",
    "Rør og tilbehør": "Kabelføring",
    "Tavlekomponenter": "Tavler",
    "Tavler": "Tavler",
    "Klemmrækker": "Tavler",
    "DIN-skinner": "Tavler",
    "Belysning": "Belysning",
    "LED-belysning": "LED Belysning",
    "Lyskilder": "Lyskilder",
    "Armaturer": "Armaturer",
    "Spots": "Belysning",
    "Udendørsbelysning": "Belysning",
    "Ledninger": "Kabler",
    "Installationskabler": "Kabler",
    "Stærkstrømskabler": "Kabler",
    "Svagstrømskabler": "Kabler",
    "Datakabling": "Kabler",
    "Flexledninger": "Kabler",
    "Sikkerhed": "Sikkerhed",
    "Fejlstrømsafbrydere": "Sikkerhed",
    "Sikringer": "Sikringer",
    "Automatsikringer": "Automatsikringer",
    "Overspaendingsbeskyttelse": "Sikkerhed",
    "Jordforbindelse": "Sikkerhed",
    "Solceller": "Solceller",
    "Solcellepaneler": "Solceller",
    "Invertere": "Invertere",
    "Batterilagring": "Energilagring",
    "Elbil-ladning": "Elbil",
    "Ladestandere": "Elbil",
    "Smarthome": "Smart Home",
    "KNX": "Smart Home",
    "Zigbee": "Smart Home",
    "Værktøj": "Værktøj",
    "Måleudstyr": "Værktøj",
    "Elværktøj": "Værktøj",
}

AO_SKU_PATTERN = re.compile(r"^[A-Za-z0-9\-_.]+$")
_LEADING_ZEROS = re.compile(r"^0+(?=\d)")
# Tolerance for rounding in supplier-computed net prices.
GROSS_PRICE_TOLERANCE = Decimal("1.01")


class AOAdapter(SupplierAdapter):
    info = SupplierAdapterInfo(
        code="AO",
        name="AO",
        description="Danish electrical wholesaler, one of the largest in Denmark",
        website="https://www.ao.dk",
        supported_formats=["csv"],
        features=[
            "semicolon separated CSV",
            "Danish number format (1.234,56)",
            "ISO-8859-1 encoding with UTF-8 fallback",
            "category mapping",
            "SKU normalization (AO- prefix, leading zeros)",
            "net/gross price cross-check",
        ],
        default_encoding="iso-8859-1",
        default_delimiter=";",
    )

    def __init__(self, *, empty_sku_threshold: float = 0.5) -> None:
        self.empty_sku_threshold = empty_sku_threshold

    def get_column_mappings(self) -> ColumnMappings:
        return dict(AO_COLUMN_MAPPINGS)

    def get_category_map(self) -> Dict[str, str]:
        return dict(AO_CATEGORY_MAP)

    def normalize_sku(self, raw_sku: str) -> str:
        sku = raw_sku.strip()
        if sku.startswith("AO-"):
            sku = sku[3:]
        return _LEADING_ZEROS.sub("", sku)

    def parse_file(
        self,
        content: CatalogContent,
        overrides: Optional[Mapping[str, object]] = None,
    ) -> List[ParsedRow]:
        """Parse an AO export, retrying as UTF-8 when the labelled encoding looks wrong.

        AO files are nominally ISO-8859-1 but are regularly delivered as UTF-8.
        A mis-decoded header row leaves most SKU columns unresolved, so when more
        than ``empty_sku_threshold`` of the rows have no SKU the raw bytes are
        parsed again as UTF-8 and whichever attempt has fewer empty SKUs wins.
        Already-decoded text cannot be re-decoded and is returned as parsed.
        """
        rows = super().parse_file(content, overrides)
        if not rows or not isinstance(content, bytes):
            return rows
        empty_count = _count_empty_skus(rows)
        if empty_count / len(rows) <= self.empty_sku_threshold:
            return rows
        fallback_rows = super().parse_file(
            content,
            {**(dict(overrides) if overrides else {}), "encoding": FALLBACK_ENCODING},
        )
        if _count_empty_skus(fallback_rows) < empty_count:
            return fallback_rows
        return rows

    def transform_row(self, row: ParsedRow) -> ParsedRow:
        transformed = super().transform_row(row)
        parsed = transformed.parsed
        warnings = list(transformed.warnings)
        gross = parsed.gross_price
        if parsed.cost_price is None and gross is not None and gross > 0 and parsed.discount_pct is None:
            warnings.append("only gross price found without discount, net price cannot be derived")
        if parsed.cost_price is not None and gross is not None and parsed.cost_price > gross * GROSS_PRICE_TOLERANCE:
            warnings.append("net price is higher than gross price, check price data")
        if parsed.cost_price is not None and parsed.cost_price == 0:
            warnings.append("cost price is 0, please check")
        if warnings == transformed.warnings:
            return transformed
        return transformed.model_copy(update={"warnings": warnings})

    def validate_row(self, row: ParsedRow) -> List[str]:
        errors = super().validate_row(row)
        if row.parsed.sku and not AO_SKU_PATTERN.match(row.parsed.sku):
            errors.append("invalid AO article number format")
        return errors

    def supports_ftp_sync(self) -> bool:
        return True


def _count_empty_skus(rows: List[ParsedRow]) -> int:
    return sum(1 for row in rows if not row.parsed.sku.strip())
