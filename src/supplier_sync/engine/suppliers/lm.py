from __future__ import annotations

import re
from typing import Dict, List, Optional

from supplier_sync.engine.canonical.models import ColumnMappings, ParsedRow, SupplierAdapterInfo
from supplier_sync.engine.suppliers.base import UNCATEGORIZED, SupplierAdapter

LM_COLUMN_MAPPINGS: ColumnMappings = {
    "sku": "Artikelnr",
    "name": "Artikelbenævnelse",
    "cost_price": "Nettopris",
    "list_price": "Listepris",
    "unit": "Enhed",
    "category": "Hovedgruppe",
    "sub_category": "Undergruppe",
    "manufacturer": "Leverandør",
    "ean": "EAN",
}

LM_CATEGORY_MAP: Dict[str, str] = {
    "El-installation": "Installation",
    "Installationsmateriel": "Installation",
    "El-artikler": "El-artikler",
    "Stikdåser og kontakter": "Installation",
    "Dåser og bøsninger": "Installation",
    "Kabelkanaler": "Kabelføring",
    "Kabelrør": "Kabelføring",
    "Kabelstiger": "Kabelføring",
    "Tavler og komponenter": "Tavler",
    "Belysning": "Belysning",
    "Lyskilder": "Lyskilder",
    "LED": "LED Belysning",
    "Armaturer": "Armaturer",
    "Nødbelysning": "Belysning",
    "Kabler": "Kabler",
    "Ledninger": "Kabler",
    "Installationsledning": "Kabler",
    "Datakabler": "Kabler",
    "Fiberoptik": "Kabler",
    "Sikringer": "Sikringer",
    "Automater": "Automatsikringer",
    "HPFI": "Sikkerhed",
    "Fejlstrøm": "Sikkerhed",
    "Overspaendingsbeskyttelse": "Sikkerhed",
    "Jordforbindelse": "Sikkerhed",
    "Industri": "Industri",
    "Automation": "Automation",
    "Styringsudstyr": "Automation",
    "Frekvensomformere": "Automation",
    "PLC": "Automation",
    "Motorer": "Industri",
    "Sol og energi": "Solceller",
    "Solceller": "Solceller",
    "Inverter": "Invertere",
    "Batterier": "Energilagring",
    "Elbil-ladestandere": "Elbil",
    "VVS": "VVS",
    "Rør": "VVS",
    "Pumper": "VVS",
    "Ventilation": "VVS",
    "Varme": "VVS",
    "Varmepumper": "Varmepumper",
    "Smarthome": "Smart Home",
    "KNX": "Smart Home",
    "Værktøj": "Værktøj",
    "Håndværktøj": "Værktøj",
    "El-værktøj": "Værktøj",
    "Måleudstyr": "Værktøj",
    "Sikkerhedsudstyr": "Personlig sikkerhed",
}

MAX_LM_SKU_LENGTH = 20
_WHITESPACE = re.compile(r"\s+")


class LMAdapter(SupplierAdapter):
    info = SupplierAdapterInfo(
        code="LM",
        name="Lemvigh-Müller",
        description="Danish electrical wholesaler and technical trading house",
        website="https://www.lfrm.dk",
        supported_formats=["csv", "xml"],
        features=[
            "semicolon separated CSV",
            "Danish number format (1.234,56)",
            "UTF-8 encoding",
            "main group / sub group category mapping",
            "SKU normalization",
            "customer specific price lists",
        ],
        default_encoding="utf-8",
        default_delimiter=";",
    )

    def get_column_mappings(self) -> ColumnMappings:
        return dict(LM_COLUMN_MAPPINGS)

    def get_category_map(self) -> Dict[str, str]:
        return dict(LM_CATEGORY_MAP)

    def normalize_sku(self, raw_sku: str) -> str:
        sku = _WHITESPACE.sub("", raw_sku.strip())
        if sku.startswith(("LM-", "LM_")):
            sku = sku[3:]
        return sku

    def map_category(self, category: Optional[str], sub_category: Optional[str] = None) -> str:
        """Resolve L-M's Hovedgruppe/Undergruppe pair.

        Order: ``"<category> > <sub>"`` key, exact category, category substring,
        exact sub group, sub group substring, then the category unchanged.
        """
        if not category:
            return UNCATEGORIZED
        category_map = self.get_category_map()
        if sub_category:
            combined = f"{category} > {sub_category}"
            if combined in category_map:
                return category_map[combined]
        if category in category_map:
            return category_map[category]
        lowered = category.lower()
        for key, value in category_map.items():
            if key.lower() in lowered:
                return value
        if sub_category:
            if sub_category in category_map:
                return category_map[sub_category]
            lowered_sub = sub_category.lower()
            for key, value in category_map.items():
                if key.lower() in lowered_sub:
                    return value
        return category

    def validate_row(self, row: ParsedRow) -> List[str]:
        errors = super().validate_row(row)
        if len(row.parsed.sku) > MAX_LM_SKU_LENGTH:
            errors.append(f"article number is too long (max {MAX_LM_SKU_LENGTH} characters)")
        return errors

    def supports_api_sync(self) -> bool:
        return True

    def supports_ftp_sync(self) -> bool:
        return True
