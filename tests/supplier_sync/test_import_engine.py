from decimal import Decimal

from supplier_sync.engine.canonical.models import ExistingProduct, ImportConfig
from supplier_sync.engine.parsing.csv_parser import (
    ImportEngine,
    calculate_price_change,
    create_import_result,
    detect_column_mappings,
    resolve_column_mappings,
    validate_rows,
)
from supplier_sync.engine.suppliers.ao import AO_COLUMN_MAPPINGS
from supplier_sync.engine.suppliers.lm import LM_COLUMN_MAPPINGS

MAPPINGS = {
    "sku": "Varenr",
    "name": "Navn",
    "cost_price": "Kostpris",
    "list_price": "Listepris",
    "unit": "Enhed",
    "category": "Gruppe",
}

CATALOG = (
    "Varenr;Navn;Kostpris;Listepris;Enhed;Gruppe\n"
    "A1;Kabel 3x1,5;1.234,56;1.500,00;m;Kabler\n"
    "\n"
    'B2;"Stikdåse ""Fuga""";12,50;;;\n'
)


def _engine(**overrides) -> ImportEngine:
    config = ImportConfig(column_mappings=MAPPINGS).merged(overrides)
    return ImportEngine(config)


def test_parse_maps_columns_by_header_name() -> None:
    rows = _engine().parse(CATALOG)

    assert [row.row_number for row in rows] == [2, 3]
    first, second = rows
    assert first.parsed.sku == "A1"
    assert first.parsed.name == "Kabel 3x1,5"
    assert first.parsed.cost_price == Decimal("1234.56")
    assert first.parsed.list_price == Decimal("1500.00")
    assert first.parsed.unit == "m"
    assert first.parsed.category == "Kabler"
    assert first.errors == []
    assert second.parsed.name == 'Stikdåse "Fuga"'
    assert second.parsed.list_price is None
    assert second.parsed.unit == "stk"
    assert second.parsed.category is None


def test_parse_keeps_raw_snapshot() -> None:
    rows = _engine().parse(CATALOG)
    assert rows[0].raw["Kostpris"] == "1.234,56"
    assert rows[1].raw["Enhed"] == ""


def test_header_matching_is_case_insensitive_and_unknown_names_are_dropped() -> None:
    content = "VARENR ; navn ; Pris\nA1;Kabel;10\n"
    config = ImportConfig(column_mappings={"sku": "varenr", "name": "NAVN", "cost_price": "Kostpris"})
    rows = ImportEngine(config).parse(content)
    assert rows[0].parsed.sku == "A1"
    assert rows[0].parsed.name == "Kabel"
    assert rows[0].parsed.cost_price is None


def test_resolve_column_mappings_passes_indices_through() -> None:
    resolved = resolve_column_mappings({"sku": 3, "name": "Navn", "ean": "EAN"}, ["Varenr", "Navn"])
    assert resolved == {"sku": 3, "name": 1}


def test_missing_columns_parse_as_empty() -> None:
    rows = _engine().parse("Varenr;Navn;Kostpris\nA1\n")
    assert rows[0].parsed.sku == "A1"
    assert rows[0].parsed.name == ""
    assert "name is required" in rows[0].errors


def test_cost_price_is_derived_from_gross_and_discount() -> None:
    config = ImportConfig(
        column_mappings={"sku": "Varenr", "name": "Navn", "gross_price": "Brutto", "discount_pct": "Rabat"}
    )
    rows = ImportEngine(config).parse("Varenr;Navn;Brutto;Rabat\nA1;Kabel;1.000,00;20\nA2;Rør;99,99;12,5\n")
    assert rows[0].parsed.cost_price == Decimal("800.00")
    assert rows[1].parsed.cost_price == Decimal("87.49")


def test_explicit_cost_price_wins_over_derivation() -> None:
    config = ImportConfig(
        column_mappings={
            "sku": "Varenr",
            "name": "Navn",
            "cost_price": "Netto",
            "gross_price": "Brutto",
            "discount_pct": "Rabat",
        }
    )
    rows = ImportEngine(config).parse("Varenr;Navn;Netto;Brutto;Rabat\nA1;Kabel;750;1000;20\n")
    assert rows[0].parsed.cost_price == Decimal("750")


def test_validation_flags_long_sku_and_negative_price_but_keeps_rows() -> None:
    long_sku = "X" * 101
    content = f"Varenr;Navn;Kostpris\n{long_sku};Kabel;10\nA2;Rør;-5\nA3;Dåse;4,95\n"
    rows = validate_rows(_engine().parse(content), {})

    assert len(rows) == 3
    assert rows[0].errors == ["sku exceeds 100 characters"]
    assert rows[0].is_valid is False
    assert rows[1].errors == ["cost_price must be >= 0 and < 10000000"]
    assert rows[1].is_valid is False
    assert rows[2].errors == []
    assert rows[2].is_valid is True


def test_price_upper_bound_is_exclusive() -> None:
    rows = _engine().parse("Varenr;Navn;Kostpris\nA1;Kabel;10.000.000,00\nA2;Kabel;9.999.999,99\n")
    assert rows[0].errors
    assert rows[1].errors == []


def test_skip_header_rows_and_blank_lines() -> None:
    content = "Prisliste 2024\n\nVarenr;Navn\nA1;Kabel\n\nA2;Rør\n"
    engine = _engine(skip_header_rows=1)
    rows = engine.parse(content)
    assert engine.get_headers(content) == ["Varenr", "Navn"]
    assert [row.parsed.sku for row in rows] == ["A1", "A2"]
    assert [row.row_number for row in rows] == [3, 4]


def test_carriage_return_line_endings() -> None:
    engine = _engine()
    for content in ("Varenr;Navn\rA1;Kabel\rA2;Rør\r", "Varenr;Navn\r\nA1;Kabel\r\nA2;Rør\r\n"):
        rows = engine.parse(content)
        assert engine.get_headers(content) == ["Varenr", "Navn"]
        assert [row.parsed.sku for row in rows] == ["A1", "A2"]
        assert [row.parsed.name for row in rows] == ["Kabel", "Rør"]


def test_headerless_file_uses_column_indices() -> None:
    config = ImportConfig(column_mappings={"sku": 0, "name": 1, "cost_price": 2}, has_header=False)
    rows = ImportEngine(config).parse("A1;Kabel;10,50\n")
    assert rows[0].parsed.cost_price == Decimal("10.50")
    assert rows[0].raw == {"0": "A1", "1": "Kabel", "2": "10,50"}
    assert rows[0].row_number == 1


def test_min_order_quantity() -> None:
    config = ImportConfig(column_mappings={"sku": "Varenr", "name": "Navn", "min_order_quantity": "Min"})
    rows = ImportEngine(config).parse("Varenr;Navn;Min\nA1;Kabel;10\nA2;Rør;x\nA3;Dåse;\n")
    assert [row.parsed.min_order_quantity for row in rows] == [10, 1, None]


def test_parse_is_idempotent() -> None:
    engine = _engine()
    assert engine.parse(CATALOG) == engine.parse(CATALOG)


def test_empty_content() -> None:
    assert _engine().parse("") == []
    assert _engine().parse("Varenr;Navn\n") == []


def test_detect_column_mappings_exact_partial_and_heuristics() -> None:
    headers = ["Varenummer", "Beskrivelse tekst", "Netto", "Rabat %", "Stregkode", ""]
    detected = detect_column_mappings(headers, AO_COLUMN_MAPPINGS)
    assert detected == {"sku": 0, "name": 1, "cost_price": 2, "discount_pct": 3, "ean": 4}


def test_detect_column_mappings_danish_heuristics() -> None:
    headers = ["Art. varenr", "Kostpris DKK", "Vejl. pris", "Kategori", "Fabrikant"]
    detected = detect_column_mappings(headers, LM_COLUMN_MAPPINGS)
    assert detected == {
        "sku": 0,
        "cost_price": 1,
        "list_price": 2,
        "category": 3,
        "manufacturer": 4,
    }


def test_detect_column_mappings_leaves_unknown_headers_unmapped() -> None:
    assert detect_column_mappings(["Foo", "Bar"], {}) == {}


def test_calculate_price_change() -> None:
    assert calculate_price_change(Decimal("100"), Decimal("110")) == Decimal("10")
    assert calculate_price_change(Decimal("80"), Decimal("60")) == Decimal("-25.00")
    assert calculate_price_change(Decimal("3"), Decimal("4")) == Decimal("33.33")
    assert calculate_price_change(Decimal("0"), Decimal("10")) == Decimal("0")
    assert calculate_price_change(None, Decimal("10")) == Decimal("0")


def test_create_import_result_counts() -> None:
    content = "Varenr;Navn;Kostpris\nA1;Kabel;10\nA2;Rør;12\n;Uden nummer;5\n"
    existing = {"A2": ExistingProduct(id="p-2", cost_price=Decimal("11"))}
    rows = validate_rows(_engine().parse(content), existing)

    result = create_import_result("batch-1", rows, [], "completed")

    assert result.total_rows == 3
    assert result.new_products == 1
    assert result.updated_products == 1
    assert result.skipped_rows == 1
    assert [(error.row, error.message) for error in result.errors] == [(4, "sku is required")]
    assert rows[1].existing_product_id == "p-2"
    assert rows[1].is_update is True
