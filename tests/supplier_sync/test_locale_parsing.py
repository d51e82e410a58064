from decimal import Decimal

import pytest

from supplier_sync.engine.parsing.locale import (
    decode_bytes,
    normalize_encoding,
    parse_danish_number,
    parse_delimited_line,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1.234,56", Decimal("1234.56")),
        ("42.5", Decimal("42.5")),
        ("12,5", Decimal("12.5")),
        (" 1 234,50 ", Decimal("1234.50")),
        ("1.000.000,00", Decimal("1000000.00")),
        ("-3,75", Decimal("-3.75")),
    ],
)
def test_parse_danish_number(raw: str, expected: Decimal) -> None:
    assert parse_danish_number(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "12,3,4x", "NaN", "Infinity"])
def test_parse_danish_number_returns_none_for_garbage(raw) -> None:
    assert parse_danish_number(raw) is None


def test_parse_delimited_line_handles_quoted_delimiters_and_escaped_quotes() -> None:
    assert parse_delimited_line('"a;b";"c""d";e', ";") == ["a;b", 'c"d', "e"]


def test_parse_delimited_line_trims_fields_and_keeps_empty_columns() -> None:
    assert parse_delimited_line(" A1 ; Kabel ;; 10,5 ", ";") == ["A1", "Kabel", "", "10,5"]


def test_parse_delimited_line_empty_line() -> None:
    assert parse_delimited_line("", ";") == [""]


def test_parse_delimited_line_tolerates_bare_carriage_return() -> None:
    assert parse_delimited_line("a\rb;c", ";") == ["a\rb", "c"]
    assert parse_delimited_line('"a\rb";c', ";") == ["a\rb", "c"]


def test_normalize_encoding_aliases() -> None:
    assert normalize_encoding("ISO-8859-1") == "latin-1"
    assert normalize_encoding("latin1") == "latin-1"
    assert normalize_encoding("UTF8") == "utf-8"
    assert normalize_encoding(None) == "utf-8"


def test_decode_bytes_latin1() -> None:
    assert decode_bytes("Kabelrør æøå".encode("latin-1"), "iso-8859-1") == "Kabelrør æøå"


def test_decode_bytes_unknown_encoding_falls_back_to_utf8() -> None:
    assert decode_bytes("Leverandør".encode("utf-8"), "klingon-8") == "Leverandør"


def test_decode_bytes_strips_bom_and_replaces_invalid_bytes() -> None:
    assert decode_bytes(b"\xef\xbb\xbfVarenr", "utf-8") == "Varenr"
    assert decode_bytes(b"A\xffB", "utf-8") == "A\ufffdB"
