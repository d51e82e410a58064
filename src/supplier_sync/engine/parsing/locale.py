from __future__ import annotations

import codecs
import csv
from decimal import Decimal, InvalidOperation
from typing import List, Optional

FALLBACK_ENCODING = "utf-8"
ENCODING_ALIASES = {
    "utf-8": "utf-8",
    "utf8": "utf-8",
    "latin-1": "latin-1",
    "latin1": "latin-1",
    "iso-8859-1": "latin-1",
    "iso8859-1": "latin-1",
    "windows-1252": "cp1252",
    "cp1252": "cp1252",
}


def parse_danish_number(value: Optional[str]) -> Optional[Decimal]:
    """Parse ``1.234,56`` style numbers; plain ``42.5`` is read as-is.

    Returns ``None`` for blank or unparseable input.
    """
    if value is None:
        return None
    cleaned = value.strip().replace(" ", "")
    if not cleaned:
        return None
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def parse_delimited_line(line: str, delimiter: str = ";") -> List[str]:
    """Split one record on ``delimiter`` honouring ``"`` quoting; never raises.

    A line the csv module refuses (a bare carriage return inside an unquoted
    field) is split on the delimiter alone.
    """
    reader = csv.reader(
        [line],
        delimiter=delimiter,
        quotechar='"',
        doublequote=True,
        skipinitialspace=True,
        strict=False,
    )
    try:
        fields = next(reader, None)
    except csv.Error:
        fields = line.split(delimiter)
    if not fields:
        return [""]
    return [field.strip() for field in fields]


def normalize_encoding(encoding: Optional[str]) -> str:
    if not encoding:
        return FALLBACK_ENCODING
    normalized = encoding.strip().lower().replace("_", "-")
    return ENCODING_ALIASES.get(normalized, normalized)


def decode_bytes(raw_bytes: bytes, encoding: Optional[str]) -> str:
    """Decode ``raw_bytes``; unknown encoding labels fall back to UTF-8.

    Undecodable byte sequences are replaced rather than raised.
    """
    normalized = normalize_encoding(encoding)
    try:
        codecs.lookup(normalized)
    except LookupError:
        normalized = FALLBACK_ENCODING
    text = raw_bytes.decode(normalized, errors="replace")
    if text.startswith("\ufeff"):
        text = text[1:]
    return text
