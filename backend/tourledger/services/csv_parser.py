# Overview: CSV parsing helpers for sales imports; header aliases, product cells and number cells.

from __future__ import annotations

import csv
import io
import math
import re
import unicodedata
from dataclasses import dataclass

from ..models import Tour
from ..validation import MAX_AMOUNT, MAX_QUANTITY


# Normalized header text -> canonical column key.
HEADER_ALIASES = {
    "producto": "product",
    "product": "product",
    "productos": "product",
    "nombreproducto": "product",
    "articulo": "product",
    "item": "product",
    "cantidad": "quantity",
    "quantity": "quantity",
    "cant": "quantity",
    "qty": "quantity",
    "total": "total",
    "monto": "total",
    "precio": "total",
    "amount": "total",
    "abono": "deposit",
    "pendiente": "balance_due",
    "fecha": "date",
    "date": "date",
    "fechaventa": "date",
    "fechacompra": "date",
    "fechaentrega": "delivery_date",
    "fechadeentrega": "delivery_date",
    "deliverydate": "delivery_date",
    "fechavisita": "visit_date",
    "fechadevisita": "visit_date",
    "visitdate": "visit_date",
    "nombre": "customer_name",
    "cliente": "customer_name",
    "customer": "customer_name",
    "nombrecliente": "customer_name",
    "customername": "customer_name",
    "telefono": "customer_phone",
    "phone": "customer_phone",
    "tel": "customer_phone",
    "customerphone": "customer_phone",
    "cedula": "cedula",
    "provincia": "provincia",
    "province": "provincia",
    "municipio": "municipio",
    "municipality": "municipio",
    "direccion": "customer_address",
    "address": "customer_address",
    "customeraddress": "customer_address",
    "supervisor": "supervisor",
    "vendedor": "seller_name",
    "nombrevendedor": "seller_name",
    "sellername": "seller_name",
    "creadopor": "seller_name",
    "vendidopor": "seller_name",
    "pagado": "is_paid",
    "paid": "is_paid",
    "ispaid": "is_paid",
    "estado": "is_paid",
    "status": "is_paid",
    "nota": "notes",
    "notes": "notes",
    "notas": "notes",
    "referencia": "notes",
}

# Sheet spelling -> catalog spelling.
PRODUCT_NAME_ALIASES = (("macadamia", "macademia"),)

PAID_VALUES = {"1", "true", "si", "sí", "yes", "pagado"}

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)")
_WHITESPACE_RE = re.compile(r"\s+")


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def parse_line(raw: str) -> list[str]:
    """Split one CSV line into trimmed cells (quotes, "" escapes honored)."""
    row = next(csv.reader([raw], skipinitialspace=True), [])
    return [cell.strip() for cell in row]


def split_records(text: str) -> list[list[str]]:
    """
    Split a whole file into records of trimmed cells.

    Newlines inside quoted fields stay part of the cell; records whose cells
    are all blank are dropped.
    """
    records = []
    for row in csv.reader(io.StringIO(text, newline=""), skipinitialspace=True):
        cells = [cell.strip() for cell in row]
        if any(cells):
            records.append(cells)
    return records


def normalize_header(raw: str) -> str:
    key = _strip_accents(_WHITESPACE_RE.sub("", raw.lower()))
    return HEADER_ALIASES.get(key, key)


def build_header_map(headers: list[str]) -> dict[str, int]:
    """Canonical key -> column index; the first column mapping to a key wins."""
    header_map: dict[str, int] = {}
    for index, raw in enumerate(headers):
        key = normalize_header(raw)
        if key and key not in header_map:
            header_map[key] = index
    return header_map


def get_cell(row: list[str], header_map: dict[str, int], *keys: str) -> str:
    """First non-empty cell among the given canonical keys, else ""."""
    for key in keys:
        index = header_map.get(key)
        if index is None or index >= len(row):
            continue
        value = row[index].strip()
        if value:
            return value
    return ""


class CellRangeError(ValueError):
    """A numeric cell is too large to store (or not finite)."""


def _leading_number(text: str) -> float | None:
    match = _NUMBER_RE.match(text.replace(",", "").strip())
    if not match:
        return None
    number = float(match.group(0))
    # Hundreds of digits parse as inf
    if not math.isfinite(number):
        raise CellRangeError(text)
    return number


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _capped(value: int, maximum: int, text: str) -> int:
    if abs(value) > maximum:
        raise CellRangeError(text)
    return value


def parse_int_cell(value: str, maximum: int = MAX_AMOUNT) -> int | None:
    """Integer from a sheet cell ("1,400" -> 1400, "12.9" -> 12); None if blank or not numeric."""
    number = _leading_number(value)
    if number is None:
        return None
    return _capped(int(math.floor(number)), maximum, value)


def parse_amount(value: str) -> int:
    """
    Money cell rounded to a whole amount; blank or garbage counts as 0.

    Raises CellRangeError for amounts above MAX_AMOUNT.
    """
    number = _leading_number(value)
    if number is None:
        return 0
    return _capped(_round_half_up(number), MAX_AMOUNT, value)


def parse_quantity(value: str | None) -> int:
    """Quantity cell; a missing column, blank or anything below 1 means 1."""
    if value is None:
        return 1
    number = _leading_number(value)
    quantity = int(math.floor(number)) if number is not None else 0
    if quantity < 1:
        return 1
    return _capped(quantity, MAX_QUANTITY, value)


def parse_paid(value: str) -> bool:
    return value.strip().lower() in PAID_VALUES


# ---------------------------------------------------------------------------
# Product cells
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProductSegment:
    lookup_name: str
    price: int | None


def _is_thousands_separator(text: str, index: int) -> bool:
    if index == 0 or not text[index - 1].isdigit():
        return False
    following = text[index + 1:index + 4]
    if len(following) != 3 or not following.isdigit():
        return False
    return index + 4 >= len(text) or not text[index + 4].isdigit()


def split_product_cell(cell: str) -> list[str]:
    """
    Split a product cell on commas that are outside quotes and not a
    thousands separator inside a price ("A: 1,400 , B: 700" -> two segments).
    """
    segments: list[str] = []
    current: list[str] = []
    in_quotes = False
    for index, ch in enumerate(cell):
        if ch == '"':
            in_quotes = not in_quotes
            current.append(ch)
        elif ch == "," and not in_quotes and not _is_thousands_separator(cell, index):
            segments.append("".join(current))
            current = []
        else:
            current.append(ch)
    segments.append("".join(current))
    return [seg.strip() for seg in segments if seg.strip()]


def parse_product_segment(segment: str) -> ProductSegment:
    """'Name: Price' -> (Name, Price); a segment without ': ' has no price."""
    name, sep, price_text = segment.partition(": ")
    if not sep:
        return ProductSegment(segment.strip(), None)
    return ProductSegment(name.strip(), parse_amount(price_text))


def parse_product_cell(cell: str) -> list[ProductSegment]:
    return [parse_product_segment(seg) for seg in split_product_cell(cell.strip())]


def normalize_product_key(name: str) -> str:
    return _strip_accents((name or "").strip().lower()).strip()


def lookup_candidates(key: str) -> list[str]:
    candidates = [key]
    for wrong, right in PRODUCT_NAME_ALIASES:
        if wrong in key:
            candidates.append(key.replace(wrong, right))
    return candidates


class ProductResolver:
    """Matches sheet product names to catalog tours (accent/case-insensitive)."""

    def __init__(self, tours: list[Tour]):
        self._by_key: dict[str, int] = {}
        for tour in tours:
            key = normalize_product_key(tour.name)
            if key and key not in self._by_key:
                self._by_key[key] = tour.id

    def resolve(self, name: str) -> int | None:
        """Tour id for a sheet product name, or None."""
        for candidate in lookup_candidates(normalize_product_key(name)):
            tour_id = self._by_key.get(candidate)
            if tour_id is not None:
                return tour_id
        return None
