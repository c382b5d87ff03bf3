# Overview: Service-layer operations for CSV sales imports; per-row isolation and fingerprint dedup.

"""
Sales CSV import

Each data row becomes one imported batch whose id is derived from the row
content (see services.fingerprint), so uploading the same export twice
creates nothing the second time.

Rows are independent: every row resolves its products, checks for an
existing batch and inserts its lines in its own transaction. A row that
fails is reported in the grouped error list and the next row continues.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import ImportFileError, LedgerError
from ..extensions import db
from ..models import Tour
from ..time_utils import parse_loose_date, utcnow
from .concurrency import run_in_transaction
from .csv_parser import (
    CellRangeError,
    ProductResolver,
    build_header_map,
    get_cell,
    parse_amount,
    parse_int_cell,
    parse_paid,
    parse_product_cell,
    parse_quantity,
    split_records,
)
from .fingerprint import RowIdentity, batch_exists, imported_batch_id
from .reconciliation import ProposedLine
from .sales_service import Actor, insert_batch


DEFAULT_SUPERVISOR = "Importado"
DEFAULT_SELLER = "Importado"
UNEXPECTED_ROW_ERROR = "Error inesperado al procesar la fila"


class ErrorGroups:
    """Row errors grouped by message, in first-seen order."""

    def __init__(self):
        self._rows: dict[str, set[int]] = {}

    def add(self, message: str, row_number: int) -> None:
        self._rows.setdefault(message, set()).add(row_number)

    def __bool__(self) -> bool:
        return bool(self._rows)

    def to_list(self) -> list[dict]:
        return [{"message": msg, "rows": sorted(rows)} for msg, rows in self._rows.items()]


@dataclass
class ImportResult:
    created: int = 0
    skipped: int = 0
    total_rows: int = 0
    errors: ErrorGroups = field(default_factory=ErrorGroups)

    def to_dict(self) -> dict:
        body = {
            "success": True,
            "created": self.created,
            "skipped": self.skipped,
            "totalRows": self.total_rows,
        }
        if self.errors:
            body["errors"] = self.errors.to_list()
        return body


@dataclass
class _ParsedRow:
    row_number: int
    batch_id: object
    lines: list[ProposedLine]
    header: dict


def _decode(raw: bytes) -> str:
    max_bytes = current_app.config.get("IMPORT_MAX_BYTES", 5 * 1024 * 1024)
    if len(raw) > max_bytes:
        raise ImportFileError(f"File exceeds the {max_bytes} byte limit")
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportFileError("File must be UTF-8 encoded CSV") from exc


def _default_supervisor() -> str:
    names = current_app.config.get("IMPORT_DEFAULT_SUPERVISORS") or []
    return names[0] if names else DEFAULT_SUPERVISOR


def _parse_row(
    row: list[str],
    row_number: int,
    header_map: dict[str, int],
    resolver: ProductResolver,
    errors: ErrorGroups,
    default_supervisor: str,
) -> _ParsedRow | None:
    product_cell = get_cell(row, header_map, "product")
    try:
        segments = parse_product_cell(product_cell)
    except CellRangeError:
        errors.add(f'Precio inválido en "{product_cell}"', row_number)
        return None
    if not segments:
        errors.add("Producto vacío", row_number)
        return None

    quantity_cell = get_cell(row, header_map, "quantity") if "quantity" in header_map else None
    try:
        total_from_column = parse_amount(get_cell(row, header_map, "total"))
        per_item_quantity = 1 if len(segments) > 1 else parse_quantity(quantity_cell)
        deposit = parse_int_cell(get_cell(row, header_map, "deposit"))
        balance_due = parse_int_cell(get_cell(row, header_map, "balance_due"))
    except CellRangeError:
        errors.add("Valor numérico fuera de rango", row_number)
        return None

    resolved: list[tuple[int, int]] = []
    for segment in segments:
        if len(segments) == 1 and total_from_column > 0:
            total = total_from_column
        elif segment.price is not None:
            total = segment.price
        else:
            total = total_from_column
        if total < 0:
            errors.add(f'Total inválido para "{segment.lookup_name}"', row_number)
            return None
        tour_id = resolver.resolve(segment.lookup_name)
        if tour_id is None:
            errors.add(f'Producto no encontrado: "{segment.lookup_name}"', row_number)
            return None
        resolved.append((tour_id, total))

    date_cell = get_cell(row, header_map, "date")
    delivery_cell = get_cell(row, header_map, "delivery_date", "date")
    visit_cell = get_cell(row, header_map, "visit_date", "date")
    sale_date = (
        parse_loose_date(date_cell)
        or parse_loose_date(delivery_cell)
        or parse_loose_date(visit_cell)
        or utcnow()
    )
    delivery_date = parse_loose_date(delivery_cell) or sale_date
    visit_date = parse_loose_date(visit_cell) or sale_date

    customer_name = get_cell(row, header_map, "customer_name") or None
    customer_phone = get_cell(row, header_map, "customer_phone") or None
    header = {
        "customer_name": customer_name,
        "customer_phone": customer_phone,
        "cedula": get_cell(row, header_map, "cedula") or None,
        "provincia": get_cell(row, header_map, "provincia") or None,
        "municipio": get_cell(row, header_map, "municipio") or None,
        "customer_address": get_cell(row, header_map, "customer_address") or None,
        "notes": get_cell(row, header_map, "notes") or None,
        "delivery_date": delivery_date,
        "visit_date": visit_date,
        "supervisor": get_cell(row, header_map, "supervisor") or default_supervisor,
        "seller_name": get_cell(row, header_map, "seller_name") or DEFAULT_SELLER,
        "is_paid": parse_paid(get_cell(row, header_map, "is_paid")),
    }

    lines = [
        ProposedLine(
            tour_id=tour_id,
            quantity=per_item_quantity,
            total=total,
            # Partial payments belong to the invoice, so only the first line carries them.
            deposit=deposit if index == 0 else None,
            balance_due=balance_due if index == 0 else None,
        )
        for index, (tour_id, total) in enumerate(resolved)
    ]

    identity = RowIdentity(
        customer_phone=customer_phone,
        delivery_date=delivery_date,
        total=total_from_column,
        product_cell=product_cell,
        customer_name=customer_name,
    )
    return _ParsedRow(row_number, imported_batch_id(identity), lines, header)


def _insert_row(parsed: _ParsedRow) -> bool:
    """Insert one parsed row in its own transaction; False if it was imported before."""
    def _op():
        if batch_exists(parsed.batch_id):
            return False
        insert_batch(parsed.batch_id, parsed.lines, parsed.header, sellable_only=False)
        return True

    return run_in_transaction(_op, description=f"import row {parsed.row_number}")


def import_sales_csv(raw: bytes, *, actor: Actor) -> ImportResult:
    """
    Import sales from CSV bytes.

    File-level problems (size, encoding, missing header or required
    columns) raise ImportFileError before any row is touched. Row problems
    are collected in the result; row numbers count the header as row 1.
    """
    text = _decode(raw)
    records = split_records(text)
    if len(records) < 2:
        raise ImportFileError("CSV must have a header row and at least one data row")

    header_map = build_header_map(records[0])
    if "product" not in header_map or "total" not in header_map:
        raise ImportFileError(
            "CSV must include a product column (producto/productos) and a total column "
            "(total/precio/monto). Quantity (cantidad) is optional and defaults to 1."
        )

    resolver = ProductResolver(db.session.query(Tour).order_by(Tour.id.asc()).all())
    default_supervisor = _default_supervisor()
    result = ImportResult(total_rows=len(records) - 1)

    for index, row in enumerate(records[1:], start=2):
        try:
            parsed = _parse_row(row, index, header_map, resolver, result.errors, default_supervisor)
            if parsed is None:
                continue
            inserted = _insert_row(parsed)
        except LedgerError as exc:
            current_app.logger.warning("Import row %s rejected: %s", index, exc)
            result.errors.add(str(exc), index)
            continue
        except Exception:
            # Any other failure stays confined to its row; the transaction was rolled back.
            current_app.logger.exception("Import row %s failed", index)
            result.errors.add(UNEXPECTED_ROW_ERROR, index)
            continue

        if inserted:
            result.created += len(parsed.lines)
        else:
            result.skipped += len(parsed.lines)

    current_app.logger.info(
        "Sales import by user %s: %d created, %d skipped, %d rows, %d error group(s)",
        actor.user_id, result.created, result.skipped, result.total_rows, len(result.errors.to_list()),
    )
    return result
