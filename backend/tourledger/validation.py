from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import ValidationError
from .services.reconciliation import ProposedLine
from .time_utils import parse_iso_datetime


MAX_ITEMS_PER_SALE = 100
MAX_QUANTITY = 1000
# Largest whole-currency amount accepted for totals, deposits and prices.
MAX_AMOUNT = 1_000_000_000
# Row ids must fit a signed 64-bit column.
MAX_ID = 2 ** 63 - 1

# field -> max length for free-text customer fields
_TEXT_LIMITS = {
    "customer_name": 200,
    "customer_phone": 50,
    "cedula": 20,
    "provincia": 100,
    "municipio": 100,
    "customer_address": 300,
    "notes": 1000,
    "supervisor": 200,
    "seller_name": 200,
}


class _Errors:
    """Collects per-field messages; first message per path wins."""

    def __init__(self):
        self.fields: dict[str, str] = {}

    def add(self, path: str, message: str) -> None:
        self.fields.setdefault(path, message)

    def raise_if_any(self) -> None:
        if self.fields:
            raise ValidationError(self.fields)


def _coerce_int(value: Any, path: str, errors: _Errors, *, minimum: int | None = None,
                maximum: int | None = None, label: str | None = None) -> int | None:
    label = label or path.rsplit(".", 1)[-1]
    if isinstance(value, bool):
        errors.add(path, f"{label} must be a whole number")
        return None
    if isinstance(value, float):
        if not value.is_integer():
            errors.add(path, f"{label} must be a whole number")
            return None
        value = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not stripped.lstrip("-").isdigit():
            errors.add(path, f"{label} must be a whole number")
            return None
        value = int(stripped)
    elif not isinstance(value, int):
        errors.add(path, f"{label} must be a whole number")
        return None

    if minimum is not None and value < minimum:
        errors.add(path, f"{label} must be at least {minimum}" if minimum > 0 else f"{label} cannot be negative")
        return None
    if maximum is not None and value > maximum:
        errors.add(path, f"{label} exceeds maximum")
        return None
    return value


def _optional_text(data: dict, key: str, errors: _Errors, *, required: bool = False) -> str | None:
    value = data.get(key)
    if value is None:
        if required:
            errors.add(key, "is required")
        return None
    if not isinstance(value, str):
        errors.add(key, "must be a string")
        return None
    text = value.strip()
    if required and not text:
        errors.add(key, "is required")
        return None
    limit = _TEXT_LIMITS.get(key)
    if limit and len(text) > limit:
        errors.add(key, f"must be {limit} characters or less")
        return None
    return text or None


def _optional_datetime(data: dict, key: str, errors: _Errors, *, required: bool = False) -> datetime | None:
    value = data.get(key)
    if value in (None, ""):
        if required:
            errors.add(key, "is required")
        return None
    if not isinstance(value, str):
        errors.add(key, "must be an ISO-8601 datetime")
        return None
    try:
        return parse_iso_datetime(value)
    except (ValueError, OverflowError):
        errors.add(key, "must be an ISO-8601 datetime")
        return None


def parse_items(payload: Any, *, allow_line_id: bool) -> list[ProposedLine]:
    """
    Validate the `items` array of a create or edit request.

    Each item: tour_id, quantity (1..1000), total (0..MAX_AMOUNT), optional deposit
    and balance_due (same range), and on edits an optional line_id.
    """
    errors = _Errors()
    if not isinstance(payload, dict):
        raise ValidationError({"body": "must be a JSON object"})
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError({"items": "At least one item is required"})
    if len(items) > MAX_ITEMS_PER_SALE:
        raise ValidationError({"items": "Too many items in sale"})

    parsed: list[ProposedLine] = []
    for index, item in enumerate(items):
        prefix = f"items.{index}"
        if not isinstance(item, dict):
            errors.add(prefix, "must be an object")
            continue
        if item.get("tour_id") in (None, ""):
            errors.add(f"{prefix}.tour_id", "Tour ID is required")
            tour_id = None
        else:
            tour_id = _coerce_int(item.get("tour_id"), f"{prefix}.tour_id", errors, minimum=1, maximum=MAX_ID)
        quantity = _coerce_int(item.get("quantity"), f"{prefix}.quantity", errors,
                               minimum=1, maximum=MAX_QUANTITY, label="Quantity")
        total = _coerce_int(item.get("total"), f"{prefix}.total", errors, minimum=0,
                            maximum=MAX_AMOUNT, label="Total")
        deposit = None
        if item.get("deposit") is not None:
            deposit = _coerce_int(item.get("deposit"), f"{prefix}.deposit", errors, minimum=0,
                                  maximum=MAX_AMOUNT, label="Deposit")
        balance_due = None
        if item.get("balance_due") is not None:
            balance_due = _coerce_int(item.get("balance_due"), f"{prefix}.balance_due", errors,
                                      minimum=0, maximum=MAX_AMOUNT, label="Balance due")
        line_id = None
        if item.get("line_id") is not None:
            if not allow_line_id:
                errors.add(f"{prefix}.line_id", "not allowed when creating a sale")
            else:
                line_id = _coerce_int(item.get("line_id"), f"{prefix}.line_id", errors, minimum=1, maximum=MAX_ID)

        if tour_id is not None and quantity is not None and total is not None:
            parsed.append(
                ProposedLine(
                    tour_id=tour_id,
                    quantity=quantity,
                    total=total,
                    line_id=line_id,
                    deposit=deposit,
                    balance_due=balance_due,
                )
            )

    errors.raise_if_any()
    return parsed


@dataclass
class CustomerInput:
    customer_name: str
    customer_phone: str
    visit_date: datetime
    cedula: str | None = None
    provincia: str | None = None
    municipio: str | None = None
    customer_address: str | None = None
    notes: str | None = None
    supervisor: str | None = None
    seller_name: str | None = None
    is_paid: bool = False

    def as_columns(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "visit_date": self.visit_date,
            "cedula": self.cedula,
            "provincia": self.provincia,
            "municipio": self.municipio,
            "customer_address": self.customer_address,
            "notes": self.notes,
            "supervisor": self.supervisor,
            "seller_name": self.seller_name,
            "is_paid": self.is_paid,
        }


def parse_customer(payload: dict) -> CustomerInput:
    """Validate the invoice header of a new interactive sale."""
    errors = _Errors()
    name = _optional_text(payload, "customer_name", errors, required=True)
    phone = _optional_text(payload, "customer_phone", errors, required=True)
    visit_date = _optional_datetime(payload, "visit_date", errors, required=True)
    extras = {
        key: _optional_text(payload, key, errors)
        for key in ("cedula", "provincia", "municipio", "customer_address", "notes", "supervisor", "seller_name")
    }
    is_paid = payload.get("is_paid", False)
    if not isinstance(is_paid, bool):
        errors.add("is_paid", "must be a boolean")
    errors.raise_if_any()
    return CustomerInput(
        customer_name=name,
        customer_phone=phone,
        visit_date=visit_date,
        is_paid=bool(is_paid),
        **extras,
    )


_UPDATABLE_HEADER_FIELDS = (
    "customer_name",
    "customer_phone",
    "cedula",
    "provincia",
    "municipio",
    "customer_address",
    "notes",
    "supervisor",
    "seller_name",
)


def parse_customer_patch(payload: Any) -> dict:
    """
    Validate a partial invoice-header update. Only keys present in the
    payload are returned; customer_name cannot be blanked.
    """
    if not isinstance(payload, dict):
        raise ValidationError({"body": "must be a JSON object"})
    errors = _Errors()
    patch: dict = {}
    for key in _UPDATABLE_HEADER_FIELDS:
        if key in payload:
            patch[key] = _optional_text(payload, key, errors, required=(key == "customer_name"))
    for key in ("delivery_date", "visit_date"):
        if key in payload:
            patch[key] = _optional_datetime(payload, key, errors)
    errors.raise_if_any()
    return patch


def parse_is_paid(payload: Any) -> bool:
    if not isinstance(payload, dict) or not isinstance(payload.get("is_paid"), bool):
        raise ValidationError({"is_paid": "is_paid must be a boolean"})
    return payload["is_paid"]


def parse_void_reason(payload: Any) -> str | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValidationError({"body": "must be a JSON object"})
    reason = payload.get("reason")
    if reason is None:
        return None
    if not isinstance(reason, str):
        raise ValidationError({"reason": "must be a string"})
    if len(reason) > 500:
        raise ValidationError({"reason": "must be 500 characters or less"})
    return reason.strip() or None
