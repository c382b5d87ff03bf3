# Overview: Deterministic content fingerprints that make repeated CSV imports idempotent.

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import SaleLine
from ..time_utils import to_iso_millis
from .batch_ids import ImportedBatchId


FINGERPRINT_LENGTH = 16


@dataclass(frozen=True)
class RowIdentity:
    """
    The row fields that identify one logical sale across exports.

    `total` is the raw total column (not per-item prices) and `product_cell`
    is the product cell exactly as it appears in the file.
    """

    customer_phone: str | None
    delivery_date: datetime
    total: int
    product_cell: str
    customer_name: str | None

    def canonical(self) -> str:
        return "|".join(
            [
                self.customer_phone or "",
                to_iso_millis(self.delivery_date),
                str(self.total),
                self.product_cell,
                self.customer_name or "",
            ]
        )


def fingerprint(row: RowIdentity) -> str:
    """
    SHA-256 of the canonical row text, truncated to 16 hex chars.

    Collisions only cause a row to be skipped as a duplicate; this is not a
    security boundary.
    """
    digest = hashlib.sha256(row.canonical().encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def imported_batch_id(row: RowIdentity) -> ImportedBatchId:
    return ImportedBatchId(fingerprint(row))


def batch_exists(batch_id: ImportedBatchId) -> bool:
    """True if any line (active or voided) already carries this fingerprint."""
    return (
        db.session.query(SaleLine.id)
        .filter(SaleLine.import_fingerprint == batch_id.fingerprint)
        .first()
        is not None
    )
