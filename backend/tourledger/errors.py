# Overview: Exception hierarchy shared by the ledger, differ and import services.

from __future__ import annotations


class LedgerError(Exception):
    """Base for sales ledger failures. Routes map `status_code` to the response."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LedgerError):
    """400-level input problem; details["fields"] maps field path -> message."""

    def __init__(self, fields: dict[str, str]):
        message = "; ".join(f"{path}: {msg}" for path, msg in fields.items())
        super().__init__(message or "Invalid input", details={"fields": fields})
        self.fields = fields


class ItemNotFound(LedgerError):
    status_code = 400

    def __init__(self, tour_id):
        super().__init__(f"Tour not found: {tour_id}", details={"tour_id": tour_id})
        self.tour_id = tour_id


class ItemNotSellable(LedgerError):
    status_code = 400

    def __init__(self, tour_id, name: str):
        super().__init__(
            f"{name} is for import only and cannot be sold.",
            details={"tour_id": tour_id},
        )


class InsufficientStock(LedgerError):
    """Reports the short-falling tour and how many units remain."""

    status_code = 400

    def __init__(self, tour_id, name: str | None, requested: int, available: int):
        label = name or f"tour {tour_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}",
            details={
                "tour_id": tour_id,
                "name": name,
                "requested_quantity": requested,
                "available": available,
            },
        )
        self.tour_id = tour_id
        self.requested = requested
        self.available = available


class BatchNotFound(LedgerError):
    status_code = 404

    def __init__(self, batch_id: str):
        super().__init__("Batch not found", details={"batch_id": batch_id})


class BatchVoided(LedgerError):
    """Raised when mutating (editing, paying) a batch that has been voided."""

    status_code = 400

    def __init__(self, batch_id: str, action: str = "edit"):
        super().__init__(f"Cannot {action} a voided invoice", details={"batch_id": batch_id})


class BatchAlreadyVoided(LedgerError):
    status_code = 409

    def __init__(self, batch_id: str):
        super().__init__("Invoice already voided", details={"batch_id": batch_id})


class BatchNotVoided(LedgerError):
    status_code = 400

    def __init__(self, batch_id: str):
        super().__init__(
            "Only voided invoices can be deleted",
            details={"batch_id": batch_id},
        )


class UnknownLine(LedgerError):
    status_code = 400

    def __init__(self, batch_id: str, line_ids: list[int]):
        super().__init__(
            "Line does not belong to this invoice",
            details={"batch_id": batch_id, "line_ids": line_ids},
        )


class TransactionAborted(LedgerError):
    """Storage-level failure; nothing was committed and the caller may retry."""

    status_code = 503

    def __init__(self, message: str = "Transaction aborted, no changes were saved"):
        super().__init__(message)


class ImportFileError(ValueError):
    """Raised when an uploaded CSV cannot be processed at all."""
