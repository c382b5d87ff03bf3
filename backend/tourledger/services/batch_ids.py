# Overview: Structured batch identifiers (generated vs imported) and their string encoding.

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Union


GENERATED = "GENERATED"
IMPORTED = "IMPORTED"

_GENERATED_PREFIX = "sale_"
_IMPORTED_PREFIX = "import_"
_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{8,64}$")


@dataclass(frozen=True)
class GeneratedBatchId:
    """Batch created interactively; identified by a random UUID."""

    value: str

    source = GENERATED

    @classmethod
    def new(cls) -> "GeneratedBatchId":
        return cls(uuid.uuid4().hex)

    @property
    def fingerprint(self) -> None:
        return None

    def encode(self) -> str:
        return f"{_GENERATED_PREFIX}{self.value}"

    def __str__(self) -> str:
        return self.encode()


@dataclass(frozen=True)
class ImportedBatchId:
    """Batch created from an import row; identified by the row fingerprint."""

    fingerprint: str

    source = IMPORTED

    def __post_init__(self):
        if not _FINGERPRINT_RE.match(self.fingerprint):
            raise ValueError(f"invalid import fingerprint: {self.fingerprint!r}")

    def encode(self) -> str:
        return f"{_IMPORTED_PREFIX}{self.fingerprint}"

    def __str__(self) -> str:
        return self.encode()


BatchId = Union[GeneratedBatchId, ImportedBatchId]


def parse_batch_id(raw: str) -> BatchId:
    """
    Decode a stored batch_id string.

    Legacy generated ids ("sale_<millis>_<random>") are kept verbatim in
    GeneratedBatchId.value so they round-trip through encode().
    """
    if not raw:
        raise ValueError("empty batch id")
    if raw.startswith(_IMPORTED_PREFIX):
        return ImportedBatchId(raw[len(_IMPORTED_PREFIX):])
    if raw.startswith(_GENERATED_PREFIX):
        return GeneratedBatchId(raw[len(_GENERATED_PREFIX):])
    raise ValueError(f"unrecognized batch id: {raw!r}")


def line_columns(batch_id: BatchId) -> dict:
    """Column values a SaleLine needs to carry for this batch id."""
    return {
        "batch_id": batch_id.encode(),
        "batch_source": batch_id.source,
        "import_fingerprint": batch_id.fingerprint,
    }
