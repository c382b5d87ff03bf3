# Overview: Three-way diff between a batch's current lines and a proposed line set.

"""
Batch reconciliation

Given the lines currently stored for a batch and the full list of lines the
caller wants the batch to contain, classify every line into exactly one of
three disjoint work lists:

- updates: proposed lines whose line_id matches an existing line
- additions: proposed lines without a line_id
- removals: existing lines whose id is absent from the proposal

Proposed line_ids that do not belong to the batch are reported separately so
the caller can reject the edit instead of silently dropping them.

The diff is pure (no database access). Inventory effects are summarised per
tour as units consumed and units released so the ledger can check
availability on the net demand and then apply one conditional counter update
per tour.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ExistingLine:
    line_id: int
    tour_id: int
    quantity: int


@dataclass(frozen=True)
class ProposedLine:
    tour_id: int
    quantity: int
    total: int
    line_id: int | None = None
    deposit: int | None = None
    balance_due: int | None = None


@dataclass(frozen=True)
class LineUpdate:
    existing: ExistingLine
    proposed: ProposedLine

    @property
    def changes_tour(self) -> bool:
        return self.existing.tour_id != self.proposed.tour_id

    @property
    def quantity_delta(self) -> int:
        return self.proposed.quantity - self.existing.quantity


@dataclass
class BatchDiff:
    updates: list[LineUpdate] = field(default_factory=list)
    additions: list[ProposedLine] = field(default_factory=list)
    removals: list[ExistingLine] = field(default_factory=list)
    unknown_line_ids: list[int] = field(default_factory=list)
    duplicate_line_ids: list[int] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.unknown_line_ids and not self.duplicate_line_ids

    def consumed_by_tour(self) -> dict[int, int]:
        """
        Units newly taken (or, for negative values, handed back by a same-tour
        quantity decrease) per tour. Insertion order follows the proposal.
        """
        consumed: dict[int, int] = {}
        for upd in self.updates:
            if upd.changes_tour:
                _add(consumed, upd.proposed.tour_id, upd.proposed.quantity)
            else:
                _add(consumed, upd.proposed.tour_id, upd.quantity_delta)
        for line in self.additions:
            _add(consumed, line.tour_id, line.quantity)
        return consumed

    def released_by_tour(self) -> dict[int, int]:
        """Units freed by removed lines and by lines moved to another tour."""
        released: dict[int, int] = {}
        for upd in self.updates:
            if upd.changes_tour:
                _add(released, upd.existing.tour_id, upd.existing.quantity)
        for line in self.removals:
            _add(released, line.tour_id, line.quantity)
        return released

    def net_by_tour(self, *, include_released: bool = True) -> dict[int, int]:
        """Signed net units per tour; positive means stock must be taken."""
        net = dict(self.consumed_by_tour())
        if include_released:
            for tour_id, units in self.released_by_tour().items():
                _add(net, tour_id, -units)
        return net

    def touched_tour_ids(self) -> list[int]:
        ids = list(self.consumed_by_tour())
        ids.extend(t for t in self.released_by_tour() if t not in ids)
        return ids


def _add(bucket: dict[int, int], tour_id: int, units: int) -> None:
    bucket[tour_id] = bucket.get(tour_id, 0) + units


def diff_batch(existing: list[ExistingLine], proposed: list[ProposedLine]) -> BatchDiff:
    """Classify proposed lines against existing ones; see module docstring."""
    current = {line.line_id: line for line in existing}
    diff = BatchDiff()
    seen: set[int] = set()

    for line in proposed:
        if line.line_id is None:
            diff.additions.append(line)
            continue
        if line.line_id in seen:
            diff.duplicate_line_ids.append(line.line_id)
            continue
        seen.add(line.line_id)
        match = current.get(line.line_id)
        if match is None:
            diff.unknown_line_ids.append(line.line_id)
        else:
            diff.updates.append(LineUpdate(existing=match, proposed=line))

    diff.removals = [line for line in existing if line.line_id not in seen]
    return diff
