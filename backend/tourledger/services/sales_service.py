# Overview: Sales ledger; creates, edits, voids and deletes sale batches atomically with catalog counters.

"""
Sales ledger

WHY: A batch (invoice) is a group of SaleLine rows sharing batch_id. Every
mutation of a batch changes the shared tour counters, so each operation here
runs as one transaction: all existence checks, stock checks, line writes and
counter writes commit together or not at all.

Counter rules:
- create / add line: finite tours stock -= q, sold += q; unlimited sold += q
- quantity change on a kept line: signed delta applied the same way
  (unlimited tours only ever see sold move, never stock)
- remove line / void: finite tours stock += q, sold -= q; unlimited tours
  keep sold unless RESTORE_UNLIMITED_SOLD_ON_VOID is enabled
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import false, func

from ..errors import (
    BatchAlreadyVoided,
    BatchNotFound,
    BatchNotVoided,
    BatchVoided,
    ItemNotSellable,
    UnknownLine,
    ValidationError,
)
from ..extensions import db
from ..models import IMPORT_ONLY_TOUR_NAME, SaleLine, UNLIMITED_STOCK
from ..time_utils import utcnow
from . import catalog_service
from .batch_ids import BatchId, GeneratedBatchId, line_columns
from .concurrency import lock_for_update, run_in_transaction
from .reconciliation import ExistingLine, ProposedLine, diff_batch


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50
MAX_LIMIT = 100


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as seen by the ledger (role + identity for scoping)."""

    role: str
    user_id: int | None = None
    supervisor_name: str | None = None

    @property
    def is_supervisor(self) -> bool:
        return self.role == "supervisor"


SYSTEM_ACTOR = Actor(role="admin")


def _scoped(query, actor: Actor):
    # Supervisors only ever see batches recorded under their own name.
    if actor.is_supervisor:
        if not actor.supervisor_name:
            return query.filter(false())
        return query.filter(SaleLine.supervisor == actor.supervisor_name)
    return query


def _load_batch_lines(batch_id: str, actor: Actor, *, lock: bool = False) -> list[SaleLine]:
    query = _scoped(db.session.query(SaleLine).filter(SaleLine.batch_id == batch_id), actor)
    if lock:
        query = lock_for_update(query)
    lines = query.order_by(SaleLine.created_at.asc(), SaleLine.id.asc()).all()
    if not lines:
        raise BatchNotFound(batch_id)
    return lines


def _demand_by_tour(items: list[ProposedLine]) -> dict[int, int]:
    demand: dict[int, int] = {}
    for item in items:
        demand[item.tour_id] = demand.get(item.tour_id, 0) + item.quantity
    return demand


def _new_line(batch_columns: dict, item: ProposedLine, header: dict) -> SaleLine:
    return SaleLine(
        **batch_columns,
        tour_id=item.tour_id,
        quantity=item.quantity,
        total=item.total,
        deposit=item.deposit,
        balance_due=item.balance_due,
        **header,
    )


def insert_batch(
    batch_id: BatchId,
    items: list[ProposedLine],
    header: dict,
    *,
    sellable_only: bool = True,
) -> list[SaleLine]:
    """
    Insert a batch inside the caller's open transaction.

    All tours are loaded and checked before the first write; counters are
    then moved with one conditional update per tour so a concurrent sale
    that got there first still fails cleanly with InsufficientStock.
    """
    tours = catalog_service.load_tours([i.tour_id for i in items], lock=True, sellable=sellable_only)
    demand = _demand_by_tour(items)
    catalog_service.check_availability(tours, demand)

    columns = line_columns(batch_id)
    lines = [_new_line(columns, item, header) for item in items]
    db.session.add_all(lines)

    for tour_id, units in demand.items():
        catalog_service.reserve_units(tour_id, units)

    db.session.flush()
    return lines


def create_batch(
    items: list[ProposedLine],
    customer: dict,
    *,
    actor: Actor,
    delivery_date: datetime | None = None,
) -> BatchId:
    """
    Create a new batch of sale lines and take their units from the catalog.

    `customer` holds the invoice header columns (see models.CUSTOMER_FIELDS).
    Fails with ItemNotFound / ItemNotSellable / InsufficientStock before any
    write; nothing is persisted on failure.
    """
    if not items:
        raise ValidationError({"items": "At least one item is required"})

    header = dict(customer)
    header["delivery_date"] = delivery_date or utcnow()
    if actor.is_supervisor:
        header["supervisor"] = actor.supervisor_name
    batch_id = GeneratedBatchId.new()

    def _op():
        insert_batch(batch_id, items, header, sellable_only=True)
        return batch_id

    result = run_in_transaction(_op, description="create batch")
    current_app.logger.info(
        "Batch %s created with %d line(s) by user %s", result, len(items), actor.user_id
    )
    return result


def update_batch(batch_id: str, proposed: list[ProposedLine], *, actor: Actor) -> list[SaleLine]:
    """
    Reconcile a batch to exactly the proposed lines (add / update / remove).

    Availability is checked on the net units per tour after the diff, then
    counters move once per tour and line rows are written in proposal order,
    removals last. Any failure rolls back the whole edit.
    """
    if not proposed:
        raise ValidationError({"items": "At least one item is required"})
    restore_unlimited = bool(current_app.config.get("RESTORE_UNLIMITED_SOLD_ON_VOID", False))

    def _op():
        lines = _load_batch_lines(batch_id, actor, lock=True)
        if any(line.is_voided for line in lines):
            raise BatchVoided(batch_id)

        diff = diff_batch([ExistingLine(l.id, l.tour_id, l.quantity) for l in lines], proposed)
        if not diff.is_valid:
            if diff.duplicate_line_ids:
                raise ValidationError({"items": f"Duplicate line ids: {sorted(set(diff.duplicate_line_ids))}"})
            raise UnknownLine(batch_id, diff.unknown_line_ids)

        tours = catalog_service.load_tours(diff.touched_tour_ids(), lock=True)
        incoming = {a.tour_id for a in diff.additions}
        incoming.update(u.proposed.tour_id for u in diff.updates if u.changes_tour)
        for tour_id in incoming:
            if tours[tour_id].name == IMPORT_ONLY_TOUR_NAME:
                raise ItemNotSellable(tour_id, tours[tour_id].name)

        # Unlimited tours keep their all-time sold figure unless restores are enabled.
        full = diff.net_by_tour()
        consumed_only = diff.net_by_tour(include_released=False)
        net: dict[int, int] = {}
        for tour_id in diff.touched_tour_ids():
            if tours[tour_id].stock == UNLIMITED_STOCK and not restore_unlimited:
                net[tour_id] = consumed_only.get(tour_id, 0)
            else:
                net[tour_id] = full.get(tour_id, 0)
        catalog_service.check_availability(tours, net)

        for tour_id, delta in net.items():
            catalog_service.apply_delta(tours[tour_id], delta)

        by_id = {line.id: line for line in lines}
        template = lines[0]
        header = template.header()
        columns = {
            "batch_id": template.batch_id,
            "batch_source": template.batch_source,
            "import_fingerprint": template.import_fingerprint,
        }
        for item in proposed:
            if item.line_id is None:
                db.session.add(_new_line(columns, item, header))
                continue
            line = by_id[item.line_id]
            line.tour_id = item.tour_id
            line.quantity = item.quantity
            line.total = item.total
            line.deposit = item.deposit
            line.balance_due = item.balance_due
        for removed in diff.removals:
            db.session.delete(by_id[removed.line_id])

        db.session.flush()
        return diff

    diff = run_in_transaction(_op, description="update batch")
    current_app.logger.info(
        "Batch %s updated: %d updated, %d added, %d removed",
        batch_id, len(diff.updates), len(diff.additions), len(diff.removals),
    )
    return get_batch(batch_id, actor=actor)


def _release_lines(lines: list[SaleLine]) -> None:
    released: dict[int, int] = {}
    for line in lines:
        released[line.tour_id] = released.get(line.tour_id, 0) + line.quantity
    for tour_id, units in released.items():
        catalog_service.release_units(tour_id, units)


def void_batch(batch_id: str, reason: str | None = None, *, actor: Actor) -> list[SaleLine]:
    """
    Void every line of a batch and give their units back to the catalog.

    Irreversible: there is no un-void. Voided batches can later be removed
    with delete_voided_batch().
    """
    reason = (reason or "").strip() or None

    def _op():
        lines = _load_batch_lines(batch_id, actor, lock=True)
        if any(line.is_voided for line in lines):
            raise BatchAlreadyVoided(batch_id)

        _release_lines(lines)

        now = utcnow()
        for line in lines:
            line.voided_at = now
            line.void_reason = reason
        db.session.flush()
        return lines

    lines = run_in_transaction(_op, description="void batch")
    current_app.logger.info("Batch %s voided by user %s", batch_id, actor.user_id)
    return lines


def delete_voided_batch(batch_id: str, *, actor: Actor) -> int:
    """
    Permanently delete a batch whose lines are all voided.

    Counters are untouched: the void already restored inventory.
    """
    def _op():
        lines = _load_batch_lines(batch_id, actor, lock=True)
        if not all(line.is_voided for line in lines):
            raise BatchNotVoided(batch_id)
        deleted = (
            db.session.query(SaleLine)
            .filter(SaleLine.batch_id == batch_id)
            .delete(synchronize_session=False)
        )
        return deleted

    deleted = run_in_transaction(_op, description="delete batch")
    current_app.logger.info("Voided batch %s deleted (%d line(s))", batch_id, deleted)
    return deleted


def update_payment(batch_id: str, is_paid: bool, *, actor: Actor) -> list[SaleLine]:
    def _op():
        lines = _load_batch_lines(batch_id, actor, lock=True)
        if any(line.is_voided for line in lines):
            raise BatchVoided(batch_id, action="update payment status of")
        for line in lines:
            line.is_paid = is_paid
        return lines

    return run_in_transaction(_op, description="update payment")


def update_customer(batch_id: str, patch: dict, *, actor: Actor) -> list[SaleLine]:
    """
    Apply a partial invoice-header update to every line of the batch so the
    header stays identical across lines.
    """
    if actor.is_supervisor and "supervisor" in patch:
        raise ValidationError({"supervisor": "Supervisors cannot reassign invoices"})

    def _op():
        lines = _load_batch_lines(batch_id, actor, lock=True)
        for line in lines:
            for key, value in patch.items():
                setattr(line, key, value)
        return lines

    if not patch:
        return get_batch(batch_id, actor=actor)
    return run_in_transaction(_op, description="update invoice")


def get_batch(batch_id: str, *, actor: Actor) -> list[SaleLine]:
    return _load_batch_lines(batch_id, actor)


def summarize_batch(lines: list[SaleLine]) -> dict:
    """Invoice view of a batch: shared header plus lines and totals."""
    first = lines[0]
    return {
        "batch_id": first.batch_id,
        "batch_source": first.batch_source,
        "total": sum(line.total for line in lines),
        "quantity": sum(line.quantity for line in lines),
        "is_voided": any(line.is_voided for line in lines),
        "is_paid": first.is_paid,
        "customer_name": first.customer_name,
        "customer_phone": first.customer_phone,
        "supervisor": first.supervisor,
        "seller_name": first.seller_name,
        "lines": [line.to_dict(include_tour=True) for line in lines],
    }


def sales_stats(*, actor: Actor) -> dict:
    """
    Ledger-wide sales summary.

    Paid revenue and units count paid, non-voided lines. Seller and provincia
    rankings count every non-voided line (paid or not), keyed on the trimmed
    name; blank names are left out. Rankings are ordered by value, highest first.
    """
    active = _scoped(db.session.query(SaleLine), actor).filter(SaleLine.voided_at.is_(None))

    paid_revenue, paid_units = (
        active.filter(SaleLine.is_paid.is_(True))
        .with_entities(
            func.coalesce(func.sum(SaleLine.total), 0),
            func.coalesce(func.sum(SaleLine.quantity), 0),
        )
        .one()
    )

    seller = func.trim(SaleLine.seller_name)
    seller_revenue = func.coalesce(func.sum(SaleLine.total), 0)
    sellers = (
        active.filter(seller != "")
        .with_entities(
            seller.label("seller_name"),
            seller_revenue.label("total_revenue"),
            func.count(func.distinct(SaleLine.batch_id)).label("invoice_count"),
        )
        .group_by(seller)
        .order_by(seller_revenue.desc(), seller.asc())
        .all()
    )

    provincia = func.trim(SaleLine.provincia)
    provincia_total = func.coalesce(func.sum(SaleLine.total), 0)
    provincias = (
        active.filter(provincia != "")
        .with_entities(provincia.label("provincia"), provincia_total.label("total"))
        .group_by(provincia)
        .order_by(provincia_total.desc(), provincia.asc())
        .all()
    )

    return {
        "paidRevenue": int(paid_revenue),
        "paidUnits": int(paid_units),
        "topSellers": [
            {
                "sellerName": row.seller_name,
                "totalRevenue": int(row.total_revenue),
                "invoiceCount": int(row.invoice_count),
            }
            for row in sellers
        ],
        "provinciaStats": [{"provincia": row.provincia, "total": int(row.total)} for row in provincias],
    }


def list_sales(
    *,
    actor: Actor,
    year: int | None = None,
    month: int | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    """
    Sale lines ordered by batch then creation, optionally filtered to a
    calendar year/month and paginated (default 50 per page, max 100).
    """
    query = _scoped(db.session.query(SaleLine), actor)

    if year:
        if month:
            start = datetime(year, month, 1)
            end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        else:
            start = datetime(year, 1, 1)
            end = datetime(year + 1, 1, 1)
        query = query.filter(SaleLine.created_at >= start, SaleLine.created_at < end)

    query = query.order_by(SaleLine.batch_id.asc(), SaleLine.created_at.asc(), SaleLine.id.asc())

    if page is None and limit is None:
        return {"data": [line.to_dict(include_tour=True) for line in query.all()]}

    page = max(1, int(page or DEFAULT_PAGE))
    limit = min(MAX_LIMIT, max(1, int(limit or DEFAULT_LIMIT)))
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    total_pages = (total + limit - 1) // limit
    return {
        "data": [line.to_dict(include_tour=True) for line in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }
