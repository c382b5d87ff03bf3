# Overview: Service-layer operations for the tour catalog; owns every write to stock/sold.

"""
Catalog counter invariants (authoritative)

- stock == -1 marks an unlimited tour: availability is never checked and
  stock is never changed; only sold moves.
- For finite tours stock >= 0 at all times and stock moves in lockstep with
  sold (equal magnitude, opposite sign).
- The one exception is set_stock(), the explicit administrator override.
- Every counter change is a single conditional UPDATE executed inside the
  caller's transaction. There is no read-then-write of counter values, so
  two sales racing on the same tour cannot lose an update.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import and_, case, func, or_, update
from sqlalchemy.orm.util import identity_key

from ..errors import InsufficientStock, ItemNotFound, ItemNotSellable, ValidationError
from ..extensions import db
from ..models import IMPORT_ONLY_TOUR_NAME, SaleLine, Tour, UNLIMITED_STOCK
from ..validation import MAX_AMOUNT
from .concurrency import lock_for_update, run_in_transaction


def get_tour(tour_id: int) -> Tour:
    tour = db.session.get(Tour, tour_id)
    if tour is None:
        raise ItemNotFound(tour_id)
    return tour


def load_tours(tour_ids, *, lock: bool = False, sellable: bool = False) -> dict[int, Tour]:
    """
    Load every referenced tour or fail with ItemNotFound for the first missing id.

    sellable=True additionally rejects the import-only catalog entry.
    """
    ids = list(dict.fromkeys(tour_ids))
    query = db.session.query(Tour).filter(Tour.id.in_(ids))
    if lock:
        query = lock_for_update(query).populate_existing()
    found = {tour.id: tour for tour in query.all()}
    for tour_id in ids:
        tour = found.get(tour_id)
        if tour is None:
            raise ItemNotFound(tour_id)
        if sellable and tour.name == IMPORT_ONLY_TOUR_NAME:
            raise ItemNotSellable(tour.id, tour.name)
    return found


def check_availability(tours: dict[int, Tour], demand: dict[int, int]) -> None:
    """
    Raise InsufficientStock for the first finite tour whose stock cannot
    cover the requested net units. Unlimited tours always pass.
    """
    for tour_id, units in demand.items():
        if units <= 0:
            continue
        tour = tours[tour_id]
        if tour.stock == UNLIMITED_STOCK:
            continue
        if tour.stock < units:
            raise InsufficientStock(tour.id, tour.name, units, tour.stock)


def _refresh(tour_id: int) -> None:
    tour = db.session.identity_map.get(identity_key(Tour, tour_id))
    if tour is not None:
        db.session.expire(tour, ["stock", "sold"])


def reserve_units(tour_id: int, quantity: int) -> None:
    """
    Take `quantity` units: finite tours stock -= q, sold += q; unlimited sold += q.

    Conditional on stock >= q for finite tours; a zero rowcount means the
    tour vanished or another writer consumed the stock first.
    """
    if quantity <= 0:
        return
    stmt = (
        update(Tour)
        .where(Tour.id == tour_id)
        .where(or_(Tour.stock == UNLIMITED_STOCK, Tour.stock >= quantity))
        .values(
            stock=case((Tour.stock == UNLIMITED_STOCK, UNLIMITED_STOCK), else_=Tour.stock - quantity),
            sold=Tour.sold + quantity,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 0:
        tour = db.session.get(Tour, tour_id, populate_existing=True)
        if tour is None:
            raise ItemNotFound(tour_id)
        raise InsufficientStock(tour.id, tour.name, quantity, tour.stock)
    _refresh(tour_id)


def release_units(tour_id: int, quantity: int, *, unlimited_sold: bool | None = None) -> None:
    """
    Give back `quantity` units: finite tours stock += q, sold -= q.

    Unlimited tours keep their sold counter unless `unlimited_sold` (default
    from RESTORE_UNLIMITED_SOLD_ON_VOID) is set. sold never drops below 0.
    """
    if quantity <= 0:
        return
    if unlimited_sold is None:
        unlimited_sold = bool(current_app.config.get("RESTORE_UNLIMITED_SOLD_ON_VOID", False))

    stmt = update(Tour).where(Tour.id == tour_id)
    if not unlimited_sold:
        stmt = stmt.where(Tour.stock != UNLIMITED_STOCK)
    stmt = stmt.values(
        stock=case((Tour.stock == UNLIMITED_STOCK, UNLIMITED_STOCK), else_=Tour.stock + quantity),
        sold=case((Tour.sold >= quantity, Tour.sold - quantity), else_=0),
    ).execution_options(synchronize_session=False)
    db.session.execute(stmt)
    _refresh(tour_id)


def adjust_sold_only(tour_id: int, delta: int) -> None:
    """Move sold on an unlimited tour by a signed delta (floored at 0)."""
    if delta == 0:
        return
    stmt = (
        update(Tour)
        .where(and_(Tour.id == tour_id, Tour.stock == UNLIMITED_STOCK))
        .values(sold=case((Tour.sold + delta >= 0, Tour.sold + delta), else_=0))
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    _refresh(tour_id)


def apply_delta(tour: Tour, delta: int) -> None:
    """
    Apply a signed net change in units held by sale lines.

    Positive deltas reserve (conditionally), negative deltas on finite tours
    release. On unlimited tours the delta only moves sold.
    """
    if delta == 0:
        return
    if tour.stock == UNLIMITED_STOCK:
        adjust_sold_only(tour.id, delta)
    elif delta > 0:
        reserve_units(tour.id, delta)
    else:
        release_units(tour.id, -delta)


@dataclass
class CounterDrift:
    tour_id: int
    name: str
    stock: int
    sold: int
    active_units: int

    @property
    def drift(self) -> int:
        return self.sold - self.active_units

    def to_dict(self) -> dict:
        return {
            "tour_id": self.tour_id,
            "name": self.name,
            "stock": self.stock,
            "sold": self.sold,
            "active_units": self.active_units,
            "drift": self.drift,
        }


def audit_counters(*, include_unlimited: bool = False) -> list[CounterDrift]:
    """
    Compare each tour's sold counter against the units on its non-voided lines.

    Unlimited tours are skipped by default because their sold counter is an
    all-time figure that voids do not reduce.
    """
    active_units = dict(
        db.session.query(SaleLine.tour_id, func.coalesce(func.sum(SaleLine.quantity), 0))
        .filter(SaleLine.voided_at.is_(None))
        .group_by(SaleLine.tour_id)
        .all()
    )
    drifts: list[CounterDrift] = []
    for tour in db.session.query(Tour).order_by(Tour.id).all():
        if tour.stock == UNLIMITED_STOCK and not include_unlimited:
            continue
        units = int(active_units.get(tour.id, 0))
        if tour.sold != units:
            drifts.append(CounterDrift(tour.id, tour.name, tour.stock, tour.sold, units))
    return drifts


# ---------------------------------------------------------------------------
# Catalog management (admin)
# ---------------------------------------------------------------------------

def _validate_tour_fields(data: dict, *, partial: bool) -> dict:
    errors: dict[str, str] = {}
    cleaned: dict = {}

    if "name" in data or not partial:
        name = str(data.get("name") or "").strip()
        if not name:
            errors["name"] = "Name is required"
        elif len(name) > 200:
            errors["name"] = "Name must be 200 characters or less"
        cleaned["name"] = name

    if "line" in data:
        line = data.get("line")
        cleaned["line"] = (str(line).strip() or None) if line is not None else None

    if "description" in data:
        cleaned["description"] = data.get("description")

    for field, minimum in (("price", 0), ("stock", UNLIMITED_STOCK), ("sold", 0)):
        if field not in data:
            continue
        value = data.get(field)
        if not isinstance(value, int) or isinstance(value, bool):
            errors[field] = f"{field} must be a whole number"
        elif value < minimum:
            errors[field] = (
                "Stock must be -1 (always available) or 0 or more"
                if field == "stock"
                else f"{field} cannot be negative"
            )
        elif value > MAX_AMOUNT:
            errors[field] = f"{field} exceeds maximum"
        else:
            cleaned[field] = value

    if "is_active" in data:
        cleaned["is_active"] = bool(data.get("is_active"))

    if errors:
        raise ValidationError(errors)
    return cleaned


def create_tour(data: dict) -> Tour:
    fields = _validate_tour_fields(data, partial=False)
    fields.setdefault("stock", 0)
    fields.setdefault("sold", 0)
    fields.setdefault("price", 0)

    def _op():
        tour = Tour(**fields)
        db.session.add(tour)
        db.session.flush()
        return tour

    tour = run_in_transaction(_op, description="create tour")
    current_app.logger.info("Tour %s created (stock=%s)", tour.id, tour.stock)
    return tour


def set_stock(tour_id: int, stock) -> Tour:
    """
    Administrator override of the absolute stock value.

    This is the only write that breaks the stock/sold lockstep; sold is left
    untouched.
    """
    fields = _validate_tour_fields({"stock": stock}, partial=True)

    def _op():
        tour = lock_for_update(db.session.query(Tour).filter_by(id=tour_id)).first()
        if tour is None:
            raise ItemNotFound(tour_id)
        tour.stock = fields["stock"]
        return tour

    tour = run_in_transaction(_op, description="set stock")
    current_app.logger.info("Tour %s stock set to %s", tour.id, tour.stock)
    return tour


def list_tours(*, include_inactive: bool = False) -> list[Tour]:
    query = db.session.query(Tour)
    if not include_inactive:
        query = query.filter(Tour.is_active.is_(True))
    return query.order_by(Tour.name.asc(), Tour.id.asc()).all()
