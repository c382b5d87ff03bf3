from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


UNLIMITED_STOCK = -1

# Catalog entry that only exists so historical imports have something to
# point at; it is never offered for interactive sales.
IMPORT_ONLY_TOUR_NAME = "Importación de Reservas"


class Tour(db.Model):
    """
    Catalog item (tour/product) with its shared inventory counters.

    COUNTERS:
    - stock: units still available; -1 means unlimited (never checked or decremented)
    - sold: cumulative units sold on non-voided sale lines

    Counters are only written through services.catalog_service, always as
    conditional UPDATE statements inside the caller's transaction.
    """
    __tablename__ = "tours"
    __table_args__ = (
        db.CheckConstraint("stock >= -1", name="ck_tours_stock_floor"),
        db.CheckConstraint("sold >= 0", name="ck_tours_sold_floor"),
        db.Index("ix_tours_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    line = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Whole currency units
    price = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    sold = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_unlimited(self) -> bool:
        return self.stock == UNLIMITED_STOCK

    def __repr__(self) -> str:
        return f"<Tour id={self.id} name={self.name!r} stock={self.stock} sold={self.sold}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "line": self.line,
            "description": self.description,
            "price": self.price,
            "stock": self.stock,
            "sold": self.sold,
            "is_unlimited": self.is_unlimited,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
