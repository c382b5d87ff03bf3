from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Fields every line of a batch carries identically (the invoice header).
CUSTOMER_FIELDS = (
    "customer_name",
    "customer_phone",
    "cedula",
    "provincia",
    "municipio",
    "customer_address",
    "notes",
    "delivery_date",
    "visit_date",
    "supervisor",
    "seller_name",
    "is_paid",
)


class SaleLine(db.Model):
    """
    One line of a sale batch (invoice).

    WHY: A batch is not stored as its own row; it is the set of lines sharing
    batch_id. Customer, payment and void state are copied onto every line and
    kept uniform by services.sales_service.

    BATCH IDS:
    - batch_source=GENERATED: batch_id is "sale_<uuid hex>"
    - batch_source=IMPORTED: batch_id is "import_<fingerprint>" and
      import_fingerprint holds the bare fingerprint for dedup lookups
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("total >= 0", name="ck_sale_lines_total_nonnegative"),
        db.Index("ix_sale_lines_batch_created", "batch_id", "created_at"),
        db.Index("ix_sale_lines_supervisor", "supervisor"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.String(64), nullable=False, index=True)
    batch_source = db.Column(db.String(16), nullable=False, default="GENERATED")
    import_fingerprint = db.Column(db.String(32), nullable=True, index=True)

    tour_id = db.Column(db.Integer, db.ForeignKey("tours.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    total = db.Column(db.Integer, nullable=False)

    # Partial payment ("abono") and amount still owed ("pendiente")
    deposit = db.Column(db.Integer, nullable=True)
    balance_due = db.Column(db.Integer, nullable=True)

    # Customer / invoice header
    customer_name = db.Column(db.String(200), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)
    cedula = db.Column(db.String(20), nullable=True)
    provincia = db.Column(db.String(100), nullable=True)
    municipio = db.Column(db.String(100), nullable=True)
    customer_address = db.Column(db.String(300), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    visit_date = db.Column(db.DateTime(timezone=True), nullable=True)
    supervisor = db.Column(db.String(200), nullable=True)
    seller_name = db.Column(db.String(200), nullable=True)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)

    # Void audit trail (null voided_at = active)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    void_reason = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tour = db.relationship("Tour")

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    def header(self) -> dict:
        """Customer/invoice fields to copy onto a new line of the same batch."""
        return {field: getattr(self, field) for field in CUSTOMER_FIELDS}

    def to_dict(self, include_tour: bool = False) -> dict:
        data = {
            "id": self.id,
            "batch_id": self.batch_id,
            "batch_source": self.batch_source,
            "tour_id": self.tour_id,
            "quantity": self.quantity,
            "total": self.total,
            "deposit": self.deposit,
            "balance_due": self.balance_due,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "cedula": self.cedula,
            "provincia": self.provincia,
            "municipio": self.municipio,
            "customer_address": self.customer_address,
            "notes": self.notes,
            "delivery_date": to_utc_z(self.delivery_date),
            "visit_date": to_utc_z(self.visit_date),
            "supervisor": self.supervisor,
            "seller_name": self.seller_name,
            "is_paid": self.is_paid,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_tour:
            data["tour"] = self.tour.to_dict() if self.tour else None
        return data
