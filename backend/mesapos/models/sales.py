from __future__ import annotations

from ..extensions import db
from mesapos.time_utils import to_utc_z, utcnow

SALE_STATUSES = ("open", "closed", "cancelled")
PAYMENT_METHODS = ("Contado", "Tarjeta", "Transferencia", "Otros")
SALE_DOCUMENT_TYPES = ("boleta", "factura")


class Sale(db.Model):
    """
    Sale header with lifecycle open -> closed | cancelled.

    Stock for the sale's items is reserved while the sale is open (see
    sales_service); closed/cancelled rows are immutable apart from document
    metadata attached at close time.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_branch_status", "branch_id", "status"),
        db.Index("ix_sales_closed_at", "closed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    table_id = db.Column(db.Integer, db.ForeignKey("branch_tables.id"), nullable=True, index=True)
    staff_id = db.Column(db.Integer, nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="open")

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=True)
    document_type = db.Column(db.String(8), nullable=True)
    document_id = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # Optimistic concurrency token echoed back by callers
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))
    table = db.relationship("BranchTable", foreign_keys=[table_id])
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "table_id": self.table_id,
            "staff_id": self.staff_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "subtotal": str(self.subtotal),
            "total": str(self.total),
            "payment_method": self.payment_method,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "notes": self.notes,
            "cancel_reason": self.cancel_reason,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    Line of a sale. The whole set is replaced on every save; lines are not
    versioned individually.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Snapshots taken when the line is saved
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    notes = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "total_price": str(self.total_price),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class SaleEvent(db.Model):
    """
    Append-only audit trail of sale lifecycle events.

    IMMUTABLE: rows are never updated or deleted. Written in the same DB
    transaction as the change they record, except emission outcomes, which
    are recorded after the gateway call returns.
    """
    __tablename__ = "sale_events"
    __table_args__ = (
        db.Index("ix_sale_events_sale_occurred", "sale_id", "occurred_at"),
        db.Index("ix_sale_events_type", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)  # JSON
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "branch_id": self.branch_id,
            "event_type": self.event_type,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
