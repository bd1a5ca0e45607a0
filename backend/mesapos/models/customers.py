from __future__ import annotations

from ..extensions import db
from mesapos.time_utils import to_utc_z, utcnow

CUSTOMER_DOCUMENT_TYPES = ("RUC", "DNI")


class Customer(db.Model):
    """
    Customer identified by a Peruvian tax document (RUC or DNI).

    Upserted during document emission; never deleted by the sale workflow.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("document_type", "document_number", name="uq_customers_document"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(3), nullable=False)
    document_number = db.Column(db.String(11), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "document_number": self.document_number,
            "name": self.name,
            "address": self.address,
            "email": self.email,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
