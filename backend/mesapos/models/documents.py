from __future__ import annotations

from ..extensions import db
from mesapos.time_utils import to_utc_z, utcnow

# SUNAT catalog 01 codes
SUNAT_DOCUMENT_CODES = {"factura": "01", "boleta": "03"}

EMISSION_STATUSES = (
    "pending",
    "succeeded",
    "failed",
    "unknown",
    "resolved_issued",
    "resolved_not_issued",
)


class FiscalDocument(db.Model):
    """Electronic receipt (boleta/factura) accepted for a sale."""
    __tablename__ = "fiscal_documents"
    __table_args__ = (
        db.UniqueConstraint("document_type", "serie", "correlativo", name="uq_fiscal_documents_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    emission_attempt_id = db.Column(db.Integer, db.ForeignKey("emission_attempts.id"), nullable=True)

    document_type = db.Column(db.String(8), nullable=False)  # boleta | factura
    serie = db.Column(db.String(4), nullable=False)
    correlativo = db.Column(db.String(8), nullable=False)
    document_id = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="issued")  # issued | voided

    # Artifact locators returned by the gateway
    pdf_url = db.Column(db.String(500), nullable=True)
    xml_url = db.Column(db.String(500), nullable=True)
    cdr_url = db.Column(db.String(500), nullable=True)
    hash = db.Column(db.String(128), nullable=True)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("documents", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "emission_attempt_id": self.emission_attempt_id,
            "document_type": self.document_type,
            "serie": self.serie,
            "correlativo": self.correlativo,
            "document_id": self.document_id,
            "status": self.status,
            "pdf_url": self.pdf_url,
            "xml_url": self.xml_url,
            "cdr_url": self.cdr_url,
            "hash": self.hash,
            "issued_at": to_utc_z(self.issued_at),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
        }


class EmissionAttempt(db.Model):
    """
    One operator-initiated attempt to emit a document for a sale.

    attempt_key is sent to the gateway as Idempotency-Key. An 'unknown'
    attempt blocks further emissions for the sale until it is resolved.
    """
    __tablename__ = "emission_attempts"
    __table_args__ = (
        db.Index("ix_emission_attempts_sale_status", "sale_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    document_type = db.Column(db.String(8), nullable=False)
    attempt_key = db.Column(db.String(32), nullable=False, unique=True)

    serie = db.Column(db.String(4), nullable=True)
    correlativo = db.Column(db.String(8), nullable=True)

    # Close arguments replayed when an unknown outcome is resolved as issued
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    payment_method = db.Column(db.String(16), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="pending")
    error_message = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "document_type": self.document_type,
            "attempt_key": self.attempt_key,
            "serie": self.serie,
            "correlativo": self.correlativo,
            "customer_id": self.customer_id,
            "payment_method": self.payment_method,
            "status": self.status,
            "error_message": self.error_message,
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at) if self.finished_at else None,
        }
