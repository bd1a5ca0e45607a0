# Overview: Boleta/factura emission workflow on top of the sale aggregate and the fiscal gateway.

"""
Emission workflow invariants

- Preconditions are checked before any external call; violations raise
  ValidationError and the sale stays open.
- The sale is closed only after SUNAT accepted the document. Gateway
  failures leave it open and retryable.
- Every attempt carries an attempt_key sent as Idempotency-Key.
- A pending or unknown attempt freezes the sale: item and detail edits,
  further emissions, close and cancel are refused until it settles.
- No DB transaction is held open while awaiting the gateway.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from flask import current_app

from ..errors import (
    Conflict,
    GatewayError,
    NotFound,
    SaleNotOpen,
    UnknownOutcome,
    ValidationError,
)
from ..extensions import db
from ..models import Branch, EmissionAttempt, FiscalDocument, Product, Sale, SaleItem
from ..models.sales import PAYMENT_METHODS, SALE_DOCUMENT_TYPES
from ..validation import clean_text
from mesapos.time_utils import utcnow
from .comprobante import Issuer, build_comprobante, document_number, sunat_file_name
from .concurrency import begin_write, lock_for_update, run_with_retry
from .customer_service import resolve_customer
from .event_service import UNKNOWN_OUTCOME_EVENT, append_sale_event
from .fiscal_gateway import FiscalGatewayClient, SubmitResult
from .sales_service import close_sale_locked

logger = logging.getLogger(__name__)

BLOCKING_STATUSES = ("pending", "unknown")
TOTAL_MISMATCH_EVENT = "document.total_mismatch"


class EmissionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    CLOSED = "closed"


@dataclass
class EmissionResult:
    status: EmissionStatus
    sale_id: int
    document_type: Optional[str] = None
    document_id: Optional[str] = None
    file_name: Optional[str] = None
    attempt_id: Optional[int] = None
    document: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "sale_id": self.sale_id,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "file_name": self.file_name,
            "attempt_id": self.attempt_id,
            "document": self.document,
        }


@dataclass(frozen=True)
class _ItemSnapshot:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class _ProductSnapshot:
    price: Decimal
    unit_value: Optional[Decimal]
    igv_percentage: Optional[int]


@dataclass
class _EmissionContext:
    """Everything the gateway phase needs, captured before the DB transaction ends."""
    sale_id: int
    attempt_id: int
    attempt_key: str
    document_type: str
    serie: str
    sale_total: Decimal
    items: list
    products: dict
    customer: Optional[dict]
    customer_id: Optional[int]
    payment_method: Optional[str]
    notes: Optional[str]
    customer_email: Optional[str]
    correlativo: Optional[str] = None


def get_fiscal_gateway() -> FiscalGatewayClient:
    gateway = current_app.extensions.get("fiscal_gateway")
    if gateway is None:
        gateway = FiscalGatewayClient.from_config(current_app.config)
    return gateway


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------

def _validate_factura_customer(customer: dict | None) -> None:
    if not customer:
        raise ValidationError("A factura requires customer data")
    if (customer.get("document_type") or "").strip().upper() != "RUC":
        raise ValidationError("A factura requires a customer with RUC")
    if not clean_text(customer.get("document_number")):
        raise ValidationError("Customer RUC number is required")
    if not clean_text(customer.get("name")):
        raise ValidationError("Customer name (razón social) is required")


def _validate_payment_method(payment_method: str | None) -> None:
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )


def _ensure_no_blocking_attempt(sale_id: int) -> None:
    blocking = (
        db.session.query(EmissionAttempt)
        .filter(
            EmissionAttempt.sale_id == sale_id,
            EmissionAttempt.status.in_(BLOCKING_STATUSES),
        )
        .order_by(EmissionAttempt.id.desc())
        .first()
    )
    if blocking is not None:
        raise Conflict(
            "A previous emission for this sale has an unresolved outcome; verify it with SUNAT first",
            details={"attempt_id": blocking.id, "attempt_status": blocking.status},
        )


def _begin_attempt(
    document_type: str,
    sale_id: int,
    customer: dict | None,
    metadata: dict | None,
    payment_method: str | None,
    notes: str | None,
    customer_email: str | None,
) -> _EmissionContext:
    """Steps 1-2: validate, upsert the customer, open an attempt. Commits."""
    if document_type not in SALE_DOCUMENT_TYPES:
        raise ValidationError(f"Invalid document type: {document_type}")
    _validate_payment_method(payment_method)
    if document_type == "factura":
        _validate_factura_customer(customer)

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFound("Sale not found", details={"sale_id": sale_id})
        if not sale.is_open:
            raise SaleNotOpen(f"Sale is {sale.status}", details={"sale_id": sale_id, "status": sale.status})

        items = db.session.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.id.asc()).all()
        if not items:
            raise ValidationError("Cannot emit a document for a sale without items")

        branch = db.session.get(Branch, sale.branch_id)
        serie = branch.serie_factura if document_type == "factura" else branch.serie_boleta
        if not serie:
            raise ValidationError(
                f"Branch has no serie configured for {document_type}",
                details={"branch_id": branch.id},
            )

        _ensure_no_blocking_attempt(sale.id)

        customer_row = resolve_customer(customer, metadata, commit=False)
        if document_type == "factura" and (customer_row is None or customer_row.document_type != "RUC"):
            raise ValidationError("A factura requires a customer with RUC")

        attempt = EmissionAttempt(
            sale_id=sale.id,
            document_type=document_type,
            attempt_key=uuid.uuid4().hex,
            serie=serie,
            customer_id=customer_row.id if customer_row else None,
            payment_method=payment_method,
            status="pending",
        )
        db.session.add(attempt)
        db.session.flush()

        product_ids = {i.product_id for i in items}
        products = {
            p.id: _ProductSnapshot(price=p.price, unit_value=p.unit_value, igv_percentage=p.igv_percentage)
            for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
        }
        ctx = _EmissionContext(
            sale_id=sale.id,
            attempt_id=attempt.id,
            attempt_key=attempt.attempt_key,
            document_type=document_type,
            serie=serie,
            sale_total=sale.total,
            items=[
                _ItemSnapshot(i.product_id, i.product_name, i.quantity, i.unit_price, i.total_price)
                for i in items
            ],
            products=products,
            customer=_customer_data(customer_row),
            customer_id=customer_row.id if customer_row else None,
            payment_method=payment_method,
            notes=clean_text(notes),
            customer_email=clean_text(customer_email),
        )
        append_sale_event(
            sale=sale,
            event_type="document.attempt_started",
            payload={"attempt_id": attempt.id, "document_type": document_type, "serie": serie},
        )
        db.session.commit()
        return ctx

    return run_with_retry(_op)


def _customer_data(customer_row) -> dict | None:
    if customer_row is None:
        return None
    return {
        "document_type": customer_row.document_type,
        "document_number": customer_row.document_number,
        "name": customer_row.name,
        "address": customer_row.address,
    }


# ---------------------------------------------------------------------------
# Attempt bookkeeping (each commits on its own)
# ---------------------------------------------------------------------------

def _record_number(ctx: _EmissionContext, correlativo: str) -> None:
    attempt = db.session.get(EmissionAttempt, ctx.attempt_id)
    attempt.correlativo = correlativo
    db.session.commit()
    ctx.correlativo = correlativo


def _mark_failed(ctx: _EmissionContext, message: str) -> None:
    db.session.rollback()
    attempt = db.session.get(EmissionAttempt, ctx.attempt_id)
    attempt.status = "failed"
    attempt.error_message = message
    attempt.finished_at = utcnow()
    sale = db.session.get(Sale, ctx.sale_id)
    append_sale_event(
        sale=sale,
        event_type="document.failed",
        note=message,
        payload={"attempt_id": ctx.attempt_id},
    )
    db.session.commit()
    logger.info("Emission attempt %s for sale %s failed: %s", ctx.attempt_id, ctx.sale_id, message)


def _mark_unknown(ctx: _EmissionContext, message: str) -> None:
    db.session.rollback()
    attempt = db.session.get(EmissionAttempt, ctx.attempt_id)
    attempt.status = "unknown"
    attempt.error_message = message
    attempt.finished_at = utcnow()
    sale = db.session.get(Sale, ctx.sale_id)
    append_sale_event(
        sale=sale,
        event_type=UNKNOWN_OUTCOME_EVENT,
        note=message,
        payload={
            "attempt_id": ctx.attempt_id,
            "attempt_key": ctx.attempt_key,
            "serie": ctx.serie,
            "correlativo": ctx.correlativo,
        },
    )
    db.session.commit()
    logger.warning(
        "UNKNOWN OUTCOME: sale %s attempt %s (key %s, %s-%s) needs manual verification",
        ctx.sale_id,
        ctx.attempt_id,
        ctx.attempt_key,
        ctx.serie,
        ctx.correlativo,
    )


def _persist_document(
    sale: Sale,
    attempt: EmissionAttempt,
    *,
    document_id: str,
    pdf_url: str | None = None,
    xml_url: str | None = None,
    cdr_url: str | None = None,
    hash: str | None = None,
) -> FiscalDocument:
    doc = FiscalDocument(
        sale_id=sale.id,
        emission_attempt_id=attempt.id,
        document_type=attempt.document_type,
        serie=attempt.serie,
        correlativo=attempt.correlativo,
        document_id=document_id,
        status="issued",
        pdf_url=pdf_url,
        xml_url=xml_url,
        cdr_url=cdr_url,
        hash=hash,
    )
    db.session.add(doc)
    return doc


def _close_with_document(sale: Sale, attempt: EmissionAttempt, document_id: str, notes: str | None) -> None:
    if sale.is_open:
        close_sale_locked(
            sale,
            payment_method=attempt.payment_method,
            notes=notes,
            customer_id=attempt.customer_id,
            document_type=attempt.document_type,
            document_id=document_id,
        )
    else:
        # Issued at SUNAT even though the sale was ended elsewhere meanwhile
        logger.error("Document %s issued for sale %s which is already %s", document_id, sale.id, sale.status)
        append_sale_event(
            sale=sale,
            event_type="document.issued_for_terminal_sale",
            payload={"document_id": document_id, "status": sale.status},
        )


def _finish_success(ctx: _EmissionContext, submitted: SubmitResult) -> FiscalDocument:
    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=ctx.sale_id)).first()
        attempt = db.session.get(EmissionAttempt, ctx.attempt_id)
        _close_with_document(sale, attempt, submitted.document_id, ctx.notes)
        if sale.total != ctx.sale_total:
            # The issued document is authoritative; the sale keeps its own items
            logger.error(
                "Sale %s closed at %s but document %s was issued for %s",
                sale.id,
                sale.total,
                submitted.document_id,
                ctx.sale_total,
            )
            append_sale_event(
                sale=sale,
                event_type=TOTAL_MISMATCH_EVENT,
                payload={
                    "attempt_id": attempt.id,
                    "document_id": submitted.document_id,
                    "document_total": ctx.sale_total,
                    "sale_total": sale.total,
                },
            )
        doc = _persist_document(
            sale,
            attempt,
            document_id=submitted.document_id,
            pdf_url=submitted.pdf_url,
            xml_url=submitted.xml_url,
            cdr_url=submitted.cdr_url,
            hash=submitted.hash,
        )
        attempt.status = "succeeded"
        attempt.finished_at = utcnow()
        append_sale_event(
            sale=sale,
            event_type="document.issued",
            payload={"attempt_id": attempt.id, "document_id": submitted.document_id},
        )
        db.session.commit()
        return doc

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

async def _emit(
    document_type: str,
    sale_id: int,
    customer: dict | None,
    metadata: dict | None,
    payment_method: str | None,
    notes: str | None,
    customer_email: str | None,
    gateway: FiscalGatewayClient | None,
) -> EmissionResult:
    gateway = gateway or get_fiscal_gateway()
    issuer = Issuer.from_config(current_app.config)
    ctx = _begin_attempt(document_type, sale_id, customer, metadata, payment_method, notes, customer_email)

    try:
        # Step 3: numbering + XML generation
        correlativo = await gateway.suggest_number(
            document_type, ctx.serie, idempotency_key=ctx.attempt_key
        )
        _record_number(ctx, correlativo)

        body = build_comprobante(
            total=ctx.sale_total,
            items=ctx.items,
            document_type=document_type,
            serie=ctx.serie,
            correlativo=correlativo,
            customer=ctx.customer,
            issued_at=utcnow(),
            default_igv=current_app.config.get("IGV_PERCENTAGE", 18),
            currency=current_app.config.get("CURRENCY", "PEN"),
            notes=ctx.notes,
            products=ctx.products,
            issuer=issuer,
        )
        await gateway.generate_document(body, idempotency_key=ctx.attempt_key)

        # Step 4: submission to SUNAT
        submitted = await gateway.submit_document(
            document_type,
            ctx.serie,
            correlativo,
            idempotency_key=ctx.attempt_key,
            customer_email=ctx.customer_email,
        )
    except UnknownOutcome as e:
        _mark_unknown(ctx, e.message)
        raise
    except GatewayError as e:
        _mark_failed(ctx, e.message)
        raise
    except Exception:
        _mark_failed(ctx, "Unexpected error during emission")
        raise

    doc = _finish_success(ctx, submitted)
    logger.info("Sale %s emitted %s %s", ctx.sale_id, document_type, submitted.document_id)
    return EmissionResult(
        status=EmissionStatus.SUCCESS,
        sale_id=ctx.sale_id,
        document_type=document_type,
        document_id=submitted.document_id,
        file_name=sunat_file_name(issuer.ruc, document_type, ctx.serie, correlativo) if issuer.ruc else None,
        attempt_id=ctx.attempt_id,
        document=doc.to_dict(),
    )


async def emit_boleta(
    sale_id: int,
    customer: dict | None = None,
    metadata: dict | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
    customer_email: str | None = None,
    gateway: FiscalGatewayClient | None = None,
) -> EmissionResult:
    """Boleta: the customer is optional (anonymous "CLIENTE VARIOS" when absent)."""
    return await _emit("boleta", sale_id, customer, metadata, payment_method, notes, customer_email, gateway)


async def emit_factura(
    sale_id: int,
    customer: dict | None = None,
    metadata: dict | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
    customer_email: str | None = None,
    gateway: FiscalGatewayClient | None = None,
) -> EmissionResult:
    """Factura: requires a RUC customer with number and razón social."""
    return await _emit("factura", sale_id, customer, metadata, payment_method, notes, customer_email, gateway)


def close_without_document(
    sale_id: int,
    payment_method: str | None = None,
    notes: str | None = None,
    customer: dict | None = None,
    metadata: dict | None = None,
) -> EmissionResult:
    """Plain close, optionally recording the customer; no gateway involved."""
    _validate_payment_method(payment_method)

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFound("Sale not found", details={"sale_id": sale_id})
        if not sale.is_open:
            raise SaleNotOpen(f"Sale is {sale.status}", details={"sale_id": sale_id, "status": sale.status})
        _ensure_no_blocking_attempt(sale.id)

        customer_row = resolve_customer(customer, metadata, commit=False)
        close_sale_locked(
            sale,
            payment_method=payment_method,
            notes=notes,
            customer_id=customer_row.id if customer_row else None,
        )
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    return EmissionResult(status=EmissionStatus.CLOSED, sale_id=sale.id)


def resolve_unknown_emission(
    attempt_id: int,
    issued: bool,
    document_id: str | None = None,
    *,
    correlativo: str | None = None,
    pdf_url: str | None = None,
    xml_url: str | None = None,
    cdr_url: str | None = None,
    hash: str | None = None,
    notes: str | None = None,
) -> EmissionAttempt:
    """
    Operator reconciliation after checking SUNAT by hand.

    issued=True records the document and closes the sale as the attempt
    would have; issued=False frees the sale for another emission.
    """
    def _op():
        begin_write()
        attempt = db.session.get(EmissionAttempt, attempt_id)
        if attempt is None:
            raise NotFound("Emission attempt not found", details={"attempt_id": attempt_id})
        if attempt.status not in BLOCKING_STATUSES:
            raise Conflict(
                f"Emission attempt is {attempt.status}; nothing to resolve",
                details={"attempt_id": attempt_id},
            )

        sale = lock_for_update(db.session.query(Sale).filter_by(id=attempt.sale_id)).first()
        now = utcnow()

        if issued:
            if correlativo:
                attempt.correlativo = clean_text(correlativo)
            if not attempt.correlativo:
                raise ValidationError("correlativo is required to record an issued document")
            doc_id = clean_text(document_id) or document_number(attempt.serie, attempt.correlativo)
            _close_with_document(sale, attempt, doc_id, notes)
            _persist_document(
                sale,
                attempt,
                document_id=doc_id,
                pdf_url=pdf_url,
                xml_url=xml_url,
                cdr_url=cdr_url,
                hash=hash,
            )
            attempt.status = "resolved_issued"
        else:
            attempt.status = "resolved_not_issued"

        attempt.finished_at = attempt.finished_at or now
        append_sale_event(
            sale=sale,
            event_type=f"document.{attempt.status}",
            payload={"attempt_id": attempt.id},
        )
        db.session.commit()
        logger.info("Emission attempt %s resolved as %s", attempt.id, attempt.status)
        return attempt

    return run_with_retry(_op)


async def void_document(sale_id: int, reason: str, gateway: FiscalGatewayClient | None = None) -> FiscalDocument:
    """Void the issued document of a closed sale; the sale itself stays closed."""
    reason = clean_text(reason)
    if not reason:
        raise ValidationError("A reason is required to void a document")

    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    if sale.status != "closed":
        raise ValidationError("Only closed sales have documents to void")
    doc = (
        db.session.query(FiscalDocument)
        .filter_by(sale_id=sale_id, status="issued")
        .order_by(FiscalDocument.id.desc())
        .first()
    )
    if doc is None:
        raise ValidationError("Sale has no issued document")
    doc_id, doc_type, serie, corr = doc.id, doc.document_type, doc.serie, doc.correlativo
    db.session.commit()

    gateway = gateway or get_fiscal_gateway()
    await gateway.void_document(doc_type, serie, corr, reason)

    doc = db.session.get(FiscalDocument, doc_id)
    doc.status = "voided"
    doc.voided_at = utcnow()
    doc.void_reason = reason
    append_sale_event(
        sale=db.session.get(Sale, sale_id),
        event_type="document.voided",
        note=reason,
        payload={"document_id": doc.document_id},
    )
    db.session.commit()
    logger.info("Document %s of sale %s voided", doc.document_id, sale_id)
    return doc


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def emission_state(sale_id: int) -> dict:
    """UI-visible emission state derived from what is persisted."""
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})

    last = (
        db.session.query(EmissionAttempt)
        .filter_by(sale_id=sale_id)
        .order_by(EmissionAttempt.id.desc())
        .first()
    )
    if sale.status == "closed":
        status = EmissionStatus.SUCCESS if sale.document_id else EmissionStatus.CLOSED
    elif last is None or last.status == "resolved_not_issued":
        status = EmissionStatus.IDLE
    elif last.status == "pending":
        status = EmissionStatus.LOADING
    else:
        status = EmissionStatus.ERROR

    return {
        "sale_id": sale_id,
        "sale_status": sale.status,
        "status": status.value,
        "last_attempt": last.to_dict() if last else None,
    }


def list_unresolved_attempts(branch_id: int | None = None) -> list[EmissionAttempt]:
    q = db.session.query(EmissionAttempt).filter(EmissionAttempt.status.in_(BLOCKING_STATUSES))
    if branch_id is not None:
        q = q.join(Sale, Sale.id == EmissionAttempt.sale_id).filter(Sale.branch_id == branch_id)
    return q.order_by(EmissionAttempt.started_at.asc()).all()

