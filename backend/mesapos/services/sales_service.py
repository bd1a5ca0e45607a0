# Overview: Sale aggregate; item replacement with stock reservation and the open/closed/cancelled lifecycle.

"""
Sale lifecycle invariants

- open -> closed | cancelled; both terminal. Terminal sales only receive
  document metadata at close time.
- While a sale is open, the ledger holds exactly its persisted item
  quantities for tracked products: every write applies new - old per product.
- A positive delta on a product that disallows negative sale needs
  stock >= delta; the check and the decrement are one UPDATE.
- subtotal == total == sum(item.total_price).
- Every rejected operation rolls back: sale, ledger and tables unchanged.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..errors import (
    Conflict,
    InsufficientStock,
    NotFound,
    SaleNotOpen,
    ValidationError,
)
from ..extensions import db
from ..models import Branch, Customer, EmissionAttempt, Product, Sale, SaleItem
from ..models.sales import PAYMENT_METHODS, SALE_DOCUMENT_TYPES
from ..money import line_total, sum_money
from ..validation import clean_text, coerce_int, coerce_money, coerce_optional_int, coerce_quantity
from mesapos.time_utils import as_utc_naive, parse_iso_datetime, to_utc_z, utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .event_service import append_sale_event
from .inventory_service import adjust_stock, get_stock, is_inventory_tracked
from .shift_service import require_open_shift
from .staff_service import ensure_staff_for_branch
from . import table_service

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Sentinel for "field not supplied" in partial updates (None means "clear")
UNSET = _Unset()


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------

def _normalize_items(items) -> list[dict]:
    """Coerce raw item inputs; product existence is checked against the DB later."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    normalized = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        product_id = raw.get("product_id")
        if product_id is None:
            raise ValidationError(f"items[{idx}].product_id required")
        unit_price = raw.get("unit_price")
        normalized.append({
            "product_id": coerce_int(product_id, f"items[{idx}].product_id"),
            "quantity": coerce_quantity(raw.get("quantity"), f"items[{idx}].quantity"),
            "unit_price": (
                coerce_money(unit_price, f"items[{idx}].unit_price") if unit_price is not None else None
            ),
            "product_name": clean_text(raw.get("product_name")),
            "notes": clean_text(raw.get("notes")),
        })
    return normalized


def _build_lines(branch_id: int, items: list[dict], *, allow_inactive: set[int] | None = None) -> list[dict]:
    """Resolve products and snapshot name/price onto each line."""
    allow_inactive = allow_inactive or set()
    product_ids = {item["product_id"] for item in items}
    products = {}
    if product_ids:
        products = {
            p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
        }

    lines = []
    for item in items:
        product = products.get(item["product_id"])
        if product is None:
            raise NotFound("Product not found", details={"product_id": item["product_id"]})
        if not product.is_active and product.id not in allow_inactive:
            raise ValidationError("Product is not active", details={"product_id": product.id})

        unit_price = item["unit_price"] if item["unit_price"] is not None else product.price
        lines.append({
            "product": product,
            "product_name": item["product_name"] or product.name,
            "quantity": item["quantity"],
            "unit_price": Decimal(unit_price),
            "total_price": line_total(item["quantity"], unit_price),
            "notes": item["notes"],
        })
    return lines


def _quantities(lines) -> "OrderedDict[int, int]":
    totals: "OrderedDict[int, int]" = OrderedDict()
    for line in lines:
        if isinstance(line, SaleItem):
            pid, qty = line.product_id, line.quantity
        else:
            pid, qty = line["product"].id, line["quantity"]
        totals[pid] = totals.get(pid, 0) + qty
    return totals


def _parse_expected(expected_updated_at) -> datetime | None:
    if expected_updated_at is None or isinstance(expected_updated_at, datetime):
        return as_utc_naive(expected_updated_at)
    try:
        return parse_iso_datetime(str(expected_updated_at))
    except ValueError:
        raise ValidationError("expected_updated_at must be an ISO-8601 datetime")


def _check_fresh(sale: Sale, expected: datetime | None) -> None:
    if expected is None:
        return
    if as_utc_naive(sale.updated_at) != expected:
        raise Conflict(
            "Sale was modified by another terminal; reload and retry",
            details={"sale_id": sale.id, "updated_at": to_utc_z(sale.updated_at)},
        )


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def _require_open(sale: Sale) -> None:
    if not sale.is_open:
        raise SaleNotOpen(
            f"Sale is {sale.status}",
            details={"sale_id": sale.id, "status": sale.status},
        )


# ---------------------------------------------------------------------------
# Ledger reconciliation
# ---------------------------------------------------------------------------

def _apply_reservation(branch_id: int, old: dict[int, int], new: dict[int, int]) -> None:
    """
    Apply new - old per product to the ledger for tracked products.

    Raises InsufficientStock on the first product that cannot cover its
    positive delta; the caller's rollback undoes earlier adjustments.
    """
    product_ids = list(OrderedDict.fromkeys(list(old) + list(new)))
    for product_id in product_ids:
        delta = new.get(product_id, 0) - old.get(product_id, 0)
        if delta == 0:
            continue
        product = db.session.get(Product, product_id)
        if product is None or not is_inventory_tracked(branch_id, product):
            continue

        if delta > 0 and not product.allow_negative_sale:
            result = adjust_stock(branch_id, product_id, -delta, min_result=0)
            if result is None:
                available = get_stock(branch_id, product_id)
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}. Available: {available}, requested: {delta}",
                    details={
                        "product_id": product_id,
                        "available": available,
                        "requested": delta,
                    },
                )
        else:
            adjust_stock(branch_id, product_id, -delta)


def _write_items(sale: Sale, lines: list[dict]) -> None:
    for line in lines:
        db.session.add(SaleItem(
            sale_id=sale.id,
            product_id=line["product"].id,
            product_name=line["product_name"],
            quantity=line["quantity"],
            unit_price=line["unit_price"],
            total_price=line["total_price"],
            notes=line["notes"],
        ))
    total = sum_money(line["total_price"] for line in lines)
    sale.subtotal = total
    sale.total = total


def _recompute_totals(sale: Sale) -> None:
    items = db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
    total = sum_money(line_total(i.quantity, i.unit_price) for i in items)
    sale.subtotal = total
    sale.total = total


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def create_sale(
    branch_id: int,
    table_id: int | None = None,
    staff_id: int | None = None,
    items=None,
    notes: str | None = None,
) -> Sale:
    """Open a new sale, reserving stock and claiming the table in one transaction."""
    normalized = _normalize_items(items)
    notes = clean_text(notes)

    def _op():
        begin_write()
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFound("Branch not found", details={"branch_id": branch_id})
        ensure_staff_for_branch(branch_id, staff_id)
        if current_app.config.get("REQUIRE_OPEN_SHIFT"):
            require_open_shift(branch_id)

        lines = _build_lines(branch_id, normalized)
        now = utcnow()
        sale = Sale(
            branch_id=branch_id,
            staff_id=staff_id,
            status="open",
            notes=notes,
            opened_at=now,
            updated_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        _write_items(sale, lines)
        _apply_reservation(branch_id, {}, _quantities(lines))

        if table_id is not None:
            table_service.try_assign(table_id, sale.id, branch_id=branch_id)
            sale.table_id = table_id

        append_sale_event(sale=sale, event_type="sale.created", payload={"items": len(lines)})
        db.session.commit()
        logger.info("Sale %s opened on branch %s", sale.id, branch_id)
        return sale

    return run_with_retry(_op)


def set_sale_items(sale_id: int, items, expected_updated_at=None) -> Sale:
    """
    Replace the sale's items with the given whole-list snapshot.

    Idempotent: sending the same snapshot twice leaves the ledger unchanged.
    """
    normalized = _normalize_items(items)
    expected = _parse_expected(expected_updated_at)

    def _op():
        begin_write()
        sale = _lock_sale(sale_id)
        _require_open(sale)
        _check_fresh(sale, expected)
        _ensure_no_pending_emission(sale)

        current = db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
        old = _quantities(current)
        lines = _build_lines(sale.branch_id, normalized, allow_inactive=set(old))
        _apply_reservation(sale.branch_id, old, _quantities(lines))

        for item in current:
            db.session.delete(item)
        db.session.flush()
        _write_items(sale, lines)
        sale.updated_at = utcnow()

        append_sale_event(sale=sale, event_type="sale.items_replaced", payload={"items": len(lines)})
        db.session.commit()
        return sale

    return run_with_retry(_op)


def update_sale_details(
    sale_id: int,
    table_id=UNSET,
    staff_id=UNSET,
    notes=UNSET,
    expected_updated_at=None,
) -> Sale:
    """
    Partial update of an open sale's table, staff and notes.

    Table changes go through the tracker; staff and notes are independent of
    the table and only change when supplied. A new staff member must be
    active and belong to the sale's branch.
    """
    if table_id is not UNSET:
        table_id = coerce_optional_int(table_id, "table_id")
    if staff_id is not UNSET:
        staff_id = coerce_optional_int(staff_id, "staff_id")
    if notes is not UNSET:
        notes = clean_text(notes)
    expected = _parse_expected(expected_updated_at)

    def _op():
        begin_write()
        sale = _lock_sale(sale_id)
        _require_open(sale)
        _check_fresh(sale, expected)
        _ensure_no_pending_emission(sale)

        if table_id is not UNSET and table_id != sale.table_id:
            if table_id is not None:
                table_service.try_assign(table_id, sale.id, branch_id=sale.branch_id)
            if sale.table_id is not None:
                table_service.release(sale.table_id, sale.id)
            append_sale_event(
                sale=sale,
                event_type="sale.table_changed",
                payload={"from": sale.table_id, "to": table_id},
            )
            sale.table_id = table_id

        if staff_id is not UNSET:
            ensure_staff_for_branch(sale.branch_id, staff_id)
            sale.staff_id = staff_id
        if notes is not UNSET:
            sale.notes = notes

        sale.updated_at = utcnow()
        db.session.commit()
        return sale

    return run_with_retry(_op)


def _validate_close_args(payment_method, document_type, customer_id) -> None:
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    if document_type is not None and document_type not in SALE_DOCUMENT_TYPES:
        raise ValidationError(
            f"Invalid document type: {document_type}",
            details={"allowed": list(SALE_DOCUMENT_TYPES)},
        )
    if document_type == "factura" and customer_id is None:
        raise ValidationError("A factura requires a customer")


def close_sale_locked(
    sale: Sale,
    *,
    payment_method: str | None = None,
    notes: str | None = None,
    customer_id: int | None = None,
    document_type: str | None = None,
    document_id: str | None = None,
) -> Sale:
    """
    open -> closed on an already locked sale. Does NOT commit.

    Used by close_sale and by the emission workflow, which persists the
    fiscal document in the same transaction.
    """
    _require_open(sale)
    _validate_close_args(payment_method, document_type, customer_id)
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})

    _recompute_totals(sale)
    now = utcnow()
    sale.status = "closed"
    sale.closed_at = now
    sale.updated_at = now
    if payment_method is not None:
        sale.payment_method = payment_method
    if notes is not None:
        sale.notes = clean_text(notes)
    if customer_id is not None:
        sale.customer_id = customer_id
    if document_type is not None:
        sale.document_type = document_type
    if document_id is not None:
        sale.document_id = document_id

    if sale.table_id is not None:
        table_service.release(sale.table_id, sale.id)

    append_sale_event(
        sale=sale,
        event_type="sale.closed",
        payload={"document_type": document_type, "document_id": document_id, "total": sale.total},
    )
    return sale


def close_sale(
    sale_id: int,
    payment_method: str | None = None,
    notes: str | None = None,
    customer_id: int | None = None,
    document_type: str | None = None,
    document_id: str | None = None,
) -> Sale:
    """Close an open sale; stock stays consumed and the table is released."""
    _validate_close_args(payment_method, document_type, customer_id)

    def _op():
        begin_write()
        sale = _lock_sale(sale_id)
        _require_open(sale)
        _ensure_no_pending_emission(sale)
        close_sale_locked(
            sale,
            payment_method=payment_method,
            notes=notes,
            customer_id=customer_id,
            document_type=document_type,
            document_id=document_id,
        )
        db.session.commit()
        logger.info("Sale %s closed (document=%s)", sale.id, document_type or "none")
        return sale

    return run_with_retry(_op)


def _ensure_no_pending_emission(sale: Sale) -> None:
    """
    While an attempt is pending or unknown the document SUNAT holds (or may
    hold) describes the items as they were when the attempt started, so the
    sale can neither change nor end through another path.
    """
    unresolved = (
        db.session.query(EmissionAttempt.id)
        .filter(
            EmissionAttempt.sale_id == sale.id,
            EmissionAttempt.status.in_(("pending", "unknown")),
        )
        .first()
    )
    if unresolved is not None:
        raise Conflict(
            "Sale has an emission with unresolved outcome",
            details={"sale_id": sale.id, "attempt_id": unresolved.id},
        )


def cancel_sale(sale_id: int, reason: str | None = None) -> Sale:
    """open -> cancelled; gives back every reserved unit and frees the table."""
    reason = clean_text(reason)

    def _op():
        begin_write()
        sale = _lock_sale(sale_id)
        _require_open(sale)
        _ensure_no_pending_emission(sale)

        current = db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
        _apply_reservation(sale.branch_id, _quantities(current), {})

        now = utcnow()
        sale.status = "cancelled"
        sale.cancel_reason = reason
        sale.updated_at = now
        if sale.table_id is not None:
            table_service.release(sale.table_id, sale.id)

        append_sale_event(sale=sale, event_type="sale.cancelled", note=reason)
        db.session.commit()
        logger.info("Sale %s cancelled", sale.id)
        return sale

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_sale(sale_id: int) -> dict:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})

    data = sale.to_dict()
    data["items"] = [item.to_dict() for item in sale.items]
    data["table"] = sale.table.to_dict() if sale.table else None
    data["customer"] = sale.customer.to_dict() if sale.customer else None
    issued = [d for d in sale.documents if d.status == "issued"]
    data["document"] = issued[-1].to_dict() if issued else None
    return data


def list_open_sales(branch_id: int) -> list[dict]:
    sales = (
        db.session.query(Sale)
        .filter_by(branch_id=branch_id, status="open")
        .order_by(Sale.opened_at.asc(), Sale.id.asc())
        .all()
    )
    result = []
    for sale in sales:
        data = sale.to_dict()
        data["item_count"] = sum(item.quantity for item in sale.items)
        data["table_label"] = sale.table.label if sale.table else None
        result.append(data)
    return result


def list_sale_history(
    branch_id: int | None = None,
    staff_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 10,
    offset: int = 0,
) -> dict:
    """Closed sales, newest first, with a total count for pagination."""
    if limit < 1 or limit > 200:
        raise ValidationError("limit must be between 1 and 200")
    if offset < 0:
        raise ValidationError("offset cannot be negative")

    q = db.session.query(Sale).filter(Sale.status == "closed")
    if branch_id is not None:
        q = q.filter(Sale.branch_id == branch_id)
    if staff_id is not None:
        q = q.filter(Sale.staff_id == staff_id)
    if date_from is not None:
        q = q.filter(Sale.closed_at >= date_from)
    if date_to is not None:
        q = q.filter(Sale.closed_at <= date_to)

    total = q.count()
    sales = q.order_by(Sale.closed_at.desc(), Sale.id.desc()).offset(offset).limit(limit).all()
    return {
        "items": [s.to_dict() for s in sales],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
