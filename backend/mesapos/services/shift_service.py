# Overview: Branch cash shifts; opening float, cash sales tally and the close-out count.

"""
Sales shift invariants

- At most one open shift per branch. The service checks first and the
  partial unique index backs the check against a concurrent open.
- Cash sales of a shift are sales of the branch closed with payment method
  "Contado" between opened_at and the close (or now, while open).
- expected = opening_cash + cash sales; difference = actual - expected.
  Both are frozen on the row when the shift closes.
- With REQUIRE_OPEN_SHIFT, no sale is opened on a branch without a shift.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, NotFound, ShiftNotOpen, ValidationError
from ..extensions import db
from ..models import Branch, Sale, SalesShift
from ..money import round_cents, sum_money
from ..validation import clean_text, coerce_money
from mesapos.time_utils import utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .staff_service import ensure_staff_for_branch

logger = logging.getLogger(__name__)

CASH_PAYMENT_METHOD = "Contado"


def _open_shift_row(branch_id: int) -> SalesShift | None:
    return (
        db.session.query(SalesShift)
        .filter_by(branch_id=branch_id, status="open")
        .first()
    )


def cash_sales_total(branch_id: int, since: datetime, until: datetime | None = None):
    """Sum of cash sales of the branch closed in [since, until]."""
    q = db.session.query(Sale.total).filter(
        Sale.branch_id == branch_id,
        Sale.status == "closed",
        Sale.payment_method == CASH_PAYMENT_METHOD,
        Sale.closed_at >= since,
    )
    if until is not None:
        q = q.filter(Sale.closed_at <= until)
    return sum_money(total for (total,) in q.all())


def open_shift(branch_id: int, opening_cash, staff_id: int | None = None, notes: str | None = None) -> SalesShift:
    """Open the branch's shift with the counted opening float."""
    opening_cash = coerce_money(opening_cash, "opening_cash")
    notes = clean_text(notes)

    def _op():
        begin_write()
        if db.session.get(Branch, branch_id) is None:
            raise NotFound("Branch not found", details={"branch_id": branch_id})
        ensure_staff_for_branch(branch_id, staff_id)

        existing = _open_shift_row(branch_id)
        if existing is not None:
            raise Conflict(
                "Branch already has an open shift",
                details={"branch_id": branch_id, "shift_id": existing.id},
            )

        now = utcnow()
        shift = SalesShift(
            branch_id=branch_id,
            staff_id=staff_id,
            status="open",
            opened_at=now,
            updated_at=now,
            opening_cash=opening_cash,
            notes=notes,
        )
        db.session.add(shift)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise Conflict("Branch already has an open shift", details={"branch_id": branch_id}) from exc

        db.session.commit()
        logger.info("Shift %s opened on branch %s with %s", shift.id, branch_id, opening_cash)
        return shift

    return run_with_retry(_op)


def close_shift(shift_id: int, actual_cash, notes: str | None = None) -> dict:
    """
    Close an open shift against the counted drawer.

    Returns the shift with its cash summary.
    """
    actual_cash = coerce_money(actual_cash, "actual_cash")
    notes = clean_text(notes)

    def _op():
        begin_write()
        shift = lock_for_update(db.session.query(SalesShift).filter_by(id=shift_id)).first()
        if shift is None:
            raise NotFound("Shift not found", details={"shift_id": shift_id})
        if not shift.is_open:
            raise Conflict("Shift is already closed", details={"shift_id": shift_id})

        now = utcnow()
        cash_total = cash_sales_total(shift.branch_id, shift.opened_at, now)
        expected = round_cents(shift.opening_cash + cash_total)

        shift.status = "closed"
        shift.closed_at = now
        shift.updated_at = now
        shift.closing_actual_cash = actual_cash
        shift.closing_expected_cash = expected
        shift.closing_difference = round_cents(actual_cash - expected)
        if notes is not None:
            shift.notes = notes

        db.session.commit()
        if shift.closing_difference != 0:
            logger.warning(
                "Shift %s closed with cash difference %s (expected %s, counted %s)",
                shift.id, shift.closing_difference, expected, actual_cash,
            )
        else:
            logger.info("Shift %s closed, cash matches (%s)", shift.id, expected)
        return _summary(shift, cash_total)

    return run_with_retry(_op)


def _summary(shift: SalesShift, cash_total) -> dict:
    return {
        "shift": shift.to_dict(),
        "cash_sales_total": str(cash_total),
        "expected_cash": str(round_cents(shift.opening_cash + cash_total)),
    }


def get_active_shift(branch_id: int) -> dict | None:
    """The open shift of the branch with its running cash tally, or None."""
    shift = _open_shift_row(branch_id)
    if shift is None:
        return None
    return _summary(shift, cash_sales_total(branch_id, shift.opened_at))


def list_shift_history(branch_id: int, limit: int | None = None) -> list[dict]:
    if limit is None:
        limit = current_app.config.get("SHIFT_HISTORY_LIMIT", 20)
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    shifts = (
        db.session.query(SalesShift)
        .filter_by(branch_id=branch_id)
        .order_by(SalesShift.opened_at.desc(), SalesShift.id.desc())
        .limit(limit)
        .all()
    )
    result = []
    for shift in shifts:
        if shift.is_open:
            cash_total = cash_sales_total(branch_id, shift.opened_at)
        else:
            cash_total = round_cents(shift.closing_expected_cash - shift.opening_cash)
        result.append(_summary(shift, cash_total))
    return result


def require_open_shift(branch_id: int) -> SalesShift:
    shift = _open_shift_row(branch_id)
    if shift is None:
        raise ShiftNotOpen("Open a shift before selling", details={"branch_id": branch_id})
    return shift
