# Overview: Per-branch stock counters; atomic delta writes and read helpers.

"""
Inventory Ledger invariants

- One BranchInventory row per (branch, product), created on first write.
- Sale flows mutate stock ONLY through adjust_stock (additive delta applied by
  a single UPDATE statement); no read-then-write in Python.
- set_stock is the administrative absolute write and is never used by the
  sale flows.
- No business policy lives here: callers decide whether a negative result is
  acceptable.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Branch, BranchInventory, Product
from mesapos.time_utils import utcnow


def _inventory_row(branch_id: int, product_id: int) -> BranchInventory | None:
    return (
        db.session.query(BranchInventory)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .first()
    )


def get_stock(branch_id: int, product_id: int) -> int:
    """Current stock; 0 when the pair has never been written."""
    stock = (
        db.session.query(BranchInventory.stock)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .scalar()
    )
    return int(stock or 0)


def is_inventory_tracked(branch_id: int, product: Product) -> bool:
    """Branch override when present, otherwise the product default."""
    override = (
        db.session.query(BranchInventory.inventory_activated)
        .filter_by(branch_id=branch_id, product_id=product.id)
        .scalar()
    )
    if override is not None:
        return bool(override)
    return bool(product.inventory_activated)


def adjust_stock(branch_id: int, product_id: int, delta: int, *, min_result: int | None = None) -> int | None:
    """
    Atomically add delta to the stock of (branch, product) and return the new value.

    With min_result, the write only happens when stock + delta >= min_result
    (checked inside the same UPDATE); None is returned when the guard fails.

    Does NOT commit; the caller owns the transaction so the ledger write and
    the sale write land together.
    """
    if not _apply_delta(branch_id, product_id, delta, min_result):
        if _inventory_row(branch_id, product_id) is not None:
            return None
        if min_result is not None and delta < min_result:
            return None
        if not _insert_row(branch_id, product_id, delta):
            # Lost the insert race: the row exists now, so the UPDATE applies
            if not _apply_delta(branch_id, product_id, delta, min_result):
                return None

    return get_stock(branch_id, product_id)


def _apply_delta(branch_id: int, product_id: int, delta: int, min_result: int | None) -> int:
    """The guarded single-statement write; returns the matched row count."""
    conditions = [
        BranchInventory.branch_id == branch_id,
        BranchInventory.product_id == product_id,
    ]
    if min_result is not None:
        conditions.append(BranchInventory.stock + delta >= min_result)

    stmt = (
        update(BranchInventory)
        .where(*conditions)
        .values(stock=BranchInventory.stock + delta, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def _insert_row(branch_id: int, product_id: int, stock: int) -> bool:
    """
    Create the (branch, product) row inside a SAVEPOINT.

    Returns False when another writer created it first; the surrounding
    transaction stays usable either way.
    """
    try:
        with db.session.begin_nested():
            db.session.add(BranchInventory(branch_id=branch_id, product_id=product_id, stock=stock))
    except IntegrityError:
        return False
    return True


def set_stock(branch_id: int, product_id: int, stock: int) -> BranchInventory:
    """
    Administrative absolute write ("set stock to N"). Commits.
    """
    if stock < 0:
        raise ValidationError("Stock cannot be negative")
    if db.session.get(Branch, branch_id) is None:
        raise NotFound("Branch not found")
    if db.session.get(Product, product_id) is None:
        raise NotFound("Product not found")

    row = _inventory_row(branch_id, product_id)
    if row is None:
        row = BranchInventory(branch_id=branch_id, product_id=product_id, stock=stock)
        db.session.add(row)
    else:
        row.stock = stock
        row.updated_at = utcnow()
    db.session.commit()
    return row


def set_branch_tracking(branch_id: int, product_id: int, activated: bool | None) -> BranchInventory:
    """Override (or with None, inherit) inventory tracking for one branch. Commits."""
    row = _inventory_row(branch_id, product_id)
    if row is None:
        row = BranchInventory(branch_id=branch_id, product_id=product_id, stock=0)
        db.session.add(row)
    row.inventory_activated = activated
    row.updated_at = utcnow()
    db.session.commit()
    return row


def low_stock_alerts(threshold: int = 10, branch_id: int | None = None) -> list[dict]:
    """
    Tracked products at or below threshold.

    Out-of-stock rows first, then ascending stock.
    """
    q = (
        db.session.query(BranchInventory, Product, Branch)
        .join(Product, Product.id == BranchInventory.product_id)
        .join(Branch, Branch.id == BranchInventory.branch_id)
        .filter(BranchInventory.stock <= threshold)
    )
    if branch_id is not None:
        q = q.filter(BranchInventory.branch_id == branch_id)

    alerts = []
    for inv, product, branch in q.all():
        tracked = inv.inventory_activated if inv.inventory_activated is not None else product.inventory_activated
        if not tracked:
            continue
        alerts.append({
            "product_id": product.id,
            "product_name": product.name,
            "branch_id": branch.id,
            "branch_name": branch.name,
            "stock": inv.stock,
            "is_out_of_stock": inv.stock <= 0,
        })

    alerts.sort(key=lambda a: (not a["is_out_of_stock"], a["stock"], a["product_name"]))
    return alerts
