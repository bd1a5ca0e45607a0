# Overview: Table assignment tracker; compare-and-set occupancy for open sales.

"""
Table tracker invariants

- A table is referenced by at most one open sale: try_assign is a single
  conditional UPDATE, so two terminals racing for the same table cannot both win.
- out_of_service is sticky: release never flips it back to available.
- The tracker never initiates sale transitions; sales_service calls it.
- Functions here flush but do not commit unless documented otherwise.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, update

from ..errors import NotFound, TableOccupied, ValidationError
from ..extensions import db
from ..models import BranchTable, Sale
from ..models.tables import TABLE_STATUSES
from mesapos.time_utils import utcnow

logger = logging.getLogger(__name__)


def get_table(table_id: int) -> BranchTable:
    table = db.session.get(BranchTable, table_id)
    if table is None:
        raise NotFound("Table not found", details={"table_id": table_id})
    return table


def try_assign(table_id: int, sale_id: int, *, branch_id: int | None = None) -> BranchTable:
    """
    Attach sale_id to the table if it is free (or already ours).

    Raises TableOccupied when another sale holds it, ValidationError when the
    table is out of service or belongs to a different branch.
    """
    table = get_table(table_id)
    if branch_id is not None and table.branch_id != branch_id:
        raise ValidationError("Table belongs to another branch", details={"table_id": table_id})
    if table.status == "out_of_service":
        raise ValidationError("Table is out of service", details={"table_id": table_id})

    stmt = (
        update(BranchTable)
        .where(
            BranchTable.id == table_id,
            BranchTable.status != "out_of_service",
            or_(BranchTable.current_sale_id.is_(None), BranchTable.current_sale_id == sale_id),
        )
        .values(status="occupied", current_sale_id=sale_id)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.refresh(table)

    if not result.rowcount:
        if table.status == "out_of_service":
            raise ValidationError("Table is out of service", details={"table_id": table_id})
        logger.info("Table %s already held by sale %s", table_id, table.current_sale_id)
        raise TableOccupied(
            f"Table {table.label} is occupied",
            details={"table_id": table_id, "current_sale_id": table.current_sale_id},
        )
    return table


def release(table_id: int, sale_id: int | None = None) -> bool:
    """
    Clear the table's sale pointer.

    With sale_id, only releases when the table currently points at that sale.
    Returns True when a row changed.
    """
    conditions = [BranchTable.id == table_id]
    if sale_id is not None:
        conditions.append(BranchTable.current_sale_id == sale_id)

    cleared = db.session.execute(
        update(BranchTable)
        .where(*conditions, BranchTable.status == "out_of_service")
        .values(current_sale_id=None)
        .execution_options(synchronize_session=False)
    ).rowcount
    freed = db.session.execute(
        update(BranchTable)
        .where(*conditions, BranchTable.status != "out_of_service")
        .values(current_sale_id=None, status="available")
        .execution_options(synchronize_session=False)
    ).rowcount

    table = db.session.get(BranchTable, table_id)
    if table is not None:
        db.session.refresh(table)
    return bool(cleared or freed)


def set_table_status(table_id: int, status: str) -> BranchTable:
    """
    Operator status change. Commits.

    - 'occupied' is never set by hand: only try_assign attaches a sale.
    - 'available' and 'reserved' are refused while an open sale is attached.
    - 'out_of_service' is accepted either way; the attached sale keeps the
      table until it ends and the status survives the release.
    """
    if status not in TABLE_STATUSES:
        raise ValidationError(f"Invalid table status: {status}", details={"allowed": list(TABLE_STATUSES)})
    if status == "occupied":
        raise ValidationError(
            "A table becomes occupied only by assigning a sale to it",
            details={"table_id": table_id},
        )

    table = get_table(table_id)
    open_sale_id = None
    if table.current_sale_id is not None:
        open_sale_id = (
            db.session.query(Sale.id)
            .filter_by(id=table.current_sale_id, status="open")
            .scalar()
        )

    if open_sale_id is not None and status != "out_of_service":
        raise ValidationError(
            "Table has an open sale; close, cancel or move it first",
            details={"table_id": table_id, "sale_id": open_sale_id},
        )

    table.status = status
    if open_sale_id is None:
        table.current_sale_id = None
    db.session.commit()
    return table


def list_tables(branch_id: int) -> list[BranchTable]:
    return (
        db.session.query(BranchTable)
        .filter_by(branch_id=branch_id)
        .order_by(BranchTable.label.asc())
        .all()
    )


def release_table(table_id: int, sale_id: int | None = None) -> BranchTable:
    """
    Operator release. Commits.

    An open sale still pointing at the table is detached from it so both
    sides stay consistent.
    """
    table = get_table(table_id)
    held_by = table.current_sale_id
    try:
        changed = release(table_id, sale_id)
        if changed and held_by is not None:
            sale = db.session.get(Sale, held_by)
            if sale is not None and sale.is_open and sale.table_id == table_id:
                sale.table_id = None
                sale.updated_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return table
