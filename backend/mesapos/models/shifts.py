from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from mesapos.time_utils import to_utc_z, utcnow

SHIFT_STATUSES = ("open", "closed")


def _money(value) -> str | None:
    return str(value) if value is not None else None


class SalesShift(db.Model):
    """
    Cash shift of a branch: opening float in, counted cash out.

    At most one open shift per branch (partial unique index). The closing
    columns are written once, when the shift closes:
      closing_expected_cash = opening_cash + cash ("Contado") sales closed
                              while the shift was open
      closing_difference    = closing_actual_cash - closing_expected_cash
    """
    __tablename__ = "sales_shifts"
    __table_args__ = (
        db.Index(
            "uq_sales_shifts_open_branch",
            "branch_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
        db.Index("ix_sales_shifts_branch_opened", "branch_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="open")

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opening_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    closing_expected_cash = db.Column(db.Numeric(12, 2), nullable=True)
    closing_actual_cash = db.Column(db.Numeric(12, 2), nullable=True)
    closing_difference = db.Column(db.Numeric(12, 2), nullable=True)

    notes = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch")
    staff = db.relationship("Staff")

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def __repr__(self) -> str:
        return f"<SalesShift id={self.id} branch_id={self.branch_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "staff_id": self.staff_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "opening_cash": _money(self.opening_cash),
            "closing_expected_cash": _money(self.closing_expected_cash),
            "closing_actual_cash": _money(self.closing_actual_cash),
            "closing_difference": _money(self.closing_difference),
            "notes": self.notes,
        }
