from __future__ import annotations

from ..extensions import db

TABLE_STATUSES = ("available", "occupied", "reserved", "out_of_service")


class BranchTable(db.Model):
    """
    Dining table of a branch.

    current_sale_id is set iff exactly one open sale references the table.
    'occupied' always has a current_sale_id; the only other status that can
    carry one is 'out_of_service', set by an operator over a seated sale.
    """
    __tablename__ = "branch_tables"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "label", name="uq_branch_tables_branch_label"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    label = db.Column(db.String(64), nullable=False)
    capacity = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="available")
    # Plain integer: sales.table_id already points the other way
    current_sale_id = db.Column(db.Integer, nullable=True, index=True)

    branch = db.relationship("Branch", backref=db.backref("tables", lazy=True))

    def __repr__(self) -> str:
        return f"<BranchTable id={self.id} label={self.label!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "label": self.label,
            "capacity": self.capacity,
            "status": self.status,
            "current_sale_id": self.current_sale_id,
        }
