from __future__ import annotations

from ..extensions import db
from mesapos.time_utils import to_utc_z, utcnow


class BranchInventory(db.Model):
    """
    Stock counter for one (branch, product) pair.

    Mutated only through additive deltas (inventory_service.adjust_stock),
    except for the administrative set_stock. Rows are created lazily on the
    first write and never deleted while referenced.
    """
    __tablename__ = "branch_inventories"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_branch_inventory_branch_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    stock = db.Column(db.Integer, nullable=False, default=0)

    # NULL -> inherit Product.inventory_activated
    inventory_activated = db.Column(db.Boolean, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("inventories", lazy=True))
    product = db.relationship("Product", backref=db.backref("inventories", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "stock": self.stock,
            "inventory_activated": self.inventory_activated,
            "updated_at": to_utc_z(self.updated_at),
        }
