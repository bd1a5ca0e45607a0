from __future__ import annotations

from ..extensions import db
from mesapos.time_utils import to_utc_z, utcnow


class Branch(db.Model):
    """
    Physical sales location with its own inventory and table set.

    Branch CRUD screens live elsewhere; this service only reads branches and
    the fiscal series assigned to them.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    # SUNAT series, e.g. "B001" / "F001"
    serie_boleta = db.Column(db.String(4), nullable=True)
    serie_factura = db.Column(db.String(4), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "serie_boleta": self.serie_boleta,
            "serie_factura": self.serie_factura,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalog product.

    price is gross (IGV included); unit_value is the net value sent on
    fiscal documents. inventory_activated is the default for every branch and
    may be overridden per branch on BranchInventory.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    price = db.Column(db.Numeric(12, 2), nullable=False)
    unit_value = db.Column(db.Numeric(12, 2), nullable=True)
    igv_percentage = db.Column(db.Integer, nullable=True)  # 10 or 18; NULL -> IGV_PERCENTAGE

    inventory_activated = db.Column(db.Boolean, nullable=False, default=False)
    allow_negative_sale = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "unit_value": str(self.unit_value) if self.unit_value is not None else None,
            "igv_percentage": self.igv_percentage,
            "inventory_activated": self.inventory_activated,
            "allow_negative_sale": self.allow_negative_sale,
            "is_active": self.is_active,
            "version_id": self.version_id,
        }
