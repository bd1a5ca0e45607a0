"""Initial sale engine schema: catalog, branch inventory, tables, sales, fiscal documents

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("serie_boleta", sa.String(4), nullable=True),
        sa.Column("serie_factura", sa.String(4), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("igv_percentage", sa.Integer(), nullable=True),
        sa.Column("inventory_activated", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("allow_negative_sale", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)

    op.create_table(
        "branch_inventories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("inventory_activated", sa.Boolean(), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "product_id", name="uq_branch_inventory_branch_product"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("branch_inventories", schema=None) as batch_op:
        batch_op.create_index("ix_branch_inventories_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_branch_inventories_product_id", ["product_id"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(3), nullable=False),
        sa.Column("document_number", sa.String(11), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "document_number", name="uq_customers_document"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "branch_tables",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(64), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("current_sale_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "label", name="uq_branch_tables_branch_label"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("branch_tables", schema=None) as batch_op:
        batch_op.create_index("ix_branch_tables_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_branch_tables_current_sale_id", ["current_sale_id"], unique=False)

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("table_id", sa.Integer(), nullable=True),
        sa.Column("staff_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        _timestamp("opened_at"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("document_type", sa.String(8), nullable=True),
        sa.Column("document_id", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["table_id"], ["branch_tables.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_sales_table_id", ["table_id"], unique=False)
        batch_op.create_index("ix_sales_staff_id", ["staff_id"], unique=False)
        batch_op.create_index("ix_sales_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_sales_branch_status", ["branch_id", "status"], unique=False)
        batch_op.create_index("ix_sales_closed_at", ["closed_at"], unique=False)

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("notes", sa.String(255), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_items", schema=None) as batch_op:
        batch_op.create_index("ix_sale_items_sale_id", ["sale_id"], unique=False)

    op.create_table(
        "sale_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        _timestamp("occurred_at"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_events", schema=None) as batch_op:
        batch_op.create_index("ix_sale_events_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_sale_events_sale_occurred", ["sale_id", "occurred_at"], unique=False)
        batch_op.create_index("ix_sale_events_type", ["event_type"], unique=False)

    op.create_table(
        "emission_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(8), nullable=False),
        sa.Column("attempt_key", sa.String(32), nullable=False),
        sa.Column("serie", sa.String(4), nullable=True),
        sa.Column("correlativo", sa.String(8), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("status", sa.String(24), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("started_at"),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("attempt_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("emission_attempts", schema=None) as batch_op:
        batch_op.create_index("ix_emission_attempts_sale_status", ["sale_id", "status"], unique=False)

    op.create_table(
        "fiscal_documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("emission_attempt_id", sa.Integer(), nullable=True),
        sa.Column("document_type", sa.String(8), nullable=False),
        sa.Column("serie", sa.String(4), nullable=False),
        sa.Column("correlativo", sa.String(8), nullable=False),
        sa.Column("document_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="issued"),
        sa.Column("pdf_url", sa.String(500), nullable=True),
        sa.Column("xml_url", sa.String(500), nullable=True),
        sa.Column("cdr_url", sa.String(500), nullable=True),
        sa.Column("hash", sa.String(128), nullable=True),
        _timestamp("issued_at"),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["emission_attempt_id"], ["emission_attempts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "serie", "correlativo", name="uq_fiscal_documents_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("fiscal_documents", schema=None) as batch_op:
        batch_op.create_index("ix_fiscal_documents_sale_id", ["sale_id"], unique=False)


def downgrade():
    op.drop_table("fiscal_documents")
    op.drop_table("emission_attempts")
    op.drop_table("sale_events")
    op.drop_table("sale_items")
    op.drop_table("sales")
    op.drop_table("branch_tables")
    op.drop_table("customers")
    op.drop_table("branch_inventories")
    op.drop_table("products")
    op.drop_table("branches")
