"""Staff members and branch cash shifts

Revision ID: 20261017_shifts
Revises: 20261017_initial
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_shifts"
down_revision = "20261017_initial"
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    op.create_table(
        "staff",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("role", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("staff", schema=None) as batch_op:
        batch_op.create_index("ix_staff_branch_id", ["branch_id"], unique=False)

    op.create_table(
        "sales_shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        _timestamp("opened_at"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opening_cash", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("closing_expected_cash", sa.Numeric(12, 2), nullable=True),
        sa.Column("closing_actual_cash", sa.Numeric(12, 2), nullable=True),
        sa.Column("closing_difference", sa.Numeric(12, 2), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales_shifts", schema=None) as batch_op:
        batch_op.create_index("ix_sales_shifts_staff_id", ["staff_id"], unique=False)
        batch_op.create_index("ix_sales_shifts_branch_opened", ["branch_id", "opened_at"], unique=False)
    # One open shift per branch
    op.create_index(
        "uq_sales_shifts_open_branch",
        "sales_shifts",
        ["branch_id"],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )


def downgrade():
    op.drop_index("uq_sales_shifts_open_branch", table_name="sales_shifts")
    op.drop_table("sales_shifts")
    op.drop_table("staff")
