"""Initial stock ledger schema.

Revision ID: 20261019_initial_stock_ledger_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_stock_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return (
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def upgrade() -> None:
    op.create_table(
        "role",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("description", sa.String(255)),
    )
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("role.id"), primary_key=True),
    )
    op.create_table(
        "inventory_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("warehouse_loc", sa.JSON(), nullable=False),
        sa.Column("warehouse_code", sa.JSON(), nullable=False),
        sa.Column("stock", sa.JSON(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("note", sa.Text()),
        *_timestamps(),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_table(
        "customer_order",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "order_line",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("customer_order.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.Column("warehouse_code", sa.String(32)),
        sa.CheckConstraint("quantity >= 0", name="ck_order_line_quantity"),
    )
    op.create_table(
        "stock_request",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("request_id", sa.String(32), nullable=False, unique=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("supplier", sa.String(255)),
        sa.Column("requester", sa.String(255), nullable=False),
        sa.Column("warehouse", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_table(
        "stock_request_line",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "stock_request_id", sa.Integer(), sa.ForeignKey("stock_request.id"), nullable=False
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("warehouse_code", sa.String(32), nullable=False),
        sa.CheckConstraint("qty > 0", name="ck_stock_request_line_qty"),
    )
    op.create_table(
        "request_sequence",
        sa.Column("prefix", sa.String(32), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False),
    )
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ts", sa.DateTime(), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("sku", sa.String(64)),
        sa.Column("name", sa.String(255)),
        sa.Column("stock_before", sa.JSON()),
        sa.Column("stock_after", sa.JSON()),
        sa.Column("delta", sa.Integer()),
        sa.Column("note", sa.Text()),
        sa.Column("order_id", sa.String(64)),
        sa.Column("stock_request_id", sa.String(64)),
        sa.CheckConstraint(
            "(order_id IS NULL) OR (stock_request_id IS NULL)",
            name="ck_audit_log_single_reference",
        ),
    )
    for column in ("ts", "action", "sku", "order_id", "stock_request_id"):
        op.create_index(f"ix_audit_log_{column}", "audit_log", [column])


def downgrade() -> None:
    for column in ("ts", "action", "sku", "order_id", "stock_request_id"):
        op.drop_index(f"ix_audit_log_{column}", table_name="audit_log")
    for table in (
        "audit_log",
        "request_sequence",
        "stock_request_line",
        "stock_request",
        "order_line",
        "customer_order",
        "inventory_item",
        "user_roles",
        "user",
        "role",
    ):
        op.drop_table(table)
