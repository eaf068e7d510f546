"""shop floor time tracking schema

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def _create_enum(name: str, *values: str) -> sa.Enum:
    enum_type = sa.Enum(*values, name=name)
    enum_type.create(op.get_bind(), checkfirst=True)
    return enum_type


def _drop_enum(name: str) -> None:
    bind = op.get_bind()
    if bind.dialect.name != "sqlite":
        sa.Enum(name=name).drop(bind, checkfirst=True)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


ENUM_NAMES = (
    "user_role",
    "work_order_status",
    "kanban_column",
    "line_item_status",
    "approval_state",
    "part_transaction_type",
)


def upgrade() -> None:
    user_role_enum = _create_enum("user_role", "ADMIN", "MANAGER", "TECH", "SERVICE_WRITER", "PARTS")
    status_enum = _create_enum(
        "work_order_status",
        "OPEN",
        "IN_PROGRESS",
        "ON_HOLD_PARTS",
        "ON_HOLD_DELAY",
        "QC",
        "READY_TO_BILL",
        "CLOSED",
    )
    kanban_enum = _create_enum(
        "kanban_column", "OPEN", "IN_PROGRESS", "ON_HOLD_PARTS", "ON_HOLD_DELAY", "QC", "READY_TO_BILL"
    )
    line_item_status_enum = _create_enum("line_item_status", "OPEN", "DONE")
    approval_enum = _create_enum("approval_state", "DRAFT", "SUBMITTED", "APPROVED", "LOCKED")
    part_txn_enum = _create_enum("part_transaction_type", "PURCHASE", "RETURN", "ADJUSTMENT")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("password_hash", sa.String(length=255), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_users_email_unique", "users", ["email"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_customers_name", "customers", ["name"])

    op.create_table(
        "work_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("wo_number", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", status_enum, nullable=False),
        sa.Column("kanban_column", kanban_enum, nullable=False),
        sa.Column("kanban_position", sa.Integer(), nullable=False, server_default="999"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("is_out_of_service", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("qc_approved_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("qc_approved_at", sa.DateTime(), nullable=True),
        sa.Column("qc_rejected_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("title <> ''", name="ck_work_orders_title_nonempty"),
    )
    op.create_index("ix_work_orders_status", "work_orders", ["status"])
    op.create_index("ix_work_orders_wo_number_unique", "work_orders", ["wo_number"], unique=True)
    op.create_index("ix_work_orders_customer_id", "work_orders", ["customer_id"])

    op.create_table(
        "line_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("estimate_minutes", sa.Integer(), nullable=True),
        sa.Column("billable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", line_item_status_enum, nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_line_items_work_order_id", "line_items", ["work_order_id"])

    op.create_table(
        "line_item_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("line_item_id", sa.Integer(), sa.ForeignKey("line_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("line_item_id", "user_id", name="uq_line_item_assignments_pair"),
    )
    op.create_index("ix_line_item_assignments_line_item_id", "line_item_assignments", ["line_item_id"])
    op.create_index("ix_line_item_assignments_user_id", "line_item_assignments", ["user_id"])

    op.create_table(
        "time_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_item_id", sa.Integer(), sa.ForeignKey("line_items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("approval_state", approval_enum, nullable=False),
        sa.Column("approved_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("pause_reason", sa.String(length=255), nullable=True),
        sa.Column("is_goodwill", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_reason", sa.Text(), nullable=True),
        sa.Column("edited_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("duration_seconds >= 0", name="ck_time_entries_duration_nonnegative"),
    )
    op.create_index("ix_time_entries_work_order_id", "time_entries", ["work_order_id"])
    op.create_index("ix_time_entries_user_id_started_at", "time_entries", ["user_id", "started_at"])
    op.create_index("ix_time_entries_line_item_id", "time_entries", ["line_item_id"])
    op.create_index(
        "uq_time_entries_one_active_timer_per_user",
        "time_entries",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("ended_at IS NULL AND deleted_at IS NULL"),
        postgresql_where=sa.text("ended_at IS NULL AND deleted_at IS NULL"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("before_json", sa.Text(), nullable=True),
        sa.Column("after_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])

    op.create_table(
        "parts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("part_number", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("manufacturer", sa.String(length=255), nullable=True),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("quantity_on_hand", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reorder_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("location", sa.String(length=128), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("part_number <> ''", name="ck_parts_part_number_nonempty"),
        sa.CheckConstraint("quantity_on_hand >= 0", name="ck_parts_on_hand_nonnegative"),
        sa.CheckConstraint("quantity_reserved >= 0", name="ck_parts_reserved_nonnegative"),
    )
    op.create_index("ix_parts_part_number_unique", "parts", ["part_number"], unique=True)

    op.create_table(
        "part_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", part_txn_enum, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity <> 0", name="ck_part_transactions_quantity_nonzero"),
    )
    op.create_index("ix_part_transactions_part_id", "part_transactions", ["part_id"])
    op.create_index("ix_part_transactions_user_id", "part_transactions", ["user_id"])


def downgrade() -> None:
    for table in (
        "part_transactions",
        "parts",
        "audit_logs",
        "time_entries",
        "line_item_assignments",
        "line_items",
        "work_orders",
        "customers",
        "users",
    ):
        op.drop_table(table)
    for name in ENUM_NAMES:
        _drop_enum(name)
