"""Initial schema: sellers, QR codes, shipment requests, cycles, pickups

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "sellers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("prefix", sa.String(4), nullable=True),
        sa.Column("range_start", sa.Integer(), nullable=True),
        sa.Column("range_end", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", name="uq_sellers_prefix"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "mat_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("mat_types", schema=None) as batch_op:
        batch_op.create_index("ix_mat_types_code", ["code"], unique=True)

    op.create_table(
        "shipment_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("seller_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("quantities", sa.JSON(), nullable=False),
        sa.Column("generated_qr_codes", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["seller_id"], ["sellers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shipment_requests", schema=None) as batch_op:
        batch_op.create_index("ix_shipment_requests_seller_id", ["seller_id"], unique=False)
        batch_op.create_index("ix_shipment_requests_status", ["status"], unique=False)

    op.create_table(
        "qr_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("prefix", sa.String(4), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("state", sa.String(16), nullable=False, server_default="materialized"),
        sa.Column("shipment_request_id", sa.Integer(), nullable=True),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["sellers.id"]),
        sa.ForeignKeyConstraint(["shipment_request_id"], ["shipment_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", "number", name="uq_qr_codes_prefix_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("qr_codes", schema=None) as batch_op:
        batch_op.create_index("ix_qr_codes_code", ["code"], unique=True)
        batch_op.create_index("ix_qr_codes_prefix", ["prefix"], unique=False)
        batch_op.create_index("ix_qr_codes_owner_id", ["owner_id"], unique=False)
        batch_op.create_index("ix_qr_codes_status", ["status"], unique=False)
        batch_op.create_index("ix_qr_codes_owner_status", ["owner_id", "status"], unique=False)
        batch_op.create_index("ix_qr_codes_shipment_request_id", ["shipment_request_id"], unique=False)

    op.create_table(
        "cycles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("qr_code_id", sa.Integer(), nullable=False),
        sa.Column("mat_type_id", sa.Integer(), nullable=True),
        sa.Column("salesperson_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="on_test"),
        sa.Column("company_id", sa.String(64), nullable=True),
        sa.Column("contact_id", sa.String(64), nullable=True),
        sa.Column("test_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("test_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pickup_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("driver_pickup_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contract_signed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("contract_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contract_frequency", sa.String(32), nullable=True),
        sa.Column("extensions_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["qr_code_id"], ["qr_codes.id"]),
        sa.ForeignKeyConstraint(["mat_type_id"], ["mat_types.id"]),
        sa.ForeignKeyConstraint(["salesperson_id"], ["sellers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cycles", schema=None) as batch_op:
        batch_op.create_index("ix_cycles_qr_code_id", ["qr_code_id"], unique=False)
        batch_op.create_index("ix_cycles_mat_type_id", ["mat_type_id"], unique=False)
        batch_op.create_index("ix_cycles_salesperson_id", ["salesperson_id"], unique=False)
        batch_op.create_index("ix_cycles_status", ["status"], unique=False)
        batch_op.create_index("ix_cycles_qr_status", ["qr_code_id", "status"], unique=False)
        batch_op.create_index("ix_cycles_salesperson_status", ["salesperson_id", "status"], unique=False)

    op.create_table(
        "cycle_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cycle_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("old_status", sa.String(16), nullable=True),
        sa.Column("new_status", sa.String(16), nullable=False),
        sa.Column("performed_by", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["cycle_id"], ["cycles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cycle_history", schema=None) as batch_op:
        batch_op.create_index("ix_cycle_history_cycle_id", ["cycle_id"], unique=False)

    op.create_table(
        "driver_pickups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_driver", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("driver_pickups", schema=None) as batch_op:
        batch_op.create_index("ix_driver_pickups_status", ["status"], unique=False)

    op.create_table(
        "driver_pickup_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("pickup_id", sa.Integer(), nullable=False),
        sa.Column("cycle_id", sa.Integer(), nullable=False),
        sa.Column("picked_up", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["pickup_id"], ["driver_pickups.id"]),
        sa.ForeignKeyConstraint(["cycle_id"], ["cycles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pickup_id", "cycle_id", name="uq_pickup_items_pickup_cycle"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("driver_pickup_items", schema=None) as batch_op:
        batch_op.create_index("ix_driver_pickup_items_pickup_id", ["pickup_id"], unique=False)
        batch_op.create_index("ix_driver_pickup_items_cycle_id", ["cycle_id"], unique=False)


def downgrade():
    op.drop_table("driver_pickup_items")
    op.drop_table("driver_pickups")
    op.drop_table("cycle_history")
    op.drop_table("cycles")
    op.drop_table("qr_codes")
    op.drop_table("shipment_requests")
    op.drop_table("mat_types")
    op.drop_table("sellers")
