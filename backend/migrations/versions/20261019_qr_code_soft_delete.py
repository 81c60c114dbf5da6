"""Add is_active and deactivated_at to qr_codes for soft delete

Revision ID: 20261019_qr_soft_delete
Revises: 20261019_initial
Create Date: 2026-10-19

Deleting a never-used code deactivates the row instead of removing it. The
row keeps its number in the allocation universe, so the string is never
issued a second time. Inactive codes are excluded from lookups and listings.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_qr_soft_delete"
down_revision = "20261019_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("qr_codes", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1")
        )
        batch_op.add_column(
            sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True)
        )
        batch_op.create_index("ix_qr_codes_is_active", ["is_active"], unique=False)


def downgrade():
    with op.batch_alter_table("qr_codes", schema=None) as batch_op:
        batch_op.drop_index("ix_qr_codes_is_active")
        batch_op.drop_column("deactivated_at")
        batch_op.drop_column("is_active")
