"""add pending payments table

Revision ID: 20251201_pending
Revises:
Create Date: 2025-12-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20251201_pending"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pending_payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(length=64), nullable=False, unique=True),
        sa.Column("bid_id", sa.Integer, nullable=False),
        sa.Column("milestone_index", sa.Integer, nullable=False),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("milestone_index >= 0", name="ck_pending_payment_index_non_negative"),
    )
    op.create_index("ix_pending_payments_queued_at", "pending_payments", ["queued_at"])
    op.create_index("ix_pending_payments_bid", "pending_payments", ["bid_id", "milestone_index"])


def downgrade() -> None:
    op.drop_index("ix_pending_payments_bid", table_name="pending_payments")
    op.drop_index("ix_pending_payments_queued_at", table_name="pending_payments")
    op.drop_table("pending_payments")
