"""Spaces, paid entry fees, unique visitors and the payment receipt ledger.

Space rows are seeded by the app on startup (SpaceStore.initialize_spaces), not here.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "spaces",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("space_id", sa.String(32), nullable=False),
        sa.Column("position", sa.JSON(), nullable=False),
        sa.Column("is_reserved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("space_type", sa.String(16), nullable=False, server_default="igloo"),
        sa.Column("owner_wallet", sa.String(64), nullable=True),
        sa.Column("owner_username", sa.String(64), nullable=True),
        sa.Column("is_rented", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rent_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_rent_paid_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rent_due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rent_status", sa.String(16), nullable=True),
        sa.Column("access_type", sa.String(16), nullable=False, server_default="private"),
        sa.Column("token_gate", sa.JSON(), nullable=False),
        sa.Column("entry_fee", sa.JSON(), nullable=False),
        sa.Column("entry_fee_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("banner", sa.JSON(), nullable=False),
        sa.Column("total_visits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_visitors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rent_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_entry_fees_collected", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("times_rented", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_spaces_space_id", "spaces", ["space_id"], unique=True)
    op.create_index("ix_spaces_owner_wallet", "spaces", ["owner_wallet"], unique=False)
    op.create_index("ix_spaces_is_rented", "spaces", ["is_rented"], unique=False)
    op.create_index("ix_spaces_rent_due_date", "spaces", ["rent_due_date"], unique=False)

    op.create_table(
        "space_entry_payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("space_id", sa.String(32), nullable=False, index=True),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("tx_signature", sa.String(128), nullable=False),
        sa.Column("fee_version", sa.Integer(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("space_id", "wallet_address", "fee_version", name="uq_space_entry_payment_epoch"),
    )

    op.create_table(
        "space_visitors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("space_id", sa.String(32), nullable=False, index=True),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("space_id", "wallet_address", name="uq_space_visitor"),
    )

    op.create_table(
        "payment_receipts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tx_signature", sa.String(128), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("space_id", sa.String(32), nullable=False, index=True),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payment_receipts_tx_signature", "payment_receipts", ["tx_signature"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_payment_receipts_tx_signature", table_name="payment_receipts")
    op.drop_table("payment_receipts")
    op.drop_table("space_visitors")
    op.drop_table("space_entry_payments")
    op.drop_index("ix_spaces_rent_due_date", table_name="spaces")
    op.drop_index("ix_spaces_is_rented", table_name="spaces")
    op.drop_index("ix_spaces_owner_wallet", table_name="spaces")
    op.drop_index("ix_spaces_space_id", table_name="spaces")
    op.drop_table("spaces")
