"""Entry fee paid by a visitor. Counts only while fee_version equals the space's entry_fee_version."""
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from spacerent.db.base import Base


class SpaceEntryPayment(Base):
    __tablename__ = "space_entry_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    space_id = Column(String(32), nullable=False, index=True)
    wallet_address = Column(String(64), nullable=False)
    amount = Column(Integer, nullable=False)
    tx_signature = Column(String(128), nullable=False)
    fee_version = Column(Integer, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("space_id", "wallet_address", "fee_version", name="uq_space_entry_payment_epoch"),
    )
