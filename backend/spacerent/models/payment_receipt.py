"""Every on-chain payment applied to a space. tx_signature is unique so a transfer is credited once."""
from sqlalchemy import Column, DateTime, Integer, String

from spacerent.db.base import Base


class PaymentReceipt(Base):
    __tablename__ = "payment_receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_signature = Column(String(128), nullable=False, unique=True, index=True)
    kind = Column(String(16), nullable=False)  # rent | renewal | entry_fee
    space_id = Column(String(32), nullable=False, index=True)
    wallet_address = Column(String(64), nullable=False)
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
