"""Distinct wallets (or guest ids) that have visited a space; drives spaces.unique_visitors."""
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from spacerent.db.base import Base


class SpaceVisitor(Base):
    __tablename__ = "space_visitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    space_id = Column(String(32), nullable=False, index=True)
    wallet_address = Column(String(64), nullable=False)
    first_seen_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("space_id", "wallet_address", name="uq_space_visitor"),)
