"""One rentable plot: layout, current tenancy, owner-editable access rules, and counters."""
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from spacerent.core.constants import (
    ACCESS_PRIVATE,
    DEFAULT_BANNER,
    DEFAULT_ENTRY_FEE,
    DEFAULT_SPACE_TYPE,
    DEFAULT_TOKEN_GATE,
)
from spacerent.db.base import Base


class Space(Base):
    __tablename__ = "spaces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    space_id = Column(String(32), nullable=False, unique=True, index=True)
    position = Column(JSON, nullable=False)  # {x, z, row}
    is_reserved = Column(Boolean, nullable=False, default=False)
    space_type = Column(String(16), nullable=False, default=DEFAULT_SPACE_TYPE)  # igloo | doghouse | pond

    owner_wallet = Column(String(64), nullable=True, index=True)
    owner_username = Column(String(64), nullable=True)
    is_rented = Column(Boolean, nullable=False, default=False, index=True)
    rent_start_date = Column(DateTime(timezone=True), nullable=True)
    last_rent_paid_date = Column(DateTime(timezone=True), nullable=True)
    rent_due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    rent_status = Column(String(16), nullable=True)  # current | grace_period; null when vacant

    access_type = Column(String(16), nullable=False, default=ACCESS_PRIVATE)
    token_gate = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_TOKEN_GATE))
    entry_fee = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_ENTRY_FEE))
    entry_fee_version = Column(Integer, nullable=False, default=1)  # fee epoch; bumped on rules change / vacate
    banner = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_BANNER))

    total_visits = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)
    total_rent_paid = Column(Integer, nullable=False, default=0)
    total_entry_fees_collected = Column(Integer, nullable=False, default=0)
    times_rented = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
