"""
Space Record Store: every read and write of `spaces` and its side tables.

Mutations that can race (claim a vacant space, renew, vacate, evict, change
settings) are single conditional UPDATEs: the WHERE clause carries the
predicate the caller checked (vacancy / ownership / overdue), and rowcount says
whether this writer won. Payment receipts are inserted in the same transaction
as the state change they pay for, so a signature is credited at most once.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from spacerent.core.clock import Clock, utcnow
from spacerent.core.constants import (
    ACCESS_PRIVATE,
    DEFAULT_BANNER,
    DEFAULT_ENTRY_FEE,
    DEFAULT_SPACE_TYPE,
    DEFAULT_TOKEN_GATE,
    RECEIPT_ENTRY_FEE,
    RENT_CURRENT,
    RENT_GRACE_PERIOD,
    RESERVED_RENT_YEARS,
    RESERVED_SPACE_IDS,
    SPACE_POSITIONS,
)
from spacerent.models.payment_receipt import PaymentReceipt
from spacerent.models.space import Space
from spacerent.models.space_entry_payment import SpaceEntryPayment
from spacerent.models.space_visitor import SpaceVisitor
from spacerent.services.space_settings import MergedSettings

logger = logging.getLogger(__name__)

# Outcomes of conditional writes
APPLIED = "applied"
CONFLICT = "conflict"  # predicate no longer held at write time
DUPLICATE_PAYMENT = "duplicate_payment"  # tx signature already has a receipt
ALREADY_PAID = "already_paid"  # wallet already has a fee record in this epoch
CAP_REACHED = "cap_reached"  # wallet already holds the maximum number of rentals


def vacant_fields() -> dict:
    """Column values for a vacated space: no tenant, owner settings back to defaults, new fee epoch."""
    return {
        Space.is_rented: False,
        Space.owner_wallet: None,
        Space.owner_username: None,
        Space.rent_start_date: None,
        Space.last_rent_paid_date: None,
        Space.rent_due_date: None,
        Space.rent_status: None,
        Space.access_type: ACCESS_PRIVATE,
        Space.token_gate: dict(DEFAULT_TOKEN_GATE),
        Space.entry_fee: dict(DEFAULT_ENTRY_FEE),
        Space.banner: dict(DEFAULT_BANNER),
        Space.entry_fee_version: Space.entry_fee_version + 1,
    }


class SpaceStore:
    def __init__(self, session_factory: sessionmaker, *, clock: Clock = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _session(self) -> Session:
        return self._session_factory()

    # --- Lifecycle ---

    def initialize_spaces(
        self,
        positions: dict[str, dict] | None = None,
        reserved_ids: tuple[str, ...] = RESERVED_SPACE_IDS,
    ) -> list[str]:
        """
        Idempotent upsert of the fixed layout. Creates missing rows; repairs reserved
        spaces that have an owner but no rent data. Returns ids created this call.
        """
        positions = positions if positions is not None else SPACE_POSITIONS
        now = self._clock()
        created: list[str] = []
        db = self._session()
        try:
            for space_id, position in positions.items():
                is_reserved = space_id in reserved_ids
                existing = db.query(Space).filter(Space.space_id == space_id).first()
                if existing is None:
                    db.add(
                        Space(
                            space_id=space_id,
                            position=dict(position),
                            is_reserved=is_reserved,
                            space_type=DEFAULT_SPACE_TYPE,
                            access_type=ACCESS_PRIVATE,
                            token_gate=dict(DEFAULT_TOKEN_GATE),
                            entry_fee=dict(DEFAULT_ENTRY_FEE),
                            banner=dict(DEFAULT_BANNER),
                        )
                    )
                    created.append(space_id)
                    logger.info(
                        "Created %s (%s)",
                        space_id,
                        "reserved - needs owner wallet in DB" if is_reserved else "available for rent",
                    )
                    continue
                if existing.is_reserved != is_reserved:
                    existing.is_reserved = is_reserved
                if is_reserved and existing.owner_wallet:
                    self._repair_reserved(existing, now)
            db.commit()
        except IntegrityError:
            # Another process seeded concurrently; its rows are equivalent.
            db.rollback()
            logger.warning("Space initialization raced another process; rows already present")
        finally:
            db.close()
        return created

    @staticmethod
    def _repair_reserved(space: Space, now: datetime) -> None:
        if not space.is_rented:
            space.is_rented = True
        if not space.rent_start_date:
            space.rent_start_date = now
        if not space.last_rent_paid_date:
            space.last_rent_paid_date = now
        if not space.rent_due_date:
            space.rent_due_date = now + timedelta(days=365 * RESERVED_RENT_YEARS)
            logger.info("Fixed %s: added rentDueDate (reserved rental)", space.space_id)
        if not space.rent_status:
            space.rent_status = RENT_CURRENT
        if not space.times_rented:
            space.times_rented = 1

    def set_reserved_owner(self, space_id: str, wallet: str, username: str) -> bool:
        """Out-of-band assignment of a reserved space's owner (admin script only)."""
        now = self._clock()
        db = self._session()
        try:
            space = (
                db.query(Space)
                .filter(Space.space_id == space_id, Space.is_reserved.is_(True))
                .first()
            )
            if space is None:
                return False
            space.owner_wallet = wallet
            space.owner_username = username
            space.rent_start_date = None
            space.last_rent_paid_date = None
            space.rent_due_date = None
            space.rent_status = None
            self._repair_reserved(space, now)
            db.commit()
            return True
        finally:
            db.close()

    # --- Reads ---

    def get(self, space_id: str) -> Space | None:
        db = self._session()
        try:
            return db.query(Space).filter(Space.space_id == space_id).first()
        finally:
            db.close()

    def list_all(self) -> list[Space]:
        db = self._session()
        try:
            return db.query(Space).order_by(Space.id.asc()).all()
        finally:
            db.close()

    def list_owned_by(self, wallet: str) -> list[Space]:
        db = self._session()
        try:
            return db.query(Space).filter(Space.owner_wallet == wallet).order_by(Space.id.asc()).all()
        finally:
            db.close()

    def count_active_rentals(self, wallet: str) -> int:
        """Non-reserved spaces currently rented by wallet (reserved ones don't count toward the cap)."""
        db = self._session()
        try:
            return (
                db.query(func.count(Space.id))
                .filter(
                    Space.owner_wallet == wallet,
                    Space.is_rented.is_(True),
                    Space.is_reserved.is_(False),
                )
                .scalar()
                or 0
            )
        finally:
            db.close()

    @staticmethod
    def _active_rentals_locked(db: Session, wallet: str) -> int:
        """
        Count wallet's non-reserved rentals inside the caller's transaction. The
        wallet's rows are locked first (FOR UPDATE; a no-op on SQLite), so two
        claims by the same wallet count one after the other.
        """
        db.query(Space.id).filter(Space.owner_wallet == wallet).with_for_update().all()
        return (
            db.query(func.count(Space.id))
            .filter(
                Space.owner_wallet == wallet,
                Space.is_rented.is_(True),
                Space.is_reserved.is_(False),
            )
            .scalar()
            or 0
        )

    def has_receipt(self, signature: str) -> bool:
        db = self._session()
        try:
            return (
                db.query(PaymentReceipt.id).filter(PaymentReceipt.tx_signature == signature).first()
                is not None
            )
        finally:
            db.close()

    def has_paid_entry_fee(self, space_id: str, wallet: str, fee_version: int) -> bool:
        db = self._session()
        try:
            return (
                db.query(SpaceEntryPayment.id)
                .filter(
                    SpaceEntryPayment.space_id == space_id,
                    SpaceEntryPayment.wallet_address == wallet,
                    SpaceEntryPayment.fee_version == fee_version,
                )
                .first()
                is not None
            )
        finally:
            db.close()

    def paid_entry_wallets(self, space_id: str, fee_version: int) -> set[str]:
        db = self._session()
        try:
            rows = (
                db.query(SpaceEntryPayment.wallet_address)
                .filter(SpaceEntryPayment.space_id == space_id, SpaceEntryPayment.fee_version == fee_version)
                .all()
            )
            return {r.wallet_address for r in rows}
        finally:
            db.close()

    # --- Rental writes ---

    def claim_vacant(
        self,
        space_id: str,
        *,
        wallet: str,
        username: str,
        space_type: str,
        rent_amount: int,
        signature: str,
        receipt_kind: str,
        rent_period: timedelta,
        max_rentals: int | None = None,
    ) -> str:
        """
        Assign the space to wallet only if it is still vacant and public, and (with
        max_rentals) only while wallet holds fewer non-reserved rentals. Records the
        rent receipt.
        """
        now = self._clock()
        db = self._session()
        try:
            if max_rentals is not None and self._active_rentals_locked(db, wallet) >= max_rentals:
                db.rollback()
                return CAP_REACHED
            updated = (
                db.query(Space)
                .filter(
                    Space.space_id == space_id,
                    Space.is_reserved.is_(False),
                    Space.is_rented.is_(False),
                    Space.owner_wallet.is_(None),
                )
                .update(
                    {
                        Space.owner_wallet: wallet,
                        Space.owner_username: username,
                        Space.is_rented: True,
                        Space.space_type: space_type,
                        Space.rent_start_date: now,
                        Space.last_rent_paid_date: now,
                        Space.rent_due_date: now + rent_period,
                        Space.rent_status: RENT_CURRENT,
                        Space.times_rented: Space.times_rented + 1,
                        Space.total_rent_paid: Space.total_rent_paid + rent_amount,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                return CONFLICT
            db.add(self._receipt(signature, receipt_kind, space_id, wallet, rent_amount, now))
            db.commit()
            return APPLIED
        except IntegrityError:
            db.rollback()
            return DUPLICATE_PAYMENT
        finally:
            db.close()

    def extend_rent(
        self,
        space_id: str,
        *,
        wallet: str,
        expected_due: datetime,
        new_due: datetime,
        rent_amount: int,
        signature: str,
        receipt_kind: str,
    ) -> str:
        """Move the due date forward if wallet still owns the space and nobody else moved it first."""
        now = self._clock()
        db = self._session()
        try:
            updated = (
                db.query(Space)
                .filter(
                    Space.space_id == space_id,
                    Space.owner_wallet == wallet,
                    Space.is_rented.is_(True),
                    Space.rent_due_date == expected_due,
                )
                .update(
                    {
                        Space.rent_due_date: new_due,
                        Space.last_rent_paid_date: now,
                        Space.rent_status: RENT_CURRENT,
                        Space.total_rent_paid: Space.total_rent_paid + rent_amount,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                return CONFLICT
            db.add(self._receipt(signature, receipt_kind, space_id, wallet, rent_amount, now))
            db.commit()
            return APPLIED
        except IntegrityError:
            db.rollback()
            return DUPLICATE_PAYMENT
        finally:
            db.close()

    def vacate(self, space_id: str, wallet: str) -> bool:
        """Owner leaves voluntarily. Reserved spaces never match."""
        db = self._session()
        try:
            updated = (
                db.query(Space)
                .filter(
                    Space.space_id == space_id,
                    Space.owner_wallet == wallet,
                    Space.is_reserved.is_(False),
                )
                .update(vacant_fields(), synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                return False
            db.query(SpaceEntryPayment).filter(SpaceEntryPayment.space_id == space_id).delete(
                synchronize_session=False
            )
            db.commit()
            return True
        finally:
            db.close()

    # --- Entry fees ---

    def record_entry_fee(
        self,
        space_id: str,
        *,
        wallet: str,
        fee_version: int,
        amount: int,
        signature: str,
    ) -> str:
        """Record a verified entry fee under fee_version. CONFLICT if the rules changed meanwhile."""
        now = self._clock()
        db = self._session()
        try:
            updated = (
                db.query(Space)
                .filter(Space.space_id == space_id, Space.entry_fee_version == fee_version)
                .update(
                    {Space.total_entry_fees_collected: Space.total_entry_fees_collected + amount},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                return CONFLICT
            db.add(
                SpaceEntryPayment(
                    space_id=space_id,
                    wallet_address=wallet,
                    amount=amount,
                    tx_signature=signature,
                    fee_version=fee_version,
                    paid_at=now,
                )
            )
            db.add(self._receipt(signature, RECEIPT_ENTRY_FEE, space_id, wallet, amount, now))
            db.commit()
            return APPLIED
        except IntegrityError:
            db.rollback()
            if self.has_paid_entry_fee(space_id, wallet, fee_version):
                return ALREADY_PAID
            return DUPLICATE_PAYMENT
        finally:
            db.close()

    # --- Settings ---

    def apply_settings(self, space_id: str, owner_wallet: str, merged: MergedSettings) -> Space | None:
        """Write merged settings if owner_wallet still owns the space. Bumps the fee epoch on reset."""
        values = {
            Space.access_type: merged.access_type,
            Space.token_gate: merged.token_gate,
            Space.entry_fee: merged.entry_fee,
            Space.banner: merged.banner,
        }
        if merged.entry_fees_reset:
            values[Space.entry_fee_version] = Space.entry_fee_version + 1
        db = self._session()
        try:
            updated = (
                db.query(Space)
                .filter(
                    Space.space_id == space_id,
                    Space.owner_wallet == owner_wallet,
                    Space.is_rented.is_(True),
                )
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                return None
            if merged.entry_fees_reset:
                db.query(SpaceEntryPayment).filter(SpaceEntryPayment.space_id == space_id).delete(
                    synchronize_session=False
                )
            db.commit()
            return db.query(Space).filter(Space.space_id == space_id).first()
        finally:
            db.close()

    # --- Eviction sweep ---

    def find_overdue(self, cutoff: datetime) -> list[Space]:
        """Rented, non-reserved spaces whose due date is before cutoff (past grace)."""
        db = self._session()
        try:
            return (
                db.query(Space)
                .filter(
                    Space.is_rented.is_(True),
                    Space.is_reserved.is_(False),
                    Space.rent_due_date < cutoff,
                )
                .all()
            )
        finally:
            db.close()

    def evict_if_overdue(self, space_id: str, owner_wallet: str, cutoff: datetime) -> bool:
        """Vacate only if the record still matches the overdue predicate for the same owner."""
        db = self._session()
        try:
            updated = (
                db.query(Space)
                .filter(
                    Space.space_id == space_id,
                    Space.owner_wallet == owner_wallet,
                    Space.is_rented.is_(True),
                    Space.is_reserved.is_(False),
                    Space.rent_due_date < cutoff,
                )
                .update(vacant_fields(), synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                return False
            db.query(SpaceEntryPayment).filter(SpaceEntryPayment.space_id == space_id).delete(
                synchronize_session=False
            )
            db.commit()
            return True
        finally:
            db.close()

    def find_entering_grace(self, now: datetime, cutoff: datetime) -> list[Space]:
        """Rented, non-reserved, still `current`, due date passed but within grace."""
        db = self._session()
        try:
            return (
                db.query(Space)
                .filter(
                    Space.is_rented.is_(True),
                    Space.is_reserved.is_(False),
                    Space.rent_status == RENT_CURRENT,
                    Space.rent_due_date < now,
                    Space.rent_due_date >= cutoff,
                )
                .all()
            )
        finally:
            db.close()

    def mark_grace_period(self, space_id: str, now: datetime, cutoff: datetime) -> bool:
        db = self._session()
        try:
            updated = (
                db.query(Space)
                .filter(
                    Space.space_id == space_id,
                    Space.is_rented.is_(True),
                    Space.is_reserved.is_(False),
                    Space.rent_status == RENT_CURRENT,
                    Space.rent_due_date < now,
                    Space.rent_due_date >= cutoff,
                )
                .update({Space.rent_status: RENT_GRACE_PERIOD}, synchronize_session=False)
            )
            db.commit()
            return updated == 1
        finally:
            db.close()

    # --- Telemetry ---

    def record_visit(self, space_id: str, wallet: str) -> bool:
        """Count a visit; the first visit by a wallet also counts as a unique visitor."""
        db = self._session()
        try:
            if db.query(Space.id).filter(Space.space_id == space_id).first() is None:
                return False
            seen = (
                db.query(SpaceVisitor.id)
                .filter(SpaceVisitor.space_id == space_id, SpaceVisitor.wallet_address == wallet)
                .first()
                is not None
            )
            values = {Space.total_visits: Space.total_visits + 1}
            if not seen:
                db.add(SpaceVisitor(space_id=space_id, wallet_address=wallet))
                db.flush()
                values[Space.unique_visitors] = Space.unique_visitors + 1
            db.query(Space).filter(Space.space_id == space_id).update(values, synchronize_session=False)
            db.commit()
            return True
        except IntegrityError:
            # Same wallet's first visit recorded concurrently; count the visit only.
            db.rollback()
            db.query(Space).filter(Space.space_id == space_id).update(
                {Space.total_visits: Space.total_visits + 1}, synchronize_session=False
            )
            db.commit()
            return True
        finally:
            db.close()

    @staticmethod
    def _receipt(signature: str, kind: str, space_id: str, wallet: str, amount: int, now: datetime) -> PaymentReceipt:
        return PaymentReceipt(
            tx_signature=signature,
            kind=kind,
            space_id=space_id,
            wallet_address=wallet,
            amount=amount,
            created_at=now,
        )
