"""
Rental Service: rent, renew, entry fees, owner settings, leave.

Every write takes the caller's verified wallet. Payment Verifier calls happen
outside any DB transaction; the state change that follows is a conditional
write in SpaceStore, so a concurrent rent/evict/renew cannot be overwritten.
"""
import logging
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from spacerent.config import Settings
from spacerent.core.clock import isoformat
from spacerent.core.constants import (
    CHARACTER_TO_SPACE_TYPE,
    DEFAULT_CHARACTER_TYPE,
    DEFAULT_SPACE_TYPE,
    DEFAULT_TOKEN_SYMBOL,
    ENTRY_FEE_TRANSACTION_TYPE,
    RECEIPT_RENEWAL,
    RECEIPT_RENT,
    RENT_EXTEND_MAX_ATTEMPTS,
    RENT_PERIOD_DAYS,
)
from spacerent.core.errors import (
    ALREADY_RENTED,
    FEE_RULES_CHANGED,
    INSUFFICIENT_BALANCE,
    INVALID_SETTINGS,
    MAX_RENTALS_REACHED,
    NO_ENTRY_FEE,
    NOT_OWNER,
    PAYMENT_REQUIRED,
    RESERVED,
    RESERVED_OWNER,
    SERVER_ERROR,
    SPACE_NOT_FOUND,
    TRANSACTION_ALREADY_USED,
    failure,
    verifier_error_code,
)
from spacerent.services.identity import default_username
from spacerent.services.payments.base import PaymentVerifier
from spacerent.services.payments.types import VerificationResult
from spacerent.services.space_settings import SettingsPatch, merge_settings
from spacerent.services.space_store import (
    ALREADY_PAID,
    APPLIED,
    CAP_REACHED,
    CONFLICT,
    DUPLICATE_PAYMENT,
    SpaceStore,
)
from spacerent.services.space_views import owner_view, public_view

logger = logging.getLogger(__name__)


def space_type_for(character_type: str | None) -> str:
    return CHARACTER_TO_SPACE_TYPE.get(character_type or DEFAULT_CHARACTER_TYPE, DEFAULT_SPACE_TYPE)


class RentalService:
    def __init__(
        self,
        store: SpaceStore,
        verifier: PaymentVerifier,
        config: Settings,
    ) -> None:
        self._store = store
        self._verifier = verifier
        self.daily_rent = config.daily_rent
        self.minimum_balance = config.minimum_balance
        self.max_rentals = config.max_rentals_per_user
        self.rent_wallet = config.rent_wallet_address
        self.staking_token = config.staking_token_address
        self.staking_symbol = config.staking_token_symbol
        self.rent_period = timedelta(days=RENT_PERIOD_DAYS)

    # --- Reads ---

    def initialize_spaces(self) -> list[str]:
        return self._store.initialize_spaces()

    def list_spaces(self) -> list[dict[str, Any]]:
        return [public_view(s) for s in self._store.list_all()]

    def get_space(self, space_id: str) -> dict[str, Any] | None:
        space = self._store.get(space_id)
        return public_view(space) if space else None

    def get_space_for_owner(self, space_id: str, wallet: str) -> dict[str, Any]:
        space = self._store.get(space_id)
        if space is None:
            return {"error": SPACE_NOT_FOUND}
        if space.owner_wallet != wallet:
            return {"error": NOT_OWNER, "message": "You do not own this space"}
        paid = self._store.paid_entry_wallets(space_id, space.entry_fee_version)
        return owner_view(space, paid_entry_count=len(paid))

    def get_user_spaces(self, wallet: str) -> list[dict[str, Any]]:
        return [owner_view(s) for s in self._store.list_owned_by(wallet)]

    def record_visit(self, wallet: str, space_id: str) -> None:
        self._store.record_visit(space_id, wallet)

    # --- Renting ---

    def can_rent(self, wallet: str, space_id: str) -> dict[str, Any]:
        space = self._store.get(space_id)
        if space is None:
            return failure(SPACE_NOT_FOUND, flag="canRent")
        if space.is_reserved:
            return failure(
                RESERVED,
                f"Reserved rental - owned by {space.owner_username or 'reserved owner'}",
                flag="canRent",
            )
        if space.is_rented:
            return failure(
                ALREADY_RENTED,
                f"Rented by {space.owner_username}",
                flag="canRent",
                currentOwner=space.owner_username,
            )

        current = self._store.count_active_rentals(wallet)
        if current >= self.max_rentals:
            return failure(
                MAX_RENTALS_REACHED,
                f"You can only rent up to {self.max_rentals} spaces at a time",
                flag="canRent",
                currentRentals=current,
                maxRentals=self.max_rentals,
            )

        try:
            balance = self._verifier.check_minimum_balance(wallet, self.staking_token, self.minimum_balance)
        except Exception as e:
            logger.warning("Rent eligibility balance lookup failed for %s: %s", wallet, e, exc_info=True)
            return failure(verifier_error_code(e), "Could not verify your token balance", flag="canRent")
        if not balance.has_balance:
            return failure(
                INSUFFICIENT_BALANCE,
                f"Minimum balance of {self.minimum_balance} {self.staking_symbol} required (7 days rent)",
                flag="canRent",
                required=self.minimum_balance,
                current=balance.balance,
            )

        return {
            "canRent": True,
            "dailyRent": self.daily_rent,
            "minimumBalance": self.minimum_balance,
            "currentRentals": current,
            "maxRentals": self.max_rentals,
        }

    def _verify(
        self,
        signature: str,
        from_wallet: str,
        to_wallet: str,
        token_address: str | None,
        amount: int,
        tags: dict[str, Any],
    ) -> VerificationResult:
        """Call the verifier; any exception is a hard rejection, never success."""
        try:
            return self._verifier.verify_payment(signature, from_wallet, to_wallet, token_address, amount, tags)
        except Exception as e:
            logger.error(
                "Payment verification raised: sig=%s from=%s to=%s token=%s amount=%s tags=%s: %s",
                signature, from_wallet, to_wallet, token_address, amount, tags, e, exc_info=True,
            )
            return VerificationResult.failed(verifier_error_code(e), "Payment verification failed")

    def start_rental(
        self,
        wallet: str,
        space_id: str,
        signature: str,
        *,
        username: str | None = None,
        character_type: str | None = None,
    ) -> dict[str, Any]:
        eligibility = self.can_rent(wallet, space_id)
        if not eligibility.get("canRent"):
            eligibility.pop("canRent", None)
            return {"success": False, **eligibility}

        if self._store.has_receipt(signature):
            return failure(TRANSACTION_ALREADY_USED)

        tags = {"spaceId": space_id, "isRenewal": False}
        result = self._verify(signature, wallet, self.rent_wallet, self.staking_token, self.daily_rent, tags)
        if not result.success:
            logger.warning(
                "Rent payment rejected: space=%s wallet=%s amount=%s sig=%s error=%s",
                space_id, wallet, self.daily_rent, signature, result.error,
            )
            return failure(result.error or SERVER_ERROR, result.message)

        name = username or default_username(wallet)
        outcome = self._store.claim_vacant(
            space_id,
            wallet=wallet,
            username=name,
            space_type=space_type_for(character_type),
            rent_amount=self.daily_rent,
            signature=signature,
            receipt_kind=RECEIPT_RENT,
            rent_period=self.rent_period,
            max_rentals=self.max_rentals,
        )
        if outcome == DUPLICATE_PAYMENT:
            return failure(TRANSACTION_ALREADY_USED)
        if outcome == CAP_REACHED:
            logger.error(
                "Rental cap reached during payment: space=%s wallet=%s sig=%s tx=%s (payment not applied)",
                space_id, wallet, signature, result.transaction_hash,
            )
            return failure(
                MAX_RENTALS_REACHED,
                f"You can only rent up to {self.max_rentals} spaces at a time. Your payment was not applied.",
                paymentNotApplied=True,
                transactionHash=result.transaction_hash,
                maxRentals=self.max_rentals,
            )
        if outcome == CONFLICT:
            # Payment is valid on-chain but the space went to someone else first.
            logger.error(
                "Rental race lost: space=%s wallet=%s sig=%s tx=%s (payment not applied)",
                space_id, wallet, signature, result.transaction_hash,
            )
            return failure(
                ALREADY_RENTED,
                "Someone else rented this space first. Your payment was not applied.",
                paymentNotApplied=True,
                transactionHash=result.transaction_hash,
            )

        space = self._store.get(space_id)
        logger.info(
            "[RENTAL STARTED] space=%s owner=%s (%s...) rent=%s %s tx=%s",
            space_id, name, wallet[:8], self.daily_rent, self.staking_symbol, result.transaction_hash,
        )
        return {
            "success": True,
            "spaceId": space_id,
            "transactionHash": result.transaction_hash,
            "rentDueDate": isoformat(space.rent_due_date),
            "message": "Welcome to your new space!",
            "space": owner_view(space),
        }

    def pay_rent(self, wallet: str, space_id: str, signature: str) -> dict[str, Any]:
        space = self._store.get(space_id)
        if space is None:
            return failure(SPACE_NOT_FOUND)
        if space.owner_wallet != wallet:
            return failure(NOT_OWNER)
        if self._store.has_receipt(signature):
            return failure(TRANSACTION_ALREADY_USED)

        tags = {"spaceId": space_id, "isRenewal": True}
        result = self._verify(signature, wallet, self.rent_wallet, self.staking_token, self.daily_rent, tags)
        if not result.success:
            logger.warning(
                "Renewal payment rejected: space=%s wallet=%s amount=%s sig=%s error=%s",
                space_id, wallet, self.daily_rent, signature, result.error,
            )
            return failure(result.error or SERVER_ERROR, result.message)

        for _attempt in range(RENT_EXTEND_MAX_ATTEMPTS):
            if space is None or space.owner_wallet != wallet or space.rent_due_date is None:
                break
            new_due = space.rent_due_date + self.rent_period
            outcome = self._store.extend_rent(
                space_id,
                wallet=wallet,
                expected_due=space.rent_due_date,
                new_due=new_due,
                rent_amount=self.daily_rent,
                signature=signature,
                receipt_kind=RECEIPT_RENEWAL,
            )
            if outcome == APPLIED:
                logger.info(
                    "Rent paid for %s by %s: due %s, tx=%s",
                    space_id, space.owner_username, isoformat(new_due), result.transaction_hash,
                )
                return {
                    "success": True,
                    "transactionHash": result.transaction_hash,
                    "newDueDate": isoformat(new_due),
                }
            if outcome == DUPLICATE_PAYMENT:
                return failure(TRANSACTION_ALREADY_USED)
            # Another renewal (or an eviction) landed in between; re-read and retry.
            space = self._store.get(space_id)

        logger.error(
            "Renewal not applied: space=%s wallet=%s sig=%s tx=%s (ownership changed)",
            space_id, wallet, signature, result.transaction_hash,
        )
        return failure(NOT_OWNER, "You no longer own this space. Your payment was not applied.", paymentNotApplied=True)

    # --- Entry fees ---

    def pay_entry_fee(self, wallet: str, space_id: str, signature: str | None) -> dict[str, Any]:
        space = self._store.get(space_id)
        if space is None:
            return failure(SPACE_NOT_FOUND)
        fee = space.entry_fee or {}
        amount = fee.get("amount") or 0
        if not fee.get("enabled") or amount <= 0:
            return failure(NO_ENTRY_FEE)

        fee_version = space.entry_fee_version
        if self._store.has_paid_entry_fee(space_id, wallet, fee_version):
            return {"success": True, "alreadyPaid": True, "message": "Entry fee already paid"}

        if not signature:
            return failure(
                PAYMENT_REQUIRED,
                amount=amount,
                tokenAddress=fee.get("tokenAddress"),
                tokenSymbol=fee.get("tokenSymbol"),
                recipient=space.owner_wallet,
            )
        if self._store.has_receipt(signature):
            return failure(TRANSACTION_ALREADY_USED)

        tags = {
            "transactionType": ENTRY_FEE_TRANSACTION_TYPE,
            "spaceId": space_id,
            "tokenSymbol": fee.get("tokenSymbol") or DEFAULT_TOKEN_SYMBOL,
        }
        result = self._verify(signature, wallet, space.owner_wallet, fee.get("tokenAddress"), amount, tags)
        if not result.success:
            logger.warning(
                "[PAYMENT FAILED] entry fee: space=%s payer=%s recipient=%s amount=%s sig=%s error=%s",
                space_id, wallet, space.owner_wallet, amount, signature, result.error,
            )
            return failure(result.error or SERVER_ERROR, result.message)

        outcome = self._store.record_entry_fee(
            space_id, wallet=wallet, fee_version=fee_version, amount=amount, signature=signature
        )
        if outcome == ALREADY_PAID:
            return {"success": True, "alreadyPaid": True, "message": "Entry fee already paid"}
        if outcome == DUPLICATE_PAYMENT:
            return failure(TRANSACTION_ALREADY_USED)
        if outcome == CONFLICT:
            logger.error(
                "Entry fee not applied (rules changed during payment): space=%s payer=%s sig=%s",
                space_id, wallet, signature,
            )
            return failure(
                FEE_RULES_CHANGED,
                "The entry requirements changed while you were paying. Please check them again.",
                paymentNotApplied=True,
            )

        logger.info(
            "[PAYMENT RECORDED] entry fee: space=%s payer=%s recipient=%s amount=%s %s token=%s sig=%s",
            space_id, wallet, space.owner_wallet, amount,
            fee.get("tokenSymbol") or DEFAULT_TOKEN_SYMBOL, fee.get("tokenAddress"), signature,
        )
        return {"success": True, "transactionSignature": signature}

    # --- Owner settings ---

    def update_settings(self, wallet: str, space_id: str, patch: dict[str, Any] | SettingsPatch | None) -> dict[str, Any]:
        space = self._store.get(space_id)
        if space is None:
            return failure(SPACE_NOT_FOUND)
        if space.owner_wallet != wallet:
            return failure(NOT_OWNER)
        try:
            parsed = patch if isinstance(patch, SettingsPatch) else SettingsPatch.model_validate(patch or {})
        except ValidationError as e:
            return failure(INVALID_SETTINGS, details=e.errors(include_url=False, include_context=False))

        merged = merge_settings(
            access_type=space.access_type,
            token_gate=space.token_gate,
            entry_fee=space.entry_fee,
            banner=space.banner,
            patch=parsed,
        )
        updated = self._store.apply_settings(space_id, wallet, merged)
        if updated is None:
            return failure(NOT_OWNER)
        if merged.entry_fees_reset:
            logger.info("Entry requirements changed for %s; paid entry fees reset", space_id)
        return {"success": True, "space": owner_view(updated), "entryFeesReset": merged.entry_fees_reset}

    # --- Leaving ---

    def leave_space(self, wallet: str, space_id: str) -> dict[str, Any]:
        space = self._store.get(space_id)
        if space is None:
            return failure(SPACE_NOT_FOUND)
        if space.owner_wallet != wallet:
            return failure(NOT_OWNER)
        if space.is_reserved:
            return failure(RESERVED_OWNER)
        if not self._store.vacate(space_id, wallet):
            return failure(NOT_OWNER)
        logger.info("%s left %s", space.owner_username, space_id)
        return {"success": True, "message": "You have left the space"}
