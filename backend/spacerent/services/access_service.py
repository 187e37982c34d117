"""
Access checks with I/O around the pure evaluator: token-balance lookups via the
Payment Verifier and entry-fee lookups via the store.

Balance lookup errors are handled differently per path:
  - initial entry (check_entry): fail closed immediately.
  - periodic eligibility (check_eligibility): tolerate `failure_grace`
    consecutive errors for the same occupant, then fail closed. A confirmed
    failed check denies right away.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable

from spacerent.core.errors import (
    ENTRY_FEE_NOW_REQUIRED,
    FEE_REQUIRED,
    SPACE_LOCKED,
    SPACE_NOT_FOUND,
    SPACE_NOW_PRIVATE,
    TOKEN_GATE_NOT_MET,
    TOKEN_REQUIRED,
    failure,
    message_for,
    verifier_error_code,
)
from spacerent.models.space import Space
from spacerent.services.identity import CallerIdentity
from spacerent.services.payments.base import PaymentVerifier
from spacerent.services.space_access import EntryDecision, EntryRules, evaluate_entry
from spacerent.services.space_store import SpaceStore

logger = logging.getLogger(__name__)

KICK_REASONS = {
    SPACE_LOCKED: SPACE_NOW_PRIVATE,
    TOKEN_REQUIRED: TOKEN_GATE_NOT_MET,
    FEE_REQUIRED: ENTRY_FEE_NOW_REQUIRED,
}


@dataclass(frozen=True)
class Kick:
    connection_id: str
    wallet_address: str | None
    reason: str

    @property
    def message(self) -> str:
        return message_for(self.reason)


class _FailureTracker:
    """Consecutive balance-lookup failures per occupant key."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def increment(self, key: str) -> int:
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    def reset(self, key: str) -> None:
        with self._lock:
            self._counts.pop(key, None)

    def forget_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._counts if k.startswith(prefix)]:
                del self._counts[key]


class AccessService:
    def __init__(self, store: SpaceStore, verifier: PaymentVerifier, *, failure_grace: int = 1) -> None:
        self._store = store
        self._verifier = verifier
        self.failure_grace = failure_grace
        self._failures = _FailureTracker()

    def _lookup_balance(self, wallet: str | None, rules: EntryRules) -> tuple[float | None, bool]:
        """(balance, lookup_failed). No lookup when the gate doesn't apply or there is no wallet."""
        if not rules.token_gate_applies or not wallet:
            return None, False
        try:
            check = self._verifier.check_minimum_balance(
                wallet, rules.token_gate["tokenAddress"], rules.minimum_balance
            )
        except Exception as e:
            logger.warning(
                "Token balance lookup failed: wallet=%s token=%s minimum=%s: %s",
                wallet, rules.token_gate.get("tokenAddress"), rules.minimum_balance, e, exc_info=True,
            )
            return None, True
        return check.balance, False

    def _fee_paid(self, space: Space, wallet: str | None, rules: EntryRules) -> bool:
        if not rules.entry_fee_applies or not wallet:
            return False
        return self._store.has_paid_entry_fee(space.space_id, wallet, space.entry_fee_version)

    def _decide(self, space: Space, wallet: str | None) -> tuple[EntryDecision, bool]:
        rules = EntryRules.from_space(space)
        if wallet and wallet == rules.owner_wallet:
            return evaluate_entry(rules, wallet), False
        balance, failed = self._lookup_balance(wallet, rules)
        decision = evaluate_entry(
            rules,
            wallet,
            balance,
            entry_fee_paid=self._fee_paid(space, wallet, rules),
            balance_lookup_failed=failed,
        )
        return decision, failed

    def check_entry(self, wallet: str | None, space_id: str) -> dict[str, Any]:
        """Initial entry check. A balance lookup error denies entry."""
        space = self._store.get(space_id)
        if space is None:
            return {"spaceId": space_id, "canEnter": False, "reason": SPACE_NOT_FOUND}
        decision, _failed = self._decide(space, wallet)
        return {"spaceId": space_id, **decision.to_dict()}

    def check_eligibility(self, wallet: str, space_id: str, occupant_key: str) -> dict[str, Any]:
        """Periodic re-check while inside. One grace tick per `failure_grace` on lookup errors."""
        space = self._store.get(space_id)
        if space is None:
            return {"spaceId": space_id, "canEnter": False, "reason": SPACE_NOT_FOUND}
        decision, failed = self._decide(space, wallet)
        key = f"{occupant_key}:{space_id}"
        if failed and decision.entry_fee_paid is False:
            # Unpaid fee is a confirmed failure whatever the balance turns out to be.
            logger.info("Eligibility check failed for %s... in %s: %s", wallet[:8], space_id, FEE_REQUIRED)
            return {
                "spaceId": space_id,
                **decision.to_dict(),
                "blockingReason": FEE_REQUIRED,
                "message": message_for(FEE_REQUIRED),
                "reason": FEE_REQUIRED,
            }
        if failed:
            failures = self._failures.increment(key)
            if failures <= self.failure_grace:
                logger.warning(
                    "Eligibility lookup failed for %s... in %s (%s/%s); allowing stay",
                    wallet[:8], space_id, failures, self.failure_grace,
                )
                return {"spaceId": space_id, "canEnter": True, "isOwner": False, "verificationDeferred": True}
        else:
            self._failures.reset(key)
        out = {"spaceId": space_id, **decision.to_dict()}
        if not decision.can_enter:
            out["reason"] = decision.blocking_reason
            logger.info("Eligibility check failed for %s... in %s: %s", wallet[:8], space_id, decision.blocking_reason)
        return out

    def check_requirements(self, wallet: str, space_id: str) -> dict[str, Any]:
        """Requirements panel: balance and which rules are met, regardless of access type shortcuts."""
        space = self._store.get(space_id)
        if space is None:
            return {"spaceId": space_id, "error": message_for(SPACE_NOT_FOUND)}
        rules = EntryRules.from_space(space)
        is_owner = wallet == rules.owner_wallet
        balance = 0
        token_gate_met = True
        if rules.token_gate.get("enabled") and rules.token_gate.get("tokenAddress"):
            try:
                check = self._verifier.check_minimum_balance(
                    wallet, rules.token_gate["tokenAddress"], rules.minimum_balance
                )
                balance, token_gate_met = check.balance, check.has_balance
            except Exception as e:
                logger.warning("Token balance lookup failed for requirements: %s", e, exc_info=True)
                balance, token_gate_met = 0, False
        entry_fee_paid = True
        if rules.entry_fee.get("enabled") and (rules.entry_fee.get("amount") or 0) > 0:
            entry_fee_paid = self._store.has_paid_entry_fee(space_id, wallet, space.entry_fee_version)
        if is_owner:
            token_gate_met = entry_fee_paid = True
        decision = EntryDecision(
            can_enter=token_gate_met and entry_fee_paid,
            token_gate_met=token_gate_met,
            entry_fee_paid=entry_fee_paid,
            user_token_balance=balance,
            rules=rules,
        )
        out = decision.to_dict()
        out.pop("canEnter")
        return {"spaceId": space_id, **out, "isOwner": is_owner}

    def check_token_gate(self, wallet: str, space_id: str) -> dict[str, Any] | None:
        """
        Pre-payment gate check for entry fees. None when the payer may proceed,
        otherwise a failure payload (TOKEN_GATE_NOT_MET or the lookup error code).
        """
        space = self._store.get(space_id)
        if space is None:
            return None
        rules = EntryRules.from_space(space)
        if not rules.token_gate_applies or wallet == rules.owner_wallet:
            return None
        try:
            check = self._verifier.check_minimum_balance(
                wallet, rules.token_gate["tokenAddress"], rules.minimum_balance
            )
        except Exception as e:
            logger.warning(
                "Token balance lookup failed before entry fee: wallet=%s space=%s: %s",
                wallet, space_id, e, exc_info=True,
            )
            return failure(verifier_error_code(e), "Could not verify your token balance")
        if check.has_balance:
            return None
        return failure(
            TOKEN_GATE_NOT_MET,
            f"You need at least {rules.minimum_balance} tokens to pay the entry fee",
            required=rules.minimum_balance,
            current=check.balance,
        )

    def occupants_to_kick(self, space_id: str, occupants: Iterable[CallerIdentity]) -> list[Kick]:
        """
        Re-evaluate everyone currently inside against the stored rules. A balance
        lookup error here does not kick; the occupant's next eligibility check decides.
        """
        space = self._store.get(space_id)
        if space is None:
            return []
        kicks: list[Kick] = []
        for occupant in occupants:
            wallet = occupant.wallet_address
            if wallet and wallet == space.owner_wallet:
                continue
            decision, failed = self._decide(space, wallet)
            if decision.can_enter:
                continue
            if failed:
                logger.warning(
                    "Skipping kick re-check for %s in %s: balance lookup failed", occupant.connection_id, space_id
                )
                continue
            reason = KICK_REASONS.get(decision.blocking_reason, SPACE_NOW_PRIVATE)
            kicks.append(Kick(connection_id=occupant.connection_id, wallet_address=wallet, reason=reason))
        return kicks

    def forget(self, occupant_key: str) -> None:
        """Drop failure counters for a disconnected occupant."""
        self._failures.forget_prefix(f"{occupant_key}:")
