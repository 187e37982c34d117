"""
Access Evaluator: decide whether a visitor may enter a space.

Pure computation, no I/O. Callers look up the token balance and whether a
current-epoch entry fee exists, then pass the facts in. A failed balance
lookup is passed as balance_lookup_failed=True and always counts as the token
gate NOT met.
"""
from dataclasses import dataclass
from typing import Any

from spacerent.core.constants import (
    ACCESS_PRIVATE,
    ACCESS_PUBLIC,
    DEFAULT_ENTRY_FEE,
    DEFAULT_TOKEN_GATE,
    DEFAULT_TOKEN_SYMBOL,
    FEE_GATED_ACCESS,
    TOKEN_GATED_ACCESS,
)
from spacerent.core.errors import FEE_REQUIRED, SPACE_LOCKED, TOKEN_REQUIRED, message_for
from spacerent.models.space import Space


@dataclass(frozen=True)
class EntryRules:
    """The parts of a Space that govern entry."""

    owner_wallet: str | None
    owner_username: str | None
    access_type: str
    token_gate: dict[str, Any]
    entry_fee: dict[str, Any]

    @classmethod
    def from_space(cls, space: Space) -> "EntryRules":
        return cls(
            owner_wallet=space.owner_wallet,
            owner_username=space.owner_username,
            access_type=space.access_type,
            token_gate={**DEFAULT_TOKEN_GATE, **(space.token_gate or {})},
            entry_fee={**DEFAULT_ENTRY_FEE, **(space.entry_fee or {})},
        )

    @property
    def token_gate_applies(self) -> bool:
        """Gate is checked only for token/both access and when enabled with a token configured."""
        return (
            self.access_type in TOKEN_GATED_ACCESS
            and bool(self.token_gate.get("enabled"))
            and bool(self.token_gate.get("tokenAddress"))
        )

    @property
    def entry_fee_applies(self) -> bool:
        return (
            self.access_type in FEE_GATED_ACCESS
            and bool(self.entry_fee.get("enabled"))
            and (self.entry_fee.get("amount") or 0) > 0
        )

    @property
    def minimum_balance(self) -> float:
        return self.token_gate.get("minimumBalance") or 0


@dataclass(frozen=True)
class EntryDecision:
    can_enter: bool
    is_owner: bool = False
    blocking_reason: str | None = None
    token_gate_met: bool | None = None
    entry_fee_paid: bool | None = None
    user_token_balance: float | None = None
    rules: EntryRules | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"canEnter": self.can_enter, "isOwner": self.is_owner}
        if self.is_owner:
            return out
        if self.blocking_reason:
            out["blockingReason"] = self.blocking_reason
            out["message"] = message_for(self.blocking_reason)
        if self.token_gate_met is None:
            return out
        rules = self.rules
        out.update(
            {
                "tokenGateMet": self.token_gate_met,
                "entryFeePaid": self.entry_fee_paid,
                "userTokenBalance": self.user_token_balance or 0,
                "tokenGateRequired": rules.minimum_balance if rules.token_gate.get("enabled") else 0,
                "tokenGateSymbol": rules.token_gate.get("tokenSymbol") or DEFAULT_TOKEN_SYMBOL,
                "tokenGateAddress": rules.token_gate.get("tokenAddress"),
                "entryFeeAmount": rules.entry_fee.get("amount") or 0,
                "entryFeeSymbol": rules.entry_fee.get("tokenSymbol") or DEFAULT_TOKEN_SYMBOL,
                "entryFeeTokenAddress": rules.entry_fee.get("tokenAddress"),
                "ownerWallet": rules.owner_wallet,
                "ownerUsername": rules.owner_username,
            }
        )
        return out


def evaluate_entry(
    rules: EntryRules,
    visitor_wallet: str | None,
    token_balance: float | None = None,
    *,
    entry_fee_paid: bool = False,
    balance_lookup_failed: bool = False,
) -> EntryDecision:
    """
    Owner always enters. private -> SPACE_LOCKED. public -> open.
    token / fee / both -> token_gate_met AND entry_fee_paid, where a rule that
    does not apply to the access type counts as met. TOKEN_REQUIRED is reported
    before FEE_REQUIRED.
    """
    if visitor_wallet and visitor_wallet == rules.owner_wallet:
        return EntryDecision(can_enter=True, is_owner=True)
    if rules.access_type == ACCESS_PRIVATE:
        return EntryDecision(can_enter=False, blocking_reason=SPACE_LOCKED)
    if rules.access_type == ACCESS_PUBLIC:
        return EntryDecision(can_enter=True)

    token_gate_met = True
    if rules.token_gate_applies:
        if balance_lookup_failed or token_balance is None:
            token_gate_met = False
        else:
            token_gate_met = token_balance >= rules.minimum_balance

    fee_paid = True
    if rules.entry_fee_applies:
        fee_paid = bool(visitor_wallet) and entry_fee_paid

    reason = None
    if not token_gate_met:
        reason = TOKEN_REQUIRED
    elif not fee_paid:
        reason = FEE_REQUIRED
    return EntryDecision(
        can_enter=token_gate_met and fee_paid,
        blocking_reason=reason,
        token_gate_met=token_gate_met,
        entry_fee_paid=fee_paid,
        user_token_balance=0 if balance_lookup_failed else (token_balance or 0),
        rules=rules,
    )
