"""Protocol for payment verifiers. The engine only ever talks to this interface."""
from typing import Any, Protocol

from spacerent.services.payments.types import BalanceCheck, VerificationResult


class PaymentVerifier(Protocol):
    """On-chain confirmation of transfers and balance lookups. Failures must never read as success."""

    def verify_payment(
        self,
        signature: str,
        from_wallet: str,
        to_wallet: str,
        token_address: str | None,
        amount: int,
        audit_tags: dict[str, Any],
    ) -> VerificationResult:
        """
        Confirm `signature` is a transfer of exactly `amount` of `token_address`
        from `from_wallet` to `to_wallet`. audit_tags are logged with the check
        (spaceId, isRenewal, transactionType ...).
        """
        ...

    def check_minimum_balance(self, wallet: str, token_address: str, minimum: int | float) -> BalanceCheck:
        """Current balance and whether it is >= minimum. Raises when the lookup itself fails."""
        ...
