"""Result types returned by every Payment Verifier implementation."""
from typing import Any


class VerificationResult:
    """Outcome of checking one on-chain transfer against the expected parties and amount."""

    __slots__ = ("success", "transaction_hash", "error", "message")

    def __init__(
        self,
        *,
        success: bool,
        transaction_hash: str | None = None,
        error: str | None = None,
        message: str | None = None,
    ):
        self.success = success
        self.transaction_hash = transaction_hash
        self.error = error
        self.message = message

    @classmethod
    def ok(cls, transaction_hash: str) -> "VerificationResult":
        return cls(success=True, transaction_hash=transaction_hash)

    @classmethod
    def failed(cls, error: str, message: str | None = None) -> "VerificationResult":
        return cls(success=False, error=error, message=message)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "transactionHash": self.transaction_hash}
        return {"success": False, "error": self.error, "message": self.message}


class BalanceCheck:
    """Token balance of a wallet compared with a required minimum."""

    __slots__ = ("has_balance", "balance")

    def __init__(self, *, has_balance: bool, balance: int | float):
        self.has_balance = has_balance
        self.balance = balance
