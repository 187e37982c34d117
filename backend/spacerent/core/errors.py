"""
Centralized error codes for space operations.
Constants and a couple of helpers so services and the router return the same
machine-readable code + human message pairs, and new error types are easy to add.
"""
from __future__ import annotations

from typing import Any, Callable

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
MISSING_PAYMENT = "MISSING_PAYMENT"
MISSING_SIGNATURE = "MISSING_SIGNATURE"
INVALID_SETTINGS = "INVALID_SETTINGS"

# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------
NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
NOT_OWNER = "NOT_OWNER"
RESERVED_OWNER = "RESERVED_OWNER"

# ---------------------------------------------------------------------------
# Business rules
# ---------------------------------------------------------------------------
SPACE_NOT_FOUND = "SPACE_NOT_FOUND"
RESERVED = "RESERVED"
ALREADY_RENTED = "ALREADY_RENTED"
MAX_RENTALS_REACHED = "MAX_RENTALS_REACHED"
INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
NO_ENTRY_FEE = "NO_ENTRY_FEE"
PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
TRANSACTION_ALREADY_USED = "TRANSACTION_ALREADY_USED"
FEE_RULES_CHANGED = "FEE_RULES_CHANGED"
TOKEN_GATE_NOT_MET = "TOKEN_GATE_NOT_MET"
RATE_LIMITED = "RATE_LIMITED"

# ---------------------------------------------------------------------------
# Entry blocking reasons
# ---------------------------------------------------------------------------
SPACE_LOCKED = "SPACE_LOCKED"
TOKEN_REQUIRED = "TOKEN_REQUIRED"
FEE_REQUIRED = "FEE_REQUIRED"

# Kick reasons (settings changed under an occupant)
SPACE_NOW_PRIVATE = "SPACE_NOW_PRIVATE"
ENTRY_FEE_NOW_REQUIRED = "ENTRY_FEE_NOW_REQUIRED"

# ---------------------------------------------------------------------------
# External dependencies
# ---------------------------------------------------------------------------
SERVER_ERROR = "SERVER_ERROR"
PAYMENT_VERIFICATION_TIMEOUT = "PAYMENT_VERIFICATION_TIMEOUT"
PAYMENT_VERIFICATION_FAILED = "PAYMENT_VERIFICATION_FAILED"

MESSAGES: dict[str, str] = {
    MISSING_PAYMENT: "Transaction signature required",
    MISSING_SIGNATURE: "Transaction signature required",
    INVALID_SETTINGS: "Invalid space settings",
    NOT_AUTHENTICATED: "Please connect your wallet",
    NOT_OWNER: "You do not own this space",
    RESERVED_OWNER: "Cannot leave reserved rental space",
    SPACE_NOT_FOUND: "Space not found",
    ALREADY_RENTED: "This space is already rented",
    NO_ENTRY_FEE: "This space has no entry fee",
    PAYMENT_REQUIRED: "Transaction signature required for entry fee",
    TRANSACTION_ALREADY_USED: "This transaction has already been applied",
    FEE_RULES_CHANGED: "The entry requirements changed. Please check them again.",
    RATE_LIMITED: "Too many requests. Please wait.",
    SPACE_LOCKED: "This space is private",
    TOKEN_REQUIRED: "You do not hold enough tokens to enter",
    FEE_REQUIRED: "An entry fee is required to enter",
    SPACE_NOW_PRIVATE: "The space owner has made this space private",
    TOKEN_GATE_NOT_MET: "You no longer meet the token requirement",
    ENTRY_FEE_NOW_REQUIRED: "Entry fee is now required to stay",
    SERVER_ERROR: "Something went wrong. Please try again.",
    PAYMENT_VERIFICATION_TIMEOUT: "Payment verification timed out. Please try again.",
    PAYMENT_VERIFICATION_FAILED: "Payment could not be verified",
}


def message_for(code: str) -> str:
    return MESSAGES.get(code, code)


def failure(code: str, message: str | None = None, *, flag: str = "success", **extra: Any) -> dict[str, Any]:
    """Uniform refusal payload: {<flag>: False, error, message, ...extra}."""
    return {flag: False, "error": code, "message": message or message_for(code), **extra}


# ---------------------------------------------------------------------------
# Verifier exceptions -> error codes. First match wins; add rules here instead
# of scattering isinstance checks in services.
# ---------------------------------------------------------------------------

def _is_timeout(exc: Exception) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    lower = str(exc).lower()
    return "timed out" in lower or "timeout" in lower


VERIFIER_ERROR_RULES: list[tuple[Callable[[Exception], bool], str]] = [
    (_is_timeout, PAYMENT_VERIFICATION_TIMEOUT),
]


def verifier_error_code(exc: Exception) -> str:
    """
    Map an exception raised at the Payment Verifier boundary to an error code.
    Uses VERIFIER_ERROR_RULES for known error types; otherwise SERVER_ERROR.
    """
    for predicate, code in VERIFIER_ERROR_RULES:
        if predicate(exc):
            return code
    return SERVER_ERROR
