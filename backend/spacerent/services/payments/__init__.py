from spacerent.services.payments.base import PaymentVerifier
from spacerent.services.payments.bounded import BoundedPaymentVerifier
from spacerent.services.payments.http_verifier import HttpPaymentVerifier, PaymentVerifierError
from spacerent.services.payments.types import BalanceCheck, VerificationResult

__all__ = [
    "BalanceCheck",
    "BoundedPaymentVerifier",
    "HttpPaymentVerifier",
    "PaymentVerifier",
    "PaymentVerifierError",
    "VerificationResult",
]
