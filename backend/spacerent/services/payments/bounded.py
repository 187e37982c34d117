"""
Timeout at the verifier boundary: any PaymentVerifier call that stalls longer
than `timeout` seconds becomes a hard rejection (verify) or a raised
TimeoutError (balance). Calls run on a small shared thread pool.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

from spacerent.core.errors import PAYMENT_VERIFICATION_TIMEOUT
from spacerent.services.payments.base import PaymentVerifier
from spacerent.services.payments.types import BalanceCheck, VerificationResult

logger = logging.getLogger(__name__)


class BoundedPaymentVerifier:
    def __init__(self, inner: PaymentVerifier, timeout: float, *, max_workers: int = 8) -> None:
        self._inner = inner
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="payment_verifier")

    def verify_payment(
        self,
        signature: str,
        from_wallet: str,
        to_wallet: str,
        token_address: str | None,
        amount: int,
        audit_tags: dict[str, Any],
    ) -> VerificationResult:
        future = self._executor.submit(
            self._inner.verify_payment, signature, from_wallet, to_wallet, token_address, amount, audit_tags
        )
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            logger.error(
                "Payment verification exceeded %ss: sig=%s from=%s to=%s amount=%s tags=%s",
                self.timeout, signature, from_wallet, to_wallet, amount, audit_tags,
            )
            return VerificationResult.failed(PAYMENT_VERIFICATION_TIMEOUT)

    def check_minimum_balance(self, wallet: str, token_address: str, minimum: int | float) -> BalanceCheck:
        future = self._executor.submit(self._inner.check_minimum_balance, wallet, token_address, minimum)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as e:
            future.cancel()
            raise TimeoutError(f"Balance lookup for {wallet[:8]}... timed out after {self.timeout}s") from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
