"""Payment verifier client: talks to the chain-verification microservice over HTTP. No business rules."""
import logging
from typing import Any

import httpx

from spacerent.config import settings
from spacerent.core.errors import PAYMENT_VERIFICATION_FAILED, PAYMENT_VERIFICATION_TIMEOUT, SERVER_ERROR
from spacerent.services.payments.types import BalanceCheck, VerificationResult

logger = logging.getLogger(__name__)


class PaymentVerifierError(RuntimeError):
    """The verifier could not answer (network error, 5xx, unparsable body)."""


class HttpPaymentVerifier:
    """Verify transfers and look up balances via POST /verify and POST /balance."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.payment_verifier_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.payment_verifier_api_key
        self.timeout = timeout if timeout is not None else settings.payment_verifier_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    def _post(self, path: str, json_body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        with httpx.Client(timeout=self.timeout, transport=self._transport) as c:
            r = c.post(url, json=json_body, headers=self._headers())
        if r.status_code >= 500:
            raise PaymentVerifierError(f"Verifier error: {r.status_code} {r.text[:200] if r.text else ''}")
        try:
            return r.json() if r.content else {}
        except ValueError as e:
            raise PaymentVerifierError(f"Verifier returned invalid JSON: {e}") from e

    def verify_payment(
        self,
        signature: str,
        from_wallet: str,
        to_wallet: str,
        token_address: str | None,
        amount: int,
        audit_tags: dict[str, Any],
    ) -> VerificationResult:
        payload = {
            "signature": signature,
            "from": from_wallet,
            "to": to_wallet,
            "tokenAddress": token_address,
            "amount": amount,
            "tags": audit_tags,
        }
        try:
            data = self._post("/verify", payload)
        except httpx.TimeoutException:
            logger.warning(
                "Payment verification timed out: sig=%s from=%s to=%s amount=%s tags=%s",
                signature, from_wallet, to_wallet, amount, audit_tags,
            )
            return VerificationResult.failed(PAYMENT_VERIFICATION_TIMEOUT)
        except (httpx.HTTPError, PaymentVerifierError) as e:
            logger.warning(
                "Payment verification request failed: sig=%s from=%s to=%s amount=%s tags=%s: %s",
                signature, from_wallet, to_wallet, amount, audit_tags, e, exc_info=True,
            )
            return VerificationResult.failed(SERVER_ERROR, "Payment verification unavailable")
        if data.get("success") is True and data.get("transactionHash"):
            return VerificationResult.ok(data["transactionHash"])
        return VerificationResult.failed(
            data.get("error") or PAYMENT_VERIFICATION_FAILED,
            data.get("message"),
        )

    def check_minimum_balance(self, wallet: str, token_address: str, minimum: int | float) -> BalanceCheck:
        try:
            data = self._post("/balance", {"wallet": wallet, "tokenAddress": token_address})
        except httpx.HTTPError as e:
            raise PaymentVerifierError(f"Balance lookup failed: {e}") from e
        if "balance" not in data:
            raise PaymentVerifierError(f"Balance lookup failed: {data.get('error') or 'no balance in response'}")
        balance = data["balance"]
        return BalanceCheck(has_balance=balance >= minimum, balance=balance)
