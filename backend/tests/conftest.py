"""Shared fixtures: in-memory SQLite store, manual clock, scripted payment verifier."""
import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time; keep tests off any real database.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from spacerent.config import Settings
from spacerent.core.rate_limit import RateLimiter
from spacerent.db.base import Base
from spacerent.db.session import make_session_factory
from spacerent.services.access_service import AccessService
from spacerent.services.identity import CallerIdentity
from spacerent.services.payments.types import BalanceCheck, VerificationResult
from spacerent.services.rental_service import RentalService
from spacerent.services.space_store import SpaceStore

import spacerent.models  # noqa: F401  register tables

START = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)
RENT_WALLET = "RentCollector1111111111111111111111111111111"
STAKING_TOKEN = "StakingToken11111111111111111111111111111111"
GATE_TOKEN = "GateToken1111111111111111111111111111111111"


class ManualClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class FakeVerifier:
    """
    Accepts every signature unless listed in `rejected`. Balances per (wallet, token);
    wallets in `balance_errors` raise on lookup. `on_verify` runs inside verify_payment
    (used to interleave a competing request).
    """

    def __init__(self) -> None:
        self.balances: dict[tuple[str, str], float] = {}
        self.balance_errors: set[str] = set()
        self.rejected: dict[str, str] = {}
        self.verify_calls: list[dict] = []
        self.balance_calls: list[tuple[str, str, float]] = []
        self.on_verify = None

    def set_balance(self, wallet: str, token: str, balance: float) -> None:
        self.balances[(wallet, token)] = balance

    def verify_payment(self, signature, from_wallet, to_wallet, token_address, amount, audit_tags):
        self.verify_calls.append(
            {
                "signature": signature,
                "from": from_wallet,
                "to": to_wallet,
                "token": token_address,
                "amount": amount,
                "tags": audit_tags,
            }
        )
        if self.on_verify is not None:
            hook, self.on_verify = self.on_verify, None
            hook()
        if signature in self.rejected:
            return VerificationResult.failed(self.rejected[signature], "Transaction not found")
        return VerificationResult.ok(f"hash-{signature}")

    def check_minimum_balance(self, wallet, token_address, minimum):
        self.balance_calls.append((wallet, token_address, minimum))
        if wallet in self.balance_errors:
            raise RuntimeError("RPC node unavailable")
        balance = self.balances.get((wallet, token_address), 0)
        return BalanceCheck(has_balance=balance >= minimum, balance=balance)


def identity(wallet: str | None, connection_id: str = "conn-1", username: str | None = None) -> CallerIdentity:
    if wallet is None:
        return CallerIdentity(connection_id=connection_id)
    return CallerIdentity(
        connection_id=connection_id,
        is_authenticated=True,
        wallet_address=wallet,
        username=username or f"{wallet}-username",
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        rent_wallet_address=RENT_WALLET,
        staking_token_address=STAKING_TOKEN,
    )


@pytest.fixture
def store(session_factory, clock) -> SpaceStore:
    s = SpaceStore(session_factory, clock=clock)
    s.initialize_spaces()
    return s


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def rentals(store, verifier, config) -> RentalService:
    return RentalService(store, verifier, config)


@pytest.fixture
def access(store, verifier, config) -> AccessService:
    return AccessService(store, verifier, failure_grace=config.eligibility_failure_grace)


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(30, 60.0)


def fund(verifier: FakeVerifier, wallet: str, amount: float = 100_000) -> None:
    """Give wallet enough staking token to rent."""
    verifier.set_balance(wallet, STAKING_TOKEN, amount)


def rent(rentals: RentalService, verifier: FakeVerifier, wallet: str, space_id: str, signature: str | None = None):
    fund(verifier, wallet)
    return rentals.start_rental(wallet, space_id, signature or f"tx-{wallet}-{space_id}", username=f"{wallet}-username")
