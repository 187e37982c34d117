"""
Caller identity per connection. The engine never reads wallet or name from a
request body; write paths only see what the Identity Provider resolved.
"""
from dataclasses import dataclass
from typing import Any, Protocol

from spacerent.core.constants import DEFAULT_CHARACTER_TYPE

WALLET_HEADER = "X-Wallet-Address"
USERNAME_HEADER = "X-Wallet-Username"
CHARACTER_HEADER = "X-Character-Type"


@dataclass(frozen=True)
class CallerIdentity:
    connection_id: str
    is_authenticated: bool = False
    wallet_address: str | None = None
    username: str | None = None
    character_type: str = DEFAULT_CHARACTER_TYPE

    @property
    def can_write(self) -> bool:
        return bool(self.is_authenticated and self.wallet_address)

    @property
    def display_name(self) -> str:
        if self.username:
            return self.username
        if self.wallet_address:
            return default_username(self.wallet_address)
        return f"Guest{self.connection_id[:6]}"


def default_username(wallet: str) -> str:
    return f"Penguin{wallet[:6]}"


def guest(connection_id: str) -> CallerIdentity:
    return CallerIdentity(connection_id=connection_id)


class IdentityProvider(Protocol):
    """Supplies a verified identity for a new connection (e.g. a Starlette WebSocket)."""

    def resolve(self, connection: Any, connection_id: str) -> CallerIdentity:
        ...


class GuestIdentityProvider:
    """Every connection is an unauthenticated guest. Default when no upstream auth is configured."""

    def resolve(self, connection: Any, connection_id: str) -> CallerIdentity:
        return guest(connection_id)


class HeaderIdentityProvider:
    """
    Reads identity from headers set by a trusted upstream auth proxy (which must
    strip any client-supplied copies). Missing wallet header -> guest.
    """

    def resolve(self, connection: Any, connection_id: str) -> CallerIdentity:
        headers = getattr(connection, "headers", {}) or {}
        wallet = (headers.get(WALLET_HEADER) or "").strip()
        if not wallet:
            return guest(connection_id)
        return CallerIdentity(
            connection_id=connection_id,
            is_authenticated=True,
            wallet_address=wallet,
            username=(headers.get(USERNAME_HEADER) or "").strip() or None,
            character_type=(headers.get(CHARACTER_HEADER) or "").strip() or DEFAULT_CHARACTER_TYPE,
        )
