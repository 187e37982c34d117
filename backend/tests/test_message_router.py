"""Message Router: dispatch, identity rules, broadcasts and kicks, with recording transports."""

import pytest
from conftest import GATE_TOKEN, fund, identity, rent

from spacerent.api.message_router import SpaceMessageRouter
from spacerent.core.rate_limit import RateLimiter


class Transport:
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []
        self.broadcasts: list[dict] = []
        self.rooms: dict[str, list] = {}

    def send(self, connection_id: str, payload: dict) -> None:
        self.sent.append((connection_id, payload))

    def broadcast(self, payload: dict) -> None:
        self.broadcasts.append(payload)

    def players_in_room(self, room: str) -> list:
        return self.rooms.get(room, [])

    def last(self) -> dict:
        return self.sent[-1][1]


@pytest.fixture
def transport() -> Transport:
    return Transport()


@pytest.fixture
def router(rentals, access, rate_limiter, transport) -> SpaceMessageRouter:
    return SpaceMessageRouter(
        rentals,
        access,
        rate_limiter,
        send_to_player=transport.send,
        broadcast_to_all=transport.broadcast,
        get_players_in_room=transport.players_in_room,
    )


GUEST = identity(None, "guest-1")
W1 = identity("W1", "conn-w1")


class TestDispatch:
    def test_unknown_type_not_handled(self, router, transport) -> None:
        assert router.handle(W1, {"type": "chat"}) is False
        assert transport.sent == []

    def test_space_list(self, router, transport) -> None:
        assert router.handle(GUEST, {"type": "space_list"}) is True
        conn, reply = transport.sent[0]
        assert conn == "guest-1"
        assert reply["type"] == "space_list"
        assert len(reply["spaces"]) == 10

    def test_space_info_not_found(self, router, transport) -> None:
        router.handle(GUEST, {"type": "space_info", "spaceId": "nope"})
        assert transport.last() == {"type": "space_error", "error": "SPACE_NOT_FOUND", "message": "Space not found"}

    def test_handler_exception_becomes_server_error(self, router, transport, rentals) -> None:
        def boom(*args, **kwargs):
            raise RuntimeError("db down")

        rentals.can_rent = boom
        assert router.handle(W1, {"type": "space_can_rent", "spaceId": "space1"}) is True
        reply = transport.last()
        assert reply["type"] == "space_can_rent"
        assert reply["canRent"] is False
        assert reply["error"] == "SERVER_ERROR"
        assert reply["spaceId"] == "space1"


class TestAuthentication:
    @pytest.mark.parametrize(
        "msg_type, reply_type",
        [
            ("space_rent", "space_rent_result"),
            ("space_pay_rent", "space_pay_rent_result"),
            ("space_pay_entry", "space_pay_entry_result"),
            ("space_update_settings", "space_settings_result"),
            ("space_leave", "space_leave_result"),
        ],
    )
    def test_guest_refused_for_writes(self, router, transport, verifier, msg_type, reply_type) -> None:
        router.handle(GUEST, {"type": msg_type, "spaceId": "space1", "transactionSignature": "tx"})
        reply = transport.last()
        assert reply["type"] == reply_type
        assert reply["success"] is False
        assert reply["error"] == "NOT_AUTHENTICATED"
        assert verifier.verify_calls == []

    def test_guest_can_rent_check(self, router, transport) -> None:
        router.handle(GUEST, {"type": "space_can_rent", "spaceId": "space1"})
        assert transport.last()["error"] == "NOT_AUTHENTICATED"
        assert transport.last()["canRent"] is False

    def test_guest_owner_info_and_rentals(self, router, transport) -> None:
        router.handle(GUEST, {"type": "space_owner_info", "spaceId": "space1"})
        assert transport.last() == {"type": "space_owner_info", "error": "NOT_AUTHENTICATED"}
        router.handle(GUEST, {"type": "space_my_rentals"})
        assert transport.last() == {"type": "space_my_rentals", "spaces": [], "error": "NOT_AUTHENTICATED"}

    def test_body_wallet_is_ignored(self, router, transport, verifier, store) -> None:
        fund(verifier, "W1")
        router.handle(
            W1,
            {"type": "space_rent", "spaceId": "space1", "transactionSignature": "tx1", "walletAddress": "ATTACKER"},
        )
        assert transport.last()["success"] is True
        assert store.get("space1").owner_wallet == "W1"
        assert verifier.verify_calls[0]["from"] == "W1"


class TestValidation:
    def test_rent_requires_signature(self, router, transport, verifier) -> None:
        router.handle(W1, {"type": "space_rent", "spaceId": "space1"})
        assert transport.last()["error"] == "MISSING_PAYMENT"
        assert verifier.balance_calls == []

    def test_pay_rent_requires_signature(self, router, transport) -> None:
        router.handle(W1, {"type": "space_pay_rent", "spaceId": "space1", "transactionSignature": ""})
        assert transport.last()["error"] == "MISSING_PAYMENT"

    def test_pay_entry_requires_signature(self, router, transport) -> None:
        router.handle(W1, {"type": "space_pay_entry", "spaceId": "space1"})
        assert transport.last()["error"] == "MISSING_SIGNATURE"


class TestMutationsBroadcast:
    def test_rent_broadcasts_public_view(self, router, transport, verifier) -> None:
        fund(verifier, "W1")
        router.handle(W1, {"type": "space_rent", "spaceId": "space1", "transactionSignature": "tx1"})
        reply = transport.last()
        assert reply["type"] == "space_rent_result"
        assert reply["space"]["ownerWallet"] == "W1"
        assert "rentDueDate" in reply["space"]
        assert len(transport.broadcasts) == 1
        update = transport.broadcasts[0]
        assert update["type"] == "space_updated"
        assert update["space"]["ownerWallet"] == "W1"
        assert update["space"]["ownerUsername"] == "W1-username"
        assert "rentDueDate" not in update["space"]
        assert "totalRentPaid" not in update["space"]["stats"]

    def test_failed_rent_does_not_broadcast(self, router, transport, verifier) -> None:
        fund(verifier, "W1", 10)
        router.handle(W1, {"type": "space_rent", "spaceId": "space1", "transactionSignature": "tx1"})
        assert transport.last()["error"] == "INSUFFICIENT_BALANCE"
        assert transport.broadcasts == []

    def test_pay_rent_and_leave_broadcast(self, router, transport, rentals, verifier) -> None:
        rent(rentals, verifier, "W1", "space1", "tx1")
        router.handle(W1, {"type": "space_pay_rent", "spaceId": "space1", "transactionSignature": "tx2"})
        assert transport.last()["type"] == "space_pay_rent_result"
        assert transport.last()["success"] is True
        router.handle(W1, {"type": "space_leave", "spaceId": "space1"})
        assert transport.last() == {"type": "space_leave_result", "success": True, "message": "You have left the space"}
        assert [b["space"]["isRented"] for b in transport.broadcasts] == [True, False]

    def test_owner_info_and_my_rentals(self, router, transport, rentals, verifier) -> None:
        rent(rentals, verifier, "W1", "space1", "tx1")
        router.handle(W1, {"type": "space_owner_info", "spaceId": "space1"})
        reply = transport.last()
        assert reply["spaceId"] == "space1"
        assert reply["space"]["paidEntryFeeCount"] == 0
        router.handle(identity("W2", "c-2"), {"type": "space_owner_info", "spaceId": "space1"})
        assert transport.last() == {"type": "space_owner_info", "spaceId": "space1", "error": "NOT_OWNER"}
        router.handle(W1, {"type": "space_my_rentals"})
        assert [s["spaceId"] for s in transport.last()["spaces"]] == ["space1"]


class TestSettingsAndKicks:
    def test_settings_broadcast_then_kick(self, router, transport, rentals, verifier) -> None:
        rent(rentals, verifier, "OWNER", "space1", "tx-owner")
        rentals.update_settings("OWNER", "space1", {"accessType": "public"})
        owner = identity("OWNER", "c-owner")
        transport.rooms["space1"] = [owner, identity("V1", "c-1"), identity(None, "c-guest")]

        router.handle(owner, {"type": "space_update_settings", "spaceId": "space1", "settings": {"accessType": "private"}})

        result = [p for c, p in transport.sent if p["type"] == "space_settings_result"]
        assert result[0]["success"] is True
        assert transport.broadcasts[-1]["space"]["accessType"] == "private"
        kicks = [(c, p) for c, p in transport.sent if p["type"] == "space_kicked"]
        assert [c for c, _ in kicks] == ["c-1", "c-guest"]
        assert kicks[0][1] == {
            "type": "space_kicked",
            "spaceId": "space1",
            "reason": "SPACE_NOW_PRIVATE",
            "message": "The space owner has made this space private",
        }

    def test_rejected_settings_do_not_kick(self, router, transport, rentals, verifier) -> None:
        rent(rentals, verifier, "OWNER", "space1", "tx-owner")
        transport.rooms["space1"] = [identity("V1", "c-1")]
        router.handle(
            identity("W2", "c-2"),
            {"type": "space_update_settings", "spaceId": "space1", "settings": {"accessType": "private"}},
        )
        assert transport.last()["error"] == "NOT_OWNER"
        assert transport.broadcasts == []
        assert not [p for _, p in transport.sent if p["type"] == "space_kicked"]


class TestEntryChecks:
    def _token_space(self, rentals, verifier) -> None:
        rent(rentals, verifier, "OWNER", "space1", "tx-owner")
        rentals.update_settings(
            "OWNER",
            "space1",
            {
                "accessType": "both",
                "tokenGate": {"enabled": True, "tokenAddress": GATE_TOKEN, "minimumBalance": 100},
                "entryFee": {"enabled": True, "amount": 500, "tokenAddress": "FeeToken"},
            },
        )

    def test_can_enter_reply(self, router, transport, rentals, verifier) -> None:
        self._token_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 200)
        router.handle(identity("V1", "c-1"), {"type": "space_can_enter", "spaceId": "space1"})
        reply = transport.last()
        assert reply["type"] == "space_can_enter"
        assert reply["canEnter"] is False
        assert reply["tokenGateMet"] is True
        assert reply["blockingReason"] == "FEE_REQUIRED"

    def test_entry_rate_limited(self, rentals, access, transport, verifier) -> None:
        router = SpaceMessageRouter(rentals, access, RateLimiter(2, 60.0), transport.send, transport.broadcast)
        v1 = identity("V1", "c-1")
        for _ in range(2):
            router.handle(v1, {"type": "space_can_enter", "spaceId": "space1"})
        router.handle(v1, {"type": "space_can_enter", "spaceId": "space1"})
        reply = transport.last()
        assert reply["canEnter"] is False
        assert reply["reason"] == "RATE_LIMITED"
        assert reply["retryAfterMs"] > 0

    def test_eligibility_rate_limit_allows_stay(self, rentals, access, transport) -> None:
        router = SpaceMessageRouter(rentals, access, RateLimiter(1, 60.0), transport.send, transport.broadcast)
        v1 = identity("V1", "c-1")
        router.handle(v1, {"type": "space_eligibility_check", "spaceId": "space1"})
        assert transport.last()["canEnter"] is False
        router.handle(v1, {"type": "space_eligibility_check", "spaceId": "space1"})
        assert transport.last() == {
            "type": "space_eligibility_check",
            "spaceId": "space1",
            "canEnter": True,
            "rateLimited": True,
        }

    def test_guest_eligibility_denied(self, router, transport) -> None:
        router.handle(GUEST, {"type": "space_eligibility_check", "spaceId": "space1"})
        reply = transport.last()
        assert reply["canEnter"] is False
        assert reply["reason"] == "NOT_AUTHENTICATED"

    def test_requirements_status(self, router, transport, rentals, verifier) -> None:
        self._token_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 200)
        router.handle(identity("V1", "c-1"), {"type": "space_check_requirements", "spaceId": "space1"})
        reply = transport.last()
        assert reply["type"] == "space_requirements_status"
        assert reply["tokenGateMet"] is True
        assert reply["entryFeePaid"] is False
        router.handle(GUEST, {"type": "space_check_requirements", "spaceId": "space1"})
        assert transport.last()["error"] == "Please connect your wallet"

    def test_pay_entry_checks_gate_first(self, router, transport, rentals, verifier) -> None:
        self._token_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 5)
        calls = len(verifier.verify_calls)
        router.handle(identity("V1", "c-1"), {"type": "space_pay_entry", "spaceId": "space1", "transactionSignature": "f1"})
        reply = transport.last()
        assert reply["type"] == "space_pay_entry_result"
        assert reply["error"] == "TOKEN_GATE_NOT_MET"
        assert len(verifier.verify_calls) == calls

    def test_pay_entry_success_broadcasts(self, router, transport, rentals, verifier) -> None:
        self._token_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 500)
        router.handle(identity("V1", "c-1"), {"type": "space_pay_entry", "spaceId": "space1", "transactionSignature": "f1"})
        assert transport.last() == {
            "type": "space_pay_entry_result",
            "spaceId": "space1",
            "success": True,
            "transactionSignature": "f1",
        }
        assert transport.broadcasts[-1]["type"] == "space_updated"


class TestVisit:
    def test_visit_is_silent(self, router, transport, store) -> None:
        router.handle(W1, {"type": "space_visit", "spaceId": "space1"})
        router.handle(GUEST, {"type": "space_visit", "spaceId": "space1"})
        assert transport.sent == []
        space = store.get("space1")
        assert space.total_visits == 2
        assert space.unique_visitors == 2

    def test_visit_error_is_swallowed_without_reply(self, router, transport, rentals) -> None:
        def boom(*args):
            raise RuntimeError("db down")

        rentals.record_visit = boom
        assert router.handle(W1, {"type": "space_visit", "spaceId": "space1"}) is True
        assert transport.sent == []
