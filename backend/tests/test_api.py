"""HTTP routes and the WebSocket gateway, end to end over an in-memory database."""

import pytest
from conftest import STAKING_TOKEN
from fastapi.testclient import TestClient

from spacerent.main import create_app
from spacerent.services.identity import WALLET_HEADER, USERNAME_HEADER, HeaderIdentityProvider


@pytest.fixture
def client(config, session_factory, verifier, clock):
    app = create_app(
        config=config,
        session_factory=session_factory,
        verifier=verifier,
        identity_provider=HeaderIdentityProvider(),
        clock=clock,
        run_scheduler=False,
    )
    with TestClient(app) as c:
        yield c


class TestHttp:
    def test_health(self, client) -> None:
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}

    def test_list_spaces(self, client) -> None:
        r = client.get("/spaces")
        assert r.status_code == 200
        spaces = r.json()["spaces"]
        assert len(spaces) == 10
        assert spaces[0]["spaceId"] == "space1"
        assert "rentDueDate" not in spaces[0]

    def test_get_space(self, client) -> None:
        r = client.get("/spaces/space3")
        assert r.status_code == 200
        assert r.json()["space"]["isReserved"] is True

    def test_unknown_space_404(self, client) -> None:
        r = client.get("/spaces/space99")
        assert r.status_code == 404
        assert r.json()["detail"]["error"] == "SPACE_NOT_FOUND"


class TestWebSocket:
    def test_guest_can_list(self, client) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "space_list"})
            reply = ws.receive_json()
        assert reply["type"] == "space_list"
        assert len(reply["spaces"]) == 10

    def test_guest_cannot_rent(self, client, verifier) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "space_rent", "spaceId": "space1", "transactionSignature": "tx1"})
            reply = ws.receive_json()
        assert reply["type"] == "space_rent_result"
        assert reply["error"] == "NOT_AUTHENTICATED"
        assert verifier.verify_calls == []

    def test_rent_over_socket_broadcasts(self, client, verifier) -> None:
        verifier.set_balance("W1", STAKING_TOKEN, 100_000)
        headers = {WALLET_HEADER: "W1", USERNAME_HEADER: "Waddle"}
        with client.websocket_connect("/ws", headers=headers) as ws:
            ws.send_json({"type": "space_rent", "spaceId": "space1", "transactionSignature": "tx1"})
            frames = [ws.receive_json(), ws.receive_json()]
        by_type = {f["type"]: f for f in frames}
        assert by_type["space_rent_result"]["success"] is True
        assert by_type["space_updated"]["space"]["ownerUsername"] == "Waddle"
        assert client.get("/spaces/space1").json()["space"]["ownerWallet"] == "W1"

    def test_malformed_and_unknown_frames_ignored(self, client) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            ws.send_json(["not", "an", "object"])
            ws.send_json({"type": "chat_message"})
            ws.send_json({"type": "space_info", "spaceId": "space2"})
            reply = ws.receive_json()
        assert reply["type"] == "space_info"
        assert reply["space"]["spaceId"] == "space2"

    def test_settings_change_kicks_room_occupant(self, client, verifier) -> None:
        verifier.set_balance("OWNER", STAKING_TOKEN, 100_000)
        owner_headers = {WALLET_HEADER: "OWNER"}
        with client.websocket_connect("/ws", headers=owner_headers) as owner:
            owner.send_json({"type": "space_rent", "spaceId": "space1", "transactionSignature": "tx1"})
            assert {owner.receive_json()["type"], owner.receive_json()["type"]} == {
                "space_rent_result",
                "space_updated",
            }
            owner.send_json({"type": "space_update_settings", "spaceId": "space1", "settings": {"accessType": "public"}})
            assert {owner.receive_json()["type"], owner.receive_json()["type"]} == {
                "space_settings_result",
                "space_updated",
            }
            with client.websocket_connect("/ws", headers={WALLET_HEADER: "V1"}) as visitor:
                visitor.send_json({"type": "join_room", "room": "space1"})
                visitor.send_json({"type": "space_can_enter", "spaceId": "space1"})
                assert visitor.receive_json()["canEnter"] is True

                owner.send_json(
                    {"type": "space_update_settings", "spaceId": "space1", "settings": {"accessType": "private"}}
                )
                frames = [visitor.receive_json(), visitor.receive_json()]
        by_type = {f["type"]: f for f in frames}
        assert by_type["space_updated"]["space"]["accessType"] == "private"
        assert by_type["space_kicked"]["reason"] == "SPACE_NOW_PRIVATE"
