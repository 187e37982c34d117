"""
Message Router: maps inbound `space_*` frames to the Rental and Access services.

Identity always comes from the connection (CallerIdentity), never from the
message body. Replies go to the sender via send_to_player; accepted mutations
also broadcast `space_updated` with the public view. Any exception raised by a
handler is logged and turned into a SERVER_ERROR reply of the matching type.
"""
import logging
from typing import Any, Callable, Iterable

from spacerent.core.constants import GUEST_WALLET_PREFIX, RATE_BUCKET_ENTRY_CHECK
from spacerent.core.errors import (
    MISSING_PAYMENT,
    MISSING_SIGNATURE,
    NOT_AUTHENTICATED,
    RATE_LIMITED,
    SERVER_ERROR,
    SPACE_NOT_FOUND,
    failure,
    message_for,
)
from spacerent.core.rate_limit import RateLimiter
from spacerent.services.access_service import AccessService
from spacerent.services.identity import CallerIdentity
from spacerent.services.rental_service import RentalService

logger = logging.getLogger(__name__)

SendToPlayer = Callable[[str, dict[str, Any]], None]
Broadcast = Callable[[dict[str, Any]], None]
PlayersInRoom = Callable[[str], Iterable[CallerIdentity]]

# Request type -> (reply type, result flag) used for SERVER_ERROR replies.
ERROR_REPLIES: dict[str, tuple[str, str | None]] = {
    "space_list": ("space_error", None),
    "space_info": ("space_error", None),
    "space_can_rent": ("space_can_rent", "canRent"),
    "space_rent": ("space_rent_result", "success"),
    "space_pay_rent": ("space_pay_rent_result", "success"),
    "space_can_enter": ("space_can_enter", "canEnter"),
    "space_eligibility_check": ("space_eligibility_check", "canEnter"),
    "space_check_requirements": ("space_requirements_status", None),
    "space_pay_entry": ("space_pay_entry_result", "success"),
    "space_owner_info": ("space_owner_info", None),
    "space_update_settings": ("space_settings_result", "success"),
    "space_my_rentals": ("space_my_rentals", None),
    "space_leave": ("space_leave_result", "success"),
}


class SpaceMessageRouter:
    def __init__(
        self,
        rental_service: RentalService,
        access_service: AccessService,
        rate_limiter: RateLimiter,
        send_to_player: SendToPlayer,
        broadcast_to_all: Broadcast | None = None,
        get_players_in_room: PlayersInRoom | None = None,
    ) -> None:
        self._rentals = rental_service
        self._access = access_service
        self._rate_limiter = rate_limiter
        self._send_to_player = send_to_player
        self._broadcast_to_all = broadcast_to_all
        self._get_players_in_room = get_players_in_room
        self._handlers: dict[str, Callable[[CallerIdentity, dict[str, Any]], None]] = {
            "space_list": self._space_list,
            "space_info": self._space_info,
            "space_can_rent": self._space_can_rent,
            "space_rent": self._space_rent,
            "space_pay_rent": self._space_pay_rent,
            "space_can_enter": self._space_can_enter,
            "space_eligibility_check": self._space_eligibility_check,
            "space_check_requirements": self._space_check_requirements,
            "space_pay_entry": self._space_pay_entry,
            "space_owner_info": self._space_owner_info,
            "space_update_settings": self._space_update_settings,
            "space_my_rentals": self._space_my_rentals,
            "space_leave": self._space_leave,
            "space_visit": self._space_visit,
        }

    @property
    def message_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def handle(self, identity: CallerIdentity, message: dict[str, Any]) -> bool:
        """Dispatch one frame. False when the type is not a space message."""
        msg_type = message.get("type")
        handler = self._handlers.get(msg_type)
        if handler is None:
            return False
        try:
            handler(identity, message)
        except Exception as e:
            logger.exception(
                "Error in %s (connection=%s wallet=%s space=%s): %s",
                msg_type, identity.connection_id, identity.wallet_address, message.get("spaceId"), e,
            )
            self._reply_server_error(identity, msg_type, message)
        return True

    # --- Helpers ---

    def _reply(self, identity: CallerIdentity, reply_type: str, payload: dict[str, Any]) -> None:
        self._send_to_player(identity.connection_id, {"type": reply_type, **payload})

    def _reply_server_error(self, identity: CallerIdentity, msg_type: str, message: dict[str, Any]) -> None:
        if msg_type not in ERROR_REPLIES:
            return
        reply_type, flag = ERROR_REPLIES[msg_type]
        payload: dict[str, Any] = {"error": SERVER_ERROR, "message": message_for(SERVER_ERROR)}
        if flag:
            payload[flag] = False
        if message.get("spaceId"):
            payload["spaceId"] = message["spaceId"]
        try:
            self._reply(identity, reply_type, payload)
        except Exception as e:
            logger.warning("Could not deliver %s error reply to %s: %s", reply_type, identity.connection_id, e)

    def _broadcast_space(self, space_id: str) -> None:
        """Push the public view of space_id to every connected client."""
        if self._broadcast_to_all is None:
            return
        space = self._rentals.get_space(space_id)
        if space is None:
            return
        try:
            self._broadcast_to_all({"type": "space_updated", "space": space})
        except Exception as e:
            logger.warning("space_updated broadcast failed for %s: %s", space_id, e, exc_info=True)

    # --- Reads ---

    def _space_list(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        self._reply(identity, "space_list", {"spaces": self._rentals.list_spaces()})

    def _space_info(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        space = self._rentals.get_space(space_id)
        if space is None:
            self._reply(identity, "space_error", {"error": SPACE_NOT_FOUND, "message": message_for(SPACE_NOT_FOUND)})
            return
        self._reply(identity, "space_info", {"space": space})

    def _space_owner_info(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        if not identity.can_write:
            self._reply(identity, "space_owner_info", {"error": NOT_AUTHENTICATED})
            return
        result = self._rentals.get_space_for_owner(space_id, identity.wallet_address)
        if "error" in result:
            self._reply(identity, "space_owner_info", {"spaceId": space_id, "error": result["error"]})
            return
        self._reply(identity, "space_owner_info", {"spaceId": space_id, "space": result})

    def _space_my_rentals(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        if not identity.can_write:
            self._reply(identity, "space_my_rentals", {"spaces": [], "error": NOT_AUTHENTICATED})
            return
        self._reply(identity, "space_my_rentals", {"spaces": self._rentals.get_user_spaces(identity.wallet_address)})

    # --- Renting ---

    def _space_can_rent(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        if not identity.can_write:
            self._reply(
                identity,
                "space_can_rent",
                failure(NOT_AUTHENTICATED, "Please connect your wallet to rent", flag="canRent"),
            )
            return
        result = self._rentals.can_rent(identity.wallet_address, space_id)
        self._reply(identity, "space_can_rent", {"spaceId": space_id, **result})

    def _space_rent(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        signature = message.get("transactionSignature")
        if not identity.can_write:
            self._reply(identity, "space_rent_result", failure(NOT_AUTHENTICATED))
            return
        if not signature:
            self._reply(identity, "space_rent_result", failure(MISSING_PAYMENT))
            return
        result = self._rentals.start_rental(
            identity.wallet_address,
            space_id,
            signature,
            username=identity.display_name,
            character_type=identity.character_type,
        )
        self._reply(identity, "space_rent_result", result)
        if result.get("success"):
            self._broadcast_space(space_id)
            logger.info("Broadcast space rental: %s now owned by %s", space_id, identity.display_name)

    def _space_pay_rent(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        signature = message.get("transactionSignature")
        if not identity.can_write:
            self._reply(identity, "space_pay_rent_result", failure(NOT_AUTHENTICATED))
            return
        if not signature:
            self._reply(identity, "space_pay_rent_result", failure(MISSING_PAYMENT))
            return
        result = self._rentals.pay_rent(identity.wallet_address, space_id, signature)
        self._reply(identity, "space_pay_rent_result", result)
        if result.get("success"):
            self._broadcast_space(space_id)

    def _space_leave(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        if not identity.can_write:
            self._reply(identity, "space_leave_result", failure(NOT_AUTHENTICATED))
            return
        result = self._rentals.leave_space(identity.wallet_address, space_id)
        self._reply(identity, "space_leave_result", result)
        if result.get("success"):
            self._broadcast_space(space_id)
            logger.info("Broadcast space vacancy: %s is now available", space_id)

    # --- Entry ---

    def _space_can_enter(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        wallet = identity.wallet_address
        if wallet:
            rate = self._rate_limiter.check(RATE_BUCKET_ENTRY_CHECK, wallet)
            if not rate.allowed:
                self._reply(
                    identity,
                    "space_can_enter",
                    {
                        "spaceId": space_id,
                        "canEnter": False,
                        "reason": RATE_LIMITED,
                        "message": message_for(RATE_LIMITED),
                        "retryAfterMs": rate.retry_after_ms,
                    },
                )
                return
        self._reply(identity, "space_can_enter", self._access.check_entry(wallet, space_id))

    def _space_eligibility_check(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        if not identity.can_write:
            self._reply(
                identity,
                "space_eligibility_check",
                {
                    "spaceId": space_id,
                    "canEnter": False,
                    "isOwner": False,
                    "reason": NOT_AUTHENTICATED,
                    "message": "You must be logged in to stay in this space",
                },
            )
            return
        wallet = identity.wallet_address
        rate = self._rate_limiter.check(RATE_BUCKET_ENTRY_CHECK, wallet)
        if not rate.allowed:
            # Never kick for rate limiting.
            logger.warning("Eligibility check rate limited for %s...; allowing stay", wallet[:8])
            self._reply(
                identity,
                "space_eligibility_check",
                {"spaceId": space_id, "canEnter": True, "rateLimited": True},
            )
            return
        result = self._access.check_eligibility(wallet, space_id, identity.connection_id)
        self._reply(identity, "space_eligibility_check", result)

    def _space_check_requirements(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        if not identity.can_write:
            if self._rentals.get_space(space_id) is None:
                self._reply(
                    identity, "space_requirements_status", {"spaceId": space_id, "error": message_for(SPACE_NOT_FOUND)}
                )
                return
            self._reply(
                identity,
                "space_requirements_status",
                {
                    "spaceId": space_id,
                    "error": message_for(NOT_AUTHENTICATED),
                    "userTokenBalance": 0,
                    "tokenGateMet": False,
                    "entryFeePaid": False,
                },
            )
            return
        result = self._access.check_requirements(identity.wallet_address, space_id)
        self._reply(identity, "space_requirements_status", result)

    def _space_pay_entry(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        signature = message.get("transactionSignature")
        if not identity.can_write:
            self._reply(identity, "space_pay_entry_result", failure(NOT_AUTHENTICATED))
            return
        if not signature:
            self._reply(identity, "space_pay_entry_result", failure(MISSING_SIGNATURE))
            return
        gate_failure = self._access.check_token_gate(identity.wallet_address, space_id)
        if gate_failure is not None:
            self._reply(identity, "space_pay_entry_result", {"spaceId": space_id, **gate_failure})
            return
        result = self._rentals.pay_entry_fee(identity.wallet_address, space_id, signature)
        self._reply(identity, "space_pay_entry_result", {"spaceId": space_id, **result})
        if result.get("success") and not result.get("alreadyPaid"):
            self._broadcast_space(space_id)

    # --- Owner settings ---

    def _space_update_settings(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        if not identity.can_write:
            self._reply(identity, "space_settings_result", failure(NOT_AUTHENTICATED))
            return
        result = self._rentals.update_settings(identity.wallet_address, space_id, message.get("settings"))
        self._reply(identity, "space_settings_result", result)
        if not result.get("success"):
            return
        self._broadcast_space(space_id)
        self._kick_unqualified(space_id)

    def _kick_unqualified(self, space_id: str) -> None:
        if self._get_players_in_room is None:
            return
        occupants = list(self._get_players_in_room(space_id))
        for kick in self._access.occupants_to_kick(space_id, occupants):
            logger.info("Kicking %s from %s: %s", kick.wallet_address or kick.connection_id, space_id, kick.reason)
            self._send_to_player(
                kick.connection_id,
                {"type": "space_kicked", "spaceId": space_id, "reason": kick.reason, "message": kick.message},
            )

    # --- Telemetry ---

    def _space_visit(self, identity: CallerIdentity, message: dict[str, Any]) -> None:
        space_id = message.get("spaceId")
        if not space_id:
            return
        wallet = identity.wallet_address or f"{GUEST_WALLET_PREFIX}{identity.connection_id}"
        self._rentals.record_visit(wallet, space_id)
