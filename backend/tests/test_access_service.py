"""Access Service: entry, periodic eligibility, requirements panel and kick re-evaluation."""

from conftest import GATE_TOKEN, identity, rent

GATE = {"enabled": True, "tokenAddress": GATE_TOKEN, "tokenSymbol": "$GATE", "minimumBalance": 100}


def _gated_space(rentals, verifier, access_type="token", fee_amount=0):
    rent(rentals, verifier, "OWNER", "space1", "tx-owner")
    settings = {"accessType": access_type, "tokenGate": GATE}
    if fee_amount:
        settings["entryFee"] = {"enabled": True, "amount": fee_amount, "tokenAddress": "FeeToken"}
    assert rentals.update_settings("OWNER", "space1", settings)["success"] is True


class TestCheckEntry:
    def test_unknown_space(self, access) -> None:
        assert access.check_entry("V1", "nope") == {"spaceId": "nope", "canEnter": False, "reason": "SPACE_NOT_FOUND"}

    def test_owner_skips_balance_lookup(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.balance_calls.clear()
        assert access.check_entry("OWNER", "space1") == {"spaceId": "space1", "canEnter": True, "isOwner": True}
        assert verifier.balance_calls == []

    def test_token_holder_enters(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 150)
        result = access.check_entry("V1", "space1")
        assert result["canEnter"] is True
        assert result["userTokenBalance"] == 150

    def test_lookup_error_fails_closed(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 10_000)
        verifier.balance_errors.add("V1")
        result = access.check_entry("V1", "space1")
        assert result["canEnter"] is False
        assert result["blockingReason"] == "TOKEN_REQUIRED"

    def test_guest_blocked_from_gated_space(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        assert access.check_entry(None, "space1")["canEnter"] is False

    def test_vacant_space_is_private(self, access) -> None:
        result = access.check_entry("V1", "space1")
        assert result["canEnter"] is False
        assert result["blockingReason"] == "SPACE_LOCKED"


class TestCheckEligibility:
    def test_one_lookup_error_tolerated_then_denied(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 150)
        assert access.check_eligibility("V1", "space1", "conn-1")["canEnter"] is True

        verifier.balance_errors.add("V1")
        first = access.check_eligibility("V1", "space1", "conn-1")
        assert first["canEnter"] is True
        assert first["verificationDeferred"] is True

        second = access.check_eligibility("V1", "space1", "conn-1")
        assert second["canEnter"] is False
        assert second["reason"] == "TOKEN_REQUIRED"

    def test_success_resets_failure_count(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 150)
        verifier.balance_errors.add("V1")
        assert access.check_eligibility("V1", "space1", "conn-1")["canEnter"] is True
        verifier.balance_errors.clear()
        assert access.check_eligibility("V1", "space1", "conn-1")["canEnter"] is True
        verifier.balance_errors.add("V1")
        assert access.check_eligibility("V1", "space1", "conn-1")["canEnter"] is True

    def test_confirmed_failure_denies_immediately(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.set_balance("V1", GATE_TOKEN, 5)
        result = access.check_eligibility("V1", "space1", "conn-1")
        assert result["canEnter"] is False
        assert result["reason"] == "TOKEN_REQUIRED"

    def test_lookup_error_with_unpaid_fee_denies(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="both", fee_amount=500)
        verifier.balance_errors.add("V1")
        result = access.check_eligibility("V1", "space1", "conn-1")
        assert result["canEnter"] is False
        assert result["reason"] == "FEE_REQUIRED"
        assert result["blockingReason"] == "FEE_REQUIRED"
        assert "verificationDeferred" not in result

    def test_lookup_error_with_paid_fee_is_deferred(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="both", fee_amount=500)
        verifier.set_balance("V1", GATE_TOKEN, 150)
        assert rentals.pay_entry_fee("V1", "space1", "fee-tx")["success"] is True
        verifier.balance_errors.add("V1")
        result = access.check_eligibility("V1", "space1", "conn-1")
        assert result["canEnter"] is True
        assert result["verificationDeferred"] is True

    def test_forget_clears_counters(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.balance_errors.add("V1")
        assert access.check_eligibility("V1", "space1", "conn-1")["canEnter"] is True
        access.forget("conn-1")
        assert access.check_eligibility("V1", "space1", "conn-1")["canEnter"] is True

    def test_counters_are_per_connection(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.balance_errors.add("V1")
        assert access.check_eligibility("V1", "space1", "conn-1")["canEnter"] is True
        assert access.check_eligibility("V1", "space1", "conn-2")["canEnter"] is True


class TestCheckRequirements:
    def test_reports_balance_and_fee(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="both", fee_amount=500)
        verifier.set_balance("V1", GATE_TOKEN, 120)
        result = access.check_requirements("V1", "space1")
        assert result["isOwner"] is False
        assert result["tokenGateMet"] is True
        assert result["entryFeePaid"] is False
        assert result["userTokenBalance"] == 120
        assert result["tokenGateRequired"] == 100
        assert result["entryFeeAmount"] == 500
        assert "canEnter" not in result

    def test_owner_meets_everything(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="both", fee_amount=500)
        result = access.check_requirements("OWNER", "space1")
        assert result["isOwner"] is True
        assert result["tokenGateMet"] is True
        assert result["entryFeePaid"] is True

    def test_lookup_error_reports_not_met(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.balance_errors.add("V1")
        result = access.check_requirements("V1", "space1")
        assert result["tokenGateMet"] is False
        assert result["userTokenBalance"] == 0

    def test_unknown_space(self, access) -> None:
        assert access.check_requirements("V1", "nope") == {"spaceId": "nope", "error": "Space not found"}


class TestCheckTokenGate:
    def test_holder_may_pay(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="both", fee_amount=500)
        verifier.set_balance("V1", GATE_TOKEN, 100)
        assert access.check_token_gate("V1", "space1") is None

    def test_non_holder_refused(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="both", fee_amount=500)
        verifier.set_balance("V1", GATE_TOKEN, 10)
        result = access.check_token_gate("V1", "space1")
        assert result["error"] == "TOKEN_GATE_NOT_MET"
        assert result["required"] == 100
        assert result["current"] == 10

    def test_fee_only_space_has_no_gate(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="fee", fee_amount=500)
        assert access.check_token_gate("V1", "space1") is None


class TestOccupantsToKick:
    def test_private_kicks_everyone_but_owner(self, access, rentals, verifier) -> None:
        rent(rentals, verifier, "OWNER", "space1", "tx-owner")
        occupants = [identity("OWNER", "c-owner"), identity("V1", "c-1"), identity(None, "c-guest")]
        kicks = access.occupants_to_kick("space1", occupants)
        assert [(k.connection_id, k.reason) for k in kicks] == [
            ("c-1", "SPACE_NOW_PRIVATE"),
            ("c-guest", "SPACE_NOW_PRIVATE"),
        ]
        assert kicks[0].message == "The space owner has made this space private"

    def test_token_and_fee_reasons(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier, access_type="both", fee_amount=500)
        verifier.set_balance("POOR", GATE_TOKEN, 1)
        verifier.set_balance("HOLDER", GATE_TOKEN, 500)
        kicks = access.occupants_to_kick("space1", [identity("POOR", "c-1"), identity("HOLDER", "c-2")])
        assert {(k.connection_id, k.reason) for k in kicks} == {
            ("c-1", "TOKEN_GATE_NOT_MET"),
            ("c-2", "ENTRY_FEE_NOW_REQUIRED"),
        }

    def test_lookup_error_does_not_kick(self, access, rentals, verifier) -> None:
        _gated_space(rentals, verifier)
        verifier.balance_errors.add("V1")
        assert access.occupants_to_kick("space1", [identity("V1", "c-1")]) == []

    def test_public_keeps_everyone(self, access, rentals, verifier) -> None:
        rent(rentals, verifier, "OWNER", "space1", "tx-owner")
        rentals.update_settings("OWNER", "space1", {"accessType": "public"})
        assert access.occupants_to_kick("space1", [identity("V1", "c-1"), identity(None, "c-2")]) == []
