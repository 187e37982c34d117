"""
Response shapes for a Space row.

public_view is what every client may see (broadcasts, lists). owner_view adds
rent dates, revenue counters and the fee epoch; only the owner receives it.
"""
from typing import Any

from spacerent.core.clock import isoformat
from spacerent.core.constants import DEFAULT_BANNER, DEFAULT_ENTRY_FEE, DEFAULT_TOKEN_GATE
from spacerent.models.space import Space


def _token_gate(space: Space) -> dict[str, Any]:
    return {**DEFAULT_TOKEN_GATE, **(space.token_gate or {})}


def _entry_fee(space: Space) -> dict[str, Any]:
    return {**DEFAULT_ENTRY_FEE, **(space.entry_fee or {})}


def public_view(space: Space) -> dict[str, Any]:
    gate = _token_gate(space)
    fee = _entry_fee(space)
    return {
        "spaceId": space.space_id,
        "position": space.position,
        "isReserved": bool(space.is_reserved),
        "spaceType": space.space_type,
        "isRented": bool(space.is_rented),
        "ownerWallet": space.owner_wallet,
        "ownerUsername": space.owner_username,
        "rentStatus": space.rent_status,
        "accessType": space.access_type,
        "hasTokenGate": bool(gate.get("enabled")),
        "tokenGate": {
            "enabled": bool(gate.get("enabled")),
            "tokenAddress": gate.get("tokenAddress"),
            "tokenSymbol": gate.get("tokenSymbol"),
            "minimumBalance": gate.get("minimumBalance"),
        },
        "hasEntryFee": bool(fee.get("enabled")) and (fee.get("amount") or 0) > 0,
        "entryFee": {
            "enabled": bool(fee.get("enabled")),
            "amount": fee.get("amount") or 0,
            "tokenAddress": fee.get("tokenAddress"),
            "tokenSymbol": fee.get("tokenSymbol"),
        },
        "banner": {**DEFAULT_BANNER, **(space.banner or {})},
        "stats": {
            "totalVisits": space.total_visits or 0,
            "uniqueVisitors": space.unique_visitors or 0,
        },
    }


def owner_view(space: Space, *, paid_entry_count: int | None = None) -> dict[str, Any]:
    view = public_view(space)
    view.update(
        {
            "rentStartDate": isoformat(space.rent_start_date),
            "lastRentPaidDate": isoformat(space.last_rent_paid_date),
            "rentDueDate": isoformat(space.rent_due_date),
            "entryFeeVersion": space.entry_fee_version,
            "tokenGate": _token_gate(space),
            "entryFee": _entry_fee(space),
            "stats": {
                "totalVisits": space.total_visits or 0,
                "uniqueVisitors": space.unique_visitors or 0,
                "totalRentPaid": space.total_rent_paid or 0,
                "totalEntryFeesCollected": space.total_entry_fees_collected or 0,
                "timesRented": space.times_rented or 0,
            },
        }
    )
    if paid_entry_count is not None:
        view["paidEntryFeeCount"] = paid_entry_count
    return view
