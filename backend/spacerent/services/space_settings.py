"""
Owner-editable settings: typed partial update + merge.

Clients send camelCase (accessType, tokenGate.minimumBalance, ...). Only fields
present in the patch are applied; the rest keep their stored values.
"""
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from spacerent.core.constants import DEFAULT_BANNER, DEFAULT_ENTRY_FEE, DEFAULT_TOKEN_GATE

# Fields whose change invalidates previously paid entry fees
TOKEN_GATE_MATERIAL_FIELDS = ("enabled", "tokenAddress", "minimumBalance")
ENTRY_FEE_MATERIAL_FIELDS = ("enabled", "amount")


class _Patch(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def changes(self) -> dict[str, Any]:
        """Explicitly sent fields, camelCase keys (explicit nulls included)."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class TokenGatePatch(_Patch):
    enabled: bool | None = None
    token_address: str | None = Field(None, max_length=64)
    token_symbol: str | None = Field(None, max_length=16)
    minimum_balance: float | None = Field(None, ge=0)


class EntryFeePatch(_Patch):
    enabled: bool | None = None
    amount: int | None = Field(None, ge=0)
    token_address: str | None = Field(None, max_length=64)
    token_symbol: str | None = Field(None, max_length=16)


class BannerPatch(_Patch):
    title: str | None = Field(None, max_length=40)
    ticker: str | None = Field(None, max_length=16)
    shill: str | None = Field(None, max_length=60)
    style_index: int | None = Field(None, ge=0)
    use_custom_colors: bool | None = None
    custom_gradient: list[str] | None = Field(None, min_length=2, max_length=3)
    text_color: str | None = Field(None, max_length=32)
    accent_color: str | None = Field(None, max_length=32)
    font: str | None = Field(None, max_length=80)
    text_align: Literal["left", "center", "right"] | None = None


class SettingsPatch(_Patch):
    access_type: Literal["private", "public", "token", "fee", "both"] | None = None
    token_gate: TokenGatePatch | None = None
    entry_fee: EntryFeePatch | None = None
    banner: BannerPatch | None = None


@dataclass
class MergedSettings:
    access_type: str
    token_gate: dict[str, Any]
    entry_fee: dict[str, Any]
    banner: dict[str, Any]
    entry_fees_reset: bool


def _differs(before: dict[str, Any], after: dict[str, Any], fields: tuple[str, ...]) -> bool:
    return any(before.get(f) != after.get(f) for f in fields)


def _normalize_banner(banner: dict[str, Any]) -> dict[str, Any]:
    """Every banner key present; unknown keys dropped; explicit nulls on styled fields fall back to defaults."""
    out = {}
    for key, default in DEFAULT_BANNER.items():
        value = banner.get(key)
        if value is None and key not in ("title", "ticker", "shill"):
            value = default
        out[key] = list(value) if isinstance(value, list) else value
    return out


def merge_settings(
    *,
    access_type: str,
    token_gate: dict[str, Any] | None,
    entry_fee: dict[str, Any] | None,
    banner: dict[str, Any] | None,
    patch: SettingsPatch,
) -> MergedSettings:
    prior_gate = {**DEFAULT_TOKEN_GATE, **(token_gate or {})}
    prior_fee = {**DEFAULT_ENTRY_FEE, **(entry_fee or {})}
    prior_banner = {**DEFAULT_BANNER, **(banner or {})}

    new_gate = {**prior_gate, **patch.token_gate.changes()} if patch.token_gate else prior_gate
    new_fee = {**prior_fee, **patch.entry_fee.changes()} if patch.entry_fee else prior_fee
    new_banner = {**prior_banner, **patch.banner.changes()} if patch.banner else prior_banner

    reset = _differs(prior_gate, new_gate, TOKEN_GATE_MATERIAL_FIELDS) or _differs(
        prior_fee, new_fee, ENTRY_FEE_MATERIAL_FIELDS
    )
    return MergedSettings(
        access_type=patch.access_type or access_type,
        token_gate=new_gate,
        entry_fee=new_fee,
        banner=_normalize_banner(new_banner),
        entry_fees_reset=reset,
    )
