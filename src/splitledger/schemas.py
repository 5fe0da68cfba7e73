"""Request and event payloads as they arrive from outside the ledger.

Legacy aliases (``from_user_id``, ``payer_id``, ``participant_ids``, dollar
``amount`` …) are accepted here and nowhere else; after validation every model
exposes one canonical field per concept with money in integer cents.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from splitledger.money import dollars_to_cents
from splitledger.services.split import SplitPolicy

_POLICY_ALIASES = {
    "equal": SplitPolicy.EQUAL,
    "percent": SplitPolicy.PERCENTAGE,
    "percentage": SplitPolicy.PERCENTAGE,
    "shares": SplitPolicy.SHARES,
    "weighted": SplitPolicy.SHARES,
    "explicit": SplitPolicy.EXPLICIT,
    "exact": SplitPolicy.EXPLICIT,
    "unequal": SplitPolicy.EXPLICIT,
}

PROVIDER_EVENT_TYPES = {
    "payment_intent.succeeded": "confirmed",
    "payment_intent.payment_failed": "failed",
}


def _resolve_cents(amount_cents: Optional[int], amount: Optional[Decimal]) -> Optional[int]:
    if amount_cents is not None:
        return amount_cents
    if amount is not None:
        return dollars_to_cents(amount)
    return None


class SplitEntry(BaseModel):
    user_id: int
    share_cents: Optional[int] = None
    percent: Optional[Decimal] = None
    shares: Optional[Decimal] = None


class ExpenseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_id: Optional[int] = Field(None, validation_alias=AliasChoices("group_id", "group"))
    description: str
    amount_cents: Optional[int] = None
    amount: Optional[Decimal] = Field(None, exclude=True)
    paid_by: Optional[int] = Field(None, validation_alias=AliasChoices("paid_by", "payer_id", "payer"))
    created_by: Optional[int] = Field(None, validation_alias=AliasChoices("created_by", "creator_id", "creator"))
    participants: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("participants", "participant_ids", "members"),
    )
    policy: SplitPolicy = Field(
        SplitPolicy.EQUAL,
        validation_alias=AliasChoices("policy", "split_mode", "split_policy", "splitPolicy"),
    )
    splits: list[SplitEntry] = Field(default_factory=list, validation_alias=AliasChoices("splits", "weights"))

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("description must not be empty")
        return value

    @field_validator("policy", mode="before")
    @classmethod
    def _policy_alias(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return _POLICY_ALIASES[value.strip().lower()]
            except KeyError:
                raise ValueError(f"unknown split policy {value!r}") from None
        return value

    @model_validator(mode="after")
    def _canonical(self) -> "ExpenseRequest":
        self.amount_cents = _resolve_cents(self.amount_cents, self.amount)
        if self.amount_cents is None or self.amount_cents <= 0:
            raise ValueError("amount must be positive")
        self.paid_by = self.paid_by if self.paid_by is not None else self.created_by
        self.created_by = self.created_by if self.created_by is not None else self.paid_by
        if self.paid_by is None:
            raise ValueError("payer or creator is required")
        if self.policy is SplitPolicy.EQUAL and any(entry.share_cents is not None for entry in self.splits):
            self.policy = SplitPolicy.EXPLICIT
        if self.policy is not SplitPolicy.EQUAL and not self.splits:
            self.policy = SplitPolicy.EQUAL
        return self

    def weights(self) -> dict[int, object]:
        if self.policy is SplitPolicy.PERCENTAGE:
            return {entry.user_id: entry.percent or Decimal(0) for entry in self.splits}
        if self.policy is SplitPolicy.SHARES:
            return {entry.user_id: entry.shares or Decimal(0) for entry in self.splits}
        if self.policy is SplitPolicy.EXPLICIT:
            return {entry.user_id: entry.share_cents or 0 for entry in self.splits}
        return {}


class SettlementRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_id: Optional[int] = Field(None, validation_alias=AliasChoices("group_id", "group"))
    from_user: int = Field(validation_alias=AliasChoices("from_user", "from_user_id", "from"))
    to_user: int = Field(validation_alias=AliasChoices("to_user", "to_user_id", "to"))
    amount_cents: Optional[int] = None
    amount: Optional[Decimal] = Field(None, exclude=True)
    note: Optional[str] = None

    @model_validator(mode="after")
    def _canonical(self) -> "SettlementRequest":
        self.amount_cents = _resolve_cents(self.amount_cents, self.amount)
        if self.amount_cents is None or self.amount_cents <= 0:
            raise ValueError("amount must be > 0")
        if self.from_user == self.to_user:
            raise ValueError("payer and receiver must be different")
        self.note = (self.note or "").strip() or None
        return self


class ProviderEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["confirmed", "failed"]
    external_ref: str = Field(min_length=1, validation_alias=AliasChoices("external_ref", "externalRef"))
    group_id: Optional[int] = Field(None, validation_alias=AliasChoices("group_id", "group"))
    from_user: Optional[int] = Field(None, validation_alias=AliasChoices("from_user", "from_user_id", "from"))
    to_user: Optional[int] = Field(None, validation_alias=AliasChoices("to_user", "to_user_id", "to"))
    amount_cents: int = 0
    note: Optional[str] = None

    @model_validator(mode="after")
    def _confirmation_fields(self) -> "ProviderEvent":
        if self.type == "confirmed":
            if self.from_user is None or self.to_user is None:
                raise ValueError("confirmed event needs both parties")
            if self.amount_cents <= 0:
                raise ValueError("confirmed event needs a positive amount")
        return self

    @classmethod
    def from_payment_intent(cls, event: Mapping[str, Any]) -> Optional["ProviderEvent"]:
        """Map a card provider's payment-intent notification; ``None`` for event types we ignore."""
        kind = PROVIDER_EVENT_TYPES.get(event.get("type", ""))
        if kind is None:
            return None
        intent = event["data"]["object"]
        metadata = intent.get("metadata") or {}
        amount = intent.get("amount_received") or intent.get("amount") or 0
        payload: dict[str, Any] = {"type": kind, "external_ref": intent["id"], "amount_cents": amount}
        if kind == "confirmed":
            payload.update(
                group_id=metadata.get("group_id") or None,
                from_user=metadata.get("from_user") or metadata.get("from_user_id"),
                to_user=metadata.get("to_user") or metadata.get("to_user_id"),
                note=f"Card: {metadata.get('note') or 'payment'}",
            )
        return cls.model_validate(payload)
