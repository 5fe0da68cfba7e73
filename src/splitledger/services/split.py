from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional, Sequence

from splitledger.errors import InvalidSplit
from splitledger.money import mul_div_floor, mul_div_half_up, to_decimal

Allocation = list[tuple[int, int]]

_HUNDRED = Decimal(100)


class SplitPolicy(str, Enum):
    EQUAL = "equal"
    PERCENTAGE = "percent"
    SHARES = "shares"
    EXPLICIT = "explicit"


def split_equal(amount_cents: int, participants: Sequence[int]) -> Allocation:
    n = len(participants)
    base = amount_cents // n
    remainder = amount_cents - base * n
    return [(user_id, base + 1 if idx < remainder else base) for idx, user_id in enumerate(participants)]


def split_by_percentage(amount_cents: int, participants: Sequence[int], percents: Mapping[int, Decimal]) -> Allocation:
    return [
        (user_id, mul_div_half_up(amount_cents, percents.get(user_id, Decimal(0)), _HUNDRED))
        for user_id in participants
    ]


def split_by_shares(amount_cents: int, participants: Sequence[int], weights: Mapping[int, Decimal]) -> Allocation:
    total_weight = sum((weights.get(user_id, Decimal(0)) for user_id in participants), Decimal(0))
    if total_weight <= 0:
        raise InvalidSplit("share weights must add up to more than zero")

    shares = [mul_div_floor(amount_cents, weights.get(user_id, Decimal(0)), total_weight) for user_id in participants]
    leftover = amount_cents - sum(shares)
    # floor() leaves fewer leftover cents than there are participants
    for idx in range(leftover):
        shares[idx] += 1
    return list(zip(participants, shares))


def split_explicit(participants: Sequence[int], amounts: Mapping[int, object]) -> Allocation:
    result: Allocation = []
    for user_id in participants:
        value = amounts.get(user_id, 0)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidSplit(f"share for user {user_id} must be a whole number of cents")
        result.append((user_id, value))
    return result


def allocate(
    amount_cents: int,
    participants: Sequence[int],
    policy: SplitPolicy = SplitPolicy.EQUAL,
    weights: Optional[Mapping[int, object]] = None,
) -> Allocation:
    """Split ``amount_cents`` across ``participants`` so the shares add up exactly.

    ``weights`` maps participant to percent (PERCENTAGE), weight (SHARES) or
    cents (EXPLICIT); it is ignored for EQUAL. Participants missing from
    ``weights`` get zero. The result follows ``participants`` order.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidSplit("amount must be a whole number of cents")
    if amount_cents <= 0:
        raise InvalidSplit("amount must be positive")
    if not participants:
        raise InvalidSplit("at least one participant is required")
    if len(set(participants)) != len(participants):
        raise InvalidSplit("participants must be unique")

    policy = SplitPolicy(policy)
    weights = weights or {}
    unknown = set(weights) - set(participants)
    if unknown and policy is not SplitPolicy.EQUAL:
        raise InvalidSplit(f"weights given for non-participants: {sorted(unknown)}")

    if policy is SplitPolicy.EQUAL:
        shares = split_equal(amount_cents, participants)
    elif policy is SplitPolicy.EXPLICIT:
        shares = split_explicit(participants, weights)
    else:
        numeric = _decimal_weights(weights)
        if policy is SplitPolicy.PERCENTAGE:
            shares = split_by_percentage(amount_cents, participants, numeric)
        else:
            shares = split_by_shares(amount_cents, participants, numeric)

    negative = [user_id for user_id, share in shares if share < 0]
    if negative:
        raise InvalidSplit(f"negative share for users {negative}")

    ensure_balanced(amount_cents, shares)
    return shares


def ensure_balanced(amount_cents: int, shares: Sequence[tuple[int, int]]) -> None:
    allocated = sum(share for _, share in shares)
    if allocated != amount_cents:
        raise InvalidSplit(f"split totals must equal amount: got {allocated}, expected {amount_cents}")


def _decimal_weights(weights: Mapping[int, object]) -> dict[int, Decimal]:
    result: dict[int, Decimal] = {}
    for user_id, raw in weights.items():
        try:
            value = to_decimal(raw)
        except ValueError as exc:
            raise InvalidSplit(f"weight for user {user_id} is not a number") from exc
        if value < 0:
            raise InvalidSplit(f"weight for user {user_id} must not be negative")
        result[user_id] = value
    return result
