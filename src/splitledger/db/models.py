from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SettlementStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class User:
    id: int
    name: str
    email: Optional[str] = None


@dataclass(slots=True)
class Group:
    id: int
    name: str
    join_code: str
    created_by: Optional[int]
    created_at: Optional[datetime] = None
    owner_name: Optional[str] = None


@dataclass(slots=True)
class ExpenseSplit:
    expense_id: int
    user_id: int
    share_cents: int


@dataclass(slots=True)
class Expense:
    id: int
    group_id: int
    description: str
    amount_cents: int
    paid_by: int
    created_by: int
    created_at: Optional[datetime] = None
    splits: list[ExpenseSplit] = field(default_factory=list)


@dataclass(slots=True)
class Settlement:
    id: int
    group_id: Optional[int]
    from_user: int
    to_user: int
    amount_cents: int
    status: SettlementStatus
    note: Optional[str] = None
    external_ref: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def provider(self) -> str:
        return "card" if self.external_ref else "manual"


@dataclass(frozen=True, slots=True)
class BalanceEdge:
    """``debtor`` owes ``creditor`` ``amount_cents``."""

    debtor: int
    creditor: int
    amount_cents: int


@dataclass(frozen=True, slots=True)
class ShareRecord:
    expense_id: int
    group_id: int
    created_at: datetime
    share_cents: int


@dataclass(slots=True)
class RecentExpense:
    """An expense seen from one participant's side."""

    id: int
    group_id: int
    group_name: str
    description: str
    amount_cents: int
    paid_by: int
    paid_by_name: Optional[str]
    your_share_cents: int
    created_at: datetime
