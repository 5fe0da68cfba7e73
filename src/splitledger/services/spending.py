from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional

from splitledger.db.models import RecentExpense, Settlement, ShareRecord
from splitledger.db.port import LedgerStore

MONTHS_OF_HISTORY = 6
TOP_GROUPS = 5
RECENT_ACTIVITY = 10


@dataclass(slots=True)
class MonthlySpend:
    month: str
    spent_cents: int


@dataclass(slots=True)
class TopGroup:
    group_id: int
    name: Optional[str]
    spent_cents: int


@dataclass(slots=True)
class SpendingSummary:
    month_spent_cents: int = 0
    month_expense_count: int = 0
    all_time_spent_cents: int = 0
    monthly: list[MonthlySpend] = field(default_factory=list)
    top_groups: list[TopGroup] = field(default_factory=list)
    recent_expenses: list[RecentExpense] = field(default_factory=list)
    recent_settlements: list[Settlement] = field(default_factory=list)


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def _months_back(now: datetime, count: int) -> list[str]:
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def summarize_shares(
    shares: Iterable[ShareRecord],
    now: datetime,
    group_names: Optional[Mapping[int, str]] = None,
) -> SpendingSummary:
    """Spending is the sum of a user's own shares, regardless of who paid.

    Top groups rank this month's spending per group, ties broken by group id.
    """
    current = month_key(now)
    window = _months_back(now, MONTHS_OF_HISTORY)
    per_month: dict[str, int] = {}
    month_expenses: set[int] = set()
    per_group: dict[int, int] = {}
    summary = SpendingSummary()

    for share in shares:
        key = month_key(share.created_at.astimezone(now.tzinfo) if now.tzinfo else share.created_at)
        summary.all_time_spent_cents += share.share_cents
        if key == current:
            summary.month_spent_cents += share.share_cents
            month_expenses.add(share.expense_id)
            per_group[share.group_id] = per_group.get(share.group_id, 0) + share.share_cents
        if key in window:
            per_month[key] = per_month.get(key, 0) + share.share_cents

    summary.month_expense_count = len(month_expenses)
    summary.monthly = [MonthlySpend(month=key, spent_cents=per_month[key]) for key in window if key in per_month]
    ranked = sorted(per_group.items(), key=lambda item: (-item[1], item[0]))[:TOP_GROUPS]
    names = group_names or {}
    summary.top_groups = [TopGroup(group_id=gid, name=names.get(gid), spent_cents=cents) for gid, cents in ranked]
    return summary


class SpendingReport:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def spending_summary(self, user_id: int, now: Optional[datetime] = None) -> SpendingSummary:
        now = now or datetime.now(timezone.utc)
        async with self.store.snapshot() as session:
            group_ids = await session.get_user_group_ids(user_id)
            if not group_ids:
                return SpendingSummary()
            shares = await session.fetch_user_shares(user_id, group_ids)
            names = await session.get_group_names(group_ids)
            recent_expenses = await session.fetch_recent_expenses(user_id, group_ids, RECENT_ACTIVITY)
            recent_settlements = await session.fetch_recent_settlements(user_id, group_ids, RECENT_ACTIVITY)

        summary = summarize_shares(shares, now, names)
        summary.recent_expenses = recent_expenses
        summary.recent_settlements = recent_settlements
        return summary
