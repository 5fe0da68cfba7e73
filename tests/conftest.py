from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import AsyncIterator, Collection, Optional, Sequence

import pytest

from splitledger.db.models import (
    BalanceEdge,
    Expense,
    ExpenseSplit,
    Group,
    RecentExpense,
    Settlement,
    SettlementStatus,
    ShareRecord,
    User,
)
from splitledger.errors import Conflict


@dataclass
class _State:
    users: dict[int, User] = field(default_factory=dict)
    groups: dict[int, Group] = field(default_factory=dict)
    members: dict[int, list[int]] = field(default_factory=dict)
    expenses: dict[int, Expense] = field(default_factory=dict)
    splits: dict[int, list[ExpenseSplit]] = field(default_factory=dict)
    settlements: dict[int, Settlement] = field(default_factory=dict)
    next_id: int = 1


class MemorySession:
    """Storage port over plain dicts; mirrors the SQL repository's semantics."""

    def __init__(self, state: _State, store: "MemoryStore") -> None:
        self.state = state
        self.store = store

    def _id(self) -> int:
        value = self.state.next_id
        self.state.next_id += 1
        return value

    def _with_owner(self, group: Group) -> Group:
        owner = self.state.users.get(group.created_by) if group.created_by is not None else None
        return replace(group, owner_name=owner.name if owner else None)

    async def get_group(self, group_id: int) -> Optional[Group]:
        group = self.state.groups.get(group_id)
        return self._with_owner(group) if group else None

    async def get_group_by_join_code(self, join_code: str) -> Optional[Group]:
        for group in self.state.groups.values():
            if group.join_code == join_code:
                return replace(group)
        return None

    async def create_group(self, name: str, created_by: int, join_code: str) -> Group:
        group = Group(id=self._id(), name=name, join_code=join_code, created_by=created_by, created_at=self.store.now)
        self.state.groups[group.id] = group
        self.state.members[group.id] = []
        return replace(group)

    async def delete_group(self, group_id: int) -> None:
        self.state.groups.pop(group_id, None)
        self.state.members.pop(group_id, None)
        for expense_id in [e.id for e in self.state.expenses.values() if e.group_id == group_id]:
            await self.delete_expense(expense_id)
        for settlement_id in [s.id for s in self.state.settlements.values() if s.group_id == group_id]:
            del self.state.settlements[settlement_id]

    async def add_member(self, group_id: int, user_id: int) -> None:
        members = self.state.members.setdefault(group_id, [])
        if user_id not in members:
            members.append(user_id)

    async def get_group_member_ids(self, group_id: int) -> list[int]:
        return sorted(self.state.members.get(group_id, []))

    async def get_user_group_ids(self, user_id: int) -> list[int]:
        return sorted(gid for gid, members in self.state.members.items() if user_id in members)

    async def list_user_groups(self, user_id: int) -> list[Group]:
        rows = [self.state.groups[gid] for gid in await self.get_user_group_ids(user_id) if gid in self.state.groups]
        rows.sort(key=lambda g: (g.created_at, g.id), reverse=True)
        return [self._with_owner(g) for g in rows]

    async def get_group_members(self, group_id: int) -> list[User]:
        users = [self.state.users[uid] for uid in self.state.members.get(group_id, []) if uid in self.state.users]
        return [replace(u) for u in sorted(users, key=lambda u: (u.name, u.id))]

    async def get_group_names(self, group_ids: Collection[int]) -> dict[int, str]:
        return {gid: self.state.groups[gid].name for gid in group_ids if gid in self.state.groups}

    async def get_user_names(self, user_ids: Collection[int]) -> dict[int, str]:
        return {uid: self.state.users[uid].name for uid in user_ids if uid in self.state.users}

    async def get_expense(self, expense_id: int, *, for_update: bool = False) -> Optional[Expense]:
        expense = self.state.expenses.get(expense_id)
        return replace(expense, splits=[]) if expense else None

    async def list_group_expenses(self, group_id: int) -> list[Expense]:
        rows = [e for e in self.state.expenses.values() if e.group_id == group_id]
        rows.sort(key=lambda e: (e.created_at, e.id), reverse=True)
        return [replace(e, splits=[]) for e in rows]

    async def insert_expense(
        self,
        group_id: int,
        description: str,
        amount_cents: int,
        paid_by: int,
        created_by: int,
    ) -> Expense:
        expense = Expense(
            id=self._id(),
            group_id=group_id,
            description=description,
            amount_cents=amount_cents,
            paid_by=paid_by,
            created_by=created_by,
            created_at=self.store.now,
        )
        self.state.expenses[expense.id] = expense
        self.state.splits[expense.id] = []
        return replace(expense)

    async def update_expense(self, expense_id: int, description: str, amount_cents: int, paid_by: int) -> Expense:
        expense = self.state.expenses[expense_id]
        expense.description = description
        expense.amount_cents = amount_cents
        expense.paid_by = paid_by
        return replace(expense, splits=[])

    async def delete_expense(self, expense_id: int) -> bool:
        if self.state.expenses.pop(expense_id, None) is None:
            return False
        self.state.splits.pop(expense_id, None)
        return True

    async def get_splits(self, expense_id: int) -> list[ExpenseSplit]:
        return [replace(s) for s in self.state.splits.get(expense_id, [])]

    async def replace_splits(self, expense_id: int, shares: Sequence[tuple[int, int]]) -> list[ExpenseSplit]:
        if self.store.fail_on_splits:
            raise OSError("connection lost")
        rows = [ExpenseSplit(expense_id, user_id, share) for user_id, share in shares]
        self.state.splits[expense_id] = rows
        return [replace(s) for s in rows]

    async def insert_settlement(
        self,
        group_id: Optional[int],
        from_user: int,
        to_user: int,
        amount_cents: int,
        status: SettlementStatus,
        note: Optional[str],
        external_ref: Optional[str] = None,
    ) -> Settlement:
        if external_ref is not None and any(s.external_ref == external_ref for s in self.state.settlements.values()):
            raise Conflict(external_ref)
        settlement = Settlement(
            id=self._id(),
            group_id=group_id,
            from_user=from_user,
            to_user=to_user,
            amount_cents=amount_cents,
            status=status,
            note=note,
            external_ref=external_ref,
            created_at=self.store.now,
        )
        self.state.settlements[settlement.id] = settlement
        return replace(settlement)

    async def get_settlement_by_ref(self, external_ref: str, *, for_update: bool = False) -> Optional[Settlement]:
        for settlement in self.state.settlements.values():
            if settlement.external_ref == external_ref:
                return replace(settlement)
        return None

    async def set_settlement_status(self, settlement_id: int, status: SettlementStatus) -> Settlement:
        settlement = self.state.settlements[settlement_id]
        settlement.status = status
        return replace(settlement)

    async def list_group_settlements(self, group_id: int) -> list[Settlement]:
        rows = [s for s in self.state.settlements.values() if s.group_id == group_id]
        rows.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return [replace(s) for s in rows]

    async def fetch_expense_edges(
        self,
        group_ids: Collection[int],
        involving: Optional[Collection[int]] = None,
    ) -> list[BalanceEdge]:
        edges = []
        for expense in self.state.expenses.values():
            if expense.group_id not in group_ids:
                continue
            for split in self.state.splits.get(expense.id, []):
                if split.user_id == expense.paid_by:
                    continue
                if involving is not None and split.user_id not in involving and expense.paid_by not in involving:
                    continue
                edges.append(BalanceEdge(split.user_id, expense.paid_by, split.share_cents))
        return edges

    async def fetch_settlement_edges(
        self,
        group_ids: Collection[int],
        involving: Optional[Collection[int]] = None,
        include_groupless: bool = False,
    ) -> list[BalanceEdge]:
        edges = []
        for s in self.state.settlements.values():
            in_scope = s.group_id in group_ids or (include_groupless and s.group_id is None)
            if not in_scope or s.status is SettlementStatus.FAILED:
                continue
            if involving is not None and s.from_user not in involving and s.to_user not in involving:
                continue
            edges.append(BalanceEdge(s.to_user, s.from_user, s.amount_cents))
        return edges

    async def fetch_user_shares(self, user_id: int, group_ids: Collection[int]) -> list[ShareRecord]:
        records = []
        for expense in self.state.expenses.values():
            if expense.group_id not in group_ids:
                continue
            for split in self.state.splits.get(expense.id, []):
                if split.user_id == user_id:
                    records.append(ShareRecord(expense.id, expense.group_id, expense.created_at, split.share_cents))
        return records

    async def fetch_recent_expenses(self, user_id: int, group_ids: Collection[int], limit: int) -> list[RecentExpense]:
        rows = []
        for expense in self.state.expenses.values():
            if expense.group_id not in group_ids:
                continue
            for split in self.state.splits.get(expense.id, []):
                if split.user_id != user_id:
                    continue
                payer = self.state.users.get(expense.paid_by)
                rows.append(
                    RecentExpense(
                        id=expense.id,
                        group_id=expense.group_id,
                        group_name=self.state.groups[expense.group_id].name,
                        description=expense.description,
                        amount_cents=expense.amount_cents,
                        paid_by=expense.paid_by,
                        paid_by_name=payer.name if payer else None,
                        your_share_cents=split.share_cents,
                        created_at=expense.created_at,
                    )
                )
        rows.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return rows[:limit]

    async def fetch_recent_settlements(self, user_id: int, group_ids: Collection[int], limit: int) -> list[Settlement]:
        rows = [
            s
            for s in self.state.settlements.values()
            if s.group_id in group_ids and user_id in (s.from_user, s.to_user)
        ]
        rows.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return [replace(s) for s in rows[:limit]]


class MemoryStore:
    """In-memory ``LedgerStore``: writes run one at a time and roll back on any exception."""

    def __init__(self) -> None:
        self.state = _State()
        self.now = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
        self.fail_on_splits = False
        self._write_lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemorySession]:
        async with self._write_lock:
            working = copy.deepcopy(self.state)
            yield MemorySession(working, self)
            self.state = working

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[MemorySession]:
        yield MemorySession(copy.deepcopy(self.state), self)

    # seeding helpers
    def add_user(self, user_id: int, name: str, email: Optional[str] = None) -> int:
        self.state.users[user_id] = User(id=user_id, name=name, email=email)
        return user_id

    def add_group(self, group_id: int, members: Sequence[int], created_by: Optional[int] = None) -> int:
        self.state.groups[group_id] = Group(
            id=group_id,
            name=f"group {group_id}",
            join_code=f"code{group_id}",
            created_by=created_by if created_by is not None else (members[0] if members else None),
            created_at=self.now,
        )
        self.state.members[group_id] = list(members)
        self.state.next_id = max(self.state.next_id, group_id + 1)
        return group_id

    def settlement_count(self) -> int:
        return len(self.state.settlements)

    def split_count(self) -> int:
        return sum(len(rows) for rows in self.state.splits.values())


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore()
    store.add_user(1, "Alice")
    store.add_user(2, "Bob")
    store.add_user(3, "Carol")
    store.add_user(4, "Dave")
    return store
