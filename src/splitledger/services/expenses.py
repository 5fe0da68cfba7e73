from __future__ import annotations

from typing import Mapping, Optional, Sequence

from splitledger.db.models import Expense
from splitledger.db.port import LedgerSession, LedgerStore
from splitledger.errors import EmptyGroup, InvalidSplit, NotFound
from splitledger.logging import get_logger
from splitledger.services.split import SplitPolicy, allocate, ensure_balanced


class ExpenseLedger:
    """Expenses and their splits, always written together in one transaction."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store
        self._log = get_logger(__name__)

    async def create_expense(
        self,
        group_id: int,
        description: str,
        amount_cents: int,
        paid_by: int,
        created_by: int,
        participants: Optional[Sequence[int]] = None,
        policy: SplitPolicy = SplitPolicy.EQUAL,
        weights: Optional[Mapping[int, object]] = None,
    ) -> Expense:
        description = _clean_description(description)
        async with self.store.transaction() as session:
            if await session.get_group(group_id) is None:
                raise NotFound("group", group_id)
            members = await _resolve_participants(session, group_id, participants)
            shares = allocate(amount_cents, members, policy, weights)

            expense = await session.insert_expense(group_id, description, amount_cents, paid_by, created_by)
            expense.splits = await session.replace_splits(expense.id, shares)
            ensure_balanced(expense.amount_cents, [(s.user_id, s.share_cents) for s in expense.splits])

        self._log.info(
            "expense.created",
            expense_id=expense.id,
            group_id=group_id,
            amount_cents=amount_cents,
            policy=SplitPolicy(policy).value,
            participants=len(shares),
        )
        return expense

    async def update_expense(
        self,
        expense_id: int,
        description: str,
        amount_cents: int,
        paid_by: int,
        participants: Optional[Sequence[int]] = None,
        policy: SplitPolicy = SplitPolicy.EQUAL,
        weights: Optional[Mapping[int, object]] = None,
    ) -> Expense:
        description = _clean_description(description)
        async with self.store.transaction() as session:
            # the row lock makes concurrent updates of one expense take turns
            current = await session.get_expense(expense_id, for_update=True)
            if current is None:
                raise NotFound("expense", expense_id)
            members = await _resolve_participants(session, current.group_id, participants)
            shares = allocate(amount_cents, members, policy, weights)

            expense = await session.update_expense(expense_id, description, amount_cents, paid_by)
            expense.splits = await session.replace_splits(expense_id, shares)
            ensure_balanced(expense.amount_cents, [(s.user_id, s.share_cents) for s in expense.splits])

        self._log.info(
            "expense.updated",
            expense_id=expense_id,
            amount_cents=amount_cents,
            policy=SplitPolicy(policy).value,
            participants=len(shares),
        )
        return expense

    async def delete_expense(self, expense_id: int) -> None:
        async with self.store.transaction() as session:
            if not await session.delete_expense(expense_id):
                raise NotFound("expense", expense_id)
        self._log.info("expense.deleted", expense_id=expense_id)

    async def get_expense(self, expense_id: int) -> Expense:
        async with self.store.snapshot() as session:
            expense = await session.get_expense(expense_id)
            if expense is None:
                raise NotFound("expense", expense_id)
            expense.splits = await session.get_splits(expense_id)
        return expense

    async def list_group_expenses(self, group_id: int) -> list[Expense]:
        async with self.store.snapshot() as session:
            expenses = await session.list_group_expenses(group_id)
            for expense in expenses:
                expense.splits = await session.get_splits(expense.id)
        return expenses


async def _resolve_participants(
    session: LedgerSession,
    group_id: int,
    participants: Optional[Sequence[int]],
) -> list[int]:
    if participants:
        return list(participants)
    members = await session.get_group_member_ids(group_id)
    if not members:
        raise EmptyGroup(group_id)
    return members


def _clean_description(description: str) -> str:
    cleaned = (description or "").strip()
    if not cleaned:
        raise InvalidSplit("description must not be empty")
    return cleaned
