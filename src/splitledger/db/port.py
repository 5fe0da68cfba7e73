"""Storage port the ledgers depend on.

A store hands out sessions bound to one transaction. ``transaction()`` commits
when the block exits normally and rolls back on any exception; ``snapshot()``
is a read-only transaction giving the resolver a consistent view.
"""

from __future__ import annotations

from typing import AsyncContextManager, Collection, Optional, Protocol, Sequence

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


class LedgerSession(Protocol):
    # groups and members
    async def get_group(self, group_id: int) -> Optional[Group]: ...

    async def get_group_by_join_code(self, join_code: str) -> Optional[Group]: ...

    async def create_group(self, name: str, created_by: int, join_code: str) -> Group: ...

    async def delete_group(self, group_id: int) -> None: ...

    async def add_member(self, group_id: int, user_id: int) -> None: ...

    async def get_group_member_ids(self, group_id: int) -> list[int]: ...

    async def get_user_group_ids(self, user_id: int) -> list[int]: ...

    async def list_user_groups(self, user_id: int) -> list[Group]: ...

    async def get_group_members(self, group_id: int) -> list[User]: ...

    async def get_group_names(self, group_ids: Collection[int]) -> dict[int, str]: ...

    async def get_user_names(self, user_ids: Collection[int]) -> dict[int, str]: ...

    # expenses
    async def get_expense(self, expense_id: int, *, for_update: bool = False) -> Optional[Expense]: ...

    async def list_group_expenses(self, group_id: int) -> list[Expense]: ...

    async def insert_expense(
        self,
        group_id: int,
        description: str,
        amount_cents: int,
        paid_by: int,
        created_by: int,
    ) -> Expense: ...

    async def update_expense(
        self,
        expense_id: int,
        description: str,
        amount_cents: int,
        paid_by: int,
    ) -> Expense: ...

    async def delete_expense(self, expense_id: int) -> bool: ...

    async def get_splits(self, expense_id: int) -> list[ExpenseSplit]: ...

    async def replace_splits(self, expense_id: int, shares: Sequence[tuple[int, int]]) -> list[ExpenseSplit]: ...

    # settlements
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
        """Raises ``Conflict`` when ``external_ref`` is already taken."""
        ...

    async def get_settlement_by_ref(self, external_ref: str, *, for_update: bool = False) -> Optional[Settlement]: ...

    async def set_settlement_status(self, settlement_id: int, status: SettlementStatus) -> Settlement: ...

    async def list_group_settlements(self, group_id: int) -> list[Settlement]: ...

    # balance edges
    async def fetch_expense_edges(
        self,
        group_ids: Collection[int],
        involving: Optional[Collection[int]] = None,
    ) -> list[BalanceEdge]: ...

    async def fetch_settlement_edges(
        self,
        group_ids: Collection[int],
        involving: Optional[Collection[int]] = None,
        include_groupless: bool = False,
    ) -> list[BalanceEdge]: ...

    async def fetch_user_shares(self, user_id: int, group_ids: Collection[int]) -> list[ShareRecord]: ...

    # activity
    async def fetch_recent_expenses(self, user_id: int, group_ids: Collection[int], limit: int) -> list[RecentExpense]: ...

    async def fetch_recent_settlements(self, user_id: int, group_ids: Collection[int], limit: int) -> list[Settlement]: ...


class LedgerStore(Protocol):
    def transaction(self) -> AsyncContextManager[LedgerSession]: ...

    def snapshot(self) -> AsyncContextManager[LedgerSession]: ...
