from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Collection, Iterable, Optional, Sequence

import asyncpg

from splitledger.config import Settings
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
from splitledger.errors import Conflict, StorageFault
from splitledger.logging import get_logger, sql_logger

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class Database:
    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float | None = None,
        acquire_timeout: float | None = None,
    ) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._acquire_timeout = acquire_timeout
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
            acquire_timeout=settings.db_acquire_timeout,
        )

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql:// scheme, without "+asyncpg"
            dsn = self._dsn.replace("+asyncpg", "")
            try:
                self._pool = await asyncpg.create_pool(
                    dsn,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    command_timeout=self._command_timeout,
                )
            except _DRIVER_ERRORS as exc:
                raise StorageFault(f"cannot connect: {exc}") from exc
            self._log.info("db.pool.created", min_size=self._min_size, max_size=self._max_size)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    def transaction(self) -> AsyncContextManager["LedgerRepository"]:
        return self._session(readonly=False, isolation="read_committed")

    def snapshot(self) -> AsyncContextManager["LedgerRepository"]:
        return self._session(readonly=True, isolation="repeatable_read")

    @asynccontextmanager
    async def _session(self, *, readonly: bool, isolation: str) -> AsyncIterator[LedgerRepository]:
        pool = await self._ensure_pool()
        try:
            async with pool.acquire(timeout=self._acquire_timeout) as conn:
                async with conn.transaction(isolation=isolation, readonly=readonly):
                    yield LedgerRepository(conn, timeout=self._command_timeout)
        except _DRIVER_ERRORS as exc:
            self._log.warning("db.transaction.failed", readonly=readonly, error=repr(exc))
            raise StorageFault(str(exc)) from exc

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            await self.connect()
        assert self._pool
        return self._pool


def _group(row: Any) -> Group:
    return Group(
        id=row["id"],
        name=row["name"],
        join_code=row["join_code"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        owner_name=row.get("owner_name"),
    )


def _expense(row: Any) -> Expense:
    return Expense(
        id=row["id"],
        group_id=row["group_id"],
        description=row["description"],
        amount_cents=row["amount_cents"],
        paid_by=row["paid_by"],
        created_by=row["created_by"],
        created_at=row["created_at"],
    )


def _settlement(row: Any) -> Settlement:
    return Settlement(
        id=row["id"],
        group_id=row["group_id"],
        from_user=row["from_user"],
        to_user=row["to_user"],
        amount_cents=row["amount_cents"],
        status=SettlementStatus(row["status"]),
        note=row["note"],
        external_ref=row["external_ref"],
        created_at=row["created_at"],
    )


def _edge(row: Any) -> BalanceEdge:
    return BalanceEdge(debtor=row["debtor"], creditor=row["creditor"], amount_cents=row["amount_cents"])


def _ids(values: Optional[Collection[int]]) -> Optional[list[int]]:
    return None if values is None else list(values)


class LedgerRepository:
    """SQL for one connection that is already inside a transaction."""

    def __init__(self, conn: asyncpg.Connection, timeout: float | None = None) -> None:
        self.conn = conn
        self._timeout = timeout

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        sql_logger.info("sql.fetch", query=query, args=args)
        return await self.conn.fetch(query, *args, timeout=self._timeout)

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await self.conn.fetchrow(query, *args, timeout=self._timeout)

    async def _execute(self, query: str, *args: Any) -> str:
        sql_logger.info("sql.execute", query=query, args=args)
        return await self.conn.execute(query, *args, timeout=self._timeout)

    async def _executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        sql_logger.info("sql.executemany", query=command)
        await self.conn.executemany(command, args, timeout=self._timeout)

    async def get_group(self, group_id: int) -> Group | None:
        row = await self._fetchrow(
            """
            SELECT g.*, u.name AS owner_name
            FROM groups g
            LEFT JOIN users u ON u.id = g.created_by
            WHERE g.id = $1
            """,
            group_id,
        )
        return _group(row) if row else None

    async def get_group_by_join_code(self, join_code: str) -> Group | None:
        row = await self._fetchrow("SELECT * FROM groups WHERE join_code = $1", join_code)
        return _group(row) if row else None

    async def create_group(self, name: str, created_by: int, join_code: str) -> Group:
        row = await self._fetchrow(
            """
            INSERT INTO groups (name, created_by, join_code)
            VALUES ($1, $2, $3)
            RETURNING *
            """,
            name,
            created_by,
            join_code,
        )
        assert row is not None
        return _group(row)

    async def delete_group(self, group_id: int) -> None:
        await self._execute("DELETE FROM groups WHERE id = $1", group_id)

    async def add_member(self, group_id: int, user_id: int) -> None:
        await self._execute(
            """
            INSERT INTO group_members (group_id, user_id)
            VALUES ($1, $2)
            ON CONFLICT (group_id, user_id) DO NOTHING
            """,
            group_id,
            user_id,
        )

    async def get_group_member_ids(self, group_id: int) -> list[int]:
        rows = await self._fetch(
            "SELECT user_id FROM group_members WHERE group_id = $1 ORDER BY user_id",
            group_id,
        )
        return [row["user_id"] for row in rows]

    async def get_user_group_ids(self, user_id: int) -> list[int]:
        rows = await self._fetch(
            "SELECT group_id FROM group_members WHERE user_id = $1 ORDER BY group_id",
            user_id,
        )
        return [row["group_id"] for row in rows]

    async def list_user_groups(self, user_id: int) -> list[Group]:
        rows = await self._fetch(
            """
            SELECT g.*, u.name AS owner_name
            FROM groups g
            JOIN group_members gm ON gm.group_id = g.id
            LEFT JOIN users u ON u.id = g.created_by
            WHERE gm.user_id = $1
            ORDER BY g.created_at DESC, g.id DESC
            """,
            user_id,
        )
        return [_group(row) for row in rows]

    async def get_group_members(self, group_id: int) -> list[User]:
        rows = await self._fetch(
            """
            SELECT u.id, u.name, u.email
            FROM group_members gm
            JOIN users u ON u.id = gm.user_id
            WHERE gm.group_id = $1
            ORDER BY u.name, u.id
            """,
            group_id,
        )
        return [User(id=row["id"], name=row["name"], email=row["email"]) for row in rows]

    async def get_group_names(self, group_ids: Collection[int]) -> dict[int, str]:
        rows = await self._fetch("SELECT id, name FROM groups WHERE id = ANY($1::bigint[])", list(group_ids))
        return {row["id"]: row["name"] for row in rows}

    async def get_user_names(self, user_ids: Collection[int]) -> dict[int, str]:
        rows = await self._fetch("SELECT id, name FROM users WHERE id = ANY($1::bigint[])", list(user_ids))
        return {row["id"]: row["name"] for row in rows}

    async def get_expense(self, expense_id: int, *, for_update: bool = False) -> Expense | None:
        query = "SELECT * FROM expenses WHERE id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._fetchrow(query, expense_id)
        return _expense(row) if row else None

    async def list_group_expenses(self, group_id: int) -> list[Expense]:
        rows = await self._fetch(
            "SELECT * FROM expenses WHERE group_id = $1 ORDER BY created_at DESC, id DESC",
            group_id,
        )
        return [_expense(row) for row in rows]

    async def insert_expense(
        self,
        group_id: int,
        description: str,
        amount_cents: int,
        paid_by: int,
        created_by: int,
    ) -> Expense:
        row = await self._fetchrow(
            """
            INSERT INTO expenses (group_id, description, amount_cents, paid_by, created_by)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            """,
            group_id,
            description,
            amount_cents,
            paid_by,
            created_by,
        )
        assert row is not None
        return _expense(row)

    async def update_expense(
        self,
        expense_id: int,
        description: str,
        amount_cents: int,
        paid_by: int,
    ) -> Expense:
        row = await self._fetchrow(
            """
            UPDATE expenses
            SET description = $1, amount_cents = $2, paid_by = $3
            WHERE id = $4
            RETURNING *
            """,
            description,
            amount_cents,
            paid_by,
            expense_id,
        )
        assert row is not None
        return _expense(row)

    async def delete_expense(self, expense_id: int) -> bool:
        row = await self._fetchrow("DELETE FROM expenses WHERE id = $1 RETURNING id", expense_id)
        return row is not None

    async def get_splits(self, expense_id: int) -> list[ExpenseSplit]:
        rows = await self._fetch(
            "SELECT expense_id, user_id, share_cents FROM expense_splits WHERE expense_id = $1 ORDER BY id",
            expense_id,
        )
        return [ExpenseSplit(row["expense_id"], row["user_id"], row["share_cents"]) for row in rows]

    async def replace_splits(self, expense_id: int, shares: Sequence[tuple[int, int]]) -> list[ExpenseSplit]:
        await self._execute("DELETE FROM expense_splits WHERE expense_id = $1", expense_id)
        await self._executemany(
            """
            INSERT INTO expense_splits (expense_id, user_id, share_cents)
            VALUES ($1, $2, $3)
            """,
            ((expense_id, user_id, share) for user_id, share in shares),
        )
        return [ExpenseSplit(expense_id, user_id, share) for user_id, share in shares]

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
        row = await self._fetchrow(
            """
            INSERT INTO settlements (group_id, from_user, to_user, amount_cents, status, note, external_ref)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (external_ref) DO NOTHING
            RETURNING *
            """,
            group_id,
            from_user,
            to_user,
            amount_cents,
            status.value,
            note,
            external_ref,
        )
        if row is None:
            raise Conflict(external_ref or "")
        return _settlement(row)

    async def get_settlement_by_ref(self, external_ref: str, *, for_update: bool = False) -> Settlement | None:
        query = "SELECT * FROM settlements WHERE external_ref = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._fetchrow(query, external_ref)
        return _settlement(row) if row else None

    async def set_settlement_status(self, settlement_id: int, status: SettlementStatus) -> Settlement:
        row = await self._fetchrow(
            "UPDATE settlements SET status = $1 WHERE id = $2 RETURNING *",
            status.value,
            settlement_id,
        )
        assert row is not None
        return _settlement(row)

    async def list_group_settlements(self, group_id: int) -> list[Settlement]:
        rows = await self._fetch(
            "SELECT * FROM settlements WHERE group_id = $1 ORDER BY created_at DESC, id DESC",
            group_id,
        )
        return [_settlement(row) for row in rows]

    async def fetch_expense_edges(
        self,
        group_ids: Collection[int],
        involving: Optional[Collection[int]] = None,
    ) -> list[BalanceEdge]:
        rows = await self._fetch(
            """
            SELECT s.user_id AS debtor, e.paid_by AS creditor, s.share_cents AS amount_cents
            FROM expense_splits s
            JOIN expenses e ON e.id = s.expense_id
            WHERE e.group_id = ANY($1::bigint[])
              AND s.user_id <> e.paid_by
              AND ($2::bigint[] IS NULL OR s.user_id = ANY($2::bigint[]) OR e.paid_by = ANY($2::bigint[]))
            """,
            list(group_ids),
            _ids(involving),
        )
        return [_edge(row) for row in rows]

    async def fetch_settlement_edges(
        self,
        group_ids: Collection[int],
        involving: Optional[Collection[int]] = None,
        include_groupless: bool = False,
    ) -> list[BalanceEdge]:
        # a payment from -> to cancels the same amount of debt, hence the reversed edge
        rows = await self._fetch(
            """
            SELECT st.to_user AS debtor, st.from_user AS creditor, st.amount_cents
            FROM settlements st
            WHERE (st.group_id = ANY($1::bigint[]) OR ($3::boolean AND st.group_id IS NULL))
              AND st.status <> 'failed'
              AND ($2::bigint[] IS NULL OR st.from_user = ANY($2::bigint[]) OR st.to_user = ANY($2::bigint[]))
            """,
            list(group_ids),
            _ids(involving),
            include_groupless,
        )
        return [_edge(row) for row in rows]

    async def fetch_user_shares(self, user_id: int, group_ids: Collection[int]) -> list[ShareRecord]:
        rows = await self._fetch(
            """
            SELECT e.id AS expense_id, e.group_id, e.created_at, s.share_cents
            FROM expense_splits s
            JOIN expenses e ON e.id = s.expense_id
            WHERE s.user_id = $1 AND e.group_id = ANY($2::bigint[])
            """,
            user_id,
            list(group_ids),
        )
        return [
            ShareRecord(
                expense_id=row["expense_id"],
                group_id=row["group_id"],
                created_at=row["created_at"],
                share_cents=row["share_cents"],
            )
            for row in rows
        ]

    async def fetch_recent_expenses(self, user_id: int, group_ids: Collection[int], limit: int) -> list[RecentExpense]:
        rows = await self._fetch(
            """
            SELECT e.id, e.group_id, g.name AS group_name, e.description, e.amount_cents,
                   e.paid_by, pu.name AS paid_by_name, s.share_cents AS your_share_cents, e.created_at
            FROM expense_splits s
            JOIN expenses e ON e.id = s.expense_id
            JOIN groups g ON g.id = e.group_id
            LEFT JOIN users pu ON pu.id = e.paid_by
            WHERE s.user_id = $1 AND e.group_id = ANY($2::bigint[])
            ORDER BY e.created_at DESC, e.id DESC
            LIMIT $3
            """,
            user_id,
            list(group_ids),
            limit,
        )
        return [
            RecentExpense(
                id=row["id"],
                group_id=row["group_id"],
                group_name=row["group_name"],
                description=row["description"],
                amount_cents=row["amount_cents"],
                paid_by=row["paid_by"],
                paid_by_name=row["paid_by_name"],
                your_share_cents=row["your_share_cents"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def fetch_recent_settlements(self, user_id: int, group_ids: Collection[int], limit: int) -> list[Settlement]:
        rows = await self._fetch(
            """
            SELECT * FROM settlements
            WHERE group_id = ANY($2::bigint[])
              AND (from_user = $1 OR to_user = $1)
            ORDER BY created_at DESC, id DESC
            LIMIT $3
            """,
            user_id,
            list(group_ids),
            limit,
        )
        return [_settlement(row) for row in rows]
