from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from splitledger.config import Settings, get_settings
from splitledger.db.models import Expense, Settlement
from splitledger.db.port import LedgerStore
from splitledger.db.repo import Database
from splitledger.logging import configure_logging, get_logger
from splitledger.schemas import ExpenseRequest, ProviderEvent, SettlementRequest
from splitledger.services.balances import BalanceResolver
from splitledger.services.expenses import ExpenseLedger
from splitledger.services.groups import GroupDirectory
from splitledger.services.settlements import SettlementLedger
from splitledger.services.spending import SpendingReport


class Ledger:
    """All ledger components over one store, plus the adapter entry points."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store
        self.groups = GroupDirectory(store)
        self.expenses = ExpenseLedger(store)
        self.settlements = SettlementLedger(store)
        self.balances = BalanceResolver(store)
        self.spending = SpendingReport(store)
        self._log = get_logger(__name__)

    async def submit_expense(self, request: ExpenseRequest, expense_id: Optional[int] = None) -> Expense:
        assert request.amount_cents is not None and request.paid_by is not None
        if expense_id is not None:
            return await self.expenses.update_expense(
                expense_id,
                request.description,
                request.amount_cents,
                request.paid_by,
                participants=request.participants,
                policy=request.policy,
                weights=request.weights(),
            )
        if request.group_id is None:
            raise ValueError("group_id is required for a new expense")
        assert request.created_by is not None
        return await self.expenses.create_expense(
            request.group_id,
            request.description,
            request.amount_cents,
            request.paid_by,
            request.created_by,
            participants=request.participants,
            policy=request.policy,
            weights=request.weights(),
        )

    async def submit_settlement(self, request: SettlementRequest) -> Settlement:
        assert request.amount_cents is not None
        return await self.settlements.record_manual_settlement(
            request.group_id,
            request.from_user,
            request.to_user,
            request.amount_cents,
            request.note,
        )

    async def handle_provider_event(self, event: ProviderEvent) -> Settlement | None:
        self._log.info("provider.event", type=event.type, external_ref=event.external_ref)
        if event.type == "failed":
            return await self.settlements.apply_provider_failure(event.external_ref)
        assert event.from_user is not None and event.to_user is not None
        return await self.settlements.apply_provider_confirmation(
            event.external_ref,
            event.group_id,
            event.from_user,
            event.to_user,
            event.amount_cents,
            event.note,
        )


@asynccontextmanager
async def open_ledger(settings: Settings | None = None) -> AsyncIterator[Ledger]:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    db = Database.from_settings(settings)
    await db.connect()
    log = get_logger(__name__)
    log.info("ledger.start")
    try:
        yield Ledger(db)
    finally:
        await db.close()
        log.info("ledger.stop")
