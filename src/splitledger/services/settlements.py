from __future__ import annotations

from typing import Optional

from splitledger.db.models import Settlement, SettlementStatus
from splitledger.db.port import LedgerStore
from splitledger.errors import Conflict, InvalidSettlement
from splitledger.logging import get_logger


def validate_transfer(from_user: int, to_user: int, amount_cents: int) -> None:
    if from_user == to_user:
        raise InvalidSettlement("payer and receiver must be different")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidSettlement("amount must be a whole number of cents")
    if amount_cents <= 0:
        raise InvalidSettlement("amount must be positive")


class SettlementLedger:
    """Manual settlements and provider-confirmed card payments.

    Provider events may arrive more than once and in any order. The unique
    external reference is the only deduplication mechanism, and a ``failed``
    settlement never comes back.
    """

    def __init__(self, store: LedgerStore) -> None:
        self.store = store
        self._log = get_logger(__name__)

    async def record_manual_settlement(
        self,
        group_id: Optional[int],
        from_user: int,
        to_user: int,
        amount_cents: int,
        note: Optional[str] = None,
    ) -> Settlement:
        validate_transfer(from_user, to_user, amount_cents)
        async with self.store.transaction() as session:
            settlement = await session.insert_settlement(
                group_id,
                from_user,
                to_user,
                amount_cents,
                SettlementStatus.COMPLETED,
                note or None,
            )
        self._log.info(
            "settlement.recorded",
            settlement_id=settlement.id,
            group_id=group_id,
            from_user=from_user,
            to_user=to_user,
            amount_cents=amount_cents,
        )
        return settlement

    async def apply_provider_confirmation(
        self,
        external_ref: str,
        group_id: Optional[int],
        from_user: int,
        to_user: int,
        amount_cents: int,
        note: Optional[str] = None,
    ) -> Settlement | None:
        """Insert a ``succeeded`` settlement; ``None`` when the reference is already known."""
        if not external_ref:
            raise InvalidSettlement("external reference is required")
        validate_transfer(from_user, to_user, amount_cents)
        try:
            async with self.store.transaction() as session:
                settlement = await session.insert_settlement(
                    group_id,
                    from_user,
                    to_user,
                    amount_cents,
                    SettlementStatus.SUCCEEDED,
                    note or None,
                    external_ref=external_ref,
                )
        except Conflict:
            self._log.info("settlement.confirmation.duplicate", external_ref=external_ref)
            return None

        self._log.info(
            "settlement.confirmed",
            settlement_id=settlement.id,
            external_ref=external_ref,
            group_id=group_id,
            amount_cents=amount_cents,
        )
        return settlement

    async def apply_provider_failure(self, external_ref: str) -> Settlement | None:
        """Mark the settlement behind ``external_ref`` as failed; ``None`` when nothing changed."""
        async with self.store.transaction() as session:
            current = await session.get_settlement_by_ref(external_ref, for_update=True)
            if current is None or current.status is SettlementStatus.FAILED:
                self._log.info(
                    "settlement.failure.ignored",
                    external_ref=external_ref,
                    status=current.status.value if current else None,
                )
                return None
            settlement = await session.set_settlement_status(current.id, SettlementStatus.FAILED)

        self._log.info(
            "settlement.failed",
            settlement_id=settlement.id,
            external_ref=external_ref,
            previous_status=current.status.value,
        )
        return settlement

    async def list_group_settlements(self, group_id: int) -> list[Settlement]:
        async with self.store.snapshot() as session:
            return await session.list_group_settlements(group_id)
