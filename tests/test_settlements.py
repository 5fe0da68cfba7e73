import asyncio

import pytest

from splitledger.db.models import SettlementStatus
from splitledger.errors import InvalidSettlement
from splitledger.services.settlements import SettlementLedger

ALICE, BOB = 1, 2


@pytest.mark.asyncio
async def test_manual_settlement_is_completed(store):
    store.add_group(10, [ALICE, BOB])
    settlement = await SettlementLedger(store).record_manual_settlement(10, BOB, ALICE, 500, "cash")

    assert settlement.status is SettlementStatus.COMPLETED
    assert settlement.provider == "manual"
    assert settlement.note == "cash"


@pytest.mark.parametrize(
    "from_user, to_user, amount",
    [
        (ALICE, ALICE, 100),
        (ALICE, BOB, 0),
        (ALICE, BOB, -5),
    ],
)
@pytest.mark.asyncio
async def test_manual_settlement_validation(store, from_user, to_user, amount):
    with pytest.raises(InvalidSettlement):
        await SettlementLedger(store).record_manual_settlement(10, from_user, to_user, amount)
    assert store.settlement_count() == 0


@pytest.mark.asyncio
async def test_duplicate_confirmation_is_noop(store):
    store.add_group(10, [ALICE, BOB])
    ledger = SettlementLedger(store)

    first = await ledger.apply_provider_confirmation("pi_123", 10, BOB, ALICE, 2500)
    second = await ledger.apply_provider_confirmation("pi_123", 10, BOB, ALICE, 2500)

    assert first is not None
    assert first.status is SettlementStatus.SUCCEEDED
    assert first.provider == "card"
    assert second is None
    assert store.settlement_count() == 1


@pytest.mark.asyncio
async def test_concurrent_duplicate_confirmations(store):
    ledger = SettlementLedger(store)

    results = await asyncio.gather(
        *(ledger.apply_provider_confirmation("pi_race", 10, BOB, ALICE, 2500) for _ in range(5))
    )

    assert sum(1 for result in results if result is not None) == 1
    assert store.settlement_count() == 1


@pytest.mark.asyncio
async def test_failure_is_final(store):
    ledger = SettlementLedger(store)
    await ledger.apply_provider_confirmation("pi_9", 10, BOB, ALICE, 2500)

    failed = await ledger.apply_provider_failure("pi_9")
    assert failed is not None and failed.status is SettlementStatus.FAILED

    assert await ledger.apply_provider_failure("pi_9") is None
    assert await ledger.apply_provider_confirmation("pi_9", 10, BOB, ALICE, 2500) is None

    [stored] = store.state.settlements.values()
    assert stored.status is SettlementStatus.FAILED


@pytest.mark.asyncio
async def test_failure_before_confirmation_is_noop(store):
    assert await SettlementLedger(store).apply_provider_failure("pi_unknown") is None
    assert store.settlement_count() == 0


@pytest.mark.asyncio
async def test_confirmation_requires_reference(store):
    with pytest.raises(InvalidSettlement):
        await SettlementLedger(store).apply_provider_confirmation("", 10, BOB, ALICE, 100)


@pytest.mark.asyncio
async def test_list_group_settlements(store):
    ledger = SettlementLedger(store)
    first = await ledger.record_manual_settlement(10, BOB, ALICE, 100)
    await ledger.record_manual_settlement(11, BOB, ALICE, 200)
    second = await ledger.apply_provider_confirmation("pi_1", 10, ALICE, BOB, 300)

    listed = await ledger.list_group_settlements(10)

    assert [s.id for s in listed] == [second.id, first.id]
    assert [s.provider for s in listed] == ["card", "manual"]
