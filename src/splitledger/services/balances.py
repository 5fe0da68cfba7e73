from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Iterable, List, Optional

from splitledger.db.models import BalanceEdge
from splitledger.db.port import LedgerStore
from splitledger.errors import NotFound


@dataclass(slots=True)
class Transfer:
    from_user: int
    to_user: int
    amount_cents: int


@dataclass(slots=True)
class FriendBalance:
    user_id: int
    name: Optional[str]
    net_cents: int


def net_between(edges: Iterable[BalanceEdge], user_a: int, user_b: int) -> int:
    """Signed balance of ``user_a`` against ``user_b``: positive when ``user_b`` owes ``user_a``."""
    net = 0
    for edge in edges:
        if edge.debtor == user_b and edge.creditor == user_a:
            net += edge.amount_cents
        elif edge.debtor == user_a and edge.creditor == user_b:
            net -= edge.amount_cents
    return net


def net_positions(edges: Iterable[BalanceEdge], members: Iterable[int] = ()) -> dict[int, int]:
    """Net position per participant; positive means the group owes them money."""
    positions = {member: 0 for member in members}
    for edge in edges:
        positions[edge.creditor] = positions.get(edge.creditor, 0) + edge.amount_cents
        positions[edge.debtor] = positions.get(edge.debtor, 0) - edge.amount_cents
    return positions


def counterparty_nets(edges: Iterable[BalanceEdge], user_id: int) -> dict[int, int]:
    nets: dict[int, int] = {}
    for edge in edges:
        if edge.creditor == user_id and edge.debtor != user_id:
            nets[edge.debtor] = nets.get(edge.debtor, 0) + edge.amount_cents
        elif edge.debtor == user_id and edge.creditor != user_id:
            nets[edge.creditor] = nets.get(edge.creditor, 0) - edge.amount_cents
    return nets


def settle(balances: dict[int, int]) -> List[Transfer]:
    """Greedy transfers that clear a group's net positions, largest amounts first."""
    creditors: list[tuple[int, int]] = []
    debtors: list[tuple[int, int]] = []

    for user_id, balance in balances.items():
        if balance > 0:
            creditors.append((user_id, balance))
        elif balance < 0:
            debtors.append((user_id, -balance))

    creditors.sort(key=lambda x: (-x[1], x[0]))
    debtors.sort(key=lambda x: (-x[1], x[0]))

    transfers: list[Transfer] = []
    i, j = 0, 0

    while i < len(creditors) and j < len(debtors):
        cred_id, cred_amount = creditors[i]
        debt_id, debt_amount = debtors[j]

        transfer_amount = min(cred_amount, debt_amount)
        transfers.append(Transfer(from_user=debt_id, to_user=cred_id, amount_cents=transfer_amount))

        cred_amount -= transfer_amount
        debt_amount -= transfer_amount

        if cred_amount == 0:
            i += 1
        else:
            creditors[i] = (cred_id, cred_amount)

        if debt_amount == 0:
            j += 1
        else:
            debtors[j] = (debt_id, debt_amount)

    return transfers


class BalanceResolver:
    """Read-only views over the expense and settlement ledgers.

    Every view is built from the same directed edges: a split owed to the payer,
    or a settlement offsetting debt between its two parties. Reads run in one
    snapshot transaction and nothing is cached between calls.
    """

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def net_balance(self, group_ids: Collection[int], user_a: int, user_b: int) -> int:
        pair = [user_a, user_b]
        async with self.store.snapshot() as session:
            edges = await session.fetch_expense_edges(group_ids, involving=pair)
            edges += await session.fetch_settlement_edges(group_ids, involving=pair, include_groupless=True)
        return net_between(edges, user_a, user_b)

    async def group_net_balances(self, group_id: int) -> dict[int, int]:
        async with self.store.snapshot() as session:
            if await session.get_group(group_id) is None:
                raise NotFound("group", group_id)
            members = await session.get_group_member_ids(group_id)
            edges = await session.fetch_expense_edges([group_id])
            edges += await session.fetch_settlement_edges([group_id])
        return net_positions(edges, members)

    async def friend_balances(self, user_id: int) -> list[FriendBalance]:
        async with self.store.snapshot() as session:
            group_ids = await session.get_user_group_ids(user_id)
            if not group_ids:
                return []
            edges = await session.fetch_expense_edges(group_ids, involving=[user_id])
            edges += await session.fetch_settlement_edges(group_ids, involving=[user_id], include_groupless=True)
            nets = counterparty_nets(edges, user_id)
            names = await session.get_user_names(nets.keys()) if nets else {}

        friends = [FriendBalance(user_id=friend, name=names.get(friend), net_cents=net) for friend, net in nets.items()]
        friends.sort(key=lambda f: (-abs(f.net_cents), f.name or "", f.user_id))
        return friends

    async def suggest_transfers(self, group_id: int) -> list[Transfer]:
        return settle(await self.group_net_balances(group_id))
