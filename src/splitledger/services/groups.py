from __future__ import annotations

import secrets
from dataclasses import dataclass, field

from splitledger.db.models import Group, User
from splitledger.db.port import LedgerStore
from splitledger.errors import NotFound
from splitledger.logging import get_logger
from splitledger.services.authz import assert_group_owner


def new_join_code() -> str:
    return secrets.token_hex(3)


@dataclass(slots=True)
class GroupDetail:
    group: Group
    members: list[User] = field(default_factory=list)


class GroupDirectory:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store
        self._log = get_logger(__name__)

    async def create_group(self, name: str, created_by: int) -> Group:
        name = (name or "").strip()
        if not name:
            raise ValueError("group name is required")
        async with self.store.transaction() as session:
            group = await session.create_group(name, created_by, new_join_code())
            await session.add_member(group.id, created_by)
        self._log.info("group.created", group_id=group.id, created_by=created_by)
        return group

    async def join_group(self, join_code: str, user_id: int) -> Group:
        async with self.store.transaction() as session:
            group = await session.get_group_by_join_code(join_code.strip())
            if group is None:
                raise NotFound("join code", join_code)
            await session.add_member(group.id, user_id)
        self._log.info("group.joined", group_id=group.id, user_id=user_id)
        return group

    async def member_ids(self, group_id: int) -> list[int]:
        async with self.store.snapshot() as session:
            if await session.get_group(group_id) is None:
                raise NotFound("group", group_id)
            return await session.get_group_member_ids(group_id)

    async def list_user_groups(self, user_id: int) -> list[Group]:
        """Groups ``user_id`` belongs to, newest first, with the owner's name."""
        async with self.store.snapshot() as session:
            return await session.list_user_groups(user_id)

    async def get_group(self, group_id: int) -> GroupDetail:
        async with self.store.snapshot() as session:
            group = await session.get_group(group_id)
            if group is None:
                raise NotFound("group", group_id)
            members = await session.get_group_members(group_id)
        return GroupDetail(group=group, members=members)

    async def delete_group(self, group_id: int, user_id: int) -> None:
        async with self.store.transaction() as session:
            await assert_group_owner(session, user_id, group_id)
            await session.delete_group(group_id)
        self._log.info("group.deleted", group_id=group_id, user_id=user_id)
