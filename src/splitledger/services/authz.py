from __future__ import annotations

from typing import Protocol

from splitledger.db.models import Group
from splitledger.errors import AuthorizationError, NotFound


class GroupLookup(Protocol):
    async def get_group(self, group_id: int) -> Group | None: ...


async def is_group_owner(session: GroupLookup, user_id: int, group_id: int) -> bool:
    group = await session.get_group(group_id)
    if group is None:
        raise NotFound("group", group_id)
    return group.created_by == user_id


async def assert_group_owner(session: GroupLookup, user_id: int, group_id: int) -> None:
    if not await is_group_owner(session, user_id, group_id):
        raise AuthorizationError("only the group creator can do this")
