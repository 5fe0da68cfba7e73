"""Error taxonomy shared by the ledgers and the storage layer.

Validation errors are raised before any write starts. ``StorageFault`` wraps
driver failures after the surrounding transaction has been rolled back.
``Conflict`` only travels between the store and the settlement ledger, which
turns it into an idempotent no-op.
"""

from __future__ import annotations


class LedgerError(Exception):
    pass


class InvalidSplit(LedgerError, ValueError):
    pass


class InvalidSettlement(LedgerError, ValueError):
    pass


class NotFound(LedgerError, LookupError):
    def __init__(self, kind: str, key: object) -> None:
        super().__init__(f"{kind} {key!r} not found")
        self.kind = kind
        self.key = key


class EmptyGroup(LedgerError):
    def __init__(self, group_id: int) -> None:
        super().__init__(f"group {group_id} has no members to split with")
        self.group_id = group_id


class AuthorizationError(LedgerError, PermissionError):
    pass


class Conflict(LedgerError):
    def __init__(self, external_ref: str) -> None:
        super().__init__(f"settlement with external reference {external_ref!r} already exists")
        self.external_ref = external_ref


class StorageFault(LedgerError):
    pass
