"""
In-process mutual exclusion for balance-mutating operations.

Row locks (SELECT ... FOR UPDATE) protect Postgres deployments; SQLite
ignores them, so every mutation also holds one asyncio.Lock per account
involved. Locks are always taken in sorted account-id order.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Iterable
from uuid import UUID


class AccountLockRegistry:
    def __init__(self) -> None:
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._users: Dict[UUID, int] = {}

    def _checkout(self, account_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        self._users[account_id] = self._users.get(account_id, 0) + 1
        return lock

    def _release(self, account_id: UUID) -> None:
        remaining = self._users[account_id] - 1
        if remaining:
            self._users[account_id] = remaining
        else:
            # drop idle locks so the registry does not grow with every account
            del self._users[account_id]
            del self._locks[account_id]

    def active_count(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, account_ids: Iterable[UUID]):
        ordered = sorted({a for a in account_ids if a is not None}, key=str)
        locks = [self._checkout(a) for a in ordered]
        acquired = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for account_id in ordered:
                self._release(account_id)


account_locks = AccountLockRegistry()
