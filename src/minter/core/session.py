"""
Wallet session - serializes requests against one custodial wallet.

Two requests reading the same input snapshot will conflict on the ledger.
The deployment layer owns one WalletSession and routes every request through
it so only one request per wallet address is in flight.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

import structlog

logger = structlog.get_logger(__name__)


class WalletSession:
    """
    Per-address asyncio locks.

    A lock lives only while some request holds or waits for it, so a
    long-running service does not accumulate one lock per wallet ever seen.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_busy(self, address: str) -> bool:
        lock = self._locks.get(address)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, address: str) -> AsyncIterator[None]:
        """Hold the wallet for the duration of one request."""
        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        elif lock.locked():
            logger.debug("wallet_session_waiting", address=address[:20] + "...")
        self._users[address] = self._users.get(address, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._users[address] -= 1
            if not self._users[address]:
                del self._users[address]
                del self._locks[address]
