import asyncio
import contextlib
from typing import AsyncIterator, Callable, List


class TrackedTransactions:
    """
    An ordered collection of transaction hashes sent by the bot, shared by the
    block and pending transaction handlers.

    Every operation acquires the same lock, so a read followed by a write from
    one handler is never split by a mutation from another. Use `exclusive()`
    when the read and the write are separated by an await.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._hashes: List[str] = []

    def __repr__(self) -> str:
        return f"TrackedTransactions({self._hashes})"

    async def get(self) -> List[str]:
        async with self._lock:
            return list(self._hashes)

    async def includes(self, tx_hash: str) -> bool:
        async with self._lock:
            return tx_hash in self._hashes

    async def push(self, tx_hash: str) -> None:
        async with self._lock:
            self._hashes.append(tx_hash)

    async def filter(self, predicate: Callable[[str], bool]) -> None:
        """
        Keep only the hashes for which `predicate` returns True
        """
        async with self._lock:
            self._hashes[:] = [
                tx_hash for tx_hash in self._hashes if predicate(tx_hash)
            ]

    async def remove(self, tx_hash: str) -> None:
        await self.filter(lambda tracked_hash: tracked_hash != tx_hash)

    async def length(self) -> int:
        async with self._lock:
            return len(self._hashes)

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[List[str]]:
        """
        Hold the lock for the duration of the block and yield the underlying
        list for in-place modification
        """
        async with self._lock:
            yield self._hashes
