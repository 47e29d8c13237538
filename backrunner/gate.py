import asyncio

from .exceptions import GateError


class CompletionGate:
    """
    A one-shot completion signal shared between the orchestrator and the
    backrun handlers.

    The orchestrator calls `acquire()` once to arm the gate, then again to wait.
    The second call returns after the first successful handler calls
    `release()`. A released gate stays released, and handlers poll `is_held()`
    to stop work once another handler has won.
    """

    def __init__(self) -> None:
        self._held = False
        self._released = asyncio.Event()
        self.release_count = 0

    def __repr__(self) -> str:
        if self._released.is_set():
            state = "released"
        elif self._held:
            state = "held"
        else:
            state = "free"
        return f"CompletionGate({state})"

    async def acquire(self) -> None:
        if not self._held and not self._released.is_set():
            self._held = True
            return
        await self._released.wait()

    def is_held(self) -> bool:
        return self._held

    def is_released(self) -> bool:
        return self._released.is_set()

    def release(self) -> None:
        if not self._held:
            raise GateError("Completion gate released while not held")
        self._held = False
        self.release_count += 1
        self._released.set()
