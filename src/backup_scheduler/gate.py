import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ConcurrencyGate:
    """
    Process-wide limit on how many runs execute at the same time.

    Waiters are admitted in the order ``asyncio.Semaphore`` wakes them; under
    sustained overload a waiter can starve. Every granted :meth:`acquire`
    must be paired with exactly one :meth:`release`; :meth:`slot` does that
    for you.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("Gate capacity must be at least 1")
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._active = 0
        self._waiting = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return self._waiting

    async def acquire(self, cancel: asyncio.Event) -> bool:
        """
        Wait for a free slot.

        Returns False without taking a slot if ``cancel`` is set before or
        while waiting. The caller must not run in that case.
        """
        if cancel.is_set():
            return False

        acquiring = asyncio.ensure_future(self._semaphore.acquire())
        cancelled = asyncio.ensure_future(cancel.wait())
        self._waiting += 1
        try:
            await asyncio.wait({acquiring, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._abandon(acquiring)
            raise
        finally:
            self._waiting -= 1
            cancelled.cancel()

        if cancel.is_set():
            self._abandon(acquiring)
            return False

        self._active += 1
        return True

    def release(self) -> None:
        if self._active <= 0:
            raise RuntimeError("ConcurrencyGate released more times than acquired")
        self._active -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self, cancel: asyncio.Event) -> AsyncIterator[bool]:
        granted = await self.acquire(cancel)
        try:
            yield granted
        finally:
            if granted:
                self.release()

    def _abandon(self, acquiring: asyncio.Future) -> None:
        # A slot won while we were giving up goes straight back.
        if acquiring.done():
            if not acquiring.cancelled() and acquiring.exception() is None:
                self._semaphore.release()
            return
        acquiring.cancel()
        acquiring.add_done_callback(self._release_if_acquired)

    def _release_if_acquired(self, acquiring: asyncio.Future) -> None:
        if not acquiring.cancelled() and acquiring.exception() is None:
            self._semaphore.release()
