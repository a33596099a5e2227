"""Admission gate for the local inference engine.

Bounds how many generations run against the engine at once. Requests
over the bound either wait in strict FIFO order or are turned away with
EngineBusyError, depending on AdmissionMode.
"""

from __future__ import annotations

import asyncio
from collections import deque

import structlog

from course_ai_proxy.config import AdmissionMode
from course_ai_proxy.errors import EngineBusyError

logger = structlog.get_logger()


class Slot:
    """One admitted generation. Releasing more than once is a no-op."""

    def __init__(self, gate: AdmissionGate, queue_position: int = 0) -> None:
        self._gate = gate
        self.queue_position = queue_position
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._gate._release()

    async def aclose(self) -> None:
        self.release()

    async def __aenter__(self) -> Slot:
        return self

    async def __aexit__(self, *args: object) -> None:
        self.release()


class AdmissionGate:
    """Concurrency limiter with FIFO hand-off.

    A released slot goes straight to the oldest waiter, so a newcomer can
    never overtake the queue.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        mode: AdmissionMode = AdmissionMode.QUEUE,
        queue_timeout: float | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max = max_concurrent
        self._mode = mode
        self._queue_timeout = queue_timeout
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def mode(self) -> AdmissionMode:
        return self._mode

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> Slot:
        """Wait for (or refuse) a generation slot.

        Raises:
            EngineBusyError: Gate is full in reject mode, or the queue wait
                exceeded ``queue_timeout``.
        """
        if self._active < self._max and not self.queued:
            self._active += 1
            return Slot(self)

        if self._mode == AdmissionMode.REJECT:
            logger.info("admission_rejected", active=self._active, queued=self.queued)
            raise EngineBusyError(self._active, self.queued)

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        position = len(self._waiters)
        logger.debug("admission_queued", position=position, active=self._active)

        try:
            if self._queue_timeout is None:
                await waiter
            else:
                await asyncio.wait_for(waiter, self._queue_timeout)
        except TimeoutError:
            self._abandon(waiter)
            logger.info("admission_queue_timeout", timeout=self._queue_timeout)
            raise EngineBusyError(self._active, self.queued) from None
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise

        return Slot(self, queue_position=position)

    def _abandon(self, waiter: asyncio.Future[None]) -> None:
        if waiter.done() and not waiter.cancelled():
            # Slot was handed over in the same loop turn the wait gave up.
            self._release()
        else:
            self._discard(waiter)

    def _discard(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active -= 1
