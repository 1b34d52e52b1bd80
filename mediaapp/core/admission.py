"""Bounded-concurrency admission control for expensive operations.

One gate is built per process and injected into every entry point that
triggers outbound catalog or blob-store traffic (HTTP handlers and the queue
consumer), so the bound applies to their sum.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from .errors import AdmissionCancelled, AdmissionTimeout
from .logging import get_logger

CancelProbe = Callable[[], Awaitable[bool]]


class AdmissionGate:
    def __init__(self, capacity: int, *, cancel_poll_interval_s: float = 0.1):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.cancel_poll_interval_s = cancel_poll_interval_s
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_flight = 0
        self.logger = get_logger(component="admission_gate", capacity=capacity)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self.capacity - self._in_flight

    async def acquire(self, *, timeout: Optional[float] = None, is_cancelled: Optional[CancelProbe] = None) -> None:
        """Take a slot, waiting until one frees up.

        Raises :class:`AdmissionTimeout` when ``timeout`` elapses first and
        :class:`AdmissionCancelled` when ``is_cancelled`` reports that the
        caller went away. Task cancellation propagates as usual. In all
        three cases no slot is held afterwards.
        """
        if not self._semaphore.locked():
            await self._semaphore.acquire()
            self._in_flight += 1
            return

        waiter = asyncio.ensure_future(self._semaphore.acquire())
        watcher = asyncio.ensure_future(self._watch(is_cancelled)) if is_cancelled else None
        pending = {waiter} if watcher is None else {waiter, watcher}
        try:
            done, _ = await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise
        finally:
            if watcher is not None:
                watcher.cancel()

        if waiter in done:
            self._in_flight += 1
            return

        self._abandon(waiter)
        if watcher is not None and watcher in done:
            self.logger.info("admission_cancelled_by_caller")
            raise AdmissionCancelled("caller disconnected while waiting for admission")
        self.logger.warning("admission_timed_out", timeout_s=timeout)
        raise AdmissionTimeout(f"no admission slot within {timeout}s")

    def release(self) -> None:
        if self._in_flight <= 0:
            raise RuntimeError("release() called without a matching acquire()")
        self._in_flight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(
        self,
        *,
        timeout: Optional[float] = None,
        is_cancelled: Optional[CancelProbe] = None,
    ) -> AsyncIterator[None]:
        await self.acquire(timeout=timeout, is_cancelled=is_cancelled)
        try:
            yield
        finally:
            self.release()

    async def _watch(self, is_cancelled: CancelProbe) -> None:
        while not await is_cancelled():
            await asyncio.sleep(self.cancel_poll_interval_s)

    def _abandon(self, waiter: asyncio.Future) -> None:
        # A waiter that wins the race after we stopped waiting still owns a slot.
        waiter.cancel()
        waiter.add_done_callback(self._release_if_acquired)

    def _release_if_acquired(self, waiter: asyncio.Future) -> None:
        if not waiter.cancelled() and waiter.exception() is None:
            self._semaphore.release()


__all__ = ["AdmissionGate", "CancelProbe"]
