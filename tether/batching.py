"""
Tether Batching - Coalesced Re-render Notifications
===================================================

`Batcher` collects render requests and delivers each target at most once per
scheduling turn.

- ``batch(fn)`` runs ``fn`` inside a batch scope. If a batch is already open,
  ``fn`` is queued and runs before the outermost scope closes.
- ``request_render(callback)`` records ``callback``; duplicates coalesce.
- When the outermost scope closes, pending renders are delivered. With a running
  asyncio loop delivery is deferred by ``loop.call_soon`` so that every completion
  in the same loop turn shares one notification.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Dict, Optional


class Batcher:
    """Single-threaded batching of work and render notifications."""

    def __init__(self):
        self._depth = 0
        self._queued: Deque[Callable[[], None]] = deque()
        self._renders: Dict[Callable[[], None], None] = {}
        self._scheduled_loop: Optional[asyncio.AbstractEventLoop] = None
        self.flush_count = 0

    @property
    def active(self) -> bool:
        return self._depth > 0

    @property
    def pending(self) -> int:
        return len(self._renders)

    def batch(self, fn: Callable[[], None]) -> None:
        if self._depth > 0:
            self._queued.append(fn)
            return
        with self:
            fn()

    def request_render(self, callback: Callable[[], None]) -> None:
        self._renders[callback] = None
        if self._depth == 0:
            self._deliver()

    def __enter__(self) -> "Batcher":
        self._depth += 1
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._depth > 1:
            self._depth -= 1
            return False

        try:
            while self._queued:
                self._queued.popleft()()
        finally:
            self._queued.clear()
            self._depth = 0
        self._deliver()
        return False

    def _deliver(self) -> None:
        if not self._renders:
            return
        loop = _running_loop()
        if loop is None:
            self.flush()
        elif self._scheduled_loop is not loop:
            self._scheduled_loop = loop
            loop.call_soon(self.flush)

    def flush(self) -> None:
        """Deliver pending render requests now."""
        self._scheduled_loop = None
        if not self._renders:
            return
        callbacks = list(self._renders)
        self._renders.clear()
        self.flush_count += 1

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logging.error(f"Error in render callback {callback!r}: {e}")


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


default_batcher = Batcher()


def batch(fn: Callable[[], None]) -> None:
    """Run ``fn`` through the process-wide batcher."""
    default_batcher.batch(fn)


__all__ = ["Batcher", "default_batcher", "batch"]
