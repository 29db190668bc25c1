"""
Worker-of-one for calls to rate-limited external services.

Generation chunks and speech synthesis requests are never fanned out: every call
goes through a SerialWorker, which admits one coroutine at a time in arrival
order and optionally keeps a minimum gap between the end of one call and the
start of the next. Each external service owns one process-wide worker, so two
teachers generating at once still reach the service one request at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialWorker:
    def __init__(self, name: str, *, min_interval: float = 0.0) -> None:
        self.name = name
        self.min_interval = max(0.0, float(min_interval))
        self._lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._last_finished: Optional[float] = None
        self.completed = 0

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        # A lock is bound to the loop it first waits on; test clients may start fresh loops
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async with self._get_lock():
            if self.min_interval and self._last_finished is not None:
                wait = self.min_interval - (time.monotonic() - self._last_finished)
                if wait > 0:
                    logger.debug("%s worker spacing calls, sleeping %.2fs", self.name, wait)
                    await asyncio.sleep(wait)
            try:
                return await fn(*args, **kwargs)
            finally:
                self._last_finished = time.monotonic()
                self.completed += 1


generation_worker = SerialWorker("generation")
synthesis_worker = SerialWorker("synthesis", min_interval=settings.synthesis_min_interval_seconds)
