from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from bookmarker.core.log import get_logger

log = get_logger("bookmarker.timer")


class PeriodicTimer:
    """Named periodic wakeup on the running event loop. First fire is one interval after start()."""
    def __init__(self, name: str, interval_s: float, handler: Callable[[], Awaitable[Any]]):
        self.name = name
        self.interval_s = interval_s
        self.handler = handler
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"timer:{self.name}")
        log.info("timer_started", extra={"timer": self.name, "interval_s": self.interval_s})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("timer_stopped", extra={"timer": self.name})

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.handler()
            except Exception as e:
                log.error("timer_handler_fail", extra={"timer": self.name, "err": str(e)})
