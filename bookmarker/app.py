from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import httpx

from bookmarker.config import ConfigHolder, Settings, load_api_config
from bookmarker.core.dedup import DuplicateChecker
from bookmarker.core.http import ApiClient
from bookmarker.core.log import get_logger
from bookmarker.core.queue import OfflineQueue, utcnow
from bookmarker.core.storage import JsonFileStore, KeyValueStore, local_store_path, sync_store_path
from bookmarker.core.timer import PeriodicTimer
from bookmarker.pipelines.commands import CommandHandler
from bookmarker.pipelines.save import BookmarkService
from bookmarker.pipelines.write import RecordWriter

DRAIN_TIMER = "processQueue"

log = get_logger("bookmarker.app")


@dataclass
class App:
    settings: Settings
    config: ConfigHolder
    api: ApiClient
    queue: OfflineQueue
    service: BookmarkService
    commands: CommandHandler
    timer: PeriodicTimer

    async def aclose(self) -> None:
        await self.timer.stop()
        await self.api.aclose()


def build_app(
    settings: Settings,
    *,
    sync_store: KeyValueStore | None = None,
    local_store: KeyValueStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> App:
    """Wires one instance of every collaborator. Stores and transport can be swapped for tests."""
    sync_store = sync_store or JsonFileStore(sync_store_path(settings.io.data_dir))
    local_store = local_store or JsonFileStore(local_store_path(settings.io.data_dir))

    config = ConfigHolder(load_api_config(sync_store))
    api = ApiClient(
        lambda: config.current,
        user_agent=settings.http.user_agent,
        timeout_s=settings.http.timeout_s,
        rps=settings.http.rate_limit_rps,
        client=http_client,
    )
    writer = RecordWriter(api, settings.field_map)
    checker = DuplicateChecker(api, settings.field_map.url)
    queue = OfflineQueue(
        local_store,
        writer.write,
        max_retries=settings.queue.max_retries,
        clock=clock,
        exists=checker.exists,
    )
    service = BookmarkService(checker, writer, queue, clock=clock)
    commands = CommandHandler(service, api, config, sync_store, settings.field_map)
    timer = PeriodicTimer(DRAIN_TIMER, settings.queue.drain_interval_s, service.drain)
    return App(settings, config, api, queue, service, commands, timer)


async def run_forever(app: App) -> None:
    """Background process: drain once at startup, then on every timer tick until cancelled."""
    await app.service.drain()
    app.timer.start()
    log.info("runtime_started", extra={"pending": len(app.queue)})
    try:
        await asyncio.Event().wait()
    finally:
        await app.timer.stop()
        log.info("runtime_stopped", extra={"pending": len(app.queue)})
