# core/queue.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from bookmarker.core.dedup import normalize_url
from bookmarker.core.log import get_logger
from bookmarker.core.storage import KeyValueStore
from bookmarker.core.validate import BookmarkRecord, QueueItem

QUEUE_KEY = "offlineQueue"
MAX_RETRIES = 3

log = get_logger("bookmarker.queue")

Deliver = Callable[[BookmarkRecord], Awaitable[Any]]
Exists = Callable[[str], Awaitable[bool]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DrainReport:
    succeeded: list[str] = field(default_factory=list)
    still_pending: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    skipped: bool = False  # another drain was already running


class OfflineQueue:
    """
    Durable FIFO of bookmark writes waiting for delivery.

    Every mutation is written to the store before the method returns, so a
    restart picks up exactly what was pending. Items that fail `max_retries`
    deliveries are dropped and only show up in the log.

    At most one item per canonical URL is pending. When `exists` is given,
    drain asks it first and counts a URL already in the table as delivered.
    """
    def __init__(
        self,
        store: KeyValueStore,
        deliver: Deliver,
        *,
        max_retries: int = MAX_RETRIES,
        clock: Callable[[], datetime] = utcnow,
        exists: Exists | None = None,
    ):
        self.store = store
        self.deliver = deliver
        self.exists = exists
        self.max_retries = max_retries
        self.clock = clock
        self._items: list[QueueItem] = self._load()
        self._draining = False
        self._last_id = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def draining(self) -> bool:
        return self._draining

    def pending(self) -> list[QueueItem]:
        return [it.model_copy(deep=True) for it in self._items]

    def _load(self) -> list[QueueItem]:
        raw = self.store.get([QUEUE_KEY]).get(QUEUE_KEY) or []
        items: list[QueueItem] = []
        for entry in raw:
            try:
                items.append(QueueItem.model_validate(entry))
            except ValidationError as e:
                log.error("queue_item_invalid", extra={"entry": entry, "err": str(e)})
        return items

    def _persist(self) -> None:
        self.store.set({QUEUE_KEY: [it.model_dump(mode="json", by_alias=True) for it in self._items]})

    def _next_id(self, now: datetime) -> str:
        # millisecond timestamp, bumped so ids stay unique and increasing
        candidate = int(now.timestamp() * 1000)
        known = [int(it.id) for it in self._items if it.id.isdigit()]
        floor = max([self._last_id, *known])
        if candidate <= floor:
            candidate = floor + 1
        self._last_id = candidate
        return str(candidate)

    def _find(self, url: str) -> QueueItem | None:
        key = normalize_url(url)
        for it in self._items:
            if normalize_url(it.payload.url) == key:
                return it
        return None

    def enqueue(self, record: BookmarkRecord) -> QueueItem:
        now = self.clock()
        pending = self._find(record.url)
        if pending is not None:
            # keeps id, position and retry count; newest content wins
            created = pending.payload.created_time
            pending.payload = record.model_copy(deep=True)
            if created is not None:
                pending.payload.created_time = created
            self._persist()
            log.info("queue_item_refreshed", extra={"id": pending.id, "url": record.url})
            return pending

        item = QueueItem(
            id=self._next_id(now),
            payload=record.model_copy(deep=True),
            enqueued_at=now,
            retry_count=0,
        )
        self._items.append(item)
        self._persist()
        log.info("queue_enqueued", extra={"id": item.id, "url": record.url, "pending": len(self._items)})
        return item

    async def drain(self) -> DrainReport:
        if self._draining:
            log.info("queue_drain_skipped")
            return DrainReport(skipped=True)

        self._draining = True
        try:
            return await self._drain()
        finally:
            self._draining = False

    async def _drain(self) -> DrainReport:
        report = DrainReport()
        self._items = self._load()
        if not self._items:
            return report

        for item in list(self._items):
            if self.exists is not None and await self.exists(item.payload.url):
                self._items.remove(item)
                report.succeeded.append(item.id)
                log.info("queue_item_already_present", extra={"id": item.id, "url": item.payload.url})
                self._persist()
                continue
            try:
                await self.deliver(item.payload)
            except Exception as e:
                item.retry_count += 1
                if item.retry_count >= self.max_retries:
                    self._items.remove(item)
                    report.abandoned.append(item.id)
                    log.error("queue_item_abandoned", extra={
                        "id": item.id, "url": item.payload.url,
                        "title": item.payload.title, "retry_count": item.retry_count, "err": str(e),
                    })
                else:
                    report.still_pending.append(item.id)
                    log.warning("queue_item_retry", extra={
                        "id": item.id, "url": item.payload.url, "retry_count": item.retry_count, "err": str(e),
                    })
            else:
                self._items.remove(item)
                report.succeeded.append(item.id)
                log.info("queue_item_synced", extra={"id": item.id, "title": item.payload.title})
            self._persist()

        if report.succeeded:
            log.info("queue_sync_done", extra={"synced": len(report.succeeded), "pending": len(self._items)})
        return report
