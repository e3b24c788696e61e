# pipelines/save.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Literal

from bookmarker.core.dedup import DuplicateChecker, normalize_url
from bookmarker.core.log import get_logger
from bookmarker.core.queue import DrainReport, OfflineQueue, utcnow
from bookmarker.core.validate import BookmarkRecord
from bookmarker.pipelines.write import RecordWriter

SaveStatus = Literal["saved", "duplicate", "queued"]

log = get_logger("bookmarker.save")


@dataclass
class SaveResult:
    status: SaveStatus
    record: BookmarkRecord


class BookmarkService:
    """
    Entry point for saving bookmarks.

    normalize -> duplicate check -> write; a failed write goes to the offline
    queue and is reported as "queued", never as an exception.
    """
    def __init__(
        self,
        checker: DuplicateChecker,
        writer: RecordWriter,
        queue: OfflineQueue,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.checker = checker
        self.writer = writer
        self.queue = queue
        self.clock = clock

    def _stamp(self, record: BookmarkRecord) -> None:
        now = self.clock()
        record.url = normalize_url(record.url)
        if record.created_time is None:
            record.created_time = now
        record.last_updated = now

    async def save(self, record: BookmarkRecord) -> SaveResult:
        self._stamp(record)

        if await self.checker.exists(record.url):
            log.info("save_duplicate_skip", extra={"url": record.url})
            return SaveResult("duplicate", record)

        try:
            await self.writer.write(record)
        except Exception as e:
            log.warning("save_write_fail", extra={"url": record.url, "err": str(e), "err_type": type(e).__name__})
            self.queue.enqueue(record)
            return SaveResult("queued", record)

        failed = [a.name for a in record.attachments if a.upload_failed]
        log.info("save_success", extra={"url": record.url, "attachments_failed": failed})
        return SaveResult("saved", record)

    async def save_page(self, url: str, title: str = "", selection: str = "") -> SaveResult:
        """Whole page; a text selection becomes the notes."""
        return await self.save(BookmarkRecord(url=url, title=title, notes=selection))

    async def save_link(
        self,
        link_url: str,
        page_title: str = "",
        page_url: str = "",
        selection: str = "",
    ) -> SaveResult:
        """A link found on a page. The selected text, if any, wins over the page title."""
        title = selection.strip() or page_title
        return await self.save(BookmarkRecord(
            url=link_url or page_url,
            title=title,
            notes=f'Linked from page "{page_title}"',
        ))

    async def drain(self) -> DrainReport:
        return await self.queue.drain()

    async def on_network_recovered(self) -> DrainReport:
        log.info("network_recovered")
        return await self.queue.drain()
