# pipelines/write.py
from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import Any

from bookmarker.config import FieldMap
from bookmarker.core.errors import AttachmentUploadError
from bookmarker.core.http import RECORDS_PATH, ApiClient, ensure_ok
from bookmarker.core.log import get_logger
from bookmarker.core.validate import AttachmentRef, BookmarkRecord

log = get_logger("bookmarker.write")


def attachment_from_path(path: Path | str) -> AttachmentRef:
    """Reference to a local file that still has to be uploaded."""
    p = Path(path)
    mime, _ = mimetypes.guess_type(p.name)
    return AttachmentRef(
        name=p.name,
        size=p.stat().st_size,
        mime_type=mime or "application/octet-stream",
        path=str(p),
    )


def build_fields(record: BookmarkRecord, fields: FieldMap) -> dict[str, Any]:
    """
    Remote record fields. Empty values are left out entirely so a write never
    clears a column on the remote side.
    """
    out: dict[str, Any] = {}
    if record.url:
        out[fields.url] = record.url
    if record.title:
        out[fields.title] = record.title
    if record.notes:
        out[fields.notes] = record.notes
    if record.tags:
        out[fields.tags] = list(record.tags)
    if record.project:
        out[fields.project] = list(record.project)
    uploaded = [{"file_token": a.file_token} for a in record.attachments if a.file_token]
    if uploaded:
        out[fields.attachments] = uploaded
    if record.created_time:
        out[fields.created_time] = record.created_time.isoformat()
    if record.last_updated:
        out[fields.last_updated] = record.last_updated.isoformat()
    return out


class RecordWriter:
    """Uploads attachments, then creates the remote record. Raises on any write failure."""
    def __init__(self, api: ApiClient, fields: FieldMap):
        self.api = api
        self.fields = fields

    async def _upload_one(self, ref: AttachmentRef) -> AttachmentRef:
        if ref.file_token:
            return ref
        if not ref.path:
            return ref.model_copy(update={"upload_failed": True})
        try:
            content = await asyncio.to_thread(Path(ref.path).read_bytes)
        except OSError as e:
            log.warning("attachment_read_fail", extra={"name": ref.name, "err": str(e)})
            return ref.model_copy(update={"upload_failed": True})
        try:
            token = await self.api.upload_file(ref.name, content, ref.mime_type)
        except AttachmentUploadError as e:
            log.warning("attachment_upload_fail", extra={"name": ref.name, "err": e.reason})
            return ref.model_copy(update={"upload_failed": True})
        return ref.model_copy(update={"file_token": token, "upload_failed": False, "size": len(content)})

    async def upload_attachments(self, record: BookmarkRecord) -> list[AttachmentRef]:
        # each attachment independently; the record itself is written regardless
        if not record.attachments:
            return []
        refs = await asyncio.gather(*(self._upload_one(a) for a in record.attachments))
        return list(refs)

    async def write(self, record: BookmarkRecord) -> dict[str, Any]:
        # results land on the record itself so a queued retry skips finished uploads
        record.attachments = await self.upload_attachments(record)
        fields = build_fields(record, self.fields)
        log.debug("record_fields", extra={"url": record.url, "fields": list(fields)})
        resp = await self.api.call("POST", RECORDS_PATH, {"records": [{"fields": fields}]})
        return ensure_ok(resp)
