# pipelines/commands.py
from __future__ import annotations

from typing import Any, Awaitable, Callable
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bookmarker.config import ConfigHolder, FieldMap, save_api_config
from bookmarker.core.errors import BookmarkerError
from bookmarker.core.http import FIELDS_PATH, RECORDS_PATH, SEARCH_PATH, ApiClient, build_url, ensure_ok
from bookmarker.core.log import get_logger
from bookmarker.core.storage import KeyValueStore
from bookmarker.core.validate import ApiConfig, BookmarkRecord, ConfigUpdate
from bookmarker.pipelines.save import BookmarkService

log = get_logger("bookmarker.commands")

DUPLICATE_ERROR = "URL already exists"


class CommandResult(BaseModel):
    success: bool
    offline: bool | None = None
    error: str | None = None
    data: Any = None

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ListParams(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=500, alias="pageSize")
    search: str = ""
    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


def _error_text(e: Exception) -> str:
    if isinstance(e, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}" for err in e.errors()
        )
    return str(e)


class CommandHandler:
    """
    Request/response surface for the UI layer. Every command returns a
    CommandResult; errors become messages, never tracebacks.
    """
    def __init__(
        self,
        service: BookmarkService,
        api: ApiClient,
        config: ConfigHolder,
        sync_store: KeyValueStore,
        fields: FieldMap,
    ):
        self.service = service
        self.api = api
        self.config = config
        self.sync_store = sync_store
        self.fields = fields
        self._routes: dict[str, Callable[[Any], Awaitable[CommandResult]]] = {
            "saveBookmark": self.save_bookmark,
            "getBookmarks": self.get_bookmarks,
            "deleteBookmark": self.delete_bookmark,
            "updateConfig": self.update_config,
            "getConfig": self.get_config,
            "testConnection": self.test_connection,
            "exportConfig": self.export_config,
            "importConfig": self.import_config,
            "drainQueue": self.drain_queue,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._routes)

    async def dispatch(self, action: str, payload: Any = None) -> CommandResult:
        route = self._routes.get(action)
        if route is None:
            return CommandResult(success=False, error=f"unknown action: {action}")
        try:
            return await route(payload)
        except (BookmarkerError, ValidationError, ValueError, OSError) as e:
            log.warning("command_fail", extra={"action": action, "err": _error_text(e)})
            return CommandResult(success=False, error=_error_text(e))

    async def save_bookmark(self, payload: Any) -> CommandResult:
        record = BookmarkRecord.model_validate(payload or {})
        result = await self.service.save(record)
        if result.status == "duplicate":
            return CommandResult(success=False, error=DUPLICATE_ERROR)
        if result.status == "queued":
            return CommandResult(success=True, offline=True)
        return CommandResult(success=True, data=result.record.model_dump(mode="json", by_alias=True))

    async def get_bookmarks(self, payload: Any) -> CommandResult:
        params = ListParams.model_validate(payload or {})
        conditions = []
        if params.search:
            conditions.append({"field_name": self.fields.title, "operator": "contains", "value": [params.search]})
        if params.tags:
            conditions.append({"field_name": self.fields.tags, "operator": "contains", "value": list(params.tags)})

        body: dict[str, Any] = {"page_size": params.page_size}
        if params.page > 1:
            body["page_token"] = str((params.page - 1) * params.page_size)
        if conditions:
            body["filter"] = {"conjunction": "and", "conditions": conditions}

        resp = ensure_ok(await self.api.call("POST", SEARCH_PATH, body))
        return CommandResult(success=True, data=resp.get("data"))

    async def delete_bookmark(self, payload: Any) -> CommandResult:
        record_id = payload.get("recordId") if isinstance(payload, dict) else payload
        if not record_id or not isinstance(record_id, str):
            return CommandResult(success=False, error="recordId is required")
        ensure_ok(await self.api.call("DELETE", f"{RECORDS_PATH}/{quote(record_id, safe='')}"))
        log.info("record_deleted", extra={"record_id": record_id})
        return CommandResult(success=True)

    def _apply(self, update: ConfigUpdate) -> ApiConfig:
        new = self.config.current.merged(update)
        save_api_config(self.sync_store, new)
        self.config.replace(new)
        log.info("config_updated", extra={"keys": sorted(update.model_dump(exclude_none=True, by_alias=True))})
        return new

    async def update_config(self, payload: Any) -> CommandResult:
        update = ConfigUpdate.model_validate(payload or {})
        self._apply(update)
        return CommandResult(success=True)

    async def get_config(self, payload: Any = None) -> CommandResult:
        return CommandResult(success=True, data=self.config.current.masked())

    async def export_config(self, payload: Any = None) -> CommandResult:
        return CommandResult(success=True, data=self.config.current.masked())

    async def import_config(self, payload: Any) -> CommandResult:
        if not isinstance(payload, dict):
            return CommandResult(success=False, error="config import expects a JSON object")
        update = ConfigUpdate.from_import(payload)
        if update.is_empty():
            return CommandResult(success=False, error="no usable config values found")
        self._apply(update)
        return CommandResult(success=True, data=sorted(update.model_dump(exclude_none=True, by_alias=True)))

    async def test_connection(self, payload: Any = None) -> CommandResult:
        """
        Lists the table's fields with either the given config or the current one.
        The given config is only used for this probe, it is not stored.
        """
        cfg = self.config.current
        if payload:
            cfg = cfg.merged(ConfigUpdate.model_validate(payload))
        if not (cfg.is_usable() and cfg.app_id and cfg.table_id):
            return CommandResult(success=False, error="proxyUrl, appId, tableId and tenantAccessToken are required")

        probe = self.api.with_config(cfg)
        resp = await probe.call("GET", FIELDS_PATH)
        if not isinstance(resp, dict) or resp.get("code") != 0:
            msg = resp.get("msg") if isinstance(resp, dict) else None
            return CommandResult(success=False, error=msg or "unknown error")
        log.info("connection_ok", extra={"url": build_url(cfg, FIELDS_PATH)})
        return CommandResult(success=True, data=resp.get("data"))

    async def drain_queue(self, payload: Any = None) -> CommandResult:
        report = await self.service.drain()
        return CommandResult(success=True, data={
            "succeeded": report.succeeded,
            "stillPending": report.still_pending,
            "abandoned": report.abandoned,
            "skipped": report.skipped,
        })
