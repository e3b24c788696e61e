from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from bookmarker.app import build_app
from bookmarker.config import FieldMap, HttpCfg, IoCfg, Settings
from bookmarker.core.storage import MemoryStore

GOOD_CONFIG = {
    "proxyUrl": "https://proxy.test",
    "appId": "cli_a1b2c3",
    "appSecret": "s3cr3t-s3cr3t-s3cr3t",
    "tableId": "tblXYZ",
    "tenantAccessToken": "t-abc123",
}

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def envelope(data=None, code=0, msg="success") -> dict:
    return {"code": code, "msg": msg, "data": data or {}}


class FakeBitable:
    """In-memory stand-in for the proxy + Bitable records API."""
    def __init__(self):
        self.records: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.down = False
        self.write_error_code: int | None = None
        self.fail_uploads: set[str] = set()
        self._tokens = 0

    def calls(self, method: str, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]

    def _match(self, rec: dict, cond: dict) -> bool:
        val = rec["fields"].get(cond["field_name"])
        if cond["operator"] == "is":
            return val in cond["value"]
        if cond["operator"] == "contains":
            if isinstance(val, list):
                return any(v in val for v in cond["value"])
            return any(v in (val or "") for v in cond["value"])
        return False

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = request.read()
        self.requests.append(request)
        if self.down:
            return httpx.Response(503, text="service unavailable")

        path = request.url.path
        if path.endswith("/records/search"):
            payload = json.loads(body or b"{}")
            conds = (payload.get("filter") or {}).get("conditions") or []
            items = [r for r in self.records if all(self._match(r, c) for c in conds)]
            return httpx.Response(200, json=envelope({"items": items, "total": len(items), "has_more": False}))

        if path.endswith("/records/upload_file"):
            for name in self.fail_uploads:
                if f'filename="{name}"'.encode() in body:
                    return httpx.Response(500, text="upload failed")
            self._tokens += 1
            return httpx.Response(200, json=envelope({"file_token": f"boxtok{self._tokens}"}))

        if path.endswith("/records") and request.method == "POST":
            if self.write_error_code is not None:
                return httpx.Response(200, json=envelope(code=self.write_error_code, msg="FieldNameNotFound"))
            payload = json.loads(body)
            created = []
            for rec in payload["records"]:
                row = {"record_id": f"rec{len(self.records) + 1}", "fields": rec["fields"]}
                self.records.append(row)
                created.append(row)
            return httpx.Response(200, json=envelope({"records": created}))

        if request.method == "DELETE" and "/records/" in path:
            rid = path.rsplit("/", 1)[-1]
            before = len(self.records)
            self.records = [r for r in self.records if r["record_id"] != rid]
            if len(self.records) == before:
                return httpx.Response(200, json=envelope(code=1254043, msg="RecordIdNotFound"))
            return httpx.Response(200, json=envelope({"deleted": True, "record_id": rid}))

        if path.endswith("/fields"):
            return httpx.Response(200, json=envelope({"items": [{"field_name": FieldMap().url}]}))

        return httpx.Response(404, text="not found")


@pytest.fixture
def fake() -> FakeBitable:
    return FakeBitable()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(io=IoCfg(data_dir=tmp_path), http=HttpCfg(rate_limit_rps=50))


@pytest.fixture
def sync_store() -> MemoryStore:
    return MemoryStore(GOOD_CONFIG)


@pytest.fixture
def local_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_app(fake, settings, sync_store, local_store):
    def _make(app_settings=None, **overrides):
        kwargs = dict(
            sync_store=sync_store,
            local_store=local_store,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)),
            clock=lambda: FIXED_NOW,
        )
        kwargs.update(overrides)
        return build_app(app_settings or settings, **kwargs)

    return _make
