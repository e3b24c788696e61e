from __future__ import annotations

import json

import httpx
import pytest

from bookmarker.core.errors import AttachmentUploadError, ConfigurationError, RemoteApiError, TransportError
from bookmarker.core.http import RECORDS_PATH, SEARCH_PATH, ApiClient, ensure_ok
from bookmarker.core.validate import ApiConfig

CFG = ApiConfig(proxy_url="https://proxy.test/", app_id="cli_app", table_id="tblT", tenant_access_token="t-tok")


def _client(handler, cfg: ApiConfig = CFG) -> ApiClient:
    return ApiClient(lambda: cfg, rps=1000, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_call_substitutes_placeholders_and_sends_auth():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 0, "data": {"items": []}})

    api = _client(handler)
    resp = await api.call("POST", SEARCH_PATH, {"filter": {"conjunction": "and", "conditions": []}})

    assert resp == {"code": 0, "data": {"items": []}}
    req = seen[0]
    assert str(req.url) == "https://proxy.test/bitable/v1/apps/cli_app/tables/tblT/records/search"
    assert req.headers["Authorization"] == "Bearer t-tok"
    assert req.headers["Content-Type"] == "application/json"
    assert json.loads(req.content) == {"filter": {"conjunction": "and", "conditions": []}}


@pytest.mark.asyncio
async def test_delete_sends_no_body():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 0})

    await _client(handler).call("DELETE", f"{RECORDS_PATH}/rec1", {"ignored": True})
    assert seen[0].method == "DELETE"
    assert seen[0].content == b""


@pytest.mark.asyncio
@pytest.mark.parametrize("cfg", [
    ApiConfig(proxy_url="", tenant_access_token="t-tok"),
    ApiConfig(proxy_url="https://proxy.test", tenant_access_token=""),
])
async def test_incomplete_config_fails_before_network(cfg):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(ConfigurationError):
        await _client(handler, cfg).call("GET", "/health")
    assert calls == []


@pytest.mark.asyncio
async def test_non_2xx_raises_with_status_and_body():
    api = _client(lambda request: httpx.Response(403, text='{"code":99991663,"msg":"token invalid"}'))
    with pytest.raises(RemoteApiError) as ei:
        await api.call("POST", SEARCH_PATH, {})
    assert ei.value.status == 403
    assert "token invalid" in ei.value.body


@pytest.mark.asyncio
async def test_envelope_is_not_interpreted_by_call():
    api = _client(lambda request: httpx.Response(200, json={"code": 1254045, "msg": "FieldNameNotFound"}))
    resp = await api.call("POST", RECORDS_PATH, {"records": []})
    assert resp["code"] == 1254045
    with pytest.raises(RemoteApiError) as ei:
        ensure_ok(resp)
    assert ei.value.code == 1254045


@pytest.mark.asyncio
async def test_network_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        await _client(handler).call("GET", "/health")


@pytest.mark.asyncio
async def test_config_snapshot_is_read_per_call():
    holder = {"cfg": CFG}
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        return httpx.Response(200, json={"code": 0})

    api = ApiClient(lambda: holder["cfg"], rps=1000, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await api.call("GET", "/x")
    holder["cfg"] = CFG.model_copy(update={"proxy_url": "https://other.test"})
    await api.call("GET", "/x")
    assert hosts == ["proxy.test", "other.test"]


@pytest.mark.asyncio
async def test_upload_is_multipart_without_json_content_type():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 0, "data": {"file_token": "boxABC"}})

    token = await _client(handler).upload_file("a.pdf", b"%PDF-1.4", "application/pdf")
    assert token == "boxABC"
    req = seen[0]
    assert req.url.path.endswith("/records/upload_file")
    assert req.headers["Authorization"] == "Bearer t-tok"
    assert req.headers["Content-Type"].startswith("multipart/form-data; boundary=")
    assert b'name="file_name"' in req.content
    assert b'filename="a.pdf"' in req.content


@pytest.mark.asyncio
async def test_upload_failures_become_attachment_errors():
    api = _client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(AttachmentUploadError) as ei:
        await api.upload_file("a.pdf", b"x", "application/pdf")
    assert ei.value.name == "a.pdf"

    api = _client(lambda request: httpx.Response(200, json={"code": 0, "data": {}}))
    with pytest.raises(AttachmentUploadError):
        await api.upload_file("a.pdf", b"x", "application/pdf")
