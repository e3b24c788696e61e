# core/dedup.py
from __future__ import annotations

from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from bookmarker.core.http import SEARCH_PATH, ApiClient
from bookmarker.core.log import get_logger

TRACKING_PARAMS = frozenset({
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "gclid", "fbclid", "yclid", "spm", "ref", "ref_src",
})
DEFAULT_PORTS = {"http": 80, "https": 443}

# same set encodeURIComponent leaves alone
_QS_SAFE = "-_.!~*'()"

log = get_logger("bookmarker.dedup")


def _netloc(parts) -> str:
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    userinfo = parts.netloc.rpartition("@")[0]
    port = parts.port
    out = f"{userinfo}@{host}" if userinfo else host
    if port is not None and DEFAULT_PORTS.get(parts.scheme) != port:
        out += f":{port}"
    return out


def _query(raw_query: str) -> str:
    pairs = [
        (k, v) for k, v in parse_qsl(raw_query, keep_blank_values=True)
        if v != "" and k.lower() not in TRACKING_PARAMS
    ]
    pairs.sort(key=lambda kv: kv[0])
    return "&".join(f"{quote(k, safe=_QS_SAFE)}={quote(v, safe=_QS_SAFE)}" for k, v in pairs)


def normalize_url(u: str) -> str:
    """
    Canonical form used as the dedup key. Never raises: anything that does not
    parse as an absolute URL comes back unchanged.
    """
    if not isinstance(u, str):
        return u
    try:
        parts = urlsplit(u.strip())
        if not parts.scheme or not parts.netloc or not parts.hostname:
            return u
        netloc = _netloc(parts)
    except ValueError:
        return u

    path = parts.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"
    return urlunsplit((parts.scheme, netloc, path, _query(parts.query), ""))


class DuplicateChecker:
    """
    Asks the remote table whether a canonical URL is already stored.
    Best effort: any failure counts as "not a duplicate".
    """
    def __init__(self, api: ApiClient, url_field: str):
        self.api = api
        self.url_field = url_field

    async def exists(self, canonical_url: str) -> bool:
        body = {
            "filter": {
                "conjunction": "and",
                "conditions": [
                    {"field_name": self.url_field, "operator": "is", "value": [canonical_url]},
                ],
            }
        }
        try:
            resp = await self.api.call("POST", SEARCH_PATH, body)
        except Exception as e:
            log.warning("dup_check_error", extra={"url": canonical_url, "err": str(e)})
            return False

        if not isinstance(resp, dict):
            return False
        items = (resp.get("data") or {}).get("items") or []
        return len(items) > 0
