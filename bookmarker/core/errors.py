# core/errors.py
from __future__ import annotations


class BookmarkerError(Exception):
    """Base for everything the core raises on purpose."""


class ConfigurationError(BookmarkerError):
    """Missing proxy URL or access token. Not retried."""


class RemoteApiError(BookmarkerError):
    """Non-2xx status, or a non-zero `code` in the response envelope."""

    def __init__(self, status: int, body: str, code: int | None = None, msg: str | None = None):
        self.status = status
        self.body = body
        self.code = code
        self.msg = msg
        if code is not None:
            text = f"remote api error: code={code} msg={msg or ''}"
        else:
            text = f"remote api error: {status} {body[:500]}"
        super().__init__(text)


class TransportError(BookmarkerError):
    """Network failure before any HTTP status was received."""


class AttachmentUploadError(BookmarkerError):
    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"upload of {name!r} failed: {reason}")
