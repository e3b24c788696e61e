# core/validate.py
from __future__ import annotations

from datetime import datetime
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

API_CONFIG_KEYS = ("proxyUrl", "appId", "appSecret", "tableId", "tenantAccessToken")
SECRET_KEYS = ("appSecret", "tenantAccessToken")
MASK = "********"


class _Model(BaseModel):
    # camelCase on the wire and in storage, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiConfig(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    proxy_url: str = ""
    app_id: str = ""
    app_secret: str = ""
    table_id: str = ""
    tenant_access_token: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def strip_values(cls, v: object) -> object:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("proxy_url")
    @classmethod
    def drop_trailing_slashes(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def from_storage(cls, data: dict[str, str]) -> ApiConfig:
        return cls.model_validate(data)

    def to_storage(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)

    def is_usable(self) -> bool:
        return bool(self.proxy_url and self.tenant_access_token)

    def merged(self, update: ConfigUpdate) -> ApiConfig:
        """New snapshot with the non-None fields of `update` applied."""
        data = self.model_dump()
        data.update(update.model_dump(exclude_none=True))
        return ApiConfig(**data)

    def masked(self) -> dict[str, str]:
        out = self.to_storage()
        for k in SECRET_KEYS:
            out[k] = MASK if out[k] else ""
        return out


class ConfigUpdate(_Model):
    """
    Partial ApiConfig as sent by the options screen or read from an import file.
    Empty strings are allowed (they clear a field); non-empty ones must look right.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    proxy_url: str | None = None
    app_id: str | None = None
    app_secret: str | None = None
    table_id: str | None = None
    tenant_access_token: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def strip_values(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("proxy_url")
    @classmethod
    def check_proxy_url(cls, v: str | None) -> str | None:
        if v:
            parts = urlsplit(v)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ValueError("proxyUrl must be an http(s) URL")
        return v

    @field_validator("app_id")
    @classmethod
    def check_app_id(cls, v: str | None) -> str | None:
        if v and not v.startswith("cli_"):
            raise ValueError("appId must start with 'cli_'")
        return v

    @field_validator("table_id")
    @classmethod
    def check_table_id(cls, v: str | None) -> str | None:
        if v and not v.startswith("tbl"):
            raise ValueError("tableId must start with 'tbl'")
        return v

    @field_validator("tenant_access_token")
    @classmethod
    def check_token(cls, v: str | None) -> str | None:
        if v and not v.startswith("t-"):
            raise ValueError("tenantAccessToken must start with 't-'")
        return v

    @classmethod
    def from_import(cls, data: dict) -> ConfigUpdate:
        """Keeps known keys only; empty and masked values are skipped."""
        kept = {
            k: data[k] for k in API_CONFIG_KEYS
            if isinstance(data.get(k), str) and data[k].strip() and data[k] != MASK
        }
        return cls.model_validate(kept)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class AttachmentRef(_Model):
    name: str
    size: int = Field(default=0, ge=0)
    mime_type: str = "application/octet-stream"
    file_token: str | None = None
    upload_failed: bool = False
    # local file still waiting for upload; survives the offline queue
    path: str | None = None

    @model_validator(mode="after")
    def token_clears_failure(self) -> AttachmentRef:
        if self.file_token:
            self.upload_failed = False
        return self


class BookmarkRecord(_Model):
    url: str
    title: str = ""
    notes: str = ""
    tags: list[str] = Field(default_factory=list)
    project: list[str] = Field(default_factory=list)
    attachments: list[AttachmentRef] = Field(default_factory=list)
    created_time: datetime | None = None
    last_updated: datetime | None = None

    @field_validator("tags", "project", mode="before")
    @classmethod
    def listify(cls, v: object) -> object:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return v

    @field_validator("tags", "project")
    @classmethod
    def strip_items(cls, v: list[str]) -> list[str]:
        return [s.strip() for s in v if s and s.strip()]


class QueueItem(_Model):
    id: str
    payload: BookmarkRecord
    enqueued_at: datetime
    retry_count: int = Field(default=0, ge=0)
