import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bookmarker.core.storage import KeyValueStore
from bookmarker.core.validate import API_CONFIG_KEYS, ApiConfig


class HttpCfg(BaseModel):
    user_agent: str = Field(default="bookmarker/0.1")
    rate_limit_rps: float = Field(default=5.0, ge=0.05, le=50.0)
    timeout_s: int = Field(default=20, ge=1, le=120)

class IoCfg(BaseModel):
    data_dir: Path = Path("./data/bookmarker")

class LogCfg(BaseModel):
    level: str = Field(default="INFO")

class QueueCfg(BaseModel):
    max_retries: int = Field(default=3, ge=1, le=100)
    drain_interval_s: float = Field(default=300.0, gt=0)

class FieldMap(BaseModel):
    """Remote column identifiers. They depend on how the table was set up."""
    url: str = "网页链接"
    title: str = "网站标题"
    notes: str = "备注"
    tags: str = "分类标签"
    project: str = "关联项目"
    attachments: str = "关联文件"
    created_time: str = "创建时间"
    last_updated: str = "最后更新时间"

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    http: HttpCfg = HttpCfg()
    io: IoCfg = IoCfg()
    log: LogCfg = LogCfg()
    queue: QueueCfg = QueueCfg()
    field_map: FieldMap = FieldMap()

def ensure_dirs(cfg: Settings) -> None:
    cfg.io.data_dir.mkdir(parents=True, exist_ok=True)

def _fields_from_env() -> FieldMap:
    defaults = FieldMap()
    return FieldMap(**{
        name: os.getenv(f"FIELD_{name.upper()}", getattr(defaults, name))
        for name in FieldMap.model_fields
    })

def load_settings() -> Settings:
    s = Settings(
        http=HttpCfg(
            user_agent=os.getenv("USER_AGENT", HttpCfg().user_agent),
            rate_limit_rps=float(os.getenv("RATE_LIMIT_RPS", HttpCfg().rate_limit_rps)),
            timeout_s=int(os.getenv("HTTP_TIMEOUT_S", HttpCfg().timeout_s)),
        ),
        io=IoCfg(data_dir=Path(os.getenv("DATA_DIR", IoCfg().data_dir))),
        log=LogCfg(level=os.getenv("LOG_LEVEL", LogCfg().level)),
        queue=QueueCfg(
            max_retries=int(os.getenv("QUEUE_MAX_RETRIES", QueueCfg().max_retries)),
            drain_interval_s=float(os.getenv("QUEUE_DRAIN_INTERVAL_S", QueueCfg().drain_interval_s)),
        ),
        field_map=_fields_from_env(),
    )
    ensure_dirs(s)
    return s


# ------------------------------------------------------------------
# Remote credentials: kept in the synced key-value store, not in env
# ------------------------------------------------------------------
class ConfigHolder:
    """
    Owns the process-wide ApiConfig snapshot.
    Readers take `current` once per call; `replace` swaps the whole object.
    """
    def __init__(self, initial: ApiConfig | None = None):
        self._current = initial or ApiConfig()

    @property
    def current(self) -> ApiConfig:
        return self._current

    def replace(self, new: ApiConfig) -> ApiConfig:
        self._current = new
        return new


def load_api_config(store: KeyValueStore) -> ApiConfig:
    stored = store.get(list(API_CONFIG_KEYS))
    return ApiConfig.from_storage({k: stored.get(k) or "" for k in API_CONFIG_KEYS})

def save_api_config(store: KeyValueStore, cfg: ApiConfig) -> None:
    store.set(cfg.to_storage())
