# core/storage.py
from __future__ import annotations

import copy
import json
import os
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

SYNC_STORE_NAME = "sync.json"
LOCAL_STORE_NAME = "local.json"


class KeyValueStore(Protocol):
    """
    Persistent key-value storage. Values must be JSON-serializable.
    `set` returns only once the data is durable.
    """
    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        ...

    def set(self, items: Mapping[str, Any]) -> None:
        ...


class MemoryStore:
    """Process-local store. Values are deep-copied in and out, like a real store would serialize them."""
    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    def set(self, items: Mapping[str, Any]) -> None:
        self._data.update(copy.deepcopy(dict(items)))


# ——————————————————————————————
# File lock: cross-platform, no dependencies
# ——————————————————————————————
if os.name == "nt":
    import msvcrt  # type: ignore[attr-defined]

    def _lock(f) -> None:
        msvcrt.locking(f.fileno(), msvcrt.LK_LOCK, 1)

    def _unlock(f) -> None:
        try:
            msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
        except OSError:
            pass
else:
    import fcntl  # type: ignore[import-not-found]

    def _lock(f) -> None:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)

    def _unlock(f) -> None:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError:
            pass


class JsonFileStore:
    """
    One JSON object per file. Every `set` rewrites the file through a temp file
    and os.replace, with fsync, so a crash leaves either the old or the new content.
    A sidecar `.lock` file serializes writers from other processes.
    """
    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock_path = self.path.with_name(self.path.name + ".lock")

    def _read(self) -> dict[str, Any]:
        if not self.path.exists() or self.path.stat().st_size == 0:
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        data = self._read()
        return {k: data[k] for k in keys if k in data}

    def set(self, items: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock_path.open("a+") as lf:
            _lock(lf)
            try:
                data = self._read()
                data.update(items)
                _atomic_write_json(self.path, data)
            finally:
                _unlock(lf)


def _atomic_write_json(p: Path, data: Mapping[str, Any]) -> None:
    tmp_fd, tmp_name = tempfile.mkstemp(prefix=p.name + ".", dir=p.parent)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as tf:
            json.dump(data, tf, ensure_ascii=False, indent=2)
            tf.flush()
            os.fsync(tf.fileno())
        os.replace(tmp_name, p)
    except Exception:
        try:
            os.remove(tmp_name)
        except OSError:
            pass
        raise


def sync_store_path(data_dir: Path) -> Path:
    return data_dir / SYNC_STORE_NAME


def local_store_path(data_dir: Path) -> Path:
    return data_dir / LOCAL_STORE_NAME
