"""
JSON File Cache

One file per scope key inside the configured cache directory. Writes go to a
temporary file first and are moved into place, so a crash mid-write leaves
the previous blob intact.
"""

import hashlib
import os
import re
from pathlib import Path
from typing import Optional

from coinflow.config import LocalCacheSettings, get_settings
from coinflow.services.storage.interface import LocalCacheInterface, StorageError


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class JsonFileCache(LocalCacheInterface):
    """File-backed local durable cache."""

    def __init__(
        self,
        directory: Optional[Path] = None,
        settings: Optional[LocalCacheSettings] = None,
    ):
        if directory is None:
            directory = (settings or get_settings().local_cache).directory
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        """File path for `key`. Keys are sanitised and suffixed with a short hash."""
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
        stem = _UNSAFE.sub("_", key).strip("_") or "scope"
        return self._directory / f"{stem}-{digest}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read cache {path}: {e}")

    def set(self, key: str, blob: str) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(blob, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write cache {path}: {e}")
