"""
File-backed Key-Value Storage

Each key is stored as its own document under a data directory.

DESIGN DECISION: Writes go to a temporary file in the same directory which
is then renamed over the target. The rename is atomic on POSIX and Windows,
so a crash or a full disk mid-write leaves the previous value intact. This
is what lets the cache promise "last successfully written snapshot" and the
backup service promise "no partial artifact".

TRADEOFFS:
- One file per key: fine for a handful of fixed keys, not a general database
- File I/O runs in a worker thread to keep the event loop responsive
"""

import asyncio
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

import structlog

from finsync.config import get_settings
from finsync.services.storage.interface import KeyValueStorage, StorageError


logger = structlog.get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileKeyValueStorage(KeyValueStorage):
    """Stores each key as `<data_dir>/<key>.json`."""

    def __init__(self, data_dir: Optional[str] = None):
        self._data_dir = Path(data_dir or get_settings().storage.data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self._data_dir / f"{key}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read '{key}': {e}")

    def _write(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp_name = None
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._data_dir, prefix=f".{key}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Failed to write '{key}': {e}")
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("temp_file_cleanup_failed", path=tmp_name)

    def _remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to remove '{key}': {e}")

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)
