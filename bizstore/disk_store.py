from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from urllib.parse import quote

from json_store import atomic_write_text, read_text

from .errors import MalformedDataError, SubstrateIOError
from .interfaces import KeyValueStore
from .locks import GLOBAL_PATH_LOCKS

logger = logging.getLogger(__name__)


class DiskKeyValueStore(KeyValueStore):
    """
    Stores each key as its own UTF-8 file under a root directory.

    - Keys are percent-encoded into file names, so any string is a valid key.
    - Writes atomically.
    - Blocking file I/O runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, root: Path):
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}.kv"

    def _read(self, key: str) -> str | None:
        path = self.path_for(key)
        with GLOBAL_PATH_LOCKS.lock_for(path):
            return read_text(path)

    def _write(self, key: str, value: str) -> None:
        path = self.path_for(key)
        with GLOBAL_PATH_LOCKS.lock_for(path):
            atomic_write_text(path, value)

    def _remove(self, key: str) -> None:
        path = self.path_for(key)
        with GLOBAL_PATH_LOCKS.lock_for(path):
            path.unlink(missing_ok=True)

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._read, key)
        except UnicodeDecodeError as e:
            raise MalformedDataError(f"value for key {key!r} is not valid UTF-8", key=key) from e
        except OSError as e:
            logger.warning("KV READ: failed to read %s: %r", key, e)
            raise SubstrateIOError(f"failed to read key {key!r}", key=key) from e

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except OSError as e:
            logger.warning("KV WRITE: failed to write %s: %r", key, e)
            raise SubstrateIOError(f"failed to write key {key!r}", key=key) from e

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove, key)
        except OSError as e:
            logger.warning("KV REMOVE: failed to remove %s: %r", key, e)
            raise SubstrateIOError(f"failed to remove key {key!r}", key=key) from e
