from __future__ import annotations

from .interfaces import KeyValueStore


class MemoryKeyValueStore(KeyValueStore):
    """
    Process-local substrate backed by a dict.

    Nothing survives a restart; used when disk persistence is off and in tests.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("value must be a str")
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)
