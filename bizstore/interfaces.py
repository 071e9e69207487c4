from __future__ import annotations

from typing import Protocol


class KeyValueStore(Protocol):
    """
    Minimal async key-value substrate: opaque text blobs persisted under string keys.

    Implementations raise SubstrateIOError on I/O failure.
    """

    async def get(self, key: str) -> str | None:
        """Return the stored blob, or None when the key is absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Persist the blob, replacing any previous value."""
        ...

    async def remove(self, key: str) -> None:
        """Remove the key. Removing an absent key is a no-op."""
        ...
