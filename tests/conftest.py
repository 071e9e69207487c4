from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys


import pytest


# Ensure the repository root (parent of ./tests) is importable during pytest collection.
# This avoids ModuleNotFoundError for imports like `import bizstore...` under pytest import modes
# that don't automatically prepend the cwd/rootdir to sys.path.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from bizstore.errors import SubstrateIOError  # noqa: E402
from bizstore.memory_store import MemoryKeyValueStore  # noqa: E402
from bizstore.store import DocumentStore  # noqa: E402


class FakeClock:
    """Frozen clock; tests move it explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FlakyKeyValueStore(MemoryKeyValueStore):
    """Memory substrate that raises SubstrateIOError for selected keys."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_get: set[str] = set()
        self.fail_set: set[str] = set()
        self.fail_remove: set[str] = set()

    async def get(self, key: str) -> str | None:
        if key in self.fail_get:
            raise SubstrateIOError(f"simulated read failure for {key}", key=key)
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        if key in self.fail_set:
            raise SubstrateIOError(f"simulated write failure for {key}", key=key)
        await super().set(key, value)

    async def remove(self, key: str) -> None:
        if key in self.fail_remove:
            raise SubstrateIOError(f"simulated remove failure for {key}", key=key)
        await super().remove(key)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def flaky_kv() -> FlakyKeyValueStore:
    return FlakyKeyValueStore()


@pytest.fixture
def store(kv: MemoryKeyValueStore, clock: FakeClock) -> DocumentStore:
    return DocumentStore(kv, clock=clock)


@pytest.fixture
def sandbox_project(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """
    Redirect persistence paths to a temp project directory so tests never touch real ./data.
    """
    import bizstore.paths as paths

    def _project_root() -> Path:
        return tmp_path

    def _data_dir() -> Path:
        p = tmp_path / "data"
        p.mkdir(parents=True, exist_ok=True)
        return p

    monkeypatch.setattr(paths, "project_root", _project_root)
    monkeypatch.setattr(paths, "data_dir", _data_dir)
    return tmp_path
