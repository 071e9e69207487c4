from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def dump_json(payload: Any) -> str:
    """
    Serialize a JSON-representable payload to compact text.

    Key order is preserved so stored documents read back the way they were written.
    """
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def load_json(raw: str) -> Any:
    """
    Parse JSON text.

    Raises ValueError for empty or invalid input; callers decide how to surface it.
    """
    if not raw.strip():
        raise ValueError("empty JSON payload")
    return json.loads(raw)


def read_text(path: Path) -> str | None:
    """
    Read a UTF-8 text file.

    Returns None for missing files. Other OS errors propagate.
    """
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def atomic_write_text(path: Path, text: str) -> None:
    """
    Atomically write text to disk by writing to a temp file then replacing.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        f.write(text)
    tmp_path.replace(path)
