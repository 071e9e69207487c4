from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # Persistence (serverless-friendly default: off -> in-memory substrate)
    persist_to_disk: bool
    data_dir: Path | None

    # Logging
    log_level: str

    # Stand-in for an auth layer: the caller's user id arrives in this header.
    user_id_header: str


def get_settings() -> Settings:
    raw_data_dir = os.getenv("DATA_DIR", "").strip()

    return Settings(
        persist_to_disk=_env_bool("PERSIST_TO_DISK", False),
        data_dir=Path(raw_data_dir) if raw_data_dir else None,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        user_id_header=os.getenv("USER_ID_HEADER", "X-User-Id").strip() or "X-User-Id",
    )


def configure_logging(settings: Settings) -> None:
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("bizstore").setLevel(level)
