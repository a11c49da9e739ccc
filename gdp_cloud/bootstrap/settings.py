from __future__ import annotations

import os
import tempfile
from pathlib import Path

from gdp_cloud.infrastructure.db import DB_FILENAME

APP_DIR_NAME = "GDPCloud"


def resolve_appdata_dir() -> Path:
    env_dir = os.environ.get("GDP_DATA_DIR")
    if env_dir:
        return Path(env_dir)
    local_appdata = os.environ.get("LOCALAPPDATA")
    base_dir = Path(local_appdata) if local_appdata else Path.home() / ".local" / "share"
    return base_dir / APP_DIR_NAME


def resolve_backup_path() -> Path:
    return resolve_appdata_dir() / "backup" / DB_FILENAME


def resolve_log_dir() -> Path:
    candidates: list[Path] = []
    env_dir = os.environ.get("GDP_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(resolve_appdata_dir() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / APP_DIR_NAME / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            test_file = candidate / "_write_test.tmp"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    fallback = Path.cwd()
    return fallback
