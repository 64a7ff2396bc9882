"""Where the State Store and the HTTP response cache live on disk.

``DATABASE_URI`` points the State Store at any SQLAlchemy database; without it
state is kept in a SQLite file under the data directory, which defaults to the
platform's per-user data location and can be moved with ``CONVERGE_DATA_DIR``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "converge"
DEFAULT_DB_FILENAME: Final[str] = "state.db"
HTTP_CACHE_FILENAME: Final[str] = "http_cache.db"

DATA_DIR_ENV: Final[str] = "CONVERGE_DATA_DIR"
DATABASE_URI_ENV: Final[str] = "DATABASE_URI"


def _platform_data_home() -> Path:
    if os.name == "nt":
        local = os.getenv("LOCALAPPDATA")
        return Path(local) if local else Path.home() / "AppData" / "Local"
    xdg = os.getenv("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


@dataclass(frozen=True, slots=True)
class DataDirectory:
    root: Path

    @classmethod
    def from_env(cls) -> DataDirectory:
        configured = os.getenv(DATA_DIR_ENV)
        root = Path(configured) if configured else _platform_data_home() / APP_DIR_NAME
        return cls(root=root.expanduser().resolve())

    def file(self, name: str) -> Path:
        """Return ``name`` inside the directory, creating the directory on first use."""

        self.root.mkdir(parents=True, exist_ok=True)
        return self.root / name


def get_database_uri() -> str:
    override = os.getenv(DATABASE_URI_ENV)
    if override:
        return override
    return f"sqlite+pysqlite:///{DataDirectory.from_env().file(DEFAULT_DB_FILENAME)}"


def get_http_cache_path() -> Path:
    return DataDirectory.from_env().file(HTTP_CACHE_FILENAME)
