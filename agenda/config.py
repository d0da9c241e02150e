from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

log = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).parent


def _resolve_data_dir() -> Path:
    override = os.getenv("AGENDA_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve() / "data"
    return PACKAGE_DIR / "data"


def _resolve_database_path() -> Path:
    override = os.getenv("AGENDA_DB", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return _resolve_data_dir() / "agenda.db"


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path}"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


class Settings(BaseModel):
    model_config = ConfigDict(validate_default=True)

    data_dir: Path = Field(default_factory=_resolve_data_dir)
    database_path: Path = Field(default_factory=_resolve_database_path)

    default_limit: int = Field(default_factory=lambda: _env_int("AGENDA_LIMIT", 20))
    host: str = Field(default_factory=lambda: os.getenv("AGENDA_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: _env_int("AGENDA_PORT", 8002))
    log_level: str = Field(default_factory=lambda: os.getenv("AGENDA_LOG_LEVEL", "INFO").upper())

    @field_validator("default_limit")
    @classmethod
    def limit_must_be_positive(cls, v: int) -> int:
        if v < 1:
            log.warning("default_limit must be positive, got %d; using 20", v)
            return 20
        return v

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return sqlite_url(self.database_path)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
