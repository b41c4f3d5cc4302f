from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

SYSTEM_USER_ID = "00000000-0000-0000-0000-000000000000"


def _resolve_project_root() -> Path:
    override = os.getenv("FRAUDIT_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _default_database_url() -> str:
    override = os.getenv("FRAUDIT_DATABASE_URL", "").strip()
    if override:
        return override
    return f"sqlite:///{_resolve_project_root() / 'data' / 'fraudit.db'}"


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    config_file: Path = Field(default_factory=lambda: _resolve_project_root() / "fraudit.yaml")
    database_url: str = Field(default_factory=_default_database_url)

    # Analysis
    batch_page_size: int = 10
    feature_workers: int = 10
    preferred_model_type: str = "RANDOM_FOREST"
    system_user_id: str = SYSTEM_USER_ID

    # Background jobs
    auto_analyze_existing: bool = False
    scheduler_enabled: bool = True
    schedule_cron: str = "0 1 * * *"

    def ensure_directories(self) -> None:
        if self.database_url.startswith("sqlite:///") and ":memory:" not in self.database_url:
            Path(self.database_url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data


def load_settings(config_file: Path | None = None) -> Settings:
    """Build settings from defaults overlaid with the ``fraudit.yaml`` analysis section."""
    base = Settings()
    path = config_file or base.config_file
    raw = base.load_yaml(path)
    overrides = raw.get("fraudit", raw)
    if not isinstance(overrides, dict):
        overrides = {}
    known = {k: v for k, v in overrides.items() if k in Settings.model_fields}
    return Settings.model_validate({**base.model_dump(), **known, "config_file": path})


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = load_settings()
    settings.ensure_directories()
    return settings
