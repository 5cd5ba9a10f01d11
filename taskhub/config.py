from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field


DEFAULT_SETTINGS_PATH = os.environ.get("TASKHUB_SETTINGS", "/data/settings.yml")


class AppSettings(BaseModel):
    name: str = "Taskhub"
    timezone: str = "UTC"
    host: str = "0.0.0.0"  # nosec B104
    port: int = 8888


class SecuritySettings(BaseModel):
    jwt_secret: str = "CHANGE_ME_JWT_SECRET"
    token_minutes: int = 60 * 24


class DatabaseSettings(BaseModel):
    path: str = "/data/taskhub.db"
    # SQLite waits this long on a locked database before raising.
    busy_timeout_ms: int = 5000


class LoggingSettings(BaseModel):
    level: str = "INFO"
    dir: str = "/data/logs"
    retention_days: int = 30
    # Per-area overrides, e.g. {"recurrence": "DEBUG"} for the taskhub.recurrence logger.
    levels: Dict[str, str] = Field(default_factory=dict)


class SweepSettings(BaseModel):
    # Daily safety-net pass over completed recurring tasks.
    enabled: bool = True
    cron_hour: int = 0
    cron_minute: int = 5


class AssigneeSettings(BaseModel):
    max_per_task: int = 5


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sweep: SweepSettings = Field(default_factory=SweepSettings)
    assignees: AssigneeSettings = Field(default_factory=AssigneeSettings)


def _ensure_settings_file(path: str) -> None:
    p = Path(path)
    if p.exists():
        return

    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(
        "app:\n  name: 'Taskhub'\n  timezone: 'UTC'\n  host: '0.0.0.0'\n  port: 8888\n"
        "security:\n  jwt_secret: 'CHANGE_ME_JWT_SECRET'\n  token_minutes: 1440\n"
        "database:\n  path: '/data/taskhub.db'\n  busy_timeout_ms: 5000\n"
        "logging:\n  level: 'INFO'\n  dir: '/data/logs'\n  retention_days: 30\n  levels: {}\n"
        "sweep:\n  enabled: true\n  cron_hour: 0\n  cron_minute: 5\n"
        "assignees:\n  max_per_task: 5\n"
    )


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("settings.yml must contain a YAML mapping at the root")
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings_path = os.environ.get("TASKHUB_SETTINGS", DEFAULT_SETTINGS_PATH)
    _ensure_settings_file(settings_path)
    raw = _load_yaml(settings_path)
    s = Settings.model_validate(raw)

    jwt_secret = os.environ.get("TASKHUB_JWT_SECRET")
    if jwt_secret:
        s.security.jwt_secret = jwt_secret

    port_env = os.environ.get("PORT") or os.environ.get("TASKHUB_PORT")
    if port_env:
        try:
            s.app.port = int(port_env)
        except ValueError:
            pass

    return s
