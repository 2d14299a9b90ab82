"""Application settings (Pydantic v2), read from closeboard.yml with environment overrides for the URL and secrets."""

import os
import socket
from pathlib import Path
from typing import Any, Literal, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, field_validator

DEFAULT_DATABASE_URL = "postgresql+psycopg2://localhost/closeboard"
CONFIG_PATH_ENV_VAR = "CLOSEBOARD_CONFIG"
DEFAULT_CONFIG_FILENAME = "closeboard.yml"

# Environment variable -> setting. Secrets are expected here rather than in the YAML file.
ENV_OVERRIDES: dict[str, str] = {
    "DATABASE_URL": "database_url",
    "CLOSEBOARD_API_TOKEN": "api_token",
    "CLOSEBOARD_SMTP_PASSWORD": "smtp_password",
    "CLOSEBOARD_ACCOUNTING_API_KEY": "accounting_api_key",
}


class Settings(BaseModel):
    model_config = {"extra": "ignore"}

    database_url: str = DEFAULT_DATABASE_URL
    worker_id: str | None = None
    log_level: str = "INFO"
    forensics_dir: str = "/logs/forensics"

    # Empty token disables bearer auth on the API (local development).
    api_token: str = ""
    timezone: str = "UTC"
    fiscal_year_start_month: int = 1

    drafter: Literal["template", "remote"] = "template"
    drafting_endpoint: str = ""
    drafting_timeout_seconds: float = 60.0

    mailer: Literal["log", "smtp"] = "log"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    sender_address: str = "requests@localhost"
    public_base_url: str = "http://localhost:8000"

    accounting_endpoint: str = ""
    accounting_api_key: str = ""

    reminder_poll_interval_seconds: float = 60.0

    @field_validator("worker_id", mode="before")
    @classmethod
    def blank_worker_id_is_none(cls, v: Any) -> str | None:
        return str(v) if v not in (None, "") else None

    @field_validator("fiscal_year_start_month")
    @classmethod
    def check_fiscal_month(cls, v: int) -> int:
        if not 1 <= v <= 12:
            raise ValueError("fiscal_year_start_month must be between 1 and 12")
        return v

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class ConfigLoader:
    """
    Builds Settings from a YAML file and an environment mapping.

    An explicitly chosen file can be loaded without environment overrides, so a
    test or an operator pointing at a file gets exactly that file. The default
    lookup (CLOSEBOARD_CONFIG, then ./closeboard.yml, then built-in defaults)
    always applies ENV_OVERRIDES.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def _overrides(self) -> dict[str, str]:
        return {field: self._env[var] for var, field in ENV_OVERRIDES.items() if self._env.get(var)}

    @staticmethod
    def _with_worker_id(settings: Settings) -> Settings:
        if settings.worker_id:
            return settings
        return settings.model_copy(update={"worker_id": socket.gethostname()})

    def load_from_yaml(self, path: Path, apply_env_override: bool) -> Settings:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        data = yaml.safe_load(path.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        if apply_env_override:
            data.update(self._overrides())
        return self._with_worker_id(Settings.model_validate(data))

    def load_default(self) -> Settings:
        path = Path(self._env.get(CONFIG_PATH_ENV_VAR) or DEFAULT_CONFIG_FILENAME)
        if path.exists():
            return self.load_from_yaml(path, apply_env_override=True)
        return self._with_worker_id(Settings.model_validate(self._overrides()))


_config: Settings | None = None
_loader = ConfigLoader()


def get_config(config_path: str | Path | None = None) -> Settings:
    """
    Process-wide settings. Passing config_path loads that file (no environment
    overrides) and replaces the cached value.
    """
    global _config
    if config_path is not None:
        _config = _loader.load_from_yaml(Path(config_path), apply_env_override=False)
    elif _config is None:
        _config = _loader.load_default()
    return _config


def reset_config() -> None:
    global _config
    _config = None
