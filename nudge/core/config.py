"""
Nudge Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (NUDGE_*, VAPID_*)
3. Project config (./nudge.toml)
4. User config (~/.nudge/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    VAPID_PUBLIC_KEY → push.vapid_public_key
    VAPID_PRIVATE_KEY → push.vapid_private_key
    VAPID_SUBJECT → push.vapid_subject
    NUDGE_STORE_BACKEND → store.backend
    NUDGE_STORE_PATH → store.path
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Callable, Literal, Mapping

from pydantic import BaseModel, Field

from nudge.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class PushConfig(BaseModel):
    """Web Push transport and payload branding."""

    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:admin@example.com"
    ttl: int = 60 * 60 * 24  # seconds the push service may hold a message
    app_title: str = "Aiding Migraine"
    icon: str = "./icons/icon-192x192.png"
    badge: str = "./icons/icon-72x72.png"
    remove_gone_subscribers: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_subject)


class StoreConfig(BaseModel):
    """Which store backend holds subscriptions and queues."""

    backend: Literal["sqlite", "json", "memory"] = "sqlite"
    path: str = "~/.nudge/data"  # SQLite file lives here as nudge.db; JSON files too


class SchedulerConfig(BaseModel):
    """Tick driver configuration."""

    enabled: bool = True
    hourly_cron: str = "0 * * * *"
    quarter_hour_cron: str = "*/15 * * * *"
    max_concurrent_sends: int = Field(default=10, ge=1)


class LoggingConfig(BaseModel):
    """Log file location and console verbosity."""

    dir: str = "~/.nudge/logs"
    level: str = "INFO"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class NudgeConfig(BaseModel):
    """Root configuration for Nudge."""

    push: PushConfig = Field(default_factory=PushConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> NudgeConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        layers = [
            _load_toml(user_path or Path.home() / ".nudge" / "config.toml"),
            _load_toml(project_path or Path.cwd() / "nudge.toml"),
            _load_from_env(),
            overrides or {},
        ]
        merged = _expand_env(_merge_layers(layers))

        try:
            return NudgeConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_store_path(self) -> Path:
        """Resolved data directory for the file-backed stores."""
        return Path(self.store.path).expanduser()

    def get_log_dir(self) -> Path:
        return Path(self.logging.dir).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _parse_bool(raw: str) -> bool:
    text = raw.strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError("expected true/false")


# env var → (section, key, parser)
_ENV_MAPPING: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "VAPID_PUBLIC_KEY": ("push", "vapid_public_key", str),
    "VAPID_PRIVATE_KEY": ("push", "vapid_private_key", str),
    "VAPID_SUBJECT": ("push", "vapid_subject", str),
    "NUDGE_PUSH_TTL": ("push", "ttl", int),
    "NUDGE_PUSH_APP_TITLE": ("push", "app_title", str),
    "NUDGE_STORE_BACKEND": ("store", "backend", str),
    "NUDGE_STORE_PATH": ("store", "path", str),
    "NUDGE_SCHEDULER_ENABLED": ("scheduler", "enabled", _parse_bool),
    "NUDGE_SCHEDULER_MAX_CONCURRENT_SENDS": ("scheduler", "max_concurrent_sends", int),
    "NUDGE_LOG_DIR": ("logging", "dir", str),
    "NUDGE_LOG_LEVEL": ("logging", "level", str),
}

_ENV_REFERENCE = re.compile(r"\$\{(\w+)\}")


def _load_toml(path: Path) -> dict[str, Any]:
    """A TOML layer; a missing file is an empty layer."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config from {path}: {e}", {"path": str(path)}) from e


def _load_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """The NUDGE_* / VAPID_* layer, each value parsed to its setting's type."""
    environ = os.environ if environ is None else environ
    layer: dict[str, dict[str, Any]] = {}
    for name, (section, key, parse) in _ENV_MAPPING.items():
        raw = environ.get(name)
        if raw is None:
            continue
        try:
            layer.setdefault(section, {})[key] = parse(raw)
        except ValueError as e:
            raise ConfigError(f"{name}={raw!r} is not valid: {e}", {"env": name}) from e
    return layer


def _merge_layers(layers: list[dict[str, Any]]) -> dict[str, Any]:
    """Later layers win key by key inside each [section]."""
    merged: dict[str, Any] = {}
    for layer in layers:
        for section, values in layer.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section] = {**merged[section], **values}
            else:
                merged[section] = values
    return merged


def _expand_env(value: Any) -> Any:
    """Replace ${VAR} references in strings; unset variables become ""."""
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    return value
