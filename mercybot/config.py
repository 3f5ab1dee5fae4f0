from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import os
import yaml

from .models import DEFAULT_MERCY_MESSAGE


DEFAULT_TOKEN_REFERENCE = "${DISCORD_TOKEN}"
DEFAULT_STATE_FILE = Path("data") / "botdata.json"


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(slots=True)
class StorageConfig:
    state_file: Path = DEFAULT_STATE_FILE


@dataclass(slots=True)
class MercyDefaults:
    default_message: str = DEFAULT_MERCY_MESSAGE


@dataclass(slots=True)
class Config:
    token: str
    logging: LoggingConfig
    storage: StorageConfig
    mercy: MercyDefaults
    development_guild_id: Optional[int] = None


def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping.")
    return section


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"logging.level has an unknown value: {level!r}")
    return LoggingConfig(level=level)


def _parse_storage(data: Dict[str, Any]) -> StorageConfig:
    raw = data.get("state_file")
    if raw in (None, ""):
        return StorageConfig()
    return StorageConfig(state_file=Path(str(raw)))


def _parse_mercy(data: Dict[str, Any]) -> MercyDefaults:
    message = data.get("default_message", DEFAULT_MERCY_MESSAGE)
    if not isinstance(message, str) or not message.strip():
        raise ConfigError("mercy.default_message must be a non-empty string.")
    if len(message) > 2000:
        raise ConfigError("mercy.default_message must be at most 2000 characters.")
    return MercyDefaults(default_message=message)


def _parse_guild_id(raw: Any) -> Optional[int]:
    if raw in (None, "", 0):
        return None
    try:
        guild_id = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            "development_guild_id must be an integer guild ID or null."
        ) from exc
    if guild_id <= 0:
        raise ConfigError("development_guild_id must be a positive integer.")
    return guild_id


def load_config(path: Path) -> Config:
    """Load ``path`` if it exists; a missing file means all defaults apply."""
    data: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError("Configuration file must contain a mapping at the root.")
        data = loaded or {}

    token_raw = str(data.get("token") or DEFAULT_TOKEN_REFERENCE)
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")

    return Config(
        token=token,
        logging=_parse_logging(_section(data, "logging")),
        storage=_parse_storage(_section(data, "storage")),
        mercy=_parse_mercy(_section(data, "mercy")),
        development_guild_id=_parse_guild_id(data.get("development_guild_id")),
    )
