"""Parley application configuration.

Loads settings from two YAML files:
  * parley.settings.yaml: non-secret configuration
  * parley.secrets.yaml: secrets (never committed)

Either path can be overridden with the ``PARLEY_SETTINGS`` and
``PARLEY_SECRETS`` environment variables. Missing files fall back to the
defaults declared on the models below.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("parley.settings.yaml")
SECRETS_FILE  = Path("parley.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class DatabaseSettings(BaseModel):
    """DuckDB file backing the chat store (``:memory:`` for ephemeral runs)."""
    path: str = "parley.duckdb"


class AuthSettings(BaseModel):
    token_expire_minutes: int = Field(default=7 * 24 * 60, ge=1)
    bcrypt_rounds:        int = Field(default=12, ge=4, le=31)


class ChatSettings(BaseModel):
    max_message_length:     int = 1000
    max_group_name_length:  int = 50
    max_description_length: int = 200
    chats_page_size:        int = 20
    messages_page_size:     int = 50
    max_page_size:          int = 100
    user_search_limit:      int = 10
    max_frame_bytes:        int = 64 * 1024


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_path = Path(settings_path or os.environ.get("PARLEY_SETTINGS", SETTINGS_FILE))
    secrets_path  = Path(secrets_path or os.environ.get("PARLEY_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    if config.secrets.jwt.secret_key == JWTSecrets().secret_key:
        logger.warning("Using the default JWT secret; set jwt.secret_key in %s", secrets_path)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace (or with ``None``, forget) the process configuration."""
    global _config
    _config = config
