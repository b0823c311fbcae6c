from __future__ import annotations

import os
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nekolc.logging import get_logger

logger = get_logger(__name__)

# Symmetric algorithms accepted for signing bearer tokens
HMAC_ALGORITHMS = {"HS256", "HS384", "HS512"}


class StorageBackend(str, Enum):
    """Token ledger backends selectable via DATABASE_TYPE."""

    FILE = "file"
    POSTGRES = "postgres"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process configuration for the auth subsystem."""

    auth_enabled: bool = env_field(
        False,
        "ENABLE_AUTH",
        description="Administrative switch; when off every auth operation answers not_implemented",
    )
    jwt_secret: Optional[str] = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("NekoLcServer", "JWT_ISSUER")
    jwt_algorithm: str = env_field("HS256", "JWT_ALGORITHM")
    access_token_ttl_seconds: int = env_field(3600, "TOKEN_EXPIRATION_SEC")
    refresh_token_ttl_days: int = env_field(30, "REFRESH_TOKEN_EXPIRATION_DAYS")
    replay_window_seconds: int = env_field(
        300,
        "REPLAY_WINDOW_SECONDS",
        description="Accepted clock distance for device signature assertions",
    )
    storage_backend: StorageBackend = env_field(StorageBackend.FILE, "DATABASE_TYPE")
    storage_path: str = env_field("./data", "STORAGE_PATH")
    database_url: str = env_field(
        "postgresql://localhost:5432/nekolc", "DATABASE_URL"
    )
    auth_username: str | None = env_field(None, "AUTH_USERNAME")
    auth_password: str | None = env_field(None, "AUTH_PASSWORD")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("storage_backend")
    @classmethod
    def _validate_backend(cls, value: StorageBackend) -> StorageBackend:
        return StorageBackend(value)

    @field_validator("jwt_algorithm")
    @classmethod
    def _validate_algorithm(cls, value: str) -> str:
        normalized = (value or "").upper()
        if normalized not in HMAC_ALGORITHMS:
            raise ValueError(
                f"jwt_algorithm must be one of {', '.join(sorted(HMAC_ALGORITHMS))}"
            )
        return normalized

    @field_validator(
        "access_token_ttl_seconds", "refresh_token_ttl_days", "replay_window_seconds"
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if not self.jwt_secret:
            self.jwt_secret = _load_or_create_secret(Path(self.storage_path))
        return self


def _load_or_create_secret(root: Path) -> str:
    """Read `<root>/.jwt_secret`, generating and persisting it (0600) if absent."""
    secret_path = root / ".jwt_secret"

    try:
        root.mkdir(parents=True, exist_ok=True)
    except Exception as exc:
        logger.warning("jwt_secret_dir_setup", error=str(exc), path=str(root))

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
            if persisted and len(persisted) >= 32:
                return persisted
        except Exception as exc:
            logger.error(
                "jwt_secret_read_failed", error=str(exc), path=str(secret_path)
            )

    generated = secrets.token_urlsafe(64)
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(root), prefix=".jwt_secret_", suffix=".tmp"
        )
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.replace(tmp_path, str(secret_path))
    except Exception as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        logger.error(
            "jwt_secret_persist_failed", error=str(exc), path=str(secret_path)
        )
        raise RuntimeError(
            "Unable to persist JWT secret; set JWT_SECRET or make STORAGE_PATH writable"
        ) from exc
    logger.info("jwt_secret_generated", path=str(secret_path))
    return generated


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
