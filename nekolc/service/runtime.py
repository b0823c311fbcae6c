from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from nekolc.config import Settings, StorageBackend, get_settings, reset_settings_cache
from nekolc.logging import get_logger
from nekolc.service.auth import AuthService, TokenStore
from nekolc.service.claims import ClaimsCodec
from nekolc.service.credentials import StaticCredentialBackend
from nekolc.service.issuer import TokenIssuer
from nekolc.service.replay import ReplayGuard
from nekolc.storage.file import FileTokenStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a DSN for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_store(settings: Settings) -> TokenStore:
    """Create the token ledger selected by ``settings.storage_backend``."""
    backend = StorageBackend(settings.storage_backend)
    if backend is StorageBackend.FILE:
        return FileTokenStore(settings.storage_path)
    if backend is StorageBackend.POSTGRES:
        # Imported lazily so the file backend runs without a Postgres driver
        from nekolc.storage.postgres import PostgresTokenStore

        return PostgresTokenStore(settings.database_url)
    raise ValueError(f"unsupported storage type: {settings.storage_backend}")


class Runtime:
    """Holds the process-wide service instances for the FastAPI app."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        backend = StorageBackend(self.settings.storage_backend).value
        logger.info(
            "runtime_init_started",
            auth_enabled=self.settings.auth_enabled,
            store_type=backend,
        )
        try:
            self.store = build_store(self.settings)
            logger.info(
                "runtime_store_initialized",
                store_type=backend,
                location=(
                    self.settings.storage_path
                    if backend == StorageBackend.FILE.value
                    else _mask_url_password(self.settings.database_url)
                ),
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=backend,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        # The secret is read once here and handed to each component
        secret = self.settings.jwt_secret
        self.codec = ClaimsCodec(
            secret,
            issuer=self.settings.jwt_issuer,
            algorithm=self.settings.jwt_algorithm,
        )
        self.replay_guard = ReplayGuard(
            secret, window_seconds=self.settings.replay_window_seconds
        )
        self.issuer = TokenIssuer(
            self.codec,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_days=self.settings.refresh_token_ttl_days,
        )
        self.auth = AuthService(
            self.store,
            self.codec,
            self.issuer,
            self.replay_guard,
            StaticCredentialBackend.from_settings(self.settings),
            enabled=self.settings.auth_enabled,
        )

    def close(self) -> None:
        try:
            self.store.close()
        except Exception as exc:
            logger.warning("runtime_store_close_failed", error=str(exc))


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton with double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def shutdown_runtime() -> None:
    """Close the Runtime singleton's store and drop it."""
    global runtime
    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        runtime = None


def reset_runtime_for_tests() -> None:
    """Drop the Runtime singleton and cached settings for isolated test runs."""
    shutdown_runtime()
    reset_settings_cache()
