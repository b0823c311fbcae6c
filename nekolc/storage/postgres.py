from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from nekolc.logging import get_logger
from nekolc.storage.errors import ConstraintViolation, StorageError
from nekolc.storage.models import (
    IssuedTokenRecord,
    TokenKind,
    ensure_utc,
    utc_from_unix,
)


class PostgresTokenStore:
    """Token ledger in the ``auth_token`` table.

    Subject-scoped writes take ``pg_advisory_xact_lock(hashtext(user_id))``
    inside their transaction, so issuance and bulk revocation for one subject
    commit in a single order.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self._clock = clock
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``auth_token`` table and its subject index if missing."""

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS auth_token (
                        token_hash TEXT PRIMARY KEY,
                        token_type TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        expires_at TIMESTAMPTZ NOT NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        is_revoked BOOLEAN NOT NULL DEFAULT FALSE
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS auth_token_user_idx ON auth_token (user_id)"
                )
        except psycopg.Error as exc:
            raise StorageError("failed to prepare auth_token schema") from exc

    @staticmethod
    def _lock_subject(conn, subject: str) -> None:
        conn.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (subject,))

    @staticmethod
    def _row_to_record(row: Dict[str, Any]) -> IssuedTokenRecord:
        return IssuedTokenRecord(
            token_hash=row["token_hash"],
            kind=TokenKind(row["token_type"]),
            subject=row["user_id"],
            expires_at=ensure_utc(row["expires_at"]),
            created_at=ensure_utc(row.get("created_at") or datetime.now(timezone.utc)),
            revoked=bool(row.get("is_revoked", False)),
        )

    def put(self, record: IssuedTokenRecord) -> None:
        try:
            with self._connect() as conn:
                with conn.transaction():
                    self._lock_subject(conn, record.subject)
                    conn.execute(
                        """
                        INSERT INTO auth_token (token_hash, token_type, user_id, expires_at, created_at, is_revoked)
                        VALUES (%s, %s, %s, %s, %s, FALSE)
                        """,
                        (
                            record.token_hash,
                            record.kind.value,
                            record.subject,
                            record.expires_at,
                            record.created_at,
                        ),
                    )
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "token already recorded", {"token_hash": record.token_hash}
            )
        except psycopg.Error as exc:
            raise StorageError("failed to store auth token") from exc

    def get(self, token_hash: str) -> Optional[IssuedTokenRecord]:
        now = utc_from_unix(self._clock())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT token_hash, token_type, user_id, expires_at, created_at, is_revoked
                    FROM auth_token
                    WHERE token_hash = %s AND is_revoked = FALSE AND expires_at > %s
                    """,
                    (token_hash, now),
                ).fetchone()
        except psycopg.Error as exc:
            raise StorageError("failed to read auth token") from exc
        if not row:
            return None
        return self._row_to_record(row)

    def revoke(self, token_hash: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE auth_token SET is_revoked = TRUE WHERE token_hash = %s AND is_revoked = FALSE",
                    (token_hash,),
                )
        except psycopg.Error as exc:
            raise StorageError("failed to revoke auth token") from exc

    def revoke_all_for_subject(self, subject: str) -> int:
        try:
            with self._connect() as conn:
                with conn.transaction():
                    self._lock_subject(conn, subject)
                    result = conn.execute(
                        "UPDATE auth_token SET is_revoked = TRUE WHERE user_id = %s AND is_revoked = FALSE",
                        (subject,),
                    )
                    revoked = max(result.rowcount, 0)
        except psycopg.Error as exc:
            raise StorageError("failed to revoke subject tokens") from exc
        self.logger.info("subject_tokens_revoked", subject=subject, count=revoked)
        return revoked

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
        except psycopg.Error as exc:
            self.logger.warning("postgres_ping_failed", error=str(exc))
            return False
        return True

    def close(self) -> None:
        self.pool.close()
