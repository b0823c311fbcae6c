from __future__ import annotations

import contextlib
import json
import os
import tempfile
import threading
import time
import weakref
from pathlib import Path
from typing import Callable, Iterator, Optional

from nekolc.logging import get_logger
from nekolc.storage.errors import ConstraintViolation, StorageError
from nekolc.storage.models import IssuedTokenRecord, utc_from_unix

_TOKEN_PREFIX = "token_"
_TOKEN_SUFFIX = ".json"


class FileTokenStore:
    """One JSON file per issued token under ``<base_path>/tokens``.

    Writes for a subject are serialized by an in-process lock per subject, so
    a bulk revoke and a concurrent issuance for the same subject cannot
    interleave. New records are published with an atomic link-if-absent and
    rewrites go through a temp file and ``os.replace``; readers never see a
    partially written record.
    """

    def __init__(
        self, base_path: str, *, clock: Callable[[], float] = time.time
    ) -> None:
        self.logger = get_logger(__name__)
        self.base_path = Path(base_path)
        self.token_dir = self.base_path / "tokens"
        try:
            self.token_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(
                "failed to create token directory", {"path": str(self.token_dir)}
            ) from exc
        self._clock = clock
        self._locks_guard = threading.Lock()
        # Entries vanish once no caller holds the lock
        self._subject_locks: weakref.WeakValueDictionary[str, threading.RLock] = (
            weakref.WeakValueDictionary()
        )

    def _subject_lock(self, subject: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._subject_locks.get(subject)
            if lock is None:
                lock = threading.RLock()
                self._subject_locks[subject] = lock
            return lock

    def _path_for(self, token_hash: str) -> Path:
        # Hashes are hex digests; anything else could escape the directory
        if not token_hash or not all(c in "0123456789abcdef" for c in token_hash):
            raise ValueError("token hash must be a lowercase hex digest")
        return self.token_dir / f"{_TOKEN_PREFIX}{token_hash}{_TOKEN_SUFFIX}"

    def _write_temp(self, record: IssuedTokenRecord) -> str:
        fd, tmp_path = tempfile.mkstemp(dir=str(self.token_dir), prefix=".tmp_")
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump(record.to_dict(), fh)
                fh.flush()
                os.fsync(fh.fileno())
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise
        return tmp_path

    def _read(self, path: Path) -> Optional[IssuedTokenRecord]:
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise StorageError("failed to read token record", {"path": path.name}) from exc
        try:
            return IssuedTokenRecord.from_dict(data)
        except (KeyError, ValueError) as exc:
            raise StorageError("corrupt token record", {"path": path.name}) from exc

    def _rewrite(self, path: Path, record: IssuedTokenRecord) -> None:
        tmp_path = self._write_temp(record)
        try:
            os.replace(tmp_path, path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise StorageError("failed to rewrite token record", {"path": path.name}) from exc

    def _iter_records(self) -> Iterator[tuple[Path, IssuedTokenRecord]]:
        try:
            entries = sorted(self.token_dir.iterdir())
        except OSError as exc:
            raise StorageError("failed to list token directory") from exc
        for path in entries:
            if not (path.name.startswith(_TOKEN_PREFIX) and path.name.endswith(_TOKEN_SUFFIX)):
                continue
            record = self._read(path)
            if record is not None:
                yield path, record

    def put(self, record: IssuedTokenRecord) -> None:
        path = self._path_for(record.token_hash)
        with self._subject_lock(record.subject):
            try:
                tmp_path = self._write_temp(record)
            except OSError as exc:
                raise StorageError("failed to write token record") from exc
            try:
                # link() fails if the target exists, so a hash is never overwritten
                os.link(tmp_path, path)
            except FileExistsError:
                raise ConstraintViolation(
                    "token already recorded", {"token_hash": record.token_hash}
                )
            except OSError as exc:
                raise StorageError("failed to publish token record") from exc
            finally:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)

    def get(self, token_hash: str) -> Optional[IssuedTokenRecord]:
        try:
            path = self._path_for(token_hash)
        except ValueError:
            return None
        record = self._read(path)
        if record is None or not record.is_live(utc_from_unix(self._clock())):
            return None
        return record

    def revoke(self, token_hash: str) -> None:
        try:
            path = self._path_for(token_hash)
        except ValueError:
            return
        record = self._read(path)
        if record is None:
            return
        with self._subject_lock(record.subject):
            # Re-read under the lock; a bulk revoke may have run meanwhile
            current = self._read(path)
            if current is None or current.revoked:
                return
            current.revoked = True
            self._rewrite(path, current)

    def revoke_all_for_subject(self, subject: str) -> int:
        revoked = 0
        with self._subject_lock(subject):
            for path, record in self._iter_records():
                if record.subject != subject or record.revoked:
                    continue
                record.revoked = True
                self._rewrite(path, record)
                revoked += 1
        self.logger.info("subject_tokens_revoked", subject=subject, count=revoked)
        return revoked

    def ping(self) -> bool:
        return self.token_dir.is_dir() and os.access(self.token_dir, os.W_OK)

    def close(self) -> None:
        self.logger.debug("file_token_store_closed", path=str(self.base_path))
