"""
Key-Value Storage Backends
String keys, whole-value overwrite, total-capacity quota.

Every backend honours the same contract:
    get(key)        -> str or None
    set(key, value) -> None, raises StorageQuotaExceeded when the write would
                       push the total stored size over the quota (the old
                       value is left untouched)
    remove(key)     -> None, missing keys are ignored

Size is counted as UTF-8 bytes of key + value for every stored entry.
"""

import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r'^[A-Za-z0-9_.-]+$')


class StorageQuotaExceeded(Exception):
    """A write was rejected because the store is full."""

    def __init__(self, key: str, required: int, quota: int):
        self.key = key
        self.required = required
        self.quota = quota
        super().__init__(f"Writing '{key}' needs {required} bytes, quota is {quota}")


def entry_size(key: str, value: str) -> int:
    return len(key.encode('utf-8')) + len(value.encode('utf-8'))


class KeyValueStore(ABC):
    """Base class: quota bookkeeping shared by all backends."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes

    def _check_quota(self, key: str, value: str, others_size: int) -> None:
        if self.quota_bytes is None:
            return
        required = others_size + entry_size(key, value)
        if required > self.quota_bytes:
            logger.warning(f"Quota exceeded writing '{key}': {required} > {self.quota_bytes} bytes")
            raise StorageQuotaExceeded(key, required, self.quota_bytes)

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


# =============================================================================
# IN-MEMORY
# =============================================================================

class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Nothing survives the process; used by tests."""

    def __init__(self, quota_bytes: Optional[int] = None, initial: Optional[Dict[str, str]] = None):
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        others = sum(entry_size(k, v) for k, v in self._data.items() if k != key)
        self._check_quota(key, value, others)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def total_size(self) -> int:
        return sum(entry_size(k, v) for k, v in self._data.items())


# =============================================================================
# JSON FILES
# =============================================================================

class FileKeyValueStore(KeyValueStore):
    """
    One file per key inside a directory (<key>.json).
    Writes go to a temp file first and are swapped in with os.replace, so a
    value is either fully old or fully new.
    """

    SUFFIX = '.json'

    def __init__(self, directory, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}{self.SUFFIX}"

    def _others_size(self, key: str) -> int:
        total = 0
        for path in self.directory.glob(f"*{self.SUFFIX}"):
            other = path.name[:-len(self.SUFFIX)]
            if other != key:
                total += len(other.encode('utf-8')) + path.stat().st_size
        return total

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding='utf-8')

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        self._check_quota(key, value, self._others_size(key))
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp, path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# =============================================================================
# POSTGRESQL
# =============================================================================

class PostgresKeyValueStore(KeyValueStore):
    """
    Single-table store:
        kv_store(key TEXT PRIMARY KEY, value TEXT NOT NULL, updated_at TIMESTAMPTZ)
    Each operation runs in its own transaction; the quota check and the
    upsert share one transaction.
    """

    def __init__(self, database_url: str, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.database_url = database_url

    @contextmanager
    def _cursor(self):
        """Cursor in a fresh connection; commit on success, rollback on error, always close."""
        conn = None
        try:
            conn = psycopg2.connect(self.database_url)
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cur
            finally:
                cur.close()
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
                logger.debug(f"kv_store transaction rolled back: {e}")
            raise
        finally:
            if conn:
                conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
        logger.info("kv_store table ready")

    def get(self, key: str) -> Optional[str]:
        with self._cursor() as cur:
            cur.execute("SELECT value FROM kv_store WHERE key = %s", (key,))
            row = cur.fetchone()
        return row['value'] if row else None

    def set(self, key: str, value: str) -> None:
        with self._cursor() as cur:
            if self.quota_bytes is not None:
                cur.execute("""
                    SELECT COALESCE(SUM(octet_length(key) + octet_length(value)), 0) AS total
                    FROM kv_store WHERE key <> %s
                """, (key,))
                self._check_quota(key, value, int(cur.fetchone()['total']))
            cur.execute("""
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (%s, %s, NOW())
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
            """, (key, value))

    def remove(self, key: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM kv_store WHERE key = %s", (key,))


# =============================================================================
# JSON HELPERS
# =============================================================================

def load_json(kv: KeyValueStore, key: str, default=None):
    """
    Read and parse a JSON value. A missing key or a value that does not parse
    both come back as `default` (the parse failure is logged).
    """
    raw = kv.get(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Stored value under '{key}' is not valid JSON, treating as absent: {e}")
        return default


def dump_json(value) -> str:
    """Compact serialization used for every stored value."""
    return json.dumps(value, separators=(',', ':'), ensure_ascii=False)


def save_json(kv: KeyValueStore, key: str, value) -> None:
    """Serialize and write. StorageQuotaExceeded propagates to the caller."""
    kv.set(key, dump_json(value))
