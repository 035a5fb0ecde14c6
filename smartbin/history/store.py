from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List

from ..ai.types import (
    SOURCE_FALLBACK,
    SOURCE_MANUAL,
    SOURCE_REMOTE,
    WASTE_CATEGORIES,
    normalize_category,
)
from ..errors import InvalidSource, StorageReadFailed, StorageUnavailable, StorageWriteFailed


logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"
RESULT_SOURCES = frozenset({SOURCE_REMOTE, SOURCE_FALLBACK, SOURCE_MANUAL})

CREATE_SCAN_HISTORY_TABLE = """
CREATE TABLE IF NOT EXISTS scan_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    createdAt TEXT NOT NULL,
    source TEXT
)
"""

CREATE_SCAN_HISTORY_INDEX = """
CREATE INDEX IF NOT EXISTS idx_scan_history_created
ON scan_history (createdAt DESC, id DESC)
"""


@dataclass(frozen=True)
class ScanRecord:
    id: int
    category: str
    created_at: str
    source: str | None = None

    def created_at_datetime(self) -> datetime:
        return parse_timestamp(self.created_at)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ``createdAt`` value into an aware UTC datetime.

    Rows written before timestamps carried an offset hold naive
    ``YYYY-MM-DD HH:MM:SS`` strings taken from a UTC clock; those are read as UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_local_timestamp(value: str, tz: tzinfo | None = None) -> str:
    """Render a stored timestamp as ``YYYY-MM-DD HH:MM`` in the viewer's zone."""
    try:
        moment = parse_timestamp(value)
    except ValueError:
        return value
    return moment.astimezone(tz).strftime("%Y-%m-%d %H:%M")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResultStore:
    """Append-only SQLite ledger of scan results.

    A file-backed store opens one connection per operation so readers never
    wait on the writer beyond SQLite's own locking. ``":memory:"`` keeps a
    single shared connection guarded by the store lock.
    """

    def __init__(
        self,
        database_path: Path | str = MEMORY_DATABASE,
        *,
        categories: Iterable[str] = WASTE_CATEGORIES,
        clock: Callable[[], datetime] = _utc_now,
        busy_timeout: float = 5.0,
    ) -> None:
        self._path = (
            MEMORY_DATABASE if str(database_path) == MEMORY_DATABASE else Path(database_path)
        )
        self._categories = tuple(categories)
        self._clock = clock
        self._busy_timeout = busy_timeout
        self._lock = threading.RLock()
        self._memory_conn: sqlite3.Connection | None = None
        self._initialized = False
        self._last_created_at: datetime | None = None

    @property
    def database_path(self) -> Path | str:
        return self._path

    @property
    def categories(self) -> tuple[str, ...]:
        return self._categories

    def initialize(self) -> None:
        with self._lock:
            try:
                if self._path == MEMORY_DATABASE:
                    if self._memory_conn is None:
                        self._memory_conn = sqlite3.connect(
                            MEMORY_DATABASE, check_same_thread=False
                        )
                else:
                    self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._connect() as conn:
                    if self._memory_conn is None:
                        conn.execute("PRAGMA journal_mode=WAL")
                    with conn:
                        conn.execute(CREATE_SCAN_HISTORY_TABLE)
                        self._ensure_source_column(conn)
                        conn.execute(CREATE_SCAN_HISTORY_INDEX)
                    row = conn.execute(
                        "SELECT createdAt FROM scan_history ORDER BY createdAt DESC, id DESC LIMIT 1"
                    ).fetchone()
            except (sqlite3.Error, OSError) as exc:
                logger.exception("Failed to initialise scan history at %s", self._path)
                raise StorageUnavailable(
                    f"Unable to open scan history at {self._path}: {exc}"
                ) from exc

            self._last_created_at = None
            if row is not None:
                try:
                    self._last_created_at = parse_timestamp(row[0])
                except ValueError:
                    logger.warning("Ignoring unparseable latest createdAt=%r", row[0])
            self._initialized = True
        logger.info("Scan history initialised path=%s", self._path)

    def append(self, category: str, source: str | None = None) -> ScanRecord:
        canonical = normalize_category(category, self._categories)
        if source is not None and source not in RESULT_SOURCES:
            raise InvalidSource(source)
        with self._lock:
            self._require_initialized()
            created_at = self._next_timestamp()
            stamp = created_at.isoformat(timespec="microseconds")
            try:
                with self._connect() as conn:
                    with conn:
                        cursor = conn.execute(
                            "INSERT INTO scan_history (type, createdAt, source) VALUES (?, ?, ?)",
                            (canonical, stamp, source),
                        )
                        record_id = int(cursor.lastrowid)
            except sqlite3.Error as exc:
                logger.exception("Failed to record scan category=%s", canonical)
                raise StorageWriteFailed(f"Unable to record {canonical} scan: {exc}") from exc
            self._last_created_at = created_at

        logger.info(
            "Scan recorded id=%d category=%s source=%s created_at=%s",
            record_id,
            canonical,
            source,
            stamp,
        )
        return ScanRecord(id=record_id, category=canonical, created_at=stamp, source=source)

    def list(self, query: str | None = None) -> List[ScanRecord]:
        """Return records newest first, optionally filtered by category substring."""
        sql = "SELECT id, type, createdAt, source FROM scan_history"
        params: tuple[str, ...] = ()
        needle = (query or "").strip().lower()
        if needle:
            sql += " WHERE instr(lower(type), ?) > 0"
            params = (needle,)
        sql += " ORDER BY createdAt DESC, id DESC"

        self._require_initialized()
        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to read scan history query=%r", query)
            raise StorageReadFailed(f"Unable to read scan history: {exc}") from exc
        return [
            ScanRecord(id=row[0], category=row[1], created_at=row[2], source=row[3])
            for row in rows
        ]

    def summarize(self) -> Dict[str, int]:
        self._require_initialized()
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT type, COUNT(*) FROM scan_history GROUP BY type"
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to summarise scan history")
            raise StorageReadFailed(f"Unable to summarise scan history: {exc}") from exc
        counts: Dict[str, int] = {category: 0 for category in self._categories}
        for category, count in rows:
            counts[category] = counts.get(category, 0) + int(count)
        counts["total"] = sum(counts.values())
        return counts

    def close(self) -> None:
        with self._lock:
            if self._memory_conn is not None:
                self._memory_conn.close()
                self._memory_conn = None
            self._initialized = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self._path == MEMORY_DATABASE:
            with self._lock:
                if self._memory_conn is None:
                    raise sqlite3.OperationalError("in-memory scan history is closed")
                yield self._memory_conn
            return
        conn = sqlite3.connect(str(self._path), timeout=self._busy_timeout)
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_source_column(self, conn: sqlite3.Connection) -> None:
        columns = [row[1] for row in conn.execute("PRAGMA table_info(scan_history)")]
        if "source" not in columns:
            logger.info("Adding source column to legacy scan_history table")
            conn.execute("ALTER TABLE scan_history ADD COLUMN source TEXT")

    def _next_timestamp(self) -> datetime:
        now = self._clock().astimezone(timezone.utc)
        if self._last_created_at is not None and now < self._last_created_at:
            return self._last_created_at
        return now

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise StorageUnavailable("Scan history has not been initialised")


__all__ = [
    "ResultStore",
    "ScanRecord",
    "MEMORY_DATABASE",
    "parse_timestamp",
    "format_local_timestamp",
]
