"""
Usage ledger.

Append-only collection of usage records. Two implementations share one
contract: an in-memory list and a SQLite table.
"""

import sqlite3
import threading
from datetime import datetime
from typing import Iterable, List, Optional

from .._logging import get_logger
from ..core.errors import IOFailure
from .db import get_connection
from .models import LedgerQuery, StatusFilter, UsageRecord, parse_timestamp

logger = get_logger("PromptLedger.Ledger")

_COLUMNS = (
    "timestamp, model, prompt_ref, tokens, cost, duration_ms, "
    "success, error, input, response"
)


def _fold_case(value):
    return value.lower() if isinstance(value, str) else value


def _newest_first(records: List[UsageRecord], query: LedgerQuery) -> List[UsageRecord]:
    # Ties on timestamp go to the later insertion
    indexed = [(record.timestamp, seq, record) for seq, record in enumerate(records)]
    indexed.sort(key=lambda item: (item[0], item[1]), reverse=True)
    matched = [record for _, _, record in indexed if query.matches(record)]
    return matched[:query.limit]


class InMemoryUsageLedger:
    """List-backed ledger. Appends are serialized by a lock and cannot fail."""

    def __init__(self, records: Optional[Iterable[UsageRecord]] = None):
        self._lock = threading.Lock()
        self._records: List[UsageRecord] = list(records or [])

    def append(self, record: UsageRecord) -> None:
        """Append a single record."""
        with self._lock:
            self._records.append(record)

    def append_many(self, records: Iterable[UsageRecord]) -> None:
        """Append a batch of records atomically."""
        batch = list(records)
        with self._lock:
            self._records.extend(batch)

    def records(self) -> List[UsageRecord]:
        """Every record in insertion order."""
        with self._lock:
            return list(self._records)

    def query(self, query: Optional[LedgerQuery] = None) -> List[UsageRecord]:
        """Filtered records, most recent first, bounded by query.limit."""
        return _newest_first(self.records(), query or LedgerQuery())

    def prune(self, before: datetime) -> int:
        """Drop records older than `before`; returns the number removed."""
        cutoff = parse_timestamp(before)
        with self._lock:
            kept = [r for r in self._records if r.timestamp >= cutoff]
            removed = len(self._records) - len(kept)
            self._records = kept
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SQLiteUsageLedger:
    """SQLite-backed ledger.

    One connection per call; each append runs in its own transaction so
    concurrent appends never interleave partial records.
    """

    def __init__(self, db_path: str = "ledger.db"):
        """Initialize the ledger and create the table if needed.

        Args:
            db_path: Path to SQLite database file

        Raises:
            IOFailure: If the database cannot be opened
        """
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self.initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        try:
            return get_connection(self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise IOFailure(f"Ledger database unavailable: {e}") from e

    def initialize_schema(self) -> None:
        """Create the usage_record table if it doesn't exist.

        No UPDATE is ever issued against this table; the only DELETE is the
        retention sweep in prune().
        """
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_record (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt_ref TEXT,
                    tokens INTEGER NOT NULL DEFAULT 0,
                    cost REAL NOT NULL DEFAULT 0,
                    duration_ms INTEGER NOT NULL DEFAULT 0,
                    success INTEGER NOT NULL,
                    error TEXT,
                    input TEXT,
                    response TEXT
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise IOFailure(f"Failed to initialize ledger schema: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _row(record: UsageRecord) -> tuple:
        return (
            record.timestamp.isoformat(timespec="microseconds"),
            record.model,
            record.prompt_ref,
            record.tokens,
            float(record.cost),
            record.duration_ms,
            int(record.success),
            record.error,
            record.input,
            record.response,
        )

    @staticmethod
    def _record(row: tuple) -> UsageRecord:
        return UsageRecord(
            timestamp=datetime.fromisoformat(row[0]),
            model=row[1],
            prompt_ref=row[2],
            tokens=row[3],
            cost=row[4],
            duration_ms=row[5],
            success=bool(row[6]),
            error=row[7],
            input=row[8],
            response=row[9],
        )

    def append(self, record: UsageRecord) -> None:
        """Insert a single record into the append-only ledger.

        Raises:
            IOFailure: If the database is unavailable
        """
        self.append_many([record])

    def append_many(self, records: Iterable[UsageRecord]) -> None:
        """Insert multiple records in a single transaction.

        Raises:
            IOFailure: If the database is unavailable; nothing is written
        """
        rows = [self._row(record) for record in records]
        if not rows:
            return

        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    conn.executemany(
                        f"INSERT INTO usage_record ({_COLUMNS}) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as e:
                raise IOFailure(f"Failed to append usage record: {e}") from e
            finally:
                conn.close()
        logger.debug("Appended %d usage record(s)", len(rows))

    def records(self) -> List[UsageRecord]:
        """Every record in insertion order."""
        conn = self._connect()
        try:
            cursor = conn.execute(f"SELECT {_COLUMNS} FROM usage_record ORDER BY id ASC")
            return [self._record(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise IOFailure(f"Failed to read usage records: {e}") from e
        finally:
            conn.close()

    def query(self, query: Optional[LedgerQuery] = None) -> List[UsageRecord]:
        """Filtered records, most recent first, bounded by query.limit.

        Args:
            query: Free-text search, status filter and limit

        Returns:
            List of records ordered by timestamp (newest first)
        """
        query = query or LedgerQuery()
        sql = f"SELECT {_COLUMNS} FROM usage_record"
        params: list = []
        conditions = []

        if query.status is StatusFilter.SUCCESS:
            conditions.append("success = 1")
        elif query.status is StatusFilter.ERROR:
            conditions.append("success = 0")
        if query.search:
            needle = query.search.lower()
            conditions.append(
                "(instr(fold_case(coalesce(prompt_ref, '')), ?) > 0"
                " OR instr(fold_case(model), ?) > 0"
                " OR instr(fold_case(coalesce(input, '')), ?) > 0)"
            )
            params.extend([needle, needle, needle])

        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(query.limit)

        conn = self._connect()
        try:
            # SQLite lower() folds ASCII only; match LedgerQuery.matches instead
            conn.create_function("fold_case", 1, _fold_case, deterministic=True)
            cursor = conn.execute(sql, params)
            return [self._record(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise IOFailure(f"Failed to query usage records: {e}") from e
        finally:
            conn.close()

    def prune(self, before: datetime) -> int:
        """Delete records older than `before`; returns the number removed."""
        cutoff = parse_timestamp(before).isoformat(timespec="microseconds")
        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM usage_record WHERE timestamp < ?", (cutoff,)
                    )
                removed = cursor.rowcount
            except sqlite3.Error as e:
                raise IOFailure(f"Failed to prune usage records: {e}") from e
            finally:
                conn.close()
        if removed:
            logger.info("Pruned %d usage record(s) older than %s", removed, cutoff)
        return removed

    def __len__(self) -> int:
        conn = self._connect()
        try:
            return conn.execute("SELECT COUNT(*) FROM usage_record").fetchone()[0]
        except sqlite3.Error as e:
            raise IOFailure(f"Failed to count usage records: {e}") from e
        finally:
            conn.close()
