"""
SQLite persistence for collected chain events.

Provides:
- One raw-event table per data kind, each row tagged with its account
- Store-side deduplication through a unique index on the event's natural key
- Newly-inserted counts, which drive the pollers' pagination
- Time-window queries for reports
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from .config import ConfigurationError
from .models import (
    Context,
    ContextData,
    NominationsResponse,
    RewardsSlashesResponse,
    Transfer,
    TransfersResponse,
)

logger = logging.getLogger(__name__)

TRANSFER_EVENTS_RAW = "transfer_events"
REWARD_SLASH_EVENTS_RAW = "reward_slash_events"
NOMINATION_EVENTS_RAW = "nomination_events"

EVENT_TABLES = (TRANSFER_EVENTS_RAW, REWARD_SLASH_EVENTS_RAW, NOMINATION_EVENTS_RAW)

TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    stash TEXT NOT NULL,
    network TEXT NOT NULL,
    description TEXT,
    event_key TEXT NOT NULL,
    block_num INTEGER,
    block_timestamp INTEGER,
    data TEXT NOT NULL,
    recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_{table}_account ON {table}(network, stash);
CREATE INDEX IF NOT EXISTS idx_{table}_timestamp ON {table}(block_timestamp);
"""

# Dedup relies on this index; the service must not start without it.
UNIQUE_INDEX_SQL = """
CREATE UNIQUE INDEX IF NOT EXISTS {table}_event_key_index
ON {table}(network, stash, event_key)
"""

INSERT_SQL = """
INSERT OR IGNORE INTO {table} (
    stash, network, description, event_key,
    block_num, block_timestamp, data, recorded_at
) VALUES (
    :stash, :network, :description, :event_key,
    :block_num, :block_timestamp, :data, :recorded_at
)
"""


class PersistenceError(Exception):
    """Raised when a store or query call fails."""
    pass


class MonitorDatabase:
    """
    SQLite database manager for raw chain events.

    Every store method returns how many records were *newly* inserted;
    re-inserting a known event is a no-op rather than an error.

    Example:
        db = MonitorDatabase("data/monitor.db")
        inserted = db.store_transfers(context, response)
    """

    def __init__(self, db_path: str = "data/monitor.db"):
        """
        Open the database and ensure schema and unique indexes.

        Args:
            db_path: Path to SQLite database file

        Raises:
            ConfigurationError: If the schema or unique indexes cannot be created
        """
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as e:
            raise ConfigurationError(
                f"Failed to set up database at {self.db_path}: {e}"
            ) from e

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table in EVENT_TABLES:
                conn.executescript(TABLE_SQL.format(table=table))
                conn.execute(UNIQUE_INDEX_SQL.format(table=table))

        logger.debug(f"Database schema ensured at {self.db_path}")

    def _insert_many(self, table: str, records: Iterable[ContextData]) -> int:
        """
        Insert context-tagged records, ignoring duplicates.

        Returns:
            Number of rows newly inserted
        """
        rows = [record.to_row() for record in records]
        if not rows:
            return 0

        try:
            with self._connection() as conn:
                before = conn.total_changes
                conn.executemany(INSERT_SQL.format(table=table), rows)
                inserted = conn.total_changes - before
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to store events in {table}: {e}") from e

        logger.debug(f"{table}: inserted {inserted} of {len(rows)} records")
        return inserted

    def store_transfers(self, context: Context, data: TransfersResponse) -> int:
        transfers = data.data.transfers or []
        return self._insert_many(
            TRANSFER_EVENTS_RAW, (ContextData(context, t) for t in transfers)
        )

    def store_rewards_slashes(
        self, context: Context, data: RewardsSlashesResponse
    ) -> int:
        events = data.data.items or []
        return self._insert_many(
            REWARD_SLASH_EVENTS_RAW, (ContextData(context, e) for e in events)
        )

    def store_nominations(self, context: Context, data: NominationsResponse) -> int:
        nominations = data.data.items or []
        return self._insert_many(
            NOMINATION_EVENTS_RAW, (ContextData(context, n) for n in nominations)
        )

    def fetch_transfers(
        self,
        contexts: Iterable[Context],
        start: int,
        end: int,
    ) -> list[ContextData]:
        """
        Get stored transfers of the given accounts within a time window.

        Args:
            contexts: Accounts to include
            start: Exclusive lower bound (UNIX seconds, block timestamp)
            end: Inclusive upper bound (UNIX seconds, block timestamp)

        Returns:
            Context-tagged transfers ordered by block timestamp
        """
        by_id = {ctx.id(): ctx for ctx in contexts}
        if not by_id:
            return []

        try:
            with self._connection() as conn:
                rows = conn.execute(
                    f"""
                    SELECT stash, network, data FROM {TRANSFER_EVENTS_RAW}
                    WHERE block_timestamp > ? AND block_timestamp <= ?
                    ORDER BY block_timestamp, id
                    """,
                    (start, end),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to query transfers: {e}") from e

        result = []
        for row in rows:
            context = by_id.get((row["stash"], row["network"]))
            if context is None:
                continue
            transfer = Transfer.model_validate(json.loads(row["data"]))
            result.append(ContextData(context, transfer))
        return result

    def count_events(self) -> dict[str, int]:
        """Number of stored rows per event table."""
        try:
            with self._connection() as conn:
                return {
                    table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                    for table in EVENT_TABLES
                }
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to count events: {e}") from e

    def count_events_by_account(self, table: str) -> dict[tuple[str, str], int]:
        """Number of stored rows per (stash, network) in one event table."""
        if table not in EVENT_TABLES:
            raise ValueError(f"Unknown event table: {table}")

        try:
            with self._connection() as conn:
                rows = conn.execute(
                    f"SELECT stash, network, COUNT(*) AS n FROM {table} "
                    "GROUP BY stash, network"
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to count events in {table}: {e}") from e
        return {(row["stash"], row["network"]): row["n"] for row in rows}
