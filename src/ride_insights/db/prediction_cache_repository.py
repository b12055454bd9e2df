"""SQLite-backed repository for last-known-good inference answers.

Keeps one row per (athlete, query type) so cached answers survive a restart
of the host application. Rows are only ever written from live responses;
there is no expiry.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from ..models.predictions import CachedPrediction, PredictionSource, QueryType

logger = logging.getLogger(__name__)


class PredictionCacheRepository:
    """
    SQLite repository for cached predictions.

    Uses an in-memory database when no path is given, which keeps a single
    connection open for the repository's lifetime.
    """

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS prediction_cache (
            athlete_id TEXT NOT NULL,
            query_type TEXT NOT NULL,
            payload_json TEXT NOT NULL,
            computed_at TEXT NOT NULL,
            PRIMARY KEY (athlete_id, query_type)
        )
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else None
        self._memory_conn: Optional[sqlite3.Connection] = None
        if self.db_path is None:
            self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._memory_conn.row_factory = sqlite3.Row
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_table_exists()

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        if self._memory_conn is not None:
            conn = self._memory_conn
        else:
            conn = sqlite3.connect(str(self.db_path))
            conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if conn is not self._memory_conn:
                conn.close()

    def _ensure_table_exists(self):
        """Ensure the prediction_cache table exists."""
        with self._get_connection() as conn:
            conn.execute(self.CREATE_TABLE_SQL)

    def save(self, prediction: CachedPrediction) -> None:
        """Insert or replace the answer for (athlete, query type)."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO prediction_cache (athlete_id, query_type, payload_json, computed_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(athlete_id, query_type) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    computed_at = excluded.computed_at
                """,
                (
                    prediction.athlete_id,
                    prediction.query_type.value,
                    json.dumps(prediction.payload, default=str),
                    prediction.computed_at.isoformat(),
                ),
            )

    def get(self, athlete_id: str, query_type: QueryType) -> Optional[CachedPrediction]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM prediction_cache WHERE athlete_id = ? AND query_type = ?",
                (athlete_id, query_type.value),
            ).fetchone()
        return self._row_to_prediction(row) if row else None

    def list_for_athlete(self, athlete_id: str) -> List[CachedPrediction]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM prediction_cache WHERE athlete_id = ? ORDER BY query_type",
                (athlete_id,),
            ).fetchall()
        return [self._row_to_prediction(row) for row in rows]

    def delete_for_athlete(self, athlete_id: str) -> int:
        """Delete every cached answer for an athlete. Returns rows removed."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM prediction_cache WHERE athlete_id = ?",
                (athlete_id,),
            )
            deleted = cursor.rowcount
        logger.info(f"Cleared {deleted} cached predictions for athlete {athlete_id}")
        return deleted

    def close(self) -> None:
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None

    def _row_to_prediction(self, row: sqlite3.Row) -> CachedPrediction:
        return CachedPrediction(
            athlete_id=row["athlete_id"],
            query_type=QueryType(row["query_type"]),
            payload=json.loads(row["payload_json"]),
            computed_at=datetime.fromisoformat(row["computed_at"]),
            source=PredictionSource.LIVE,
        )
