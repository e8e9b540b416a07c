"""Durable request store with SQLite backend."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from rishvan.config import DEFAULT_DB_PATH
from rishvan.schemas import Request, RequestStatus

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing database rejects an operation."""

    pass


def _now_micros() -> int:
    return int(time.time() * 1000000)


def _to_datetime(micros: int | None) -> datetime | None:
    if micros is None:
        return None
    return datetime.fromtimestamp(micros / 1000000, tz=timezone.utc)


class RequestStore:
    """Keyed table of requests, safe for concurrent use from many threads."""

    def __init__(self, db_path: Path | str | None = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._lock = threading.Lock()

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._init_db()
        except sqlite3.Error as e:
            raise StoreError(f"failed to open request database {self.db_path}: {e}") from e

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_name TEXT NOT NULL DEFAULT '',
                    app_name TEXT NOT NULL,
                    question TEXT NOT NULL,
                    response TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at INTEGER NOT NULL,
                    responded_at INTEGER
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_requests_source ON requests (source_name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_requests_app ON requests (app_name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_requests_status ON requests (status)")
            conn.commit()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_request(row: sqlite3.Row) -> Request:
        return Request(
            id=row["id"],
            source_name=row["source_name"],
            app_name=row["app_name"],
            question=row["question"],
            response=row["response"],
            status=RequestStatus(row["status"]),
            created_at=_to_datetime(row["created_at"]),
            responded_at=_to_datetime(row["responded_at"]),
        )

    def create(self, source_name: str, app_name: str, question: str) -> Request:
        """Insert a pending request and return it with its new identifier.

        AUTOINCREMENT keeps identifiers monotonic and never reused, even
        after rows are deleted.
        """
        now = _now_micros()
        try:
            with self._lock:
                with self._get_connection() as conn:
                    cursor = conn.execute(
                        """
                        INSERT INTO requests (source_name, app_name, question, status, created_at)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (source_name, app_name, question, RequestStatus.PENDING.value, now),
                    )
                    conn.commit()
                    request_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise StoreError(f"failed to create request: {e}") from e

        logger.debug(f"Stored request {request_id} from {source_name}/{app_name}")
        return Request(
            id=request_id,
            source_name=source_name,
            app_name=app_name,
            question=question,
            created_at=_to_datetime(now),
        )

    def mark_responded(self, request_id: int, response: str) -> bool:
        """Record the answer if, and only if, the request is still pending.

        Returns:
            True if exactly one pending record was updated, False if the
            identifier is unknown or the request was already answered
        """
        try:
            with self._lock:
                with self._get_connection() as conn:
                    cursor = conn.execute(
                        """
                        UPDATE requests
                        SET response = ?, status = ?, responded_at = ?
                        WHERE id = ? AND status = ?
                        """,
                        (
                            response,
                            RequestStatus.RESPONDED.value,
                            _now_micros(),
                            request_id,
                            RequestStatus.PENDING.value,
                        ),
                    )
                    conn.commit()
                    return cursor.rowcount == 1
        except sqlite3.Error as e:
            raise StoreError(f"failed to update request {request_id}: {e}") from e

    def get(self, request_id: int) -> Request | None:
        """Fetch a single request, or None if the identifier is unknown."""
        try:
            with self._lock:
                with self._get_connection() as conn:
                    row = conn.execute(
                        "SELECT * FROM requests WHERE id = ?",
                        (request_id,),
                    ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"failed to read request {request_id}: {e}") from e

        return self._row_to_request(row) if row is not None else None

    def list_requests(
        self,
        source_name: str | None = None,
        app_name: str | None = None,
        status: RequestStatus | None = None,
    ) -> list[Request]:
        """List requests matching the given filters, newest first."""
        clauses = []
        params: list[str] = []
        if source_name:
            clauses.append("source_name = ?")
            params.append(source_name)
        if app_name:
            clauses.append("app_name = ?")
            params.append(app_name)
        if status:
            clauses.append("status = ?")
            params.append(RequestStatus(status).value)

        query = "SELECT * FROM requests"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC"

        try:
            with self._lock:
                with self._get_connection() as conn:
                    rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"failed to list requests: {e}") from e

        return [self._row_to_request(row) for row in rows]
