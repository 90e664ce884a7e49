"""SQLite store for mailbox state, extracted images and their analyses."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional

from loguru import logger

from mailvision.application.ports.image_store import ImageStore
from mailvision.domain.entities.image_record import ImageRecord
from mailvision.domain.entities.mailbox_state import MailboxState
from mailvision.domain.errors import PersistenceError
from mailvision.domain.models import AnalysisResult, AnalysisStatus


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteImageStore(ImageStore):
    """SQLite-backed ImageStore. Every call runs in its own committed transaction."""

    def __init__(self, db_path: str | Path = "data/mailvision.db"):
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"cannot create {self.db_path.parent}: {e}") from e

        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS mailbox_states (
                    email TEXT PRIMARY KEY,
                    id TEXT NOT NULL,
                    messages_count INTEGER NOT NULL DEFAULT 0,
                    size INTEGER NOT NULL DEFAULT 0,
                    last_counted_uid INTEGER NOT NULL DEFAULT 0,
                    last_seen_uid INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS images (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    uid INTEGER NOT NULL,
                    name TEXT,
                    data BLOB NOT NULL,
                    size INTEGER NOT NULL,
                    message_date TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_images_email_uid
                    ON images(email, uid);

                CREATE TABLE IF NOT EXISTS image_analyses (
                    image_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL CHECK(status IN ('succeeded','failed')),
                    caption TEXT,
                    result_json TEXT,
                    error TEXT,
                    analyzed_at TEXT NOT NULL,

                    FOREIGN KEY(image_id) REFERENCES images(id)
                );
            """)
            logger.info(f"SQLite database initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # Mailbox state

    def get_mailbox_state(self, email: str) -> Optional[MailboxState]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM mailbox_states WHERE email = ?",
                (email,),
            ).fetchone()

        if row is None:
            return None
        return MailboxState(
            email=row["email"],
            id=row["id"],
            messages_count=row["messages_count"],
            size=row["size"],
            last_counted_uid=row["last_counted_uid"],
            last_seen_uid=row["last_seen_uid"],
        )

    def save_mailbox_state(self, state: MailboxState) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO mailbox_states
                       (email, id, messages_count, size, last_counted_uid, last_seen_uid, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(email) DO UPDATE SET
                       messages_count = excluded.messages_count,
                       size = excluded.size,
                       last_counted_uid = excluded.last_counted_uid,
                       last_seen_uid = excluded.last_seen_uid,
                       updated_at = excluded.updated_at""",
                (
                    state.email,
                    state.id,
                    state.messages_count,
                    state.size,
                    state.last_counted_uid,
                    state.last_seen_uid,
                    now,
                ),
            )

    # Images

    def insert_image(self, record: ImageRecord) -> None:
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO images (id, email, uid, name, data, size, message_date, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.email,
                    record.uid,
                    record.name,
                    sqlite3.Binary(record.data),
                    record.size_bytes,
                    record.message_date.isoformat() if record.message_date else None,
                    record.created_at.isoformat(),
                ),
            )
        logger.debug(f"Stored image {record.name or record.id} from UID {record.uid} ({record.size_bytes} bytes)")

    def max_image_uid(self, email: str) -> Optional[int]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT MAX(uid) AS max_uid FROM images WHERE email = ?",
                (email,),
            ).fetchone()
        return row["max_uid"]

    def has_image(self, email: str, uid: int) -> bool:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM images WHERE email = ? AND uid = ? LIMIT 1",
                (email, uid),
            ).fetchone()
        return row is not None

    def list_images(self, email: str, limit: int = 20) -> list[ImageRecord]:
        """Most recently stored images first."""
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT * FROM images
                   WHERE email = ?
                   ORDER BY uid DESC, created_at DESC
                   LIMIT ?""",
                (email, limit),
            ).fetchall()

        return [
            ImageRecord(
                email=row["email"],
                uid=row["uid"],
                data=bytes(row["data"]),
                message_date=_parse_ts(row["message_date"]),
                name=row["name"],
                created_at=_parse_ts(row["created_at"]),
                id=row["id"],
            )
            for row in rows
        ]

    # Analyses

    def save_analysis(
        self,
        record: ImageRecord,
        result: Optional[AnalysisResult],
        error: Optional[str] = None,
    ) -> None:
        status = AnalysisStatus.SUCCEEDED if result is not None else AnalysisStatus.FAILED
        analyzed_at = result.analyzed_at if result is not None else datetime.now(timezone.utc)

        with self._connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO image_analyses
                   (image_id, status, caption, result_json, error, analyzed_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    status.value,
                    result.caption if result is not None else None,
                    result.model_dump_json() if result is not None else None,
                    error,
                    analyzed_at.isoformat(),
                ),
            )

    def get_analysis(self, image_id: str) -> Optional[dict]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM image_analyses WHERE image_id = ?",
                (image_id,),
            ).fetchone()

        if row is None:
            return None
        result = AnalysisResult.model_validate_json(row["result_json"]) if row["result_json"] else None
        return {
            "image_id": row["image_id"],
            "status": AnalysisStatus(row["status"]),
            "caption": row["caption"],
            "result": result,
            "error": row["error"],
            "analyzed_at": _parse_ts(row["analyzed_at"]),
        }
