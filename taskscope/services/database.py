from datetime import datetime
import sqlite3
from pathlib import Path
import logging
import threading
from typing import List, Optional, Any

from taskscope.config.settings import settings
from taskscope.models import (
    TIMESTAMP_FORMAT, Screenshot, Task, TaskUpdate, CaptureSession
)
from taskscope.services.errors import DatabaseError

logger = logging.getLogger(__name__)

MIGRATIONS = [
    """
    -- Capture sessions
    CREATE TABLE IF NOT EXISTS capture_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TEXT NOT NULL,
        ended_at TEXT,
        description TEXT,
        title TEXT
    );

    -- One row per saved screenshot file
    CREATE TABLE IF NOT EXISTS screenshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        filepath TEXT NOT NULL,
        captured_at TEXT NOT NULL,
        active_window_title TEXT,
        monitor_index INTEGER NOT NULL DEFAULT 0,
        session_id INTEGER,
        capture_group TEXT
    );

    -- Inferred tasks
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        category TEXT,
        started_at TEXT NOT NULL,
        ended_at TEXT,
        ai_reasoning TEXT,
        user_verified INTEGER NOT NULL DEFAULT 0,
        metadata TEXT
    );

    -- Many-to-many task <-> screenshot links
    CREATE TABLE IF NOT EXISTS task_screenshots (
        task_id INTEGER NOT NULL,
        screenshot_id INTEGER NOT NULL,
        PRIMARY KEY (task_id, screenshot_id),
        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE,
        FOREIGN KEY (screenshot_id) REFERENCES screenshots(id) ON DELETE CASCADE
    );

    -- User settings as string key/value pairs
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_screenshots_captured_at ON screenshots(captured_at);
    CREATE INDEX IF NOT EXISTS idx_screenshots_session ON screenshots(session_id);
    CREATE INDEX IF NOT EXISTS idx_screenshots_group ON screenshots(capture_group);
    CREATE INDEX IF NOT EXISTS idx_task_screenshots_screenshot ON task_screenshots(screenshot_id);
    CREATE INDEX IF NOT EXISTS idx_tasks_started_at ON tasks(started_at);
    """
]

SESSION_SELECT = """
    SELECT
        cs.id,
        cs.started_at,
        cs.ended_at,
        cs.description,
        cs.title,
        (SELECT COUNT(*) FROM screenshots s WHERE s.session_id = cs.id) AS screenshot_count,
        (SELECT COUNT(*) FROM screenshots s
            WHERE s.session_id = cs.id
            AND NOT EXISTS (
                SELECT 1 FROM task_screenshots ts WHERE ts.screenshot_id = s.id
            )) AS unanalyzed_count
    FROM capture_sessions cs
"""

SCREENSHOT_COLUMNS = (
    "s.id, s.filepath, s.captured_at, s.active_window_title, "
    "s.monitor_index, s.session_id, s.capture_group"
)


def now_timestamp() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def _sql_limit(limit: int) -> int:
    # SQLite treats a negative LIMIT as unbounded
    return limit if limit > 0 else -1


class DatabaseManager:
    """SQLite-backed store for screenshots, tasks, sessions and settings.

    All access goes through one connection guarded by a lock, so capture
    and analysis tasks see a single serialized view of persisted state.
    """

    def __init__(self, db_path=None):
        """Initialize database manager"""
        self.db_path = str(db_path or settings.DEFAULT_DB_PATH)
        self._lock = threading.RLock()
        self.conn = self.get_connection()
        logger.info(f"Initialized DatabaseManager with db_path: {self.db_path}")
        self.initialize()

    def initialize(self):
        """Initialize database schema"""
        try:
            with self._lock:
                for migration in MIGRATIONS:
                    self.conn.executescript(migration)
                self.conn.commit()
            logger.info("Database initialization complete")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(f"Failed to initialize database: {e}")

    def get_connection(self) -> sqlite3.Connection:
        """Open the shared connection"""
        if self.db_path != ":memory:":
            db_path = Path(self.db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to open database {self.db_path}: {e}")
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn is not None:
                try:
                    self.conn.close()
                    logger.info("Database connection closed.")
                except sqlite3.Error as e:
                    logger.error(f"Error closing database: {e}")
                finally:
                    self.conn = None

    def _query(self, sql: str, params: Any = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _write(self, sql: str, params: Any = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
                return cursor
            except Exception:
                self.conn.rollback()
                raise

    # -- screenshots -------------------------------------------------------

    def insert_screenshot(
        self,
        filepath: str,
        captured_at: str,
        monitor_index: int = 0,
        session_id: Optional[int] = None,
        capture_group: Optional[str] = None,
        active_window_title: Optional[str] = None,
    ) -> int:
        """Insert a screenshot row and return its id"""
        try:
            cursor = self._write("""
                INSERT INTO screenshots (
                    filepath, captured_at, active_window_title,
                    monitor_index, session_id, capture_group
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, [filepath, captured_at, active_window_title,
                  monitor_index, session_id, capture_group])
            return cursor.lastrowid
        except Exception as e:
            logger.error(f"Failed to insert screenshot {filepath}: {e}")
            raise DatabaseError(f"Failed to insert screenshot: {e}")

    def get_screenshot(self, screenshot_id: int) -> Optional[Screenshot]:
        rows = self._query(
            f"SELECT {SCREENSHOT_COLUMNS} FROM screenshots s WHERE s.id = ?",
            [screenshot_id]
        )
        return Screenshot(**dict(rows[0])) if rows else None

    def get_screenshot_count(self) -> int:
        return self._query("SELECT COUNT(*) FROM screenshots")[0][0]

    def get_unanalyzed_screenshots(self, limit: int = 0) -> List[Screenshot]:
        """Screenshots with no task link, oldest first. ``limit=0`` is unbounded."""
        try:
            rows = self._query(f"""
                SELECT {SCREENSHOT_COLUMNS}
                FROM screenshots s
                LEFT JOIN task_screenshots ts ON s.id = ts.screenshot_id
                WHERE ts.task_id IS NULL
                ORDER BY s.captured_at ASC, s.id ASC
                LIMIT ?
            """, [_sql_limit(limit)])
            return [Screenshot(**dict(row)) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get unanalyzed screenshots: {e}")
            raise DatabaseError(f"Failed to get unanalyzed screenshots: {e}")

    def get_unanalyzed_screenshots_for_session(self, session_id: int, limit: int = 0) -> List[Screenshot]:
        try:
            rows = self._query(f"""
                SELECT {SCREENSHOT_COLUMNS}
                FROM screenshots s
                LEFT JOIN task_screenshots ts ON s.id = ts.screenshot_id
                WHERE ts.task_id IS NULL AND s.session_id = ?
                ORDER BY s.captured_at ASC, s.id ASC
                LIMIT ?
            """, [session_id, _sql_limit(limit)])
            return [Screenshot(**dict(row)) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get unanalyzed screenshots for session {session_id}: {e}")
            raise DatabaseError(f"Failed to get unanalyzed screenshots: {e}")

    def delete_unanalyzed_screenshots(self) -> List[str]:
        """Delete every screenshot with no task link and return their file paths"""
        with self._lock:
            try:
                rows = self.conn.execute("""
                    SELECT s.id, s.filepath FROM screenshots s
                    WHERE NOT EXISTS (
                        SELECT 1 FROM task_screenshots ts WHERE ts.screenshot_id = s.id
                    )
                """).fetchall()
                self.conn.executemany(
                    "DELETE FROM screenshots WHERE id = ?",
                    [(row["id"],) for row in rows]
                )
                self.conn.commit()
                return [row["filepath"] for row in rows]
            except Exception as e:
                self.conn.rollback()
                logger.error(f"Failed to delete unanalyzed screenshots: {e}")
                raise DatabaseError(f"Failed to delete unanalyzed screenshots: {e}")

    def get_screenshot_session_id(self, screenshot_id: int) -> Optional[int]:
        rows = self._query("SELECT session_id FROM screenshots WHERE id = ?", [screenshot_id])
        return rows[0][0] if rows else None

    def get_capture_group(self, capture_group: str) -> List[Screenshot]:
        rows = self._query(f"""
            SELECT {SCREENSHOT_COLUMNS} FROM screenshots s
            WHERE s.capture_group = ?
            ORDER BY s.monitor_index ASC, s.id ASC
        """, [capture_group])
        return [Screenshot(**dict(row)) for row in rows]

    # -- tasks -------------------------------------------------------------

    def insert_task(
        self,
        title: str,
        description: Optional[str],
        category: Optional[str],
        started_at: str,
    ) -> int:
        return self.insert_full_task(title, description, category, started_at, None)

    def insert_full_task(
        self,
        title: str,
        description: Optional[str],
        category: Optional[str],
        started_at: str,
        ai_reasoning: Optional[str],
    ) -> int:
        """Insert a task produced by analysis and return its id"""
        try:
            cursor = self._write("""
                INSERT INTO tasks (title, description, category, started_at, ai_reasoning)
                VALUES (?, ?, ?, ?, ?)
            """, [title, description, category, started_at, ai_reasoning])
            return cursor.lastrowid
        except Exception as e:
            logger.error(f"Failed to insert task {title!r}: {e}")
            raise DatabaseError(f"Failed to insert task: {e}")

    def get_task(self, task_id: int) -> Optional[Task]:
        rows = self._query("SELECT * FROM tasks WHERE id = ?", [task_id])
        return Task(**dict(rows[0])) if rows else None

    def get_tasks(self, limit: int = 50, offset: int = 0) -> List[Task]:
        """Most recent tasks first"""
        try:
            rows = self._query("""
                SELECT * FROM tasks
                ORDER BY started_at DESC, id DESC
                LIMIT ? OFFSET ?
            """, [_sql_limit(limit), offset])
            return [Task(**dict(row)) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get tasks: {e}")
            raise DatabaseError(f"Failed to get tasks: {e}")

    def get_latest_task(self) -> Optional[Task]:
        """The most recently created task, regardless of when it started"""
        rows = self._query("SELECT * FROM tasks ORDER BY id DESC LIMIT 1")
        return Task(**dict(rows[0])) if rows else None

    def update_task(self, task_id: int, update: TaskUpdate) -> Optional[Task]:
        fields = update.model_dump(exclude_none=True)
        if "user_verified" in fields:
            fields["user_verified"] = int(fields["user_verified"])
        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            try:
                self._write(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    [*fields.values(), task_id]
                )
            except Exception as e:
                logger.error(f"Failed to update task {task_id}: {e}")
                raise DatabaseError(f"Failed to update task: {e}")
        return self.get_task(task_id)

    def delete_task(self, task_id: int) -> bool:
        try:
            cursor = self._write("DELETE FROM tasks WHERE id = ?", [task_id])
            return cursor.rowcount > 0
        except Exception as e:
            logger.error(f"Failed to delete task {task_id}: {e}")
            raise DatabaseError(f"Failed to delete task: {e}")

    def link_screenshot_to_task(self, task_id: int, screenshot_id: int) -> None:
        """Idempotent; linking the same pair twice is a no-op"""
        try:
            self._write(
                "INSERT OR IGNORE INTO task_screenshots (task_id, screenshot_id) VALUES (?, ?)",
                [task_id, screenshot_id]
            )
        except Exception as e:
            logger.error(f"Failed to link screenshot {screenshot_id} to task {task_id}: {e}")
            raise DatabaseError(f"Failed to link screenshot: {e}")

    def get_task_for_screenshot(self, screenshot_id: int) -> Optional[Task]:
        rows = self._query("""
            SELECT t.* FROM tasks t
            JOIN task_screenshots ts ON t.id = ts.task_id
            WHERE ts.screenshot_id = ?
            ORDER BY t.id ASC
            LIMIT 1
        """, [screenshot_id])
        return Task(**dict(rows[0])) if rows else None

    def get_task_screenshots(self, task_id: int) -> List[Screenshot]:
        rows = self._query(f"""
            SELECT {SCREENSHOT_COLUMNS} FROM screenshots s
            JOIN task_screenshots ts ON s.id = ts.screenshot_id
            WHERE ts.task_id = ?
            ORDER BY s.captured_at ASC, s.id ASC
        """, [task_id])
        return [Screenshot(**dict(row)) for row in rows]

    def get_session_tasks(self, session_id: int) -> List[Task]:
        """Tasks linked to any screenshot of the session, oldest first"""
        rows = self._query("""
            SELECT DISTINCT t.* FROM tasks t
            JOIN task_screenshots ts ON t.id = ts.task_id
            JOIN screenshots s ON s.id = ts.screenshot_id
            WHERE s.session_id = ?
            ORDER BY t.started_at ASC, t.id ASC
        """, [session_id])
        return [Task(**dict(row)) for row in rows]

    def get_recent_tasks_for_session(self, session_id: int, limit: int) -> List[Task]:
        """Most recent tasks linked to the session, newest first"""
        rows = self._query("""
            SELECT DISTINCT t.* FROM tasks t
            JOIN task_screenshots ts ON t.id = ts.task_id
            JOIN screenshots s ON s.id = ts.screenshot_id
            WHERE s.session_id = ?
            ORDER BY t.started_at DESC, t.id DESC
            LIMIT ?
        """, [session_id, _sql_limit(limit)])
        return [Task(**dict(row)) for row in rows]

    # -- sessions ----------------------------------------------------------

    def create_session(
        self,
        description: Optional[str] = None,
        title: Optional[str] = None,
        started_at: Optional[str] = None,
    ) -> int:
        try:
            cursor = self._write(
                "INSERT INTO capture_sessions (started_at, description, title) VALUES (?, ?, ?)",
                [started_at or now_timestamp(), description, title]
            )
            return cursor.lastrowid
        except Exception as e:
            logger.error(f"Failed to create session: {e}")
            raise DatabaseError(f"Failed to create session: {e}")

    def end_session(self, session_id: int, ended_at: Optional[str] = None) -> str:
        ended_at = ended_at or now_timestamp()
        try:
            self._write(
                "UPDATE capture_sessions SET ended_at = ? WHERE id = ?",
                [ended_at, session_id]
            )
            return ended_at
        except Exception as e:
            logger.error(f"Failed to end session {session_id}: {e}")
            raise DatabaseError(f"Failed to end session: {e}")

    def get_session(self, session_id: int) -> Optional[CaptureSession]:
        rows = self._query(SESSION_SELECT + " WHERE cs.id = ?", [session_id])
        return CaptureSession(**dict(rows[0])) if rows else None

    def get_open_session(self) -> Optional[CaptureSession]:
        rows = self._query(
            SESSION_SELECT + " WHERE cs.ended_at IS NULL ORDER BY cs.started_at DESC, cs.id DESC LIMIT 1"
        )
        return CaptureSession(**dict(rows[0])) if rows else None

    def get_sessions(self, limit: int = 50, offset: int = 0) -> List[CaptureSession]:
        rows = self._query(
            SESSION_SELECT + " ORDER BY cs.started_at DESC, cs.id DESC LIMIT ? OFFSET ?",
            [_sql_limit(limit), offset]
        )
        return [CaptureSession(**dict(row)) for row in rows]

    def get_pending_sessions(self, limit: int = 50, offset: int = 0) -> List[CaptureSession]:
        """Ended sessions that still have unanalyzed screenshots"""
        rows = self._query(f"""
            SELECT * FROM ({SESSION_SELECT}) AS sessions
            WHERE ended_at IS NOT NULL AND unanalyzed_count > 0
            ORDER BY started_at DESC, id DESC
            LIMIT ? OFFSET ?
        """, [_sql_limit(limit), offset])
        return [CaptureSession(**dict(row)) for row in rows]

    def get_completed_sessions(self, limit: int = 50, offset: int = 0) -> List[CaptureSession]:
        """Ended sessions whose screenshots are all analyzed"""
        rows = self._query(f"""
            SELECT * FROM ({SESSION_SELECT}) AS sessions
            WHERE ended_at IS NOT NULL AND screenshot_count > 0 AND unanalyzed_count = 0
            ORDER BY started_at DESC, id DESC
            LIMIT ? OFFSET ?
        """, [_sql_limit(limit), offset])
        return [CaptureSession(**dict(row)) for row in rows]

    def get_session_screenshots(self, session_id: int) -> List[Screenshot]:
        rows = self._query(f"""
            SELECT {SCREENSHOT_COLUMNS} FROM screenshots s
            WHERE s.session_id = ?
            ORDER BY s.captured_at ASC, s.id ASC
        """, [session_id])
        return [Screenshot(**dict(row)) for row in rows]

    def delete_session(self, session_id: int) -> List[str]:
        """Delete a session, its screenshots and the tasks linked only to them.

        Returns the relative file paths of the deleted screenshots so the
        caller can remove them from disk.
        """
        with self._lock:
            try:
                rows = self.conn.execute(
                    "SELECT id, filepath FROM screenshots WHERE session_id = ?",
                    [session_id]
                ).fetchall()
                ids = [(row["id"],) for row in rows]
                task_ids = {
                    link["task_id"]
                    for (shot_id,) in ids
                    for link in self.conn.execute(
                        "SELECT task_id FROM task_screenshots WHERE screenshot_id = ?", [shot_id]
                    ).fetchall()
                }

                self.conn.executemany("DELETE FROM task_screenshots WHERE screenshot_id = ?", ids)
                self.conn.executemany("""
                    DELETE FROM tasks
                    WHERE id = ? AND NOT EXISTS (
                        SELECT 1 FROM task_screenshots WHERE task_id = tasks.id
                    )
                """, [(task_id,) for task_id in task_ids])
                self.conn.executemany("DELETE FROM screenshots WHERE id = ?", ids)
                self.conn.execute("DELETE FROM capture_sessions WHERE id = ?", [session_id])
                self.conn.commit()

                logger.info(f"Deleted session {session_id} with {len(rows)} screenshots")
                return [row["filepath"] for row in rows]
            except Exception as e:
                self.conn.rollback()
                logger.error(f"Failed to delete session {session_id}: {e}")
                raise DatabaseError(f"Failed to delete session: {e}")

    # -- settings ----------------------------------------------------------

    def get_setting(self, key: str) -> Optional[str]:
        rows = self._query("SELECT value FROM settings WHERE key = ?", [key])
        return rows[0][0] if rows else None

    def set_setting(self, key: str, value: str) -> None:
        try:
            self._write("""
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """, [key, value])
        except Exception as e:
            logger.error(f"Failed to save setting {key}: {e}")
            raise DatabaseError(f"Failed to save setting: {e}")

    def get_all_settings(self) -> dict:
        return {row["key"]: row["value"] for row in self._query("SELECT key, value FROM settings")}
