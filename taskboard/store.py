"""
Task board storage backend (SQLite).

Implements the persistence gateway over three tables: tasks, their
assignment links, and the profiles directory of assignable users.
"""
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from .errors import NotFound, StoreUnavailable, ValidationFailed
from .schema import Lane, Person, Task

logger = logging.getLogger(__name__)

DEFAULT_DB = Path.home() / ".local" / "share" / "taskboard" / "taskboard.db"


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SqliteGateway:
    """SQLite-backed persistence gateway."""

    def __init__(self, db_path: Optional[str] = None, identity: Optional[str] = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(DEFAULT_DB)
        self.db_path = str(db_path)
        self.identity = identity
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _session(self, action: str) -> Iterator[sqlite3.Connection]:
        """Connection scope that commits on success and maps sqlite errors."""
        try:
            conn = _connect(self.db_path)
        except sqlite3.Error as e:
            logger.error(f"Cannot open {self.db_path} for {action}: {e}")
            raise StoreUnavailable(f"{action} failed: {e}") from e
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as e:
            logger.error(f"{action} rejected: {e}")
            raise ValidationFailed(f"{action} rejected: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"{action} failed: {e}")
            raise StoreUnavailable(f"{action} failed: {e}") from e
        finally:
            conn.close()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self._session("init schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    full_name TEXT NOT NULL DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    due_date TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'Upcoming',
                    progress INTEGER DEFAULT 0,
                    created_by TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_assignees (
                    task_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    PRIMARY KEY (task_id, user_id),
                    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE,
                    FOREIGN KEY (user_id) REFERENCES profiles(id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")

    # ── Directory ────────────────────────────────────────────────────────────

    def add_profile(self, user_id: str, full_name: str) -> Person:
        """Insert or rename a directory entry."""
        with self._session("add profile") as conn:
            conn.execute(
                """
                INSERT INTO profiles (id, full_name) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET full_name = excluded.full_name
                """,
                (user_id, full_name),
            )
        return Person(id=user_id, name=full_name)

    def list_assignable_users(self) -> List[Person]:
        with self._session("list users") as conn:
            rows = conn.execute("SELECT id, full_name FROM profiles ORDER BY full_name, id").fetchall()
        return [Person(id=r["id"], name=r["full_name"]) for r in rows]

    # ── Tasks ────────────────────────────────────────────────────────────────

    def fetch_tasks(self) -> List[Task]:
        with self._session("fetch tasks") as conn:
            rows = conn.execute("""
                SELECT t.*, p.full_name AS creator_name
                FROM tasks t LEFT JOIN profiles p ON p.id = t.created_by
                ORDER BY t.created_at ASC, t.rowid ASC
            """).fetchall()
            links = conn.execute("""
                SELECT a.task_id, a.user_id, p.full_name
                FROM task_assignees a JOIN profiles p ON p.id = a.user_id
                ORDER BY p.full_name, a.user_id
            """).fetchall()

        assignees: Dict[str, List[Person]] = {}
        for link in links:
            assignees.setdefault(link["task_id"], []).append(
                Person(id=link["user_id"], name=link["full_name"])
            )
        return [self._row_to_task(row, assignees.get(row["id"], [])) for row in rows]

    def create_task(
        self,
        title: str,
        due_date: date,
        description: str = "",
        lane: Lane = Lane.UPCOMING,
        progress: int = 0,
    ) -> Task:
        if not (title or "").strip():
            raise ValidationFailed("title is required")
        if not due_date:
            raise ValidationFailed("due date is required")

        task = Task(
            task_id=uuid.uuid4().hex,
            title=title.strip(),
            description=description or "",
            due_date=due_date,
            lane=lane,
            progress=progress,
            created_by=Person(id=self.identity) if self.identity else None,
            created_at=datetime.now(timezone.utc),
        )
        with self._session("create task") as conn:
            conn.execute(
                """
                INSERT INTO tasks (id, title, description, due_date, status, progress, created_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.title,
                    task.description,
                    task.due_date.isoformat(),
                    task.lane.value,
                    task.progress,
                    self.identity,
                    task.created_at.isoformat(),
                ),
            )
        logger.info(f"Created task {task.task_id} in {task.lane.value}")
        return task

    def assign_users(self, task_id: str, user_ids: Sequence[str]) -> None:
        if not user_ids:
            return
        # One transaction: a failing link rolls back the others.
        with self._session("assign users") as conn:
            if not conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone():
                raise NotFound(f"Task {task_id} not found", task_id=task_id)
            conn.executemany(
                "INSERT OR IGNORE INTO task_assignees (task_id, user_id) VALUES (?, ?)",
                [(task_id, uid) for uid in user_ids],
            )

    def set_lane(self, task_id: str, lane: Lane) -> Task:
        with self._session("set lane") as conn:
            cur = conn.execute("UPDATE tasks SET status = ? WHERE id = ?", (lane.value, task_id))
            if cur.rowcount == 0:
                raise NotFound(f"Task {task_id} not found", task_id=task_id)
            row = conn.execute("""
                SELECT t.*, p.full_name AS creator_name
                FROM tasks t LEFT JOIN profiles p ON p.id = t.created_by
                WHERE t.id = ?
            """, (task_id,)).fetchone()
            links = conn.execute("""
                SELECT a.user_id, p.full_name FROM task_assignees a
                JOIN profiles p ON p.id = a.user_id WHERE a.task_id = ?
            """, (task_id,)).fetchall()
        return self._row_to_task(row, [Person(id=r["user_id"], name=r["full_name"]) for r in links])

    def delete_task(self, task_id: str) -> None:
        with self._session("delete task") as conn:
            conn.execute("DELETE FROM task_assignees WHERE task_id = ?", (task_id,))
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            if cur.rowcount == 0:
                raise NotFound(f"Task {task_id} not found", task_id=task_id)

    def _row_to_task(self, row: sqlite3.Row, assignees: List[Person]) -> Task:
        """Convert a database row to a Task."""
        data = dict(row)
        creator = data.get("created_by")
        data["created_by"] = {"id": creator, "name": data.get("creator_name") or ""} if creator else None
        data["assignees"] = assignees
        return Task.from_dict(data)
