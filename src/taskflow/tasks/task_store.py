# src/taskflow/tasks/task_store.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, tzinfo
from pathlib import Path
from typing import Any, TypeVar

from ..core.errors import StorageError
from .task_feed import ChangeFeed, Subscription
from .task_models import Category, RecurrenceType, Task, TaskPriority

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Due dates are compared as epoch floats; anything closer than this is "the same instant".
_SAME_INSTANT_EPSILON = 0.0005

_TASK_COLUMNS = (
    "id, title, notes, priority, due_at, is_completed, created_at, updated_at, "
    "category_id, parent_id, is_recurring, recurrence_type, series_id"
)


class StoreTransaction:
    """
    Synchronous view of one SQLite transaction.

    Handed to the callable passed into TaskStore.write()/read(); every method
    runs on the same connection, so a whole cascade commits or rolls back as one.
    Only valid inside that callable.
    """

    def __init__(self, conn: sqlite3.Connection, tz: tzinfo) -> None:
        self._conn = conn
        self._tz = tz

    # ---- conversion ----

    def to_ts(self, dt: datetime | None) -> float | None:
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=self._tz)
        return dt.timestamp()

    def to_dt(self, ts: float | None) -> datetime | None:
        if ts is None:
            return None
        return datetime.fromtimestamp(float(ts), tz=self._tz)

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        created_at = self.to_dt(row["created_at"]) or datetime.fromtimestamp(0, tz=UTC)
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            notes=row["notes"],
            priority=TaskPriority.from_db(row["priority"]),
            due_date=self.to_dt(row["due_at"]),
            is_completed=bool(row["is_completed"]),
            created_at=created_at,
            updated_at=self.to_dt(row["updated_at"]) or created_at,
            category_id=row["category_id"],
            parent_id=row["parent_id"],
            is_recurring=bool(row["is_recurring"]),
            recurrence_type=RecurrenceType.from_db(row["recurrence_type"]),
            series_id=row["series_id"],
        )

    def _row_to_category(self, row: sqlite3.Row) -> Category:
        return Category(
            id=str(row["id"]),
            name=str(row["name"] or ""),
            color_hex=str(row["color_hex"]),
            icon=str(row["icon"]),
            sort_order=int(row["sort_order"] or 0),
            created_at=self.to_dt(row["created_at"]) or datetime.fromtimestamp(0, tz=UTC),
        )

    def _task_params(self, task: Task) -> tuple[Any, ...]:
        return (
            task.id,
            task.title,
            task.notes,
            int(task.priority),
            self.to_ts(task.due_date),
            int(task.is_completed),
            self.to_ts(task.created_at),
            self.to_ts(task.updated_at),
            task.category_id,
            task.parent_id,
            int(task.is_recurring),
            task.recurrence_type.value,
            task.series_id,
        )

    # ---- tasks ----

    def get_task(self, task_id: str) -> Task | None:
        row = self._conn.execute(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
        ).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self) -> list[Task]:
        rows = self._conn.execute(
            f"SELECT {_TASK_COLUMNS} FROM tasks ORDER BY created_at ASC, rowid ASC"
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def subtasks(self, parent_id: str) -> list[Task]:
        rows = self._conn.execute(
            f"""
            SELECT {_TASK_COLUMNS}
            FROM tasks
            WHERE parent_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (parent_id,),
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def tasks_in_category(self, category_id: str) -> list[Task]:
        rows = self._conn.execute(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE category_id = ? ORDER BY created_at ASC, rowid ASC",
            (category_id,),
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def find_series_instance(
        self,
        series_id: str,
        due_date: datetime,
        *,
        exclude_id: str | None = None,
    ) -> Task | None:
        """Instance of the series due at exactly due_date (other than exclude_id), if one exists."""
        row = self._conn.execute(
            f"""
            SELECT {_TASK_COLUMNS}
            FROM tasks
            WHERE series_id = ?
              AND due_at IS NOT NULL
              AND ABS(due_at - ?) < ?
              AND id IS NOT ?
            LIMIT 1
            """,
            (series_id, self.to_ts(due_date), _SAME_INSTANT_EPSILON, exclude_id),
        ).fetchone()
        return self._row_to_task(row) if row else None

    def insert_task(self, task: Task) -> None:
        self._conn.execute(
            f"INSERT INTO tasks({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            self._task_params(task),
        )
        logger.debug("Task inserted id=%s due=%s series=%s", task.id, task.due_date, task.series_id)

    def update_task(self, task: Task) -> None:
        """Write every mutable column of task (created_at is never rewritten)."""
        p = self._task_params(task)
        self._conn.execute(
            """
            UPDATE tasks
            SET title = ?, notes = ?, priority = ?, due_at = ?, is_completed = ?,
                updated_at = ?, category_id = ?, parent_id = ?,
                is_recurring = ?, recurrence_type = ?, series_id = ?
            WHERE id = ?
            """,
            (p[1], p[2], p[3], p[4], p[5], p[7], p[8], p[9], p[10], p[11], p[12], task.id),
        )

    def delete_task(self, task_id: str) -> list[str]:
        """Delete one task; its direct subtasks become root-level. Returns orphaned ids."""
        orphans = [
            str(r["id"])
            for r in self._conn.execute("SELECT id FROM tasks WHERE parent_id = ?", (task_id,))
        ]
        if orphans:
            self._conn.execute("UPDATE tasks SET parent_id = NULL WHERE parent_id = ?", (task_id,))
        self._conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return orphans

    def delete_tasks(self, task_ids: Iterable[str]) -> int:
        ids = [str(x) for x in task_ids]
        if not ids:
            return 0
        ph = ",".join("?" for _ in ids)
        self._conn.execute(f"UPDATE tasks SET parent_id = NULL WHERE parent_id IN ({ph})", ids)
        cur = self._conn.execute(f"DELETE FROM tasks WHERE id IN ({ph})", ids)
        return int(cur.rowcount)

    def delete_all_tasks(self) -> int:
        cur = self._conn.execute("DELETE FROM tasks")
        return int(cur.rowcount)

    def count_tasks(self) -> int:
        (n,) = self._conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(n)

    # ---- categories ----

    def get_category(self, category_id: str) -> Category | None:
        row = self._conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
        return self._row_to_category(row) if row else None

    def list_categories(self) -> list[Category]:
        rows = self._conn.execute(
            "SELECT * FROM categories ORDER BY sort_order ASC, name ASC"
        ).fetchall()
        return [self._row_to_category(r) for r in rows]

    def count_categories(self) -> int:
        (n,) = self._conn.execute("SELECT COUNT(*) FROM categories").fetchone()
        return int(n)

    def insert_category(self, category: Category) -> None:
        self._conn.execute(
            """
            INSERT INTO categories(id, name, color_hex, icon, sort_order, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                category.id,
                category.name,
                category.color_hex,
                category.icon,
                int(category.sort_order),
                self.to_ts(category.created_at),
            ),
        )

    def update_category(self, category: Category) -> None:
        self._conn.execute(
            "UPDATE categories SET name = ?, color_hex = ?, icon = ?, sort_order = ? WHERE id = ?",
            (category.name, category.color_hex, category.icon, int(category.sort_order), category.id),
        )

    def delete_category(self, category_id: str, *, updated_at: datetime) -> list[str]:
        """Delete a category and clear the reference on its tasks. Returns the detached task ids."""
        detached = [
            str(r["id"])
            for r in self._conn.execute("SELECT id FROM tasks WHERE category_id = ?", (category_id,))
        ]
        if detached:
            self._conn.execute(
                "UPDATE tasks SET category_id = NULL, updated_at = ? WHERE category_id = ?",
                (self.to_ts(updated_at), category_id),
            )
        self._conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        return detached

    def delete_all_categories(self) -> int:
        self._conn.execute("UPDATE tasks SET category_id = NULL WHERE category_id IS NOT NULL")
        cur = self._conn.execute("DELETE FROM categories")
        return int(cur.rowcount)


class TaskStore:
    """
    SQLite task/category store.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Concurrency:
    - writes are serialized by one asyncio.Lock per store and each runs in a
      worker thread inside a single BEGIN IMMEDIATE transaction
    - reads open their own connection (WAL), so they only ever see committed data
    - every committed write publishes one event on the change feed
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3", *, tz: tzinfo = UTC) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._tz = tz
        self._write_lock = asyncio.Lock()
        self.feed = ChangeFeed()
        self._ensure_schema()
        try:
            total = self._run_read(lambda tx: tx.count_tasks())
        except StorageError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def close(self) -> None:
        """End every open subscription (connections are per call, nothing else to release)."""
        self.feed.close()

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    notes TEXT,
                    priority INTEGER NOT NULL DEFAULT 1,
                    due_at REAL,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    category_id TEXT,
                    parent_id TEXT,
                    is_recurring INTEGER NOT NULL DEFAULT 0,
                    recurrence_type TEXT NOT NULL DEFAULT 'none',
                    series_id TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    color_hex TEXT NOT NULL DEFAULT '#007AFF',
                    icon TEXT NOT NULL DEFAULT 'folder',
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("notes", "TEXT")
            add_col("priority", "INTEGER NOT NULL DEFAULT 1")
            add_col("due_at", "REAL")
            add_col("category_id", "TEXT")
            add_col("parent_id", "TEXT")
            add_col("is_recurring", "INTEGER NOT NULL DEFAULT 0")
            add_col("recurrence_type", "TEXT NOT NULL DEFAULT 'none'")
            add_col("series_id", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks(category_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_series_due ON tasks(series_id, due_at)")
        finally:
            conn.close()

    def _run_write(self, fn: Callable[[StoreTransaction], T]) -> tuple[T, bool]:
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            before = conn.total_changes
            try:
                result = fn(StoreTransaction(conn, self._tz))
                changed = conn.total_changes != before
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
                logger.exception("TaskStore write failed; rolled back")
                raise StorageError(f"write failed: {e}") from e
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
                raise
            return result, changed
        except sqlite3.Error as e:
            # BEGIN itself failed (locked / unreadable database).
            raise StorageError(f"write failed: {e}") from e
        finally:
            conn.close()

    def _run_read(self, fn: Callable[[StoreTransaction], T]) -> T:
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageError(f"read failed: {e}") from e
        try:
            # One read transaction: all statements in fn see the same committed snapshot.
            conn.execute("BEGIN")
            try:
                return fn(StoreTransaction(conn, self._tz))
            finally:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.exception("TaskStore read failed")
            raise StorageError(f"read failed: {e}") from e
        finally:
            conn.close()

    # ---- public API ----

    async def write(self, fn: Callable[[StoreTransaction], T]) -> T:
        """
        Run fn inside one write transaction, serialized against every other writer.

        fn must be synchronous; it runs in a worker thread. Any exception rolls the
        whole transaction back (sqlite errors surface as StorageError).

        Writes are not cancellable: cancelling the caller only stops the wait.
        The write still runs to the end and a commit is still published.
        """
        return await asyncio.shield(self._write_and_publish(fn))

    async def _write_and_publish(self, fn: Callable[[StoreTransaction], T]) -> T:
        async with self._write_lock:
            result, changed = await asyncio.to_thread(self._run_write, fn)
        if changed:
            self.feed.publish()
        return result

    async def read(self, fn: Callable[[StoreTransaction], T]) -> T:
        return await asyncio.to_thread(self._run_read, fn)

    async def get_task(self, task_id: str) -> Task | None:
        return await self.read(lambda tx: tx.get_task(task_id))

    async def get_category(self, category_id: str) -> Category | None:
        return await self.read(lambda tx: tx.get_category(category_id))

    async def query_tasks(self, predicate: Callable[[Task], bool] | None = None) -> list[Task]:
        tasks = await self.read(lambda tx: tx.list_tasks())
        if predicate is None:
            return tasks
        return [t for t in tasks if predicate(t)]

    async def subtasks(self, parent_id: str) -> list[Task]:
        return await self.read(lambda tx: tx.subtasks(parent_id))

    async def list_categories(self) -> list[Category]:
        return await self.read(lambda tx: tx.list_categories())

    async def count_tasks(self) -> int:
        return await self.read(lambda tx: tx.count_tasks())

    def subscribe(self, load: Callable[[], Any]) -> Subscription[Any]:
        """Replay-then-follow feed; load is awaited for every snapshot."""
        return Subscription(self.feed, load)
