"""
Tracker Database Layer with Conditional Writes

Provides SQLite-based record storage with WAL mode for concurrent access and
compare-and-set writes on a per-row version counter, used by the mutation
pipeline for optimistic concurrency control on projects and tasks.
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

from .errors import AuditWriteFailure, ValidationError

logger = logging.getLogger(__name__)

INITIAL_VERSION = 1

# Entity type -> table name. Only these tables are reachable through the
# generic record methods.
ENTITY_TABLES = {
    "project": "projects",
    "task": "tasks",
    "comment": "comments",
    "user": "users",
    "template": "templates",
}

VERSIONED_TABLES = {"projects", "tasks"}

JSON_COLUMNS = {
    "projects": ("statuses", "priorities", "tags"),
    "tasks": ("tags",),
    "templates": ("seed_config",),
    "activity_log": ("before", "after"),
}


class TrackerDatabase:
    """
    SQLite record store for projects, tasks and their audit trail.

    Features:
    - WAL mode for concurrent read/write access
    - Re-entrant explicit transactions (BEGIN IMMEDIATE)
    - Compare-and-set updates keyed on the row version
    - Append-only activity log
    """

    def __init__(self, db_path: str):
        """
        Initialize TrackerDatabase with SQLite WAL mode configuration.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._tx_depth = 0
        self._column_cache: Dict[str, Tuple[str, ...]] = {}

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _initialize_database(self, drop_existing: bool = False) -> None:
        """Initialize database with WAL mode and create schema if needed.

        Args:
            drop_existing: If True, drops all existing tables for clean slate initialization
        """
        try:
            # Autocommit mode: transactions are opened explicitly by transaction()
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=False
            )

            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")

            if drop_existing:
                self._drop_existing_tables()

            self._create_schema()

        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to initialize database at {self.db_path}: {e}")

    def _create_schema(self) -> None:
        """Create database schema with indexes for column and audit queries."""
        cursor = self._connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'MEMBER' CHECK (role IN ('ADMIN', 'MEMBER', 'GUEST')),
                disabled INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS templates (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                description TEXT,
                icon TEXT,
                color TEXT,
                seed_config TEXT NOT NULL CHECK (json_valid(seed_config)),
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                client_name TEXT,
                template_id TEXT,
                status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'archived', 'completed')),
                statuses TEXT NOT NULL CHECK (json_valid(statuses)),
                priorities TEXT NOT NULL CHECK (json_valid(priorities)),
                tags TEXT NOT NULL CHECK (json_valid(tags)),
                version INTEGER NOT NULL DEFAULT 1 CHECK (version >= 0),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                deleted_at TEXT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL,
                priority TEXT NOT NULL DEFAULT 'NONE'
                    CHECK (priority IN ('URGENT', 'HIGH', 'MEDIUM', 'LOW', 'NONE')),
                assignee_id TEXT,
                due_date TEXT,
                tags TEXT NOT NULL CHECK (json_valid(tags)),
                order_index INTEGER NOT NULL DEFAULT 0,
                version INTEGER NOT NULL DEFAULT 1 CHECK (version >= 0),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                deleted_at TEXT NULL,
                FOREIGN KEY (project_id) REFERENCES projects (id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS comments (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                body TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (task_id) REFERENCES tasks (id)
            )
        """)

        # Append-only audit trail. No foreign keys: entries must outlive and
        # never block the rows they describe.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS activity_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                actor_id TEXT NOT NULL,
                entity_type TEXT NOT NULL CHECK (entity_type IN ('project', 'task', 'comment', 'user')),
                entity_id TEXT NOT NULL,
                action TEXT NOT NULL CHECK (action IN ('created', 'updated', 'deleted', 'restored')),
                before TEXT CHECK (before IS NULL OR json_valid(before)),
                after TEXT CHECK (after IS NULL OR json_valid(after)),
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_column_order
            ON tasks(project_id, status, order_index)
            WHERE deleted_at IS NULL
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_assignee
            ON tasks(assignee_id)
            WHERE deleted_at IS NULL
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_projects_updated
            ON projects(updated_at DESC)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_comments_task_created
            ON comments(task_id, created_at DESC)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_entity_time
            ON activity_log(entity_id, created_at DESC)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_type_time
            ON activity_log(entity_type, created_at DESC)
        """)

    def _drop_existing_tables(self) -> None:
        """Drop all tables for clean slate initialization."""
        cursor = self._connection.cursor()
        cursor.execute("DROP TABLE IF EXISTS activity_log")
        cursor.execute("DROP TABLE IF EXISTS comments")
        cursor.execute("DROP TABLE IF EXISTS tasks")
        cursor.execute("DROP TABLE IF EXISTS projects")
        cursor.execute("DROP TABLE IF EXISTS templates")
        cursor.execute("DROP TABLE IF EXISTS users")
        self._column_cache.clear()

    @contextmanager
    def transaction(self):
        """
        Context manager for explicit transaction control.

        Re-entrant: only the outermost call opens and closes the transaction,
        nested calls join it. BEGIN IMMEDIATE takes the write lock up front so
        a read-check-write sequence cannot interleave with another writer.
        """
        with self._connection_lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self._connection.cursor()
                finally:
                    self._tx_depth -= 1
                return

            cursor = self._connection.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield cursor
            except Exception:
                cursor.execute("ROLLBACK")
                raise
            else:
                cursor.execute("COMMIT")
            finally:
                self._tx_depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def _get_current_time_str(self) -> str:
        """Get current UTC time as a sortable ISO-8601 string."""
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def _table(self, entity_type: str) -> str:
        try:
            return ENTITY_TABLES[entity_type]
        except KeyError:
            raise ValidationError(f"Unknown entity type: {entity_type}")

    def _columns(self, table: str) -> Tuple[str, ...]:
        """Column names for a table, cached after the first lookup."""
        if table not in self._column_cache:
            cursor = self._connection.cursor()
            cursor.execute(f"PRAGMA table_info({table})")
            self._column_cache[table] = tuple(row[1] for row in cursor.fetchall())
        return self._column_cache[table]

    def _check_columns(self, table: str, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(self._columns(table))
        if unknown:
            raise ValidationError(f"Unknown field(s) for {table}: {', '.join(sorted(unknown))}")

    def _encode(self, table: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        encoded = dict(fields)
        for column in JSON_COLUMNS.get(table, ()):
            if column in encoded and encoded[column] is not None:
                encoded[column] = json.dumps(encoded[column])
        return encoded

    def _row_to_dict(self, table: str, cursor: sqlite3.Cursor, row: tuple) -> Dict[str, Any]:
        record = dict(zip([col[0] for col in cursor.description], row))
        for column in JSON_COLUMNS.get(table, ()):
            value = record.get(column)
            if value is not None:
                try:
                    record[column] = json.loads(value)
                except (json.JSONDecodeError, TypeError):
                    logger.warning(f"Corrupt JSON in {table}.{column} for row {record.get('id')}")
                    record[column] = None
        if table == "users":
            record["disabled"] = bool(record["disabled"])
        return record

    def _fetch_all(self, table: str, query: str, params: Tuple = ()) -> List[Dict[str, Any]]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(query, params)
            return [self._row_to_dict(table, cursor, row) for row in cursor.fetchall()]

    # Generic record operations

    def get_record(self, entity_type: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a record by id, including soft-deleted rows.

        Returns:
            Record dictionary or None if the id does not exist
        """
        table = self._table(entity_type)
        rows = self._fetch_all(table, f"SELECT * FROM {table} WHERE id = ?", (record_id,))
        return rows[0] if rows else None

    def insert_record(self, entity_type: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new record with generated id and timestamps.

        Versioned records start at INITIAL_VERSION and live (deleted_at NULL).

        Returns:
            The persisted record
        """
        table = self._table(entity_type)
        now = self._get_current_time_str()

        values = dict(fields)
        values.setdefault("id", uuid.uuid4().hex)
        values["created_at"] = now
        if table in VERSIONED_TABLES:
            values["version"] = INITIAL_VERSION
            values["updated_at"] = now
            values["deleted_at"] = None
        self._check_columns(table, values)

        encoded = self._encode(table, values)
        columns = list(encoded)
        placeholders = ", ".join("?" for _ in columns)

        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(encoded[c] for c in columns)
            )
            return self.get_record(entity_type, values["id"])

    def _update_versioned(
        self,
        entity_type: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int],
        live_only: bool = False
    ) -> bool:
        table = self._table(entity_type)
        if table not in VERSIONED_TABLES:
            raise ValidationError(f"{entity_type} records are not versioned")
        protected = {"id", "version", "created_at", "updated_at"} & set(changes)
        if protected:
            raise ValidationError(f"Field(s) cannot be written directly: {', '.join(sorted(protected))}")
        self._check_columns(table, changes)

        encoded = self._encode(table, changes)
        assignments = [f"{column} = ?" for column in encoded]
        assignments.append("version = version + 1")
        assignments.append("updated_at = ?")
        params: List[Any] = list(encoded.values())
        params.append(self._get_current_time_str())

        query = f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?"
        params.append(record_id)
        if expected_version is not None:
            query += " AND version = ?"
            params.append(expected_version)
        if live_only:
            query += " AND deleted_at IS NULL"

        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(query, tuple(params))
            return cursor.rowcount > 0

    def compare_and_set(
        self,
        entity_type: str,
        record_id: str,
        expected_version: int,
        changes: Dict[str, Any]
    ) -> bool:
        """
        Atomically apply changes if the row is still at expected_version.

        Single UPDATE with the version in the WHERE clause; the version is
        incremented by exactly 1 in the same statement.

        Returns:
            True if the row was updated, False if the id is missing or the
            version has moved on
        """
        return self._update_versioned(entity_type, record_id, changes, expected_version)

    def bump_record(self, entity_type: str, record_id: str, changes: Dict[str, Any]) -> bool:
        """
        Apply changes and increment the version without a version predicate.

        Used for trusted server-side overrides (bulk reorder). Soft-deleted
        rows are left alone.

        Returns:
            True if the row exists, is live and was updated
        """
        return self._update_versioned(entity_type, record_id, changes, None, live_only=True)

    def count_records(self, entity_type: str, include_deleted: bool = False) -> int:
        table = self._table(entity_type)
        query = f"SELECT COUNT(*) FROM {table}"
        if table in VERSIONED_TABLES and not include_deleted:
            query += " WHERE deleted_at IS NULL"
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(query)
            return cursor.fetchone()[0]

    # Listing queries

    def list_projects(self, include_deleted: bool = False) -> List[Dict[str, Any]]:
        """List projects, most recently updated first, with live task counts."""
        query = """
            SELECT p.*,
                   (SELECT COUNT(*) FROM tasks t
                    WHERE t.project_id = p.id AND t.deleted_at IS NULL) AS task_count
            FROM projects p
        """
        if not include_deleted:
            query += " WHERE p.deleted_at IS NULL"
        query += " ORDER BY p.updated_at DESC, p.id"
        return self._fetch_all("projects", query)

    def list_tasks(
        self,
        project_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        due_before: Optional[str] = None,
        include_deleted: bool = False
    ) -> List[Dict[str, Any]]:
        """
        List tasks with optional filters, ordered by order_index then newest first.

        Args:
            project_id: Filter by owning project
            assignee_id: Filter by assignee
            status: Filter by status column
            priority: Filter by priority
            due_before: ISO date; keeps tasks due on or before it
            include_deleted: Include soft-deleted tasks
        """
        conditions = []
        params: List[Any] = []
        if not include_deleted:
            conditions.append("deleted_at IS NULL")
        if project_id is not None:
            conditions.append("project_id = ?")
            params.append(project_id)
        if assignee_id is not None:
            conditions.append("assignee_id = ?")
            params.append(assignee_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(status)
        if priority is not None:
            conditions.append("priority = ?")
            params.append(priority)
        if due_before is not None:
            conditions.append("due_date IS NOT NULL AND due_date <= ?")
            params.append(due_before)

        query = "SELECT * FROM tasks"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY order_index ASC, created_at DESC"
        return self._fetch_all("tasks", query, tuple(params))

    def column_tasks(self, project_id: str, status: str) -> List[Dict[str, Any]]:
        """Live tasks of one (project, status) column in top-to-bottom order."""
        return self._fetch_all("tasks", """
            SELECT * FROM tasks
            WHERE project_id = ? AND status = ? AND deleted_at IS NULL
            ORDER BY order_index ASC, created_at ASC, id ASC
        """, (project_id, status))

    def max_order_index(self, project_id: str, status: str) -> Optional[int]:
        """Highest order_index among live tasks in a column, None if empty."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("""
                SELECT MAX(order_index) FROM tasks
                WHERE project_id = ? AND status = ? AND deleted_at IS NULL
            """, (project_id, status))
            return cursor.fetchone()[0]

    def list_comments(self, task_id: str) -> List[Dict[str, Any]]:
        """Comments on a task, newest first."""
        return self._fetch_all("comments", """
            SELECT * FROM comments WHERE task_id = ?
            ORDER BY created_at DESC, id
        """, (task_id,))

    def list_users(self, include_disabled: bool = True, assignable_only: bool = False) -> List[Dict[str, Any]]:
        """
        List users in creation order.

        Args:
            include_disabled: Include disabled accounts
            assignable_only: Only enabled, non-guest users
        """
        conditions = []
        if not include_disabled or assignable_only:
            conditions.append("disabled = 0")
        if assignable_only:
            conditions.append("role != 'GUEST'")
        query = "SELECT * FROM users"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at ASC, username ASC"
        return self._fetch_all("users", query)

    def set_user_disabled(self, user_id: str, disabled: bool) -> bool:
        """
        Disable or re-enable a user account.

        Returns:
            True if the user exists
        """
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("UPDATE users SET disabled = ? WHERE id = ?", (1 if disabled else 0, user_id))
            return cursor.rowcount > 0

    def list_templates(self) -> List[Dict[str, Any]]:
        return self._fetch_all("templates", "SELECT * FROM templates ORDER BY created_at ASC, name ASC")

    def get_template_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch_all("templates", "SELECT * FROM templates WHERE name = ?", (name,))
        return rows[0] if rows else None

    def upsert_template(self, name: str, fields: Dict[str, Any]) -> Tuple[str, bool]:
        """
        Create or update a template by unique name.

        Returns:
            Tuple of (template_id, was_created)
        """
        with self._connection_lock:
            existing = self.get_template_by_name(name)
            if existing is None:
                record = self.insert_record("template", dict(fields, name=name))
                return record["id"], True

            encoded = self._encode("templates", fields)
            self._check_columns("templates", encoded)
            if encoded:
                assignments = ", ".join(f"{column} = ?" for column in encoded)
                cursor = self._connection.cursor()
                cursor.execute(
                    f"UPDATE templates SET {assignments} WHERE id = ?",
                    tuple(encoded.values()) + (existing["id"],)
                )
            return existing["id"], False

    # Activity log

    def append_activity(
        self,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> int:
        """
        Append an audit entry.

        Returns:
            New activity log entry id

        Raises:
            AuditWriteFailure: If the entry could not be written
        """
        try:
            before_json = json.dumps(before) if before else None
            after_json = json.dumps(after) if after else None
            with self._connection_lock:
                cursor = self._connection.cursor()
                cursor.execute("""
                    INSERT INTO activity_log (actor_id, entity_type, entity_id, action, before, after, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (actor_id, entity_type, entity_id, action, before_json, after_json,
                      self._get_current_time_str()))
                return cursor.lastrowid
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise AuditWriteFailure(
                f"Failed to append {action} entry for {entity_type} {entity_id}: {e}"
            ) from e

    def query_activity(
        self,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Audit entries newest first, optionally filtered by entity."""
        conditions = []
        params: List[Any] = []
        if entity_id is not None:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        if entity_type is not None:
            conditions.append("entity_type = ?")
            params.append(entity_type)

        query = "SELECT * FROM activity_log"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return self._fetch_all("activity_log", query, tuple(params))

    def close(self):
        """Close database connection."""
        with self._connection_lock:
            if self._connection:
                self._connection.close()
                self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
