"""SQLite-backed storage for goals and project configuration.

Single statements are atomic on their own; multi-step flows use
:meth:`StorageService.transaction` (or the explicit
``begin_transaction``/``commit``/``rollback`` trio).
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .errors import (
    ConfigNotFound,
    DuplicateExternalIssue,
    DuplicateId,
    GoalNotFound,
    StorageBusy,
    StorageError,
    StorageNotInitialized,
)
from .models import ConfigEntry, Goal, GoalStatus, utc_now
from .schema import MIGRATIONS_TABLE, get_migration_sql, get_migration_versions

logger = logging.getLogger("devagent.storage")

DEFAULT_DB_NAME = ".dev-agent.db"
DEFAULT_BUSY_TIMEOUT = 5.0

UPDATABLE_GOAL_FIELDS = frozenset({
    "title",
    "status",
    "description",
    "branch_name",
    "external_issue_id",
    "completed_at",
})


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map raw sqlite3 errors onto the storage error hierarchy."""
    try:
        yield
    except sqlite3.OperationalError as e:
        text = str(e).lower()
        if "locked" in text or "busy" in text:
            raise StorageBusy(f"Database busy during {operation}: {e}") from e
        raise StorageError(f"Failed to {operation}: {e}") from e
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as e:
        raise StorageError(f"Failed to {operation}: {e}") from e


class StorageService:
    """Transactional CRUD over goals and configuration entries."""

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_NAME, *, busy_timeout: float = DEFAULT_BUSY_TIMEOUT):
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Open the database and apply pending migrations."""
        if self._conn is not None:
            return
        if self._closed:
            raise StorageNotInitialized(f"Storage at {self.db_path} has been closed")

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with _translate_errors("open database"):
            conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._conn = conn
            applied = self._run_migrations()

        logger.info(f"Storage initialized at {self.db_path} ({len(applied)} migrations applied)")

    def _run_migrations(self) -> List[str]:
        conn = self._conn
        conn.executescript(MIGRATIONS_TABLE)
        applied_versions = {
            row["version"] for row in conn.execute("SELECT version FROM schema_migrations")
        }

        applied: List[str] = []
        for version in get_migration_versions():
            if version in applied_versions:
                continue
            sql = get_migration_sql(version)
            try:
                conn.execute("BEGIN")
                for statement in _split_statements(sql):
                    conn.execute(statement)
                conn.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, utc_now()),
                )
                conn.execute("COMMIT")
            except sqlite3.Error:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error(f"Failed to apply migration {version}")
                raise
            logger.debug(f"Applied migration {version}")
            applied.append(version)
        return applied

    def applied_migrations(self) -> List[str]:
        rows = self._query("list migrations", "SELECT version FROM schema_migrations ORDER BY version")
        return [row["version"] for row in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._closed = True

    def __enter__(self) -> "StorageService":
        self.initialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.initialize()
        return self._conn

    def _execute(self, operation: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with _translate_errors(operation):
            return self.connection.execute(sql, params)

    def _query(self, operation: str, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        return self._execute(operation, sql, params).fetchall()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_transaction(self) -> None:
        self._execute("begin transaction", "BEGIN IMMEDIATE")

    def commit(self) -> None:
        self._execute("commit transaction", "COMMIT")

    def rollback(self) -> None:
        self._execute("rollback transaction", "ROLLBACK")

    @property
    def in_transaction(self) -> bool:
        return self._conn is not None and self._conn.in_transaction

    @contextmanager
    def transaction(self) -> Iterator["StorageService"]:
        """Run the enclosed calls atomically; joins an already open transaction."""
        if self.in_transaction:
            yield self
            return
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def create_goal(self, goal: Goal) -> Goal:
        """Insert ``goal``; ``created_at`` and ``updated_at`` are set to now."""
        now = utc_now()
        goal.created_at = now
        goal.updated_at = now
        try:
            self._execute(
                "create goal",
                """
                INSERT INTO goals (id, external_issue_id, title, status, branch_name,
                                   description, created_at, updated_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    goal.id,
                    goal.external_issue_id,
                    goal.title,
                    GoalStatus.parse(goal.status).value,
                    goal.branch_name,
                    goal.description,
                    goal.created_at,
                    goal.updated_at,
                    goal.completed_at,
                ),
            )
        except sqlite3.IntegrityError as e:
            text = str(e)
            if "goals.id" in text:
                raise DuplicateId(goal.id) from e
            if "goals.external_issue_id" in text:
                raise DuplicateExternalIssue(goal.external_issue_id) from e
            raise StorageError(f"Failed to create goal {goal.id}: {e}") from e

        logger.info(f"Goal created: {goal.id} - {goal.title}")
        return goal

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        rows = self._query("get goal", "SELECT * FROM goals WHERE id = ?", (goal_id,))
        return Goal.from_dict(rows[0]) if rows else None

    def update_goal(self, goal_id: str, **fields: Any) -> Goal:
        """Update the given columns of a goal and refresh ``updated_at``."""
        unknown = set(fields) - UPDATABLE_GOAL_FIELDS
        if unknown:
            raise ValueError(f"Cannot update goal fields: {', '.join(sorted(unknown))}")
        if "status" in fields:
            fields["status"] = GoalStatus.parse(fields["status"]).value

        assignments = [f"{name} = ?" for name in fields]
        assignments.append("updated_at = ?")
        params = tuple(fields.values()) + (utc_now(), goal_id)

        try:
            cursor = self._execute(
                "update goal",
                f"UPDATE goals SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
        except sqlite3.IntegrityError as e:
            if "goals.external_issue_id" in str(e):
                raise DuplicateExternalIssue(fields.get("external_issue_id")) from e
            raise StorageError(f"Failed to update goal {goal_id}: {e}") from e

        if cursor.rowcount == 0:
            raise GoalNotFound(goal_id)

        logger.info(f"Goal updated: {goal_id} ({', '.join(fields)})")
        return self.get_goal(goal_id)

    def delete_goal(self, goal_id: str) -> None:
        cursor = self._execute("delete goal", "DELETE FROM goals WHERE id = ?", (goal_id,))
        if cursor.rowcount == 0:
            raise GoalNotFound(goal_id)
        logger.info(f"Goal deleted: {goal_id}")

    def list_goals(self, status: Optional[GoalStatus | str] = None) -> List[Goal]:
        """List goals, newest first."""
        if status is None:
            rows = self._query("list goals", "SELECT * FROM goals ORDER BY created_at DESC, rowid DESC")
        else:
            rows = self._query(
                "list goals",
                "SELECT * FROM goals WHERE status = ? ORDER BY created_at DESC, rowid DESC",
                (GoalStatus.parse(status).value,),
            )
        return [Goal.from_dict(row) for row in rows]

    def count_goals(self, status: Optional[GoalStatus | str] = None) -> int:
        if status is None:
            rows = self._query("count goals", "SELECT COUNT(*) AS count FROM goals")
        else:
            rows = self._query(
                "count goals",
                "SELECT COUNT(*) AS count FROM goals WHERE status = ?",
                (GoalStatus.parse(status).value,),
            )
        return rows[0]["count"]

    def count_goals_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in GoalStatus}
        rows = self._query("count goals", "SELECT status, COUNT(*) AS count FROM goals GROUP BY status")
        for row in rows:
            counts[row["status"]] = row["count"]
        return counts

    def has_goals(self) -> bool:
        return bool(self._query("check goals", "SELECT 1 FROM goals LIMIT 1"))

    def find_goal_by_external_issue_id(self, issue_id: int) -> Optional[Goal]:
        rows = self._query(
            "find goal by issue",
            "SELECT * FROM goals WHERE external_issue_id = ?",
            (issue_id,),
        )
        return Goal.from_dict(rows[0]) if rows else None

    def find_goal_by_branch(self, branch_name: str) -> Optional[Goal]:
        rows = self._query(
            "find goal by branch",
            "SELECT * FROM goals WHERE branch_name = ? ORDER BY updated_at DESC LIMIT 1",
            (branch_name,),
        )
        return Goal.from_dict(rows[0]) if rows else None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self, key: str) -> Optional[str]:
        rows = self._query("get config", "SELECT value FROM project_config WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def set_config(self, key: str, value: str) -> None:
        """Insert or overwrite a configuration value."""
        existing = self.get_config(key)
        if existing == value:
            return
        self._execute(
            "set config",
            """
            INSERT INTO project_config (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, utc_now()),
        )
        logger.info(f"Config updated: {key} = {value}")

    def list_config(self) -> List[ConfigEntry]:
        rows = self._query("list config", "SELECT key, value, updated_at FROM project_config ORDER BY key")
        return [ConfigEntry(key=row["key"], value=row["value"], updated_at=row["updated_at"]) for row in rows]

    def delete_config(self, key: str) -> None:
        cursor = self._execute("delete config", "DELETE FROM project_config WHERE key = ?", (key,))
        if cursor.rowcount == 0:
            raise ConfigNotFound(key)
        logger.info(f"Config deleted: {key}")


def _split_statements(sql: str) -> List[str]:
    return [statement.strip() for statement in sql.split(";") if statement.strip()]
