"""SQLite schema migrations for the Dev Agent database.

Each migration is identified by a version string and applied at most
once; applied versions are recorded in ``schema_migrations``.
"""

from __future__ import annotations

from typing import Dict, List, Optional

MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY NOT NULL,
    applied_at TEXT NOT NULL
);
"""

SCHEMA_MIGRATIONS: Dict[str, str] = {
    "001": """
        CREATE TABLE IF NOT EXISTS goals (
            id TEXT PRIMARY KEY NOT NULL CHECK (id GLOB '[a-z]-[a-z0-9][a-z0-9][a-z0-9][a-z0-9][a-z0-9][a-z0-9]'),
            external_issue_id INTEGER UNIQUE,
            title TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'todo'
                CHECK (status IN ('todo', 'in_progress', 'done', 'archived')),
            branch_name TEXT,
            description TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            completed_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_goals_status ON goals(status);
        CREATE INDEX IF NOT EXISTS idx_goals_branch ON goals(branch_name);
    """,
    "002": """
        CREATE TABLE IF NOT EXISTS project_config (
            key TEXT PRIMARY KEY NOT NULL,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """,
}


def get_migration_versions() -> List[str]:
    return sorted(SCHEMA_MIGRATIONS)


def get_migration_sql(version: str) -> Optional[str]:
    return SCHEMA_MIGRATIONS.get(version)
