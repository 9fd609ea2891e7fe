"""Configuration for Dev Agent.

Repository settings are stored as key/value rows in the project database
and checked against :data:`CONFIG_SCHEMA`. Process-level settings
(project root, database path, GitHub token) come from the environment.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .errors import ConfigError
from .models import GoalStatus

PROJECT_ROOT_ENV = "DEV_AGENT_PROJECT_ROOT"
DATABASE_ENV = "DEV_AGENT_DB"
GITHUB_TOKEN_ENV = "GITHUB_TOKEN"
GITHUB_RETRIES_ENV = "DEV_AGENT_GITHUB_RETRIES"

DEFAULT_DB_NAME = ".dev-agent.db"
PROJECT_MARKERS = (DEFAULT_DB_NAME, ".git")


def _any_string(value: str) -> None:
    return None


def _non_empty(value: str) -> None:
    if not value.strip():
        raise ValueError("must not be empty")


def _branch_component(value: str) -> None:
    _non_empty(value)
    if re.search(r"[\s~^:?*\[\\]|\.\.|@\{", value) or value.startswith("/") or value.endswith("/"):
        raise ValueError(f"'{value}' is not a valid git branch name")


def _goal_status(value: str) -> None:
    GoalStatus.parse(value)


def _regex(value: str) -> None:
    try:
        re.compile(value)
    except re.error as e:
        raise ValueError(f"invalid regular expression: {e}") from None


def _positive_int(value: str) -> None:
    try:
        number = int(value)
    except ValueError:
        raise ValueError(f"'{value}' is not an integer") from None
    if number < 1:
        raise ValueError("must be at least 1")


@dataclass(frozen=True, slots=True)
class ConfigKey:
    """A known configuration key with its default and value check."""

    name: str
    default: str
    description: str
    check: Callable[[str], None] = _any_string

    def validate(self, value: str) -> str:
        try:
            self.check(value)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {self.name}: {e}") from None
        return value


CONFIG_SCHEMA: Dict[str, ConfigKey] = {
    key.name: key
    for key in (
        ConfigKey("github.owner", "", "Owner of the GitHub repository issues are synced with"),
        ConfigKey("github.repo", "", "Name of the GitHub repository issues are synced with"),
        ConfigKey("branches.main", "main", "Production branch", _branch_component),
        ConfigKey("branches.develop", "develop", "Integration branch goals start from", _branch_component),
        ConfigKey("branches.feature_prefix", "feature", "Prefix of goal feature branches", _branch_component),
        ConfigKey("branches.release_prefix", "release", "Prefix of release branches", _branch_component),
        ConfigKey("goals.default_status", GoalStatus.TODO.value, "Status new goals start in", _goal_status),
        ConfigKey("goals.id_pattern", r"^g-[a-z0-9]{6}$", "Pattern goal ids must match", _regex),
        ConfigKey("goals.in_progress_limit", "3", "Warn when this many other goals are in progress", _positive_int),
        ConfigKey("git.remote", "origin", "Remote pulled from and pushed to", _non_empty),
    )
}


def validate_config_value(key: str, value: str) -> str:
    """Check ``value`` against the schema entry for ``key``."""
    entry = CONFIG_SCHEMA.get(key)
    if entry is None:
        raise ConfigError(
            f"Unknown configuration key '{key}'",
            suggestion=f"Known keys: {', '.join(sorted(CONFIG_SCHEMA))}",
        )
    if not isinstance(value, str):
        raise ConfigError(f"Configuration value for {key} must be a string")
    return entry.validate(value)


def default_config() -> Dict[str, str]:
    return {name: key.default for name, key in CONFIG_SCHEMA.items()}


@dataclass(frozen=True, slots=True)
class WorkflowSettings:
    """Typed view of the repository settings used by the workflow."""

    github_owner: str = ""
    github_repo: str = ""
    main_branch: str = "main"
    develop_branch: str = "develop"
    feature_prefix: str = "feature"
    release_prefix: str = "release"
    default_status: GoalStatus = GoalStatus.TODO
    id_pattern: str = r"^g-[a-z0-9]{6}$"
    in_progress_limit: int = 3
    remote: str = "origin"

    @classmethod
    def from_mapping(cls, values: Dict[str, str]) -> "WorkflowSettings":
        """Build settings from stored values layered over the defaults."""
        merged = default_config()
        for key, value in values.items():
            if key in CONFIG_SCHEMA:
                merged[key] = validate_config_value(key, value)
        return cls(
            github_owner=merged["github.owner"],
            github_repo=merged["github.repo"],
            main_branch=merged["branches.main"],
            develop_branch=merged["branches.develop"],
            feature_prefix=merged["branches.feature_prefix"],
            release_prefix=merged["branches.release_prefix"],
            default_status=GoalStatus.parse(merged["goals.default_status"]),
            id_pattern=merged["goals.id_pattern"],
            in_progress_limit=int(merged["goals.in_progress_limit"]),
            remote=merged["git.remote"],
        )

    @classmethod
    def load(cls, storage) -> "WorkflowSettings":
        return cls.from_mapping({entry.key: entry.value for entry in storage.list_config()})

    @property
    def github_configured(self) -> bool:
        return bool(self.github_owner and self.github_repo)


# ----------------------------------------------------------------------
# Environment
# ----------------------------------------------------------------------


def _candidate_bases(start: Optional[Path] = None) -> List[Path]:
    cwd = (start or Path.cwd()).resolve()
    return [cwd, *cwd.parents]


def locate_project_root(start: Optional[Path] = None, markers: Sequence[str] = PROJECT_MARKERS) -> Optional[Path]:
    """Return the nearest directory (from ``start`` upwards) holding a project marker."""
    for base in _candidate_bases(start):
        for marker in markers:
            if (base / marker).exists():
                return base
    return None


def resolve_project_root(root: Optional[str] = None) -> Path:
    """Resolve the project root from an explicit path, the environment or the cwd."""
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ConfigError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ConfigError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected = locate_project_root()
    if detected:
        return detected

    raise ConfigError(
        "Unable to determine project root automatically. Provide the 'root' argument "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def resolve_database_path(root: Path) -> Path:
    env_db = os.getenv(DATABASE_ENV)
    if env_db:
        path = Path(env_db).expanduser()
        return path if path.is_absolute() else root / path
    return root / DEFAULT_DB_NAME


def github_token() -> Optional[str]:
    return os.getenv(GITHUB_TOKEN_ENV) or None


def github_retries(default: int = 2) -> int:
    try:
        retries = int(os.getenv(GITHUB_RETRIES_ENV, str(default)))
    except ValueError:
        retries = default
    return max(0, min(5, retries))
