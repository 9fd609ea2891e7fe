"""Dev Agent - goal tracking with git branch automation and GitHub issue sync."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "WorkflowManager",
    "StorageService",
    "GitService",
    "GitHubService",
    "ValidationService",
    "Goal",
    "GoalStatus",
    "CommandResult",
]
