"""
Input validation functions for backlog-jira-sync.

Provides validation for local task ids, remote issue keys and project keys
so that malformed identifiers are rejected before any tracker is called.
"""

import re

from .errors import ValidationError

_TASK_ID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*-\d+(?:\.\d+)*$")
_ISSUE_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]+-\d+$")
_PROJECT_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]+$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Task id")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def check_task_id(task_id: str) -> tuple[bool, str]:
    """
    Validate a local task id such as ``task-12`` or ``task-12.1``.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.
    """
    if not task_id or not task_id.strip():
        return (False, format_validation_error("Task id", "cannot be empty"))
    if not _TASK_ID_RE.match(task_id.strip()):
        return (
            False,
            format_validation_error(
                "Task id", f"'{task_id}' must look like 'task-12'"
            ),
        )
    return (True, "")


def check_issue_key(issue_key: str) -> tuple[bool, str]:
    """
    Validate a remote issue key such as ``PROJ-42``.

    Returns:
        Tuple of (is_valid, error_message).
    """
    if not issue_key or not issue_key.strip():
        return (
            False,
            format_validation_error("Issue key", "cannot be empty"),
        )
    if not _ISSUE_KEY_RE.match(issue_key.strip().upper()):
        return (
            False,
            format_validation_error(
                "Issue key", f"'{issue_key}' must look like 'PROJ-42'"
            ),
        )
    return (True, "")


def check_project_key(project_key: str) -> tuple[bool, str]:
    """Validate a remote project key such as ``PROJ``."""
    if not project_key or not project_key.strip():
        return (
            False,
            format_validation_error("Project key", "cannot be empty"),
        )
    if not _PROJECT_KEY_RE.match(project_key.strip().upper()):
        return (
            False,
            format_validation_error(
                "Project key",
                f"'{project_key}' must be letters, digits or '_'",
            ),
        )
    return (True, "")


def validate_task_id(task_id: str) -> str:
    """Return the normalised task id (bare numbers gain a ``task-`` prefix).

    Raises:
        ValidationError: If the id is malformed.
    """
    value = (task_id or "").strip()
    if value.isdigit():
        value = f"task-{value}"
    valid, reason = check_task_id(value)
    if not valid:
        raise ValidationError(reason)
    return value.lower()


def validate_issue_key(issue_key: str) -> str:
    """Return the upper-cased issue key.

    Raises:
        ValidationError: If the key is malformed.
    """
    valid, reason = check_issue_key(issue_key)
    if not valid:
        raise ValidationError(reason)
    return issue_key.strip().upper()


def validate_project_key(project_key: str) -> str:
    """Return the upper-cased project key.

    Raises:
        ValidationError: If the key is malformed.
    """
    valid, reason = check_project_key(project_key)
    if not valid:
        raise ValidationError(reason)
    return project_key.strip().upper()
