"""Tests for the Backlog.md CLI client and its plain-output parsers."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from backlog_jira_sync.core.backlog import (
    BacklogClient,
    parse_task_detail,
    parse_task_list,
)
from backlog_jira_sync.errors import LocalStoreError, NotFoundError

TASK_DETAIL = """\
File: /work/backlog/tasks/task-1 - Fix-login.md

Task task-1 - Fix login
==================================================

Status: ◐ In Progress
Assignee: @jdoe
Labels: auth, web
Priority: High
Created: 2026-01-01 10:00

Description:
--------------------------------------------------
Users cannot log in.

Second paragraph.

Acceptance Criteria:
--------------------------------------------------
- [x] #1 Login works
- [ ] #2 Tests added
"""

TASK_LIST = """\
To Do:
  task-2 - Write docs
In Progress:
  [HIGH] task-1 - Fix login
  task-3 - Ship it (Done) [@jdoe]
"""


def _detail(criteria: list[tuple[str, bool]]) -> str:
    lines = ["Task task-1 - Fix login", "", "Status: ○ To Do", ""]
    lines.append("Acceptance Criteria:")
    for n, (text, checked) in enumerate(criteria, start=1):
        lines.append(f"- [{'x' if checked else ' '}] #{n} {text}")
    return "\n".join(lines) + "\n"


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> Mock:
    result = Mock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


def _commands(mock_run) -> list[list[str]]:
    return [c.args[0][1:] for c in mock_run.call_args_list]


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


class TestParseTaskDetail:
    def test_full_task(self):
        task = parse_task_detail(TASK_DETAIL)
        assert task.id == "task-1"
        assert task.title == "Fix login"
        assert task.status == "In Progress"
        assert task.assignee == "jdoe"
        assert task.labels == ["auth", "web"]
        assert task.priority == "high"
        assert task.description == "Users cannot log in.\n\nSecond paragraph."
        assert [(c.index, c.text, c.checked) for c in task.acceptance_criteria] == [
            (1, "Login works", True),
            (2, "Tests added", False),
        ]

    def test_minimal_task(self):
        task = parse_task_detail("Task task-9 - Bare\n")
        assert task.status == "To Do"
        assert task.description == ""
        assert task.acceptance_criteria == []

    def test_missing_header(self):
        with pytest.raises(LocalStoreError, match="Failed to parse task id"):
            parse_task_detail("Status: To Do\n")


class TestParseTaskList:
    def test_grouped_output(self):
        tasks = parse_task_list(TASK_LIST)
        assert [(t.id, t.title, t.status) for t in tasks] == [
            ("task-2", "Write docs", "To Do"),
            ("task-1", "Fix login", "In Progress"),
            ("task-3", "Ship it", "Done"),
        ]
        assert tasks[2].assignee == "jdoe"

    def test_empty(self):
        assert parse_task_list("") == []


# ---------------------------------------------------------------------------
# BacklogClient
# ---------------------------------------------------------------------------


@patch("backlog_jira_sync.core.backlog.subprocess.run")
class TestBacklogClient:
    def test_get_task(self, mock_run):
        mock_run.return_value = _completed(TASK_DETAIL)

        task = BacklogClient("backlog", cwd="/work").get_task("1")

        assert task.id == "task-1"
        mock_run.assert_called_once_with(
            ["backlog", "task", "task-1", "--plain"],
            capture_output=True,
            text=True,
            timeout=60,
            cwd="/work",
        )

    def test_get_task_not_found(self, mock_run):
        mock_run.return_value = _completed(
            returncode=1, stderr="Task task-5 not found."
        )
        with pytest.raises(NotFoundError, match="Task not found: task-5"):
            BacklogClient().get_task("task-5")

    def test_empty_output_is_not_found(self, mock_run):
        mock_run.return_value = _completed("")
        with pytest.raises(NotFoundError):
            BacklogClient().get_task("task-5")

    def test_cli_failure(self, mock_run):
        mock_run.return_value = _completed(returncode=2, stderr="boom")
        with pytest.raises(
            LocalStoreError, match="Backlog CLI failed with code 2: boom"
        ):
            BacklogClient().list_tasks()

    def test_cli_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError("backlog")
        with pytest.raises(LocalStoreError, match="Install backlog.md"):
            BacklogClient().list_tasks()

    def test_cli_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["backlog"], 60)
        with pytest.raises(LocalStoreError, match="timed out"):
            BacklogClient().list_tasks()

    def test_list_tasks_with_status(self, mock_run):
        mock_run.return_value = _completed(TASK_LIST)
        tasks = BacklogClient().list_tasks(status="To Do")
        assert len(tasks) == 3
        assert _commands(mock_run) == [["task", "list", "--plain", "-s", "To Do"]]

    def test_update_task_fields(self, mock_run):
        mock_run.return_value = _completed()

        BacklogClient().update_task(
            "task-1",
            {
                "title": "New title",
                "description": "",
                "status": "Done",
                "labels": ["a", "b"],
                "priority": "HIGH",
            },
        )

        assert _commands(mock_run) == [
            [
                "task", "edit", "task-1",
                "-t", "New title",
                "-d", "",
                "-s", "Done",
                "-l", "a,b",
                "--priority", "high",
            ]
        ]

    def test_update_criteria_check_only(self, mock_run):
        mock_run.side_effect = [
            _completed(_detail([("A", False), ("B", True)])),
            _completed(),
        ]

        BacklogClient().update_task(
            "task-1",
            {
                "acceptance_criteria": [
                    {"text": "A", "checked": True},
                    {"text": "B", "checked": False},
                ]
            },
        )

        assert _commands(mock_run) == [
            ["task", "task-1", "--plain"],
            ["task", "edit", "task-1", "--check-ac", "1", "--uncheck-ac", "2"],
        ]

    def test_update_criteria_replaces_changed_texts(self, mock_run):
        mock_run.side_effect = [
            _completed(_detail([("Old one", False), ("Old two", False)])),
            _completed(),
            _completed(),
            _completed(_detail([("New", False)])),
            _completed(),
        ]

        BacklogClient().update_task(
            "task-1", {"acceptance_criteria": [{"text": "New", "checked": True}]}
        )

        assert _commands(mock_run) == [
            ["task", "task-1", "--plain"],
            ["task", "edit", "task-1", "--remove-ac", "2", "--remove-ac", "1"],
            ["task", "edit", "task-1", "--ac", "New"],
            ["task", "task-1", "--plain"],
            ["task", "edit", "task-1", "--check-ac", "1"],
        ]

    def test_create_task(self, mock_run):
        mock_run.side_effect = [
            _completed("Created task task-12\nFile: backlog/tasks/task-12.md\n"),
            _completed(),
        ]

        task_id = BacklogClient().create_task(
            {
                "title": "Imported",
                "description": "From Jira",
                "status": "To Do",
                "assignee": "jdoe",
                "acceptance_criteria": [
                    {"text": "First", "checked": False},
                    {"text": "Second", "checked": True},
                ],
            }
        )

        assert task_id == "task-12"
        assert _commands(mock_run) == [
            [
                "task", "create", "Imported",
                "-d", "From Jira",
                "-s", "To Do",
                "-a", "jdoe",
                "--ac", "First",
                "--ac", "Second",
                "--plain",
            ],
            ["task", "edit", "task-12", "--check-ac", "2"],
        ]

    def test_create_task_unparseable_output(self, mock_run):
        mock_run.return_value = _completed("Something happened\n")
        with pytest.raises(LocalStoreError, match="Failed to parse created task id"):
            BacklogClient().create_task({"title": "X"})
