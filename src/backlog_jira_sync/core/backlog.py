"""Local task store backed by the Backlog.md command line tool.

Every operation shells out to ``backlog ... --plain`` and parses the plain
text output.  Acceptance criteria are edited by index with ``--ac``,
``--remove-ac``, ``--check-ac`` and ``--uncheck-ac``.
"""

import logging
import re
import subprocess
from typing import Any

from ..errors import LocalStoreError, NotFoundError
from ..sync.models import AcceptanceCriterion, CriterionState, LocalTask
from ..validators import validate_task_id

logger = logging.getLogger(__name__)

CLI_TIMEOUT = 60

_TASK_HEADER_RE = re.compile(r"^Task\s+([A-Za-z]+-[\d.]+)\s+-\s+(.+)$")
_AC_LINE_RE = re.compile(r"^-\s+\[([ xX])\]\s+#(\d+)\s+(.+)$")
_LIST_LINE_RE = re.compile(
    r"^\s*(?:\[[A-Z]+\]\s+)?([A-Za-z]+-[\d.]+)\s+-\s+(.+?)"
    r"(?:\s+\(([^()]+)\))?(?:\s+\[@(.+?)\])?$"
)
_CREATED_ID_RE = re.compile(r"\b(task-[\d.]+)\b", re.IGNORECASE)
_STATUS_ICON_RE = re.compile(r"^[○◐●✔]\s*")
_DIVIDER_RE = re.compile(r"^[-=]{2,}$")

_SECTIONS = {
    "Description",
    "Acceptance Criteria",
    "Implementation Plan",
    "Implementation Notes",
    "Definition of Done",
}


def parse_task_detail(output: str) -> LocalTask:
    """Parse ``backlog task <id> --plain`` output.

    Raises:
        LocalStoreError: If the output carries no task header.
    """
    fields: dict[str, Any] = {"labels": [], "acceptance_criteria": []}
    section: str | None = None
    description: list[str] = []

    for line in output.splitlines():
        stripped = line.strip()
        header = _TASK_HEADER_RE.match(stripped)
        if header and "id" not in fields:
            fields["id"] = header.group(1).lower()
            fields["title"] = header.group(2).strip()
            continue
        if stripped.endswith(":") and stripped[:-1] in _SECTIONS:
            section = stripped[:-1]
            continue
        if _DIVIDER_RE.match(stripped):
            continue

        if section is None:
            key, _, value = stripped.partition(":")
            value = value.strip()
            if key == "Status":
                fields["status"] = _STATUS_ICON_RE.sub("", value)
            elif key == "Assignee":
                fields["assignee"] = value.lstrip("@") or None
            elif key == "Labels":
                fields["labels"] = [
                    label.strip() for label in value.split(",") if label.strip()
                ]
            elif key == "Priority":
                fields["priority"] = value.lower() or None
        elif section == "Description":
            description.append(line)
        elif section == "Acceptance Criteria":
            match = _AC_LINE_RE.match(stripped)
            if match:
                fields["acceptance_criteria"].append(
                    AcceptanceCriterion(
                        index=int(match.group(2)),
                        text=match.group(3).strip(),
                        checked=match.group(1).lower() == "x",
                    )
                )

    if "id" not in fields:
        raise LocalStoreError("Failed to parse task id from backlog output")

    fields["description"] = "\n".join(description).strip()
    fields.setdefault("status", "To Do")
    return LocalTask(**fields)


def parse_task_list(output: str) -> list[LocalTask]:
    """Parse ``backlog task list --plain`` output into task summaries.

    Plain lists are grouped under ``<Status>:`` headers; a status in
    parentheses after the title takes precedence.
    """
    tasks: list[LocalTask] = []
    group_status: str | None = None
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or _DIVIDER_RE.match(stripped):
            continue
        match = _LIST_LINE_RE.match(line)
        if match is None:
            if stripped.endswith(":"):
                group_status = stripped[:-1].strip()
            continue
        task_id, title, status, assignee = match.groups()
        tasks.append(
            LocalTask(
                id=task_id.lower(),
                title=title.strip(),
                status=status or group_status or "To Do",
                assignee=assignee,
            )
        )
    logger.debug("Parsed %d task(s) from list output", len(tasks))
    return tasks


class BacklogClient:
    """Run the ``backlog`` CLI for task reads and writes.

    Args:
        cli_path: Executable name or path.
        cwd: Project directory holding the ``backlog/`` folder.
    """

    def __init__(self, cli_path: str = "backlog", cwd: str | None = None):
        self.cli_path = cli_path
        self.cwd = cwd

    def _run(self, args: list[str], task_id: str | None = None) -> str:
        """Execute one CLI command and return its stdout.

        Raises:
            NotFoundError: If the CLI reports that *task_id* does not exist.
            LocalStoreError: For any other failure.
        """
        logger.debug("Executing %s %s", self.cli_path, " ".join(args))
        try:
            result = subprocess.run(
                [self.cli_path, *args],
                capture_output=True,
                text=True,
                timeout=CLI_TIMEOUT,
                cwd=self.cwd,
            )
        except FileNotFoundError as exc:
            raise LocalStoreError(
                f"Backlog CLI '{self.cli_path}' not found. Install backlog.md "
                "or set backlog.cli_path in the config."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise LocalStoreError(
                f"Backlog CLI timed out after {CLI_TIMEOUT}s: {' '.join(args)}"
            ) from exc

        if result.returncode != 0:
            message = (result.stderr or result.stdout).strip()
            if task_id is not None and "not found" in message.lower():
                raise NotFoundError("task", task_id)
            logger.error(
                "Backlog CLI failed with code %d: %s", result.returncode, message
            )
            raise LocalStoreError(
                f"Backlog CLI failed with code {result.returncode}: {message}"
            )
        return result.stdout

    def get_task(self, task_id: str) -> LocalTask:
        task_id = validate_task_id(task_id)
        output = self._run(["task", task_id, "--plain"], task_id=task_id)
        if not output.strip():
            raise NotFoundError("task", task_id)
        return parse_task_detail(output)

    def list_tasks(self, status: str | None = None) -> list[LocalTask]:
        args = ["task", "list", "--plain"]
        if status:
            args += ["-s", status]
        return parse_task_list(self._run(args))

    def update_task(self, task_id: str, fields: dict[str, Any]) -> None:
        """Apply field updates; acceptance criteria are reconciled by index."""
        task_id = validate_task_id(task_id)
        args = self._field_args(fields)
        if args:
            self._run(["task", "edit", task_id, *args], task_id=task_id)
        if "acceptance_criteria" in fields:
            self._set_criteria(
                task_id,
                [
                    CriterionState.model_validate(c)
                    for c in fields["acceptance_criteria"]
                ],
            )
        logger.info("Task %s updated: %s", task_id, ", ".join(sorted(fields)))

    def create_task(self, fields: dict[str, Any]) -> str:
        """Create a task and return its id."""
        criteria = [
            CriterionState.model_validate(c)
            for c in fields.get("acceptance_criteria") or []
        ]
        args = ["task", "create", fields["title"]]
        args += self._field_args(
            {k: v for k, v in fields.items() if k != "title"}
        )
        for criterion in criteria:
            args += ["--ac", criterion.text]
        args.append("--plain")

        match = _CREATED_ID_RE.search(self._run(args))
        if match is None:
            raise LocalStoreError("Failed to parse created task id")
        task_id = match.group(1).lower()

        checked = [str(i) for i, c in enumerate(criteria, start=1) if c.checked]
        if checked:
            self._run(
                ["task", "edit", task_id, *_flag_each("--check-ac", checked)],
                task_id=task_id,
            )
        logger.info("Created task %s", task_id)
        return task_id

    @staticmethod
    def _field_args(fields: dict[str, Any]) -> list[str]:
        args: list[str] = []
        if fields.get("title"):
            args += ["-t", fields["title"]]
        if "description" in fields:
            args += ["-d", fields["description"] or ""]
        if fields.get("status"):
            args += ["-s", fields["status"]]
        if fields.get("assignee"):
            args += ["-a", fields["assignee"]]
        if "labels" in fields:
            args += ["-l", ",".join(fields["labels"] or [])]
        if fields.get("priority"):
            args += ["--priority", fields["priority"].lower()]
        return args

    def _set_criteria(
        self, task_id: str, target: list[CriterionState]
    ) -> None:
        current = sorted(
            self.get_task(task_id).acceptance_criteria, key=lambda a: a.index
        )
        if [c.text for c in current] != [t.text for t in target]:
            if current:
                # Highest index first so earlier indices stay valid.
                removals = [str(c.index) for c in reversed(current)]
                self._run(
                    ["task", "edit", task_id, *_flag_each("--remove-ac", removals)],
                    task_id=task_id,
                )
            if target:
                self._run(
                    [
                        "task",
                        "edit",
                        task_id,
                        *_flag_each("--ac", [t.text for t in target]),
                    ],
                    task_id=task_id,
                )
            current = sorted(
                self.get_task(task_id).acceptance_criteria,
                key=lambda a: a.index,
            )

        check: list[str] = []
        uncheck: list[str] = []
        for existing, wanted in zip(current, target):
            if existing.checked != wanted.checked:
                (check if wanted.checked else uncheck).append(str(existing.index))
        args = _flag_each("--check-ac", check) + _flag_each("--uncheck-ac", uncheck)
        if args:
            self._run(["task", "edit", task_id, *args], task_id=task_id)


def _flag_each(flag: str, values: list[str]) -> list[str]:
    args: list[str] = []
    for value in values:
        args += [flag, value]
    return args
