"""Canonical normalization and content hashing.

Local tasks and remote issues use different vocabularies and formats, so
each side is converted into a ``CanonicalPayload`` before hashing.  Hashes
are only ever compared against the archived hash of the *same* side, but
the canonical form still removes formatting-only noise so that a cosmetic
edit (trailing whitespace, CRLF line endings, label order) does not show
up as a content change.

Acceptance criteria live in a dedicated list on the local side and inside
the description body on the remote side.  They are embedded as::

    <description>

    Acceptance Criteria:
    - [ ] first criterion
    - [x] second criterion

and parsed back out of that block on read.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable

from .models import (
    CanonicalPayload,
    CriterionState,
    LocalTask,
    RemoteIssue,
    Side,
)

AC_HEADER = "Acceptance Criteria:"

_AC_HEADER_RE = re.compile(
    r"^\s*(?:#{1,6}\s*)?acceptance criteria:?\s*$", re.IGNORECASE
)
_AC_ITEM_RE = re.compile(
    r"^\s*(?:[-*+]|\d+[.)])\s+(?:\[(?P<mark>[ xX])\]\s*)?(?P<text>.*?)\s*$"
)
_AC_NUMBER_PREFIX_RE = re.compile(r"^#\d+\s+")
_WHITESPACE_RE = re.compile(r"\s+")

_STATUS_MAP: dict[str, str] = {
    "to do": "todo",
    "todo": "todo",
    "backlog": "todo",
    "in progress": "in_progress",
    "inprogress": "in_progress",
    "in-progress": "in_progress",
    "doing": "in_progress",
    "done": "done",
    "completed": "done",
    "closed": "done",
    "resolved": "done",
    "blocked": "blocked",
    "on hold": "blocked",
}


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def normalize_text(text: str | None) -> str:
    """Normalise a multi-line text body.

    1. Strip BOM (``\\ufeff``).
    2. Replace ``\\r\\n`` (and stray ``\\r``) with ``\\n``.
    3. Right-strip each line.
    4. Strip leading and trailing empty lines.
    """
    if not text:
        return ""
    text = text.lstrip("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and lines[-1] == "":
        lines.pop()
    while lines and lines[0] == "":
        lines.pop(0)
    return "\n".join(lines)


def collapse_whitespace(value: str | None) -> str:
    """Collapse internal whitespace runs to one space and trim."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_status(status: str | None) -> str:
    """Map a status name from either side to its canonical token.

    Unknown statuses are lowercased with whitespace collapsed.
    """
    key = collapse_whitespace(status).lower()
    return _STATUS_MAP.get(key, key)


def normalize_labels(labels: Iterable[str] | None) -> list[str]:
    """Lowercase, trim, dedupe and sort labels (empty labels dropped)."""
    if not labels:
        return []
    return sorted(
        {collapse_whitespace(label).lower() for label in labels} - {""}
    )


# ---------------------------------------------------------------------------
# Acceptance criteria codec
# ---------------------------------------------------------------------------


def _find_ac_block(lines: list[str]) -> tuple[int, int] | None:
    """Return ``(start, end)`` line indices of the AC block, or ``None``.

    ``start`` is the header line; ``end`` is one past the last item.
    """
    for start, line in enumerate(lines):
        if not _AC_HEADER_RE.match(line):
            continue
        end = start + 1
        # Tolerate blank lines between the header and the first item.
        while end < len(lines) and not lines[end].strip():
            end += 1
        if end >= len(lines) or not _AC_ITEM_RE.match(lines[end]):
            return start, start + 1
        while end < len(lines) and lines[end].strip():
            if not _AC_ITEM_RE.match(lines[end]):
                break
            end += 1
        return start, end
    return None


def extract_acceptance_criteria(
    description: str | None,
) -> list[CriterionState]:
    """Parse acceptance criteria out of a description body.

    Only bullet, numbered and checkbox lines directly following an
    ``Acceptance Criteria`` header are considered.  Items without a
    checkbox are treated as unchecked.
    """
    lines = normalize_text(description).split("\n")
    block = _find_ac_block(lines)
    if block is None:
        return []
    start, end = block
    criteria: list[CriterionState] = []
    for line in lines[start + 1 : end]:
        match = _AC_ITEM_RE.match(line)
        if match is None:
            continue
        text = _AC_NUMBER_PREFIX_RE.sub("", match.group("text"))
        text = collapse_whitespace(text)
        if not text:
            continue
        criteria.append(
            CriterionState(
                text=text,
                checked=(match.group("mark") or " ").lower() == "x",
            )
        )
    return criteria


def strip_acceptance_criteria(description: str | None) -> str:
    """Return *description* with its acceptance criteria block removed."""
    lines = normalize_text(description).split("\n")
    block = _find_ac_block(lines)
    if block is None:
        return normalize_text("\n".join(lines))
    start, end = block
    return normalize_text("\n".join(lines[:start] + lines[end:]))


def format_acceptance_criteria(
    criteria: Iterable[CriterionState],
) -> str:
    """Render criteria as an ``Acceptance Criteria:`` checkbox block."""
    items = [
        f"- [{'x' if c.checked else ' '}] {c.text}" for c in criteria
    ]
    if not items:
        return ""
    return "\n".join([AC_HEADER, *items])


def merge_description_with_ac(
    description: str | None, criteria: Iterable[CriterionState]
) -> str:
    """Embed *criteria* into *description* the way they are read back.

    Any existing criteria block in *description* is replaced.
    """
    body = strip_acceptance_criteria(description)
    block = format_acceptance_criteria(criteria)
    if not block:
        return body
    if not body:
        return block
    return f"{body}\n\n{block}"


# ---------------------------------------------------------------------------
# Canonical payloads
# ---------------------------------------------------------------------------


def normalize_local(task: LocalTask) -> CanonicalPayload:
    """Build the canonical payload of a local task."""
    criteria = [
        CriterionState(
            text=collapse_whitespace(ac.text), checked=ac.checked
        )
        for ac in sorted(task.acceptance_criteria, key=lambda a: a.index)
    ]
    return CanonicalPayload(
        title=collapse_whitespace(task.title),
        description=strip_acceptance_criteria(task.description),
        status=normalize_status(task.status),
        priority=collapse_whitespace(task.priority).lower(),
        assignee=collapse_whitespace(task.assignee).lower(),
        labels=normalize_labels(task.labels),
        acceptance_criteria=criteria,
    )


def normalize_remote(issue: RemoteIssue) -> CanonicalPayload:
    """Build the canonical payload of a remote issue."""
    return CanonicalPayload(
        title=collapse_whitespace(issue.summary),
        description=strip_acceptance_criteria(issue.description),
        status=normalize_status(issue.status),
        priority=collapse_whitespace(issue.priority).lower(),
        assignee=collapse_whitespace(issue.assignee).lower(),
        labels=normalize_labels(issue.labels),
        acceptance_criteria=extract_acceptance_criteria(issue.description),
    )


def normalize(record: LocalTask | RemoteIssue, side: Side) -> CanonicalPayload:
    """Normalise a raw record from *side* into a canonical payload.

    Raises:
        TypeError: If *record* does not belong to *side*.
    """
    if side is Side.LOCAL and isinstance(record, LocalTask):
        return normalize_local(record)
    if side is Side.REMOTE and isinstance(record, RemoteIssue):
        return normalize_remote(record)
    raise TypeError(
        f"Cannot normalise {type(record).__name__} as {side.value} record"
    )


def stable_json(payload: CanonicalPayload) -> str:
    """Serialise *payload* with sorted keys and no insignificant spaces."""
    return json.dumps(
        payload.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def hash_payload(payload: CanonicalPayload) -> str:
    """Return the SHA-256 hex digest of *payload*'s stable JSON form."""
    return hashlib.sha256(stable_json(payload).encode("utf-8")).hexdigest()
