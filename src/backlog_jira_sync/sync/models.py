"""Pydantic models for the sync engine.

Defines the data contracts shared by all sync modules:

- ``LocalTask`` / ``RemoteIssue``: structured records from each tracker.
- ``CanonicalPayload``: side-agnostic, order-independent comparison form.
- ``Mapping``, ``Snapshot``, ``SyncStateRecord``, ``OpLogEntry``: persisted
  state.
- ``SyncStatus``: classification of one entity against its baselines.
- ``FieldConflict``, ``Decision``, ``Resolution``: conflict handling.
- ``EntityOutcome``, ``SyncReport``: results of a run.
- ``TaskSyncView``: a local task composed with its remote sync metadata.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class Side(str, Enum):
    """The two owners of a synchronised entity."""

    LOCAL = "local"
    REMOTE = "remote"


class SyncStatus(str, Enum):
    """Sync state of one mapped entity, derived from hashes."""

    IN_SYNC = "InSync"
    NEEDS_PUSH = "NeedsPush"
    NEEDS_PULL = "NeedsPull"
    CONFLICT = "Conflict"
    UNKNOWN = "Unknown"


class SyncAction(str, Enum):
    """Action taken (or intended, in dry-run) for one entity."""

    NONE = "none"
    BASELINE = "baseline"
    PUSH = "push"
    PULL = "pull"
    CREATE_REMOTE = "create_remote"
    IMPORT = "import"
    LINK = "link"
    RESOLVE = "resolve"


class OutcomeKind(str, Enum):
    """Which bucket of the run summary an entity lands in."""

    SYNCED = "synced"
    CONFLICT = "conflict"
    SKIPPED = "skipped"
    FAILED = "failed"


class ConflictStrategy(str, Enum):
    """How a detected conflict is resolved."""

    PREFER_LOCAL = "prefer-local"
    PREFER_REMOTE = "prefer-remote"
    PROMPT = "prompt"
    MANUAL = "manual"


MANUAL_RESOLUTION_REQUIRED = "manual-resolution-required"


# ---------------------------------------------------------------------------
# Tracker records
# ---------------------------------------------------------------------------


class AcceptanceCriterion(BaseModel):
    """One acceptance criterion of a local task (1-based ``index``)."""

    index: int
    text: str
    checked: bool = False

    model_config = {"frozen": True}


class LocalTask(BaseModel):
    """A task owned by the local (Backlog.md) tracker."""

    id: str
    title: str
    description: str = ""
    status: str
    assignee: str | None = None
    priority: str | None = None
    labels: list[str] = []
    acceptance_criteria: list[AcceptanceCriterion] = []

    model_config = {"frozen": True}


class RemoteIssue(BaseModel):
    """An issue owned by the remote (Jira) tracker."""

    key: str
    id: str
    summary: str
    description: str | None = None
    status: str
    issue_type: str = "Task"
    assignee: str | None = None
    priority: str | None = None
    labels: list[str] = []

    model_config = {"frozen": True}


class Transition(BaseModel):
    """A workflow transition available on a remote issue."""

    id: str
    name: str
    to_status: str

    model_config = {"frozen": True}


class SearchResult(BaseModel):
    """One page of remote issue search results."""

    issues: list[RemoteIssue] = []
    total: int = 0

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Canonical form
# ---------------------------------------------------------------------------


class CriterionState(BaseModel):
    """Acceptance criterion as compared between sides (position implied)."""

    text: str
    checked: bool = False

    model_config = {"frozen": True}


class CanonicalPayload(BaseModel):
    """Normalized, side-agnostic representation used for comparison.

    Optional scalars are stored as ``""`` so that "absent" and "empty"
    hash identically.
    """

    title: str
    description: str = ""
    status: str
    priority: str = ""
    assignee: str = ""
    labels: list[str] = []
    acceptance_criteria: list[CriterionState] = []

    model_config = {"frozen": True}


TRACKED_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "status",
    "assignee",
    "priority",
    "labels",
    "acceptance_criteria",
)


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


class Mapping(BaseModel):
    """One-to-one link between a local task id and a remote issue key."""

    local_id: str
    remote_key: str
    created_at: str
    updated_at: str

    model_config = {"frozen": True}


class Snapshot(BaseModel):
    """Last payload considered synced for one side of a mapped entity."""

    entity_id: str
    side: Side
    hash: str
    payload: CanonicalPayload
    updated_at: str

    model_config = {"frozen": True}


class SyncStateRecord(BaseModel):
    """Per-entity sync metadata.

    Attributes:
        local_id: Local task id.
        last_sync_at: ISO 8601 timestamp of the last successful sync.
        conflict_state: Non-null only while awaiting manual resolution.
        strategy: Strategy used by the last resolution, if any.
    """

    local_id: str
    last_sync_at: str | None = None
    conflict_state: str | None = None
    strategy: str | None = None

    model_config = {"frozen": True}


class OpLogEntry(BaseModel):
    """One append-only audit log entry."""

    id: int
    timestamp: str
    operation: str
    local_id: str | None = None
    remote_key: str | None = None
    outcome: str
    details: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class FieldConflict(BaseModel):
    """A single field that diverged from its baseline on both sides.

    Values are canonical (see ``CanonicalPayload``).  ``suggested_value``
    carries a clean three-way merge result when one exists.
    """

    field: str
    local_value: Any = None
    remote_value: Any = None
    base_local_value: Any = None
    base_remote_value: Any = None
    suggested_value: Any = None

    model_config = {"frozen": True}


class Decision(BaseModel):
    """A per-field choice returned by a decision source.

    ``value`` is only used when ``source`` is ``"explicit"``.
    """

    field: str
    source: Literal["local", "remote", "explicit"]
    value: Any = None

    model_config = {"frozen": True}


class Resolution(BaseModel):
    """What a conflict resolver decided for one entity.

    Attributes:
        outcome: ``"local"`` (local overwrites remote), ``"remote"``
            (remote overwrites local), ``"merged"`` (field-by-field
            merge driven by ``decisions``) or ``"manual"`` (no writes).
        label: Short label recorded in the run summary.
        decisions: Per-field choices for ``"merged"``.
    """

    outcome: Literal["local", "remote", "merged", "manual"]
    label: str
    decisions: list[Decision] = []

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class EntityOutcome(BaseModel):
    """Result of processing one entity in a run."""

    local_id: str
    remote_key: str | None = None
    kind: OutcomeKind
    action: SyncAction = SyncAction.NONE
    state: SyncStatus | None = None
    resolution: str | None = None
    reason: str | None = None
    error: str | None = None
    error_type: str | None = None
    retry_after: float | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one push/pull/sync run.

    Attributes:
        operation: ``"push"``, ``"pull"``, ``"sync"``, ``"import"`` or
            ``"auto_map"``.
        dry_run: Whether writes were suppressed.
        outcomes: Per-entity outcomes in completion order.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    operation: str
    dry_run: bool = False
    outcomes: list[EntityOutcome] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _of_kind(self, kind: OutcomeKind) -> list[EntityOutcome]:
        return [o for o in self.outcomes if o.kind == kind]

    @property
    def synced(self) -> list[EntityOutcome]:
        return self._of_kind(OutcomeKind.SYNCED)

    @property
    def conflicts(self) -> list[EntityOutcome]:
        return self._of_kind(OutcomeKind.CONFLICT)

    @property
    def failed(self) -> list[EntityOutcome]:
        return self._of_kind(OutcomeKind.FAILED)

    @property
    def skipped(self) -> list[EntityOutcome]:
        return self._of_kind(OutcomeKind.SKIPPED)

    @property
    def success(self) -> bool:
        """``True`` when no entity failed."""
        return not self.failed

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 on full success, 1 if any entity failed."""
        return 0 if self.success else 1

    @property
    def rate_limited(self) -> bool:
        """``True`` if any entity failed because of a rate-limit signal."""
        return any(o.error_type == "RateLimitError" for o in self.failed)

    @property
    def retry_after(self) -> float | None:
        """Longest server-suggested wait among the failed entities."""
        hints = [o.retry_after for o in self.failed if o.retry_after is not None]
        return max(hints) if hints else None

    def summary(self) -> str:
        """Format a short multi-line summary with counts by bucket."""
        lines = [
            f"{self.operation.capitalize()} report"
            + (" (dry run)" if self.dry_run else ""),
            f"  Synced:    {len(self.synced)}",
            f"  Conflicts: {len(self.conflicts)}",
            f"  Failed:    {len(self.failed)}",
            f"  Skipped:   {len(self.skipped)}",
            f"  Total:     {len(self.outcomes)}",
        ]
        return "\n".join(lines)


class TaskSyncView(BaseModel):
    """A local task composed with its remote sync metadata for display."""

    task: LocalTask
    remote_key: str | None = None
    remote_url: str | None = None
    last_sync_at: str | None = None
    conflict_state: str | None = None
    state: SyncStatus | None = None
    strategy: str | None = Field(default=None)

    model_config = {"frozen": True}
