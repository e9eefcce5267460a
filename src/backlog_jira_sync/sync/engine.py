"""Core sync engine that orchestrates push, pull and bidirectional sync.

The ``SyncEngine`` ties together the store, normalizer, classifier,
conflict detector, field mapper and resolver.  For every entity it:

1. Resolves the mapping (unmapped entities are skipped).
2. Fetches the current local task and remote issue.
3. Normalises and hashes both sides.
4. Classifies against the archived baselines of each side.
5. Branches: nothing to do, one-directional apply, or detect + resolve.
6. Re-fetches written records and stores both baselines together.
7. Records sync metadata and appends an audit entry.

Entities are processed in fixed-width concurrent batches.  Error handling
is per-entity: a single failure is reported and the batch continues.
Invalid ids, strategies and a missing project key are rejected with
``ValidationError`` before any entity is processed.  Once the batch has
started, every error (collaborator validation errors included) only
fails its own entity.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from ..core.async_utils import run_batched
from ..errors import (
    ConflictError,
    DuplicateMappingError,
    RateLimitError,
    SyncError,
    ValidationError,
)
from ..validators import validate_issue_key, validate_task_id
from .classifier import classify
from .conflicts import changed_fields, detect_field_conflicts
from .mapping import FieldMapper
from .models import (
    MANUAL_RESOLUTION_REQUIRED,
    TRACKED_FIELDS,
    AcceptanceCriterion,
    CanonicalPayload,
    ConflictStrategy,
    CriterionState,
    EntityOutcome,
    LocalTask,
    Mapping,
    OutcomeKind,
    RemoteIssue,
    Resolution,
    SearchResult,
    Snapshot,
    SyncAction,
    SyncReport,
    SyncStatus,
    TaskSyncView,
    Transition,
)
from .normalizer import (
    collapse_whitespace,
    extract_acceptance_criteria,
    hash_payload,
    merge_description_with_ac,
    normalize_labels,
    normalize_local,
    normalize_remote,
    strip_acceptance_criteria,
)
from .resolver import DecisionSource, create_resolver
from .store import SyncStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
IMPORT_PAGE_SIZE = 50
AUTO_MAP_CANDIDATES = 5
DEFAULT_MIN_SCORE = 0.7


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class LocalTaskStore(Protocol):
    """The local task tracker."""

    def get_task(self, task_id: str) -> LocalTask: ...

    def list_tasks(self, status: str | None = None) -> list[LocalTask]: ...

    def update_task(self, task_id: str, fields: dict[str, Any]) -> None: ...

    def create_task(self, fields: dict[str, Any]) -> str: ...


class RemoteIssueStore(Protocol):
    """The remote issue tracker."""

    def get_issue(self, key: str) -> RemoteIssue: ...

    def search_issues(
        self, jql: str, max_results: int = 50, start_at: int = 0
    ) -> SearchResult: ...

    def update_issue(self, key: str, fields: dict[str, Any]) -> None: ...

    def transition_issue(
        self, key: str, transition_id: str, comment: str | None = None
    ) -> None: ...

    def create_issue(
        self,
        project_key: str,
        issue_type: str,
        summary: str,
        description: str | None = None,
        assignee: str | None = None,
        priority: str | None = None,
        labels: list[str] | None = None,
    ) -> RemoteIssue: ...

    def get_transitions(self, key: str) -> list[Transition]: ...


# ---------------------------------------------------------------------------
# Entity inspection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityInspection:
    """Current records, hashes, baselines and classification of one entity."""

    mapping: Mapping
    task: LocalTask
    issue: RemoteIssue
    local_payload: CanonicalPayload
    remote_payload: CanonicalPayload
    local_hash: str
    remote_hash: str
    base_local: Snapshot | None
    base_remote: Snapshot | None
    status: SyncStatus


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Record translation helpers
# ---------------------------------------------------------------------------


def criteria_states(task: LocalTask) -> list[CriterionState]:
    """Return a task's acceptance criteria in index order."""
    return [
        CriterionState(text=collapse_whitespace(ac.text), checked=ac.checked)
        for ac in sorted(task.acceptance_criteria, key=lambda a: a.index)
    ]


def _to_criteria(states: list[Any]) -> list[AcceptanceCriterion]:
    return [
        AcceptanceCriterion(
            index=position, text=state.text, checked=state.checked
        )
        for position, state in enumerate(
            (CriterionState.model_validate(s) for s in states), start=1
        )
    ]


def local_fields_from_remote(
    task_id: str, issue: RemoteIssue, mapper: FieldMapper
) -> LocalTask:
    """Express a remote issue in the local task vocabulary."""
    return LocalTask(
        id=task_id,
        title=issue.summary,
        description=strip_acceptance_criteria(issue.description),
        status=mapper.to_local_status(issue.status),
        assignee=issue.assignee,
        priority=mapper.to_local_priority(issue.priority),
        labels=list(issue.labels),
        acceptance_criteria=_to_criteria(
            extract_acceptance_criteria(issue.description)
        ),
    )


def build_local_updates(
    task: LocalTask, target: LocalTask
) -> dict[str, Any]:
    """Return the local fields that must change for *task* to match *target*."""
    updates: dict[str, Any] = {}
    if collapse_whitespace(target.title) != collapse_whitespace(task.title):
        updates["title"] = target.title
    target_description = strip_acceptance_criteria(target.description)
    if target_description != strip_acceptance_criteria(task.description):
        updates["description"] = target_description
    if target.status.lower() != task.status.lower():
        updates["status"] = target.status
    if (target.assignee or "").lower() != (task.assignee or "").lower():
        updates["assignee"] = target.assignee
    if (target.priority or "").lower() != (task.priority or "").lower():
        updates["priority"] = target.priority
    if normalize_labels(target.labels) != normalize_labels(task.labels):
        updates["labels"] = list(target.labels)
    target_criteria = criteria_states(target)
    if target_criteria != criteria_states(task):
        updates["acceptance_criteria"] = target_criteria
    return updates


def build_remote_updates(
    target: LocalTask, issue: RemoteIssue, mapper: FieldMapper
) -> tuple[dict[str, Any], str | None]:
    """Return ``(fields, target_status)`` needed for *issue* to match *target*.

    ``target_status`` is the local status to transition to, or ``None``
    when the remote status already represents it.
    """
    fields: dict[str, Any] = {}
    if collapse_whitespace(target.title) != collapse_whitespace(issue.summary):
        fields["summary"] = target.title
    target_criteria = criteria_states(target)
    if strip_acceptance_criteria(target.description) != (
        strip_acceptance_criteria(issue.description)
    ) or target_criteria != extract_acceptance_criteria(issue.description):
        fields["description"] = merge_description_with_ac(
            target.description, target_criteria
        )
    if (target.assignee or "").lower() != (issue.assignee or "").lower():
        fields["assignee"] = target.assignee
    if target.priority and target.priority.lower() != (
        mapper.to_local_priority(issue.priority) or ""
    ):
        fields["priority"] = mapper.to_remote_priority(target.priority)
    if normalize_labels(target.labels) != normalize_labels(issue.labels):
        fields["labels"] = sorted(set(target.labels))
    target_status = None
    if not mapper.status_matches(issue.status, target.status):
        target_status = target.status
    return fields, target_status


def title_similarity(a: str, b: str) -> float:
    """Score how alike two titles are, from 0.0 to 1.0.

    Case and whitespace are ignored.  Equal titles score 1.0, a title
    containing the other scores 0.8, anything else scores the Jaccard
    index of their word sets.
    """
    a = collapse_whitespace(a).lower()
    b = collapse_whitespace(b).lower()
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.8
    a_words, b_words = set(a.split()), set(b.split())
    union = a_words | b_words
    if not union:
        return 0.0
    return len(a_words & b_words) / len(union)


def _jql_quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SyncEngine:
    """Drive entities through classify -> act -> baseline update.

    Args:
        local: Local task store (Backlog.md).
        remote: Remote issue store (Jira).
        store: Durable mapping/snapshot/audit store.
        mapper: Status and priority vocabulary mapper.
        strategy: Default conflict resolution strategy.
        decision_source: Capability used by the ``prompt`` strategy.
        batch_size: Number of entities processed concurrently.
        project_key: Remote project for creating issues and imports.
        issue_type: Remote issue type for created issues.
        browse_url: Base URL used to build links to remote issues.
    """

    def __init__(
        self,
        local: LocalTaskStore,
        remote: RemoteIssueStore,
        store: SyncStore,
        mapper: FieldMapper | None = None,
        *,
        strategy: str | ConflictStrategy = ConflictStrategy.PROMPT,
        decision_source: DecisionSource | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        project_key: str | None = None,
        issue_type: str = "Task",
        browse_url: str | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValidationError(
                f"Invalid batch size {batch_size}: must be at least 1"
            )
        self.local = local
        self.remote = remote
        self.store = store
        self.mapper = mapper or FieldMapper()
        self.decision_source = decision_source
        self.batch_size = batch_size
        self.project_key = project_key
        self.issue_type = issue_type
        self.browse_url = browse_url.rstrip("/") if browse_url else None
        # Fail fast on an unknown strategy.
        self.strategy = create_resolver(strategy, decision_source).strategy

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def inspect(self, local_id: str) -> EntityInspection:
        """Fetch, normalise, hash and classify one mapped entity.

        Raises:
            NotFoundError: If the entity is unmapped or a record is missing.
        """
        mapping = self.store.require_mapping(local_id)
        return self._inspect(mapping)

    def _inspect(self, mapping: Mapping) -> EntityInspection:
        task = self.local.get_task(mapping.local_id)
        issue = self.remote.get_issue(mapping.remote_key)
        local_payload = normalize_local(task)
        remote_payload = normalize_remote(issue)
        local_hash = hash_payload(local_payload)
        remote_hash = hash_payload(remote_payload)
        base_local, base_remote = self.store.get_snapshots(mapping.local_id)
        status = classify(
            local_hash,
            remote_hash,
            base_local.hash if base_local else None,
            base_remote.hash if base_remote else None,
        )
        logger.debug(
            "Classified %s <-> %s as %s",
            mapping.local_id,
            mapping.remote_key,
            status.value,
        )
        return EntityInspection(
            mapping=mapping,
            task=task,
            issue=issue,
            local_payload=local_payload,
            remote_payload=remote_payload,
            local_hash=local_hash,
            remote_hash=remote_hash,
            base_local=base_local,
            base_remote=base_remote,
            status=status,
        )

    def status_of(self, local_id: str) -> SyncStatus:
        """Return the current classification of a mapped entity."""
        return self.inspect(local_id).status

    def describe(self, local_id: str) -> TaskSyncView:
        """Compose a local task with its remote sync metadata.

        The classification is left empty when the remote side cannot be
        read; the local task must exist.
        """
        task = self.local.get_task(local_id)
        mapping = self.store.get_mapping(local_id)
        if mapping is None:
            return TaskSyncView(task=task)
        state = self.store.get_sync_state(local_id)
        status = None
        try:
            status = self._inspect(mapping).status
        except SyncError as exc:
            logger.warning("Cannot classify %s: %s", local_id, exc)
        return TaskSyncView(
            task=task,
            remote_key=mapping.remote_key,
            remote_url=self.remote_url(mapping.remote_key),
            last_sync_at=state.last_sync_at if state else None,
            conflict_state=state.conflict_state if state else None,
            strategy=state.strategy if state else None,
            state=status,
        )

    def remote_url(self, remote_key: str) -> str | None:
        if not self.browse_url:
            return None
        return f"{self.browse_url}/browse/{remote_key}"

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def mapped_ids(self) -> list[str]:
        return [m.local_id for m in self.store.all_mappings()]

    def select(self, wanted: SyncStatus) -> list[str]:
        """Return mapped ids currently classified as *wanted*.

        Entities that cannot be classified are logged and left out.
        """
        selected: list[str] = []
        for mapping in self.store.all_mappings():
            try:
                if self._inspect(mapping).status is wanted:
                    selected.append(mapping.local_id)
            except SyncError as exc:
                logger.warning(
                    "Failed to check sync state of %s: %s",
                    mapping.local_id,
                    exc,
                )
        return selected

    # ------------------------------------------------------------------
    # Bidirectional sync
    # ------------------------------------------------------------------

    def sync_entity(
        self,
        local_id: str,
        strategy: str | ConflictStrategy | None = None,
        dry_run: bool = False,
    ) -> EntityOutcome:
        """Classify one entity and apply whatever its state calls for."""
        mapping = self.store.get_mapping(local_id)
        if mapping is None:
            return EntityOutcome(
                local_id=local_id,
                kind=OutcomeKind.SKIPPED,
                reason="no remote mapping",
            )

        ctx = self._inspect(mapping)
        key = mapping.remote_key

        if ctx.status is SyncStatus.IN_SYNC:
            logger.info("%s already in sync", local_id)
            return EntityOutcome(
                local_id=local_id,
                remote_key=key,
                kind=OutcomeKind.SKIPPED,
                state=ctx.status,
                reason="already in sync",
            )

        if ctx.status is SyncStatus.UNKNOWN:
            if dry_run:
                logger.info("DRY RUN: would record baseline for %s", local_id)
            else:
                logger.info("No baseline for %s, recording one", local_id)
                self._record_baselines(ctx.mapping, ctx.task, ctx.issue)
                self._log(
                    "baseline", "success", local_id=local_id, remote_key=key
                )
            return EntityOutcome(
                local_id=local_id,
                remote_key=key,
                kind=OutcomeKind.SYNCED,
                action=SyncAction.BASELINE,
                state=ctx.status,
            )

        if ctx.status is SyncStatus.NEEDS_PUSH:
            if not dry_run:
                self._push(ctx, ctx.task)
            else:
                logger.info("DRY RUN: would push %s -> %s", local_id, key)
            return EntityOutcome(
                local_id=local_id,
                remote_key=key,
                kind=OutcomeKind.SYNCED,
                action=SyncAction.PUSH,
                state=ctx.status,
            )

        if ctx.status is SyncStatus.NEEDS_PULL:
            if not dry_run:
                self._pull(ctx)
            else:
                logger.info("DRY RUN: would pull %s -> %s", key, local_id)
            return EntityOutcome(
                local_id=local_id,
                remote_key=key,
                kind=OutcomeKind.SYNCED,
                action=SyncAction.PULL,
                state=ctx.status,
            )

        return self._resolve_conflict(ctx, strategy or self.strategy, dry_run)

    def _resolve_conflict(
        self,
        ctx: EntityInspection,
        strategy: str | ConflictStrategy,
        dry_run: bool,
    ) -> EntityOutcome:
        local_id = ctx.mapping.local_id
        key = ctx.mapping.remote_key
        resolver = create_resolver(strategy, self.decision_source)

        if dry_run:
            logger.info(
                "DRY RUN: would resolve conflict on %s with %s",
                local_id,
                resolver.strategy.value,
            )
            return EntityOutcome(
                local_id=local_id,
                remote_key=key,
                kind=OutcomeKind.CONFLICT,
                action=SyncAction.RESOLVE,
                state=ctx.status,
                resolution=resolver.strategy.value,
            )

        base_local, base_remote = self._baselines(ctx)
        conflicts = detect_field_conflicts(
            ctx.local_payload, ctx.remote_payload, base_local, base_remote
        )
        logger.info(
            "Conflict on %s <-> %s (fields: %s)",
            local_id,
            key,
            ", ".join(c.field for c in conflicts) or "none",
        )
        resolution = resolver.resolve(local_id, conflicts)

        if resolution.outcome == "manual":
            self.store.update_sync_state(
                local_id,
                conflict_state=MANUAL_RESOLUTION_REQUIRED,
                strategy=resolution.label,
            )
            self._log(
                "resolve",
                "manual",
                local_id=local_id,
                remote_key=key,
                details={"fields": [c.field for c in conflicts]},
            )
        elif resolution.outcome == "local":
            self._push(ctx, ctx.task, strategy=resolution.label)
        elif resolution.outcome == "remote":
            self._pull(ctx, strategy=resolution.label)
        else:
            self._merge(ctx, resolution)

        return EntityOutcome(
            local_id=local_id,
            remote_key=key,
            kind=OutcomeKind.CONFLICT,
            action=SyncAction.RESOLVE,
            state=ctx.status,
            resolution=resolution.label,
        )

    @staticmethod
    def _baselines(
        ctx: EntityInspection,
    ) -> tuple[CanonicalPayload, CanonicalPayload]:
        if ctx.base_local is None or ctx.base_remote is None:
            raise ConflictError(
                f"Missing baseline for {ctx.mapping.local_id}"
            )
        return ctx.base_local.payload, ctx.base_remote.payload

    def _merge(self, ctx: EntityInspection, resolution: Resolution) -> None:
        """Apply a field-by-field merge to both sides."""
        base_local, base_remote = self._baselines(ctx)
        remote_view = local_fields_from_remote(
            ctx.task.id, ctx.issue, self.mapper
        )
        local_changed = set(changed_fields(ctx.local_payload, base_local))
        remote_changed = set(changed_fields(ctx.remote_payload, base_remote))
        decisions = {d.field: d for d in resolution.decisions}

        updates: dict[str, Any] = {}
        for field in TRACKED_FIELDS:
            if field in local_changed and field in remote_changed:
                decision = decisions.get(field)
                if decision is None or decision.source == "local":
                    continue
                if decision.source == "remote":
                    updates[field] = getattr(remote_view, field)
                elif field == "acceptance_criteria":
                    updates[field] = _to_criteria(list(decision.value or []))
                elif field == "labels":
                    updates[field] = list(decision.value or [])
                else:
                    updates[field] = decision.value
            elif field in remote_changed:
                updates[field] = getattr(remote_view, field)

        target = ctx.task.model_copy(update=updates)
        self._apply(ctx, target, strategy=resolution.label)

    # ------------------------------------------------------------------
    # One-directional push / pull
    # ------------------------------------------------------------------

    def push_entity(
        self, local_id: str, force: bool = False, dry_run: bool = False
    ) -> EntityOutcome:
        """Push one local task to its remote issue, creating it if unmapped.

        Raises:
            ConflictError: If both sides changed and *force* is not set.
            ValidationError: If an issue must be created but no project
                key is configured.
        """
        mapping = self.store.get_mapping(local_id)
        if mapping is None:
            return self._create_remote(local_id, dry_run)

        ctx = self._inspect(mapping)
        key = mapping.remote_key
        if not force:
            if ctx.status is SyncStatus.CONFLICT:
                raise ConflictError(
                    f"Conflict detected on {local_id} <-> {key}. Use "
                    "--force to override or run 'backlog-jira sync' to "
                    "resolve"
                )
            if ctx.status in (SyncStatus.IN_SYNC, SyncStatus.NEEDS_PULL):
                reason = (
                    "already in sync"
                    if ctx.status is SyncStatus.IN_SYNC
                    else "remote has newer changes"
                )
                return EntityOutcome(
                    local_id=local_id,
                    remote_key=key,
                    kind=OutcomeKind.SKIPPED,
                    state=ctx.status,
                    reason=reason,
                )

        if dry_run:
            logger.info("DRY RUN: would push %s -> %s", local_id, key)
        else:
            self._push(ctx, ctx.task)
        return EntityOutcome(
            local_id=local_id,
            remote_key=key,
            kind=OutcomeKind.SYNCED,
            action=SyncAction.PUSH,
            state=ctx.status,
        )

    def pull_entity(
        self, local_id: str, force: bool = False, dry_run: bool = False
    ) -> EntityOutcome:
        """Pull one remote issue into its mapped local task.

        Raises:
            NotFoundError: If *local_id* is not mapped.
            ConflictError: If both sides changed and *force* is not set.
        """
        ctx = self.inspect(local_id)
        key = ctx.mapping.remote_key
        if not force:
            if ctx.status is SyncStatus.CONFLICT:
                raise ConflictError(
                    f"Conflict detected on {local_id} <-> {key}. Use "
                    "--force to override or run 'backlog-jira sync' to "
                    "resolve"
                )
            if ctx.status in (SyncStatus.IN_SYNC, SyncStatus.NEEDS_PUSH):
                reason = (
                    "already in sync"
                    if ctx.status is SyncStatus.IN_SYNC
                    else "local has newer changes"
                )
                return EntityOutcome(
                    local_id=local_id,
                    remote_key=key,
                    kind=OutcomeKind.SKIPPED,
                    state=ctx.status,
                    reason=reason,
                )

        if dry_run:
            logger.info("DRY RUN: would pull %s -> %s", key, local_id)
        else:
            self._pull(ctx)
        return EntityOutcome(
            local_id=local_id,
            remote_key=key,
            kind=OutcomeKind.SYNCED,
            action=SyncAction.PULL,
            state=ctx.status,
        )

    def _create_remote(self, local_id: str, dry_run: bool) -> EntityOutcome:
        project_key = self.require_project_key()
        task = self.local.get_task(local_id)
        if dry_run:
            logger.info(
                "DRY RUN: would create %s issue in %s for %s",
                self.issue_type,
                project_key,
                local_id,
            )
            return EntityOutcome(
                local_id=local_id,
                kind=OutcomeKind.SYNCED,
                action=SyncAction.CREATE_REMOTE,
            )

        created = self.remote.create_issue(
            project_key,
            self.issue_type,
            task.title,
            description=merge_description_with_ac(
                task.description, criteria_states(task)
            ),
            assignee=task.assignee,
            priority=self.mapper.to_remote_priority(task.priority),
            labels=list(task.labels) or None,
        )
        mapping = self.store.add_mapping(local_id, created.key)
        issue = self.remote.get_issue(created.key)
        if not self.mapper.status_matches(issue.status, task.status):
            self._transition(created.key, issue.status, task.status)
        self._record_baselines(mapping, strategy=None)
        self._log(
            "create", "success", local_id=local_id, remote_key=created.key
        )
        logger.info("Created remote issue %s for %s", created.key, local_id)
        return EntityOutcome(
            local_id=local_id,
            remote_key=created.key,
            kind=OutcomeKind.SYNCED,
            action=SyncAction.CREATE_REMOTE,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _push(
        self,
        ctx: EntityInspection,
        target: LocalTask,
        strategy: str | None = None,
    ) -> None:
        self._apply(ctx, target, write_local=False, strategy=strategy)

    def _pull(self, ctx: EntityInspection, strategy: str | None = None) -> None:
        target = local_fields_from_remote(ctx.task.id, ctx.issue, self.mapper)
        self._apply(ctx, target, write_remote=False, strategy=strategy)

    def _apply(
        self,
        ctx: EntityInspection,
        target: LocalTask,
        *,
        write_local: bool = True,
        write_remote: bool = True,
        strategy: str | None = None,
    ) -> None:
        """Bring the selected sides to *target*, then re-baseline both."""
        local_id = ctx.mapping.local_id
        key = ctx.mapping.remote_key
        written: dict[str, list[str]] = {}

        if write_remote:
            fields, target_status = build_remote_updates(
                target, ctx.issue, self.mapper
            )
            if fields:
                logger.info(
                    "Updating %s fields: %s", key, ", ".join(sorted(fields))
                )
                self.remote.update_issue(key, fields)
            if target_status is not None:
                self._transition(key, ctx.issue.status, target_status)
                fields = {**fields, "status": target_status}
            written["remote"] = sorted(fields)

        if write_local:
            updates = build_local_updates(ctx.task, target)
            if updates:
                logger.info(
                    "Updating %s fields: %s",
                    local_id,
                    ", ".join(sorted(updates)),
                )
                self.local.update_task(local_id, updates)
            written["local"] = sorted(updates)

        self._record_baselines(ctx.mapping, strategy=strategy)
        operation = "sync" if write_local and write_remote else (
            "push" if write_remote else "pull"
        )
        self._log(
            operation,
            "success",
            local_id=local_id,
            remote_key=key,
            details={"fields": written, "strategy": strategy},
        )

    def _transition(
        self, key: str, current_status: str, target_status: str
    ) -> None:
        transition = self.mapper.find_transition(
            self.remote.get_transitions(key), target_status
        )
        if transition is None:
            logger.warning(
                "No transition from '%s' to '%s' on %s; status left as is",
                current_status,
                target_status,
                key,
            )
            return
        logger.info(
            "Transitioning %s via '%s' to %s",
            key,
            transition.name,
            transition.to_status,
        )
        self.remote.transition_issue(
            key,
            transition.id,
            comment=(
                f"Status updated from Backlog: {current_status} → "
                f"{target_status}"
            ),
        )

    def _record_baselines(
        self,
        mapping: Mapping,
        task: LocalTask | None = None,
        issue: RemoteIssue | None = None,
        strategy: str | None = None,
    ) -> None:
        """Store both baselines and clear any pending conflict.

        Records that were not passed in are re-fetched, so baselines
        reflect what each tracker actually stored.
        """
        if task is None:
            task = self.local.get_task(mapping.local_id)
        if issue is None:
            issue = self.remote.get_issue(mapping.remote_key)
        self.store.set_snapshots(
            mapping.local_id, normalize_local(task), normalize_remote(issue)
        )
        self.store.update_sync_state(
            mapping.local_id,
            last_sync_at=_utcnow(),
            conflict_state=None,
            strategy=strategy,
        )

    # ------------------------------------------------------------------
    # Link / unlink / import
    # ------------------------------------------------------------------

    def link(self, local_id: str, remote_key: str) -> Mapping:
        """Map an existing task to an existing issue and baseline both.

        Raises:
            ValidationError: If either identifier is malformed.
            NotFoundError: If either record does not exist.
            DuplicateMappingError: If either side is already mapped.
        """
        local_id = validate_task_id(local_id)
        remote_key = validate_issue_key(remote_key)
        task = self.local.get_task(local_id)
        issue = self.remote.get_issue(remote_key)
        mapping = self.store.add_mapping(local_id, remote_key)
        self._record_baselines(mapping, task, issue)
        self._log("link", "success", local_id=local_id, remote_key=remote_key)
        logger.info("Linked %s <-> %s", local_id, remote_key)
        return mapping

    def unlink(self, local_id: str) -> Mapping:
        """Remove a mapping with its baselines and sync state.

        Raises:
            NotFoundError: If *local_id* is not mapped.
        """
        mapping = self.store.require_mapping(local_id)
        self.store.delete_mapping(local_id)
        self._log(
            "unlink",
            "success",
            local_id=local_id,
            remote_key=mapping.remote_key,
        )
        logger.info("Unlinked %s <-> %s", local_id, mapping.remote_key)
        return mapping

    def import_issue(
        self, issue: RemoteIssue, dry_run: bool = False
    ) -> EntityOutcome:
        """Create a local task for an unmapped remote issue, or pull a mapped one."""
        existing = self.store.get_mapping_by_remote_key(issue.key)
        if existing is not None:
            return self.pull_entity(existing.local_id, dry_run=dry_run)

        if dry_run:
            logger.info("DRY RUN: would import %s", issue.key)
            return EntityOutcome(
                local_id="",
                remote_key=issue.key,
                kind=OutcomeKind.SYNCED,
                action=SyncAction.IMPORT,
            )

        view = local_fields_from_remote("", issue, self.mapper)
        fields: dict[str, Any] = {
            "title": view.title,
            "description": view.description,
            "status": view.status,
            "assignee": view.assignee,
            "priority": view.priority,
            "labels": list(view.labels),
            "acceptance_criteria": criteria_states(view),
        }
        local_id = self.local.create_task(fields)
        mapping = self.store.add_mapping(local_id, issue.key)
        self._record_baselines(mapping)
        self._log(
            "import", "success", local_id=local_id, remote_key=issue.key
        )
        logger.info("Imported %s as %s", issue.key, local_id)
        return EntityOutcome(
            local_id=local_id,
            remote_key=issue.key,
            kind=OutcomeKind.SYNCED,
            action=SyncAction.IMPORT,
        )

    def search_all(self, jql: str) -> list[RemoteIssue]:
        """Collect every issue matching *jql* across result pages."""
        issues: list[RemoteIssue] = []
        start_at = 0
        while True:
            page = self.remote.search_issues(
                jql, max_results=IMPORT_PAGE_SIZE, start_at=start_at
            )
            issues.extend(page.issues)
            start_at += len(page.issues)
            if not page.issues or start_at >= page.total:
                return issues

    def find_match(
        self, task: LocalTask, min_score: float = DEFAULT_MIN_SCORE
    ) -> tuple[RemoteIssue, float] | None:
        """Return the unmapped issue whose summary best matches *task*.

        Only the top search hits are scored; candidates below *min_score*
        or already mapped to another task are ignored.
        """
        jql = f"text ~ {_jql_quote(task.title)}"
        if self.project_key:
            jql = f"project = {self.project_key} AND {jql}"
        result = self.remote.search_issues(
            f"{jql} ORDER BY created DESC", max_results=AUTO_MAP_CANDIDATES
        )
        best: tuple[RemoteIssue, float] | None = None
        for issue in result.issues:
            if self.store.get_mapping_by_remote_key(issue.key) is not None:
                continue
            score = title_similarity(task.title, issue.summary)
            if score < min_score:
                continue
            if best is None or score > best[1]:
                best = (issue, score)
        return best

    def auto_map_task(
        self,
        task: LocalTask,
        min_score: float = DEFAULT_MIN_SCORE,
        dry_run: bool = False,
    ) -> EntityOutcome:
        """Link *task* to its best-matching issue, if any scores high enough."""
        if self.store.get_mapping(task.id) is not None:
            return EntityOutcome(
                local_id=task.id,
                kind=OutcomeKind.SKIPPED,
                reason="already mapped",
            )
        match = self.find_match(task, min_score)
        if match is None:
            return EntityOutcome(
                local_id=task.id,
                kind=OutcomeKind.SKIPPED,
                reason=f"no match scoring {min_score:.2f} or more",
            )
        issue, score = match
        outcome = EntityOutcome(
            local_id=task.id,
            remote_key=issue.key,
            kind=OutcomeKind.SYNCED,
            action=SyncAction.LINK,
            reason=f"title score {score:.2f}",
        )
        if dry_run:
            logger.info(
                "DRY RUN: would map %s -> %s (score %.2f)",
                task.id,
                issue.key,
                score,
            )
            return outcome

        try:
            mapping = self.store.add_mapping(task.id, issue.key)
        except DuplicateMappingError as exc:
            # another task in the same batch claimed this issue first
            return outcome.model_copy(
                update={
                    "kind": OutcomeKind.SKIPPED,
                    "action": SyncAction.NONE,
                    "reason": str(exc),
                }
            )
        self._record_baselines(mapping)
        self._log(
            "auto_map",
            "success",
            local_id=task.id,
            remote_key=issue.key,
            details={"score": round(score, 2)},
        )
        logger.info("Mapped %s -> %s (score %.2f)", task.id, issue.key, score)
        return outcome

    def require_project_key(self) -> str:
        """Return the configured project key.

        Raises:
            ValidationError: If no project key is configured.
        """
        if not self.project_key:
            raise ValidationError(
                "Jira project key is required to create issues. Set "
                "JIRA_PROJECT or add 'project_key' to the jira config."
            )
        return self.project_key

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    async def sync_all(
        self,
        local_ids: list[str] | None = None,
        strategy: str | ConflictStrategy | None = None,
        dry_run: bool = False,
    ) -> SyncReport:
        """Sync the given (default: all mapped) entities.

        Raises:
            ValidationError: For an invalid id or strategy; nothing is
                processed in that case.
        """
        strategy = create_resolver(
            strategy or self.strategy, self.decision_source
        ).strategy
        ids = self._validated_ids(local_ids, default=self.mapped_ids)
        return await self._run_batch(
            "sync",
            ids,
            lambda i: self.sync_entity(i, strategy=strategy, dry_run=dry_run),
            dry_run,
        )

    async def push_all(
        self,
        local_ids: list[str] | None = None,
        all_mapped: bool = False,
        force: bool = False,
        dry_run: bool = False,
    ) -> SyncReport:
        """Push the given tasks, all mapped tasks, or those needing a push."""
        ids = self._validated_ids(
            local_ids,
            default=(
                self.mapped_ids
                if all_mapped
                else lambda: self.select(SyncStatus.NEEDS_PUSH)
            ),
        )
        if any(self.store.get_mapping(i) is None for i in ids):
            self.require_project_key()
        return await self._run_batch(
            "push",
            ids,
            lambda i: self.push_entity(i, force=force, dry_run=dry_run),
            dry_run,
        )

    async def pull_all(
        self,
        local_ids: list[str] | None = None,
        all_mapped: bool = False,
        force: bool = False,
        dry_run: bool = False,
    ) -> SyncReport:
        """Pull the given tasks, all mapped tasks, or those needing a pull."""
        ids = self._validated_ids(
            local_ids,
            default=(
                self.mapped_ids
                if all_mapped
                else lambda: self.select(SyncStatus.NEEDS_PULL)
            ),
        )
        return await self._run_batch(
            "pull",
            ids,
            lambda i: self.pull_entity(i, force=force, dry_run=dry_run),
            dry_run,
        )

    async def import_issues(
        self, query: str | None = None, dry_run: bool = False
    ) -> SyncReport:
        """Import remote issues matching *query* (default: whole project)."""
        jql = query or (
            f"project = {self.require_project_key()} ORDER BY updated DESC"
        )
        issues = {issue.key: issue for issue in self.search_all(jql)}
        logger.info("Found %d issue(s) for import", len(issues))
        return await self._run_batch(
            "import",
            list(issues),
            lambda key: self.import_issue(issues[key], dry_run=dry_run),
            dry_run,
        )

    async def auto_map(
        self, min_score: float = DEFAULT_MIN_SCORE, dry_run: bool = False
    ) -> SyncReport:
        """Map every unmapped local task to the issue with the closest title.

        Raises:
            ValidationError: If *min_score* is outside ``(0, 1]``.
        """
        if not 0 < min_score <= 1:
            raise ValidationError(
                f"Invalid minimum score {min_score}: must be greater than 0 "
                "and at most 1"
            )
        tasks = {task.id: task for task in self.local.list_tasks()}
        return await self._run_batch(
            "auto_map",
            list(tasks),
            lambda i: self.auto_map_task(tasks[i], min_score, dry_run=dry_run),
            dry_run,
        )

    def _validated_ids(
        self,
        local_ids: list[str] | None,
        default: Callable[[], list[str]],
    ) -> list[str]:
        if not local_ids:
            return default()
        ids = [validate_task_id(i) for i in local_ids]
        return list(dict.fromkeys(ids))

    async def _run_batch(
        self,
        operation: str,
        ids: list[str],
        handler: Callable[[str], EntityOutcome],
        dry_run: bool,
    ) -> SyncReport:
        started_at = _utcnow()
        logger.info(
            "%s%s: %d entit%s",
            operation.capitalize(),
            " (dry run)" if dry_run else "",
            len(ids),
            "y" if len(ids) == 1 else "ies",
        )
        outcomes = await run_batched(
            lambda i: self._capture(operation, i, handler),
            ids,
            self.batch_size,
        )
        report = SyncReport(
            operation=operation,
            dry_run=dry_run,
            outcomes=outcomes,
            started_at=started_at,
            completed_at=_utcnow(),
        )
        if dry_run:
            outcome = "dry-run"
        else:
            outcome = "success" if report.success else "partial"
        self._log(
            operation,
            outcome,
            details={
                "synced": len(report.synced),
                "conflicts": len(report.conflicts),
                "failed": len(report.failed),
                "skipped": len(report.skipped),
                "errors": {
                    (o.local_id or o.remote_key or ""): o.error
                    for o in report.failed
                },
            },
        )
        return report

    def _capture(
        self,
        operation: str,
        identifier: str,
        handler: Callable[[str], EntityOutcome],
    ) -> EntityOutcome:
        """Run *handler*, turning per-entity errors into a failed outcome."""
        try:
            return handler(identifier)
        except Exception as exc:
            logger.error("Failed to %s %s: %s", operation, identifier, exc)
            if operation == "import":
                local_id, remote_key = "", identifier
            else:
                local_id = identifier
                remote_key = self._remote_key_of(identifier)
            return EntityOutcome(
                local_id=local_id,
                remote_key=remote_key,
                kind=OutcomeKind.FAILED,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_after=(
                    exc.retry_after if isinstance(exc, RateLimitError) else None
                ),
            )

    def _remote_key_of(self, local_id: str) -> str | None:
        try:
            mapping = self.store.get_mapping(local_id)
        except SyncError:
            return None
        return mapping.remote_key if mapping else None

    def _log(
        self,
        operation: str,
        outcome: str,
        *,
        local_id: str | None = None,
        remote_key: str | None = None,
        details: str | dict | None = None,
    ) -> None:
        self.store.log_operation(
            operation,
            outcome,
            local_id=local_id,
            remote_key=remote_key,
            details=(
                json.dumps(details, sort_keys=True, default=str)
                if isinstance(details, dict)
                else details
            ),
        )
