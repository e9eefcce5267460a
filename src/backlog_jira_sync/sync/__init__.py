"""Bidirectional task/issue sync engine.

Public API for synchronising Backlog.md tasks with Jira issues.

Architecture
------------
The sync engine uses **archive-based three-way reconciliation**: each side
is normalised into a canonical payload, hashed, and compared against its
*own* archived baseline hash.  Local hashes are never compared directly
to remote hashes.  A change on one side becomes a push or pull; a change
on both sides is a conflict, resolved by a configurable strategy.

Modules:

- ``engine``     -- ``SyncEngine``: push / pull / sync orchestration.
- ``store``      -- ``SyncStore``: SQLite mappings, baselines, audit log.
- ``normalizer`` -- canonical payloads, hashing, acceptance criteria.
- ``classifier`` -- ``classify()``: InSync / NeedsPush / NeedsPull /
  Conflict / Unknown.
- ``conflicts``  -- ``detect_field_conflicts()``.
- ``resolver``   -- conflict strategies and decision sources.
- ``mapping``    -- ``FieldMapper``: status / priority vocabularies.
- ``merger``     -- three-way description merge via ``merge3``.
- ``watch``      -- ``WatchLoop`` with exponential backoff.
- ``reporter``   -- human-readable and JSON report formatting.
- ``models``     -- data contracts.

Usage example
-------------
::

    import asyncio

    from backlog_jira_sync.core import BacklogClient, JiraClient
    from backlog_jira_sync.sync import SyncEngine, SyncStore, format_sync_report

    engine = SyncEngine(
        local=BacklogClient(),
        remote=JiraClient(config),
        store=SyncStore.in_state_dir(".backlog-jira"),
        strategy="prefer-local",
        project_key="PROJ",
    )

    # Dry-run first to preview changes
    preview = asyncio.run(engine.sync_all(dry_run=True))
    print(format_sync_report(preview))

    report = asyncio.run(engine.sync_all())
    print(format_sync_report(report))
"""

from ..errors import (
    ConflictError,
    DecisionUnavailableError,
    DuplicateMappingError,
    LocalStoreError,
    NotFoundError,
    RateLimitError,
    RemoteUnavailableError,
    SyncError,
    ValidationError,
)
from .classifier import classify
from .conflicts import detect_field_conflicts
from .engine import SyncEngine
from .mapping import FieldMapper
from .models import (
    EntityOutcome,
    FieldConflict,
    SyncReport,
    SyncStatus,
    TaskSyncView,
)
from .normalizer import hash_payload, normalize
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .resolver import create_resolver
from .store import SyncStore
from .watch import BackoffPolicy, WatchLoop, parse_interval

__all__ = [
    "BackoffPolicy",
    "ConflictError",
    "DecisionUnavailableError",
    "DuplicateMappingError",
    "EntityOutcome",
    "FieldConflict",
    "FieldMapper",
    "LocalStoreError",
    "NotFoundError",
    "RateLimitError",
    "RemoteUnavailableError",
    "SyncEngine",
    "SyncError",
    "SyncReport",
    "SyncStatus",
    "SyncStore",
    "TaskSyncView",
    "ValidationError",
    "WatchLoop",
    "classify",
    "create_resolver",
    "detect_field_conflicts",
    "format_dry_run_preview",
    "format_sync_report",
    "hash_payload",
    "normalize",
    "parse_interval",
    "report_to_json",
]
