"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_report`` -- post-run summary with per-bucket sections.
- ``format_dry_run_preview`` -- dry-run preview grouped by intended action.
- ``format_field_conflict`` -- one field conflict for interactive review.
- ``format_task_view`` -- status view of one task and its remote issue.
- ``format_watch_stats`` -- final counters of a watch session.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

import json
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from .merger import generate_diff
from .models import OpLogEntry, OutcomeKind, SyncAction

if TYPE_CHECKING:
    from .models import FieldConflict, SyncReport, TaskSyncView
    from .watch import WatchStats


def _entity(local_id: str, remote_key: str | None) -> str:
    if local_id and remote_key:
        return f"{local_id} <-> {remote_key}"
    return local_id or remote_key or "?"


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one outcome.
    Skipped entities are summarised by count only.
    """
    lines: list[str] = []

    header = f"{report.operation.capitalize()} report"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"{len(report.outcomes)} entities: "
        f"{len(report.synced)} synced, "
        f"{len(report.conflicts)} conflicts, "
        f"{len(report.failed)} failed, "
        f"{len(report.skipped)} skipped"
    )
    lines.append("")

    if report.synced:
        lines.append("Synced:")
        for o in report.synced:
            lines.append(
                f"  {_entity(o.local_id, o.remote_key)} ({o.action.value})"
            )
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for o in report.conflicts:
            lines.append(
                f"  {_entity(o.local_id, o.remote_key)}: "
                f"{o.resolution or 'unresolved'}"
            )
        lines.append("")

    if report.failed:
        lines.append("Failed:")
        for o in report.failed:
            lines.append(f"  {_entity(o.local_id, o.remote_key)}: {o.error}")
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by intended action."""
    lines: list[str] = ["DRY RUN -- No changes will be made", ""]

    groups: dict[SyncAction, list[str]] = defaultdict(list)
    for o in report.outcomes:
        if o.kind in (OutcomeKind.SYNCED, OutcomeKind.CONFLICT):
            groups[o.action].append(_entity(o.local_id, o.remote_key))

    for action in (
        SyncAction.PUSH,
        SyncAction.PULL,
        SyncAction.CREATE_REMOTE,
        SyncAction.IMPORT,
        SyncAction.LINK,
        SyncAction.BASELINE,
        SyncAction.RESOLVE,
    ):
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper().replace('_', ' ')}]")
        for entity in groups[action]:
            lines.append(f"  {entity}")
        lines.append("")

    if report.failed:
        lines.append("[FAILED]")
        for o in report.failed:
            lines.append(f"  {_entity(o.local_id, o.remote_key)}: {o.error}")
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} (unchanged or unmapped)")
        lines.append("")

    if not groups and not report.failed:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflicts and status
# ------------------------------------------------------------------


def _show(value: Any) -> str:
    if isinstance(value, list):
        if value and isinstance(value[0], dict):
            return "; ".join(
                f"[{'x' if v.get('checked') else ' '}] {v.get('text')}"
                for v in value
            )
        return ", ".join(str(v) for v in value) or "(none)"
    if value in (None, ""):
        return "(empty)"
    return str(value)


def format_field_conflict(conflict: FieldConflict) -> str:
    """Format one field conflict: base, local and remote values."""
    lines = [f"Field: {conflict.field}"]
    if conflict.field == "description":
        diff = generate_diff(
            str(conflict.local_value or ""), str(conflict.remote_value or "")
        )
        lines.append(diff.rstrip() or "(no textual differences)")
        if conflict.suggested_value is not None:
            lines.append("Clean merge available.")
    else:
        lines.append(f"  base:   {_show(conflict.base_local_value)}")
        lines.append(f"  local:  {_show(conflict.local_value)}")
        lines.append(f"  remote: {_show(conflict.remote_value)}")
    return "\n".join(lines)


def format_task_view(view: TaskSyncView) -> str:
    """Format a task with its mapping and sync metadata."""
    task = view.task
    lines = [f"{task.id}: {task.title}", f"  Status:     {task.status}"]
    if view.remote_key is None:
        lines.append("  Remote:     (not mapped)")
        return "\n".join(lines)
    lines.append(
        f"  Remote:     {view.remote_key}"
        + (f" ({view.remote_url})" if view.remote_url else "")
    )
    lines.append(
        f"  Sync state: {view.state.value if view.state else 'unavailable'}"
    )
    lines.append(f"  Last sync:  {view.last_sync_at or 'never'}")
    if view.conflict_state:
        lines.append(f"  Conflict:   {view.conflict_state}")
    return "\n".join(lines)


def format_ops(entries: list[OpLogEntry]) -> str:
    """Format audit log entries, one per line."""
    if not entries:
        return "No operations recorded."
    return "\n".join(
        f"{e.timestamp}  {e.operation:<8} {e.outcome:<8} "
        f"{_entity(e.local_id or '', e.remote_key)}"
        for e in entries
    )


def format_watch_stats(stats: WatchStats) -> str:
    """Format the final counters of a watch session."""
    return "\n".join(
        [
            f"Watch stopped after {stats.cycles} cycle(s) "
            f"({stats.elapsed:.0f}s)",
            f"  Synced:        {stats.total_synced}",
            f"  Conflicts:     {stats.total_conflicts}",
            f"  Failed:        {stats.total_failed}",
            f"  Skipped:       {stats.total_skipped}",
            f"  Failed cycles: {stats.failed_cycles}",
        ]
    )


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation."""
    outcomes = []
    for o in report.outcomes:
        entry: dict = {
            "local_id": o.local_id,
            "remote_key": o.remote_key,
            "kind": o.kind.value,
            "action": o.action.value,
        }
        if o.state is not None:
            entry["state"] = o.state.value
        for name in (
            "resolution",
            "reason",
            "error",
            "error_type",
            "retry_after",
        ):
            value = getattr(o, name)
            if value:
                entry[name] = value
        outcomes.append(entry)

    return {
        "operation": report.operation,
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "success": report.success,
        "counts": {
            "total": len(report.outcomes),
            "synced": len(report.synced),
            "conflicts": len(report.conflicts),
            "failed": len(report.failed),
            "skipped": len(report.skipped),
        },
        "outcomes": outcomes,
    }


def report_to_json_text(report: SyncReport) -> str:
    return json.dumps(report_to_json(report), indent=2)
