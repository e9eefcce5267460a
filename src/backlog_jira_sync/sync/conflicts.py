"""Field-level conflict detection for entities classified as ``Conflict``.

A field is reported only when it diverged from its baseline on *both*
sides and the two sides now disagree.  Fields changed on one side only
are left to the one-directional push/pull path, and fields that converged
on the same value need no decision.  Values are compared in canonical
form, so labels compare as sets and optional scalars treat ``None`` and
``""`` alike.
"""

from __future__ import annotations

import logging
from typing import Any

from .merger import attempt_merge
from .models import TRACKED_FIELDS, CanonicalPayload, FieldConflict

logger = logging.getLogger(__name__)


def field_value(payload: CanonicalPayload, field: str) -> Any:
    """Return the canonical, JSON-friendly value of *field*."""
    value = getattr(payload, field)
    if field == "acceptance_criteria":
        return [c.model_dump() for c in value]
    if field == "labels":
        return list(value)
    return value


def changed_fields(
    current: CanonicalPayload, baseline: CanonicalPayload
) -> list[str]:
    """Return tracked fields whose value differs from *baseline*, in order."""
    return [
        field
        for field in TRACKED_FIELDS
        if field_value(current, field) != field_value(baseline, field)
    ]


def _suggest_description(
    local: CanonicalPayload,
    remote: CanonicalPayload,
    baseline_local: CanonicalPayload,
    baseline_remote: CanonicalPayload,
) -> str | None:
    if baseline_local.description != baseline_remote.description:
        return None
    merged, has_conflicts = attempt_merge(
        baseline_local.description, local.description, remote.description
    )
    if has_conflicts:
        return None
    return merged.rstrip("\n")


def detect_field_conflicts(
    local: CanonicalPayload,
    remote: CanonicalPayload,
    baseline_local: CanonicalPayload,
    baseline_remote: CanonicalPayload,
) -> list[FieldConflict]:
    """List fields that changed on both sides since the baselines.

    Output follows ``TRACKED_FIELDS`` order.  A description conflict whose
    line-level three-way merge is clean carries the merge result as
    ``suggested_value``.  No merge is suggested when the two description
    baselines differ, since they share no common ancestor.
    """
    local_changed = set(changed_fields(local, baseline_local))
    remote_changed = set(changed_fields(remote, baseline_remote))

    conflicts: list[FieldConflict] = []
    for field in TRACKED_FIELDS:
        if field not in local_changed or field not in remote_changed:
            continue
        if field_value(local, field) == field_value(remote, field):
            continue
        suggested = None
        if field == "description":
            suggested = _suggest_description(
                local, remote, baseline_local, baseline_remote
            )
        conflicts.append(
            FieldConflict(
                field=field,
                local_value=field_value(local, field),
                remote_value=field_value(remote, field),
                base_local_value=field_value(baseline_local, field),
                base_remote_value=field_value(baseline_remote, field),
                suggested_value=suggested,
            )
        )
    logger.debug(
        "Field conflicts: %s", [c.field for c in conflicts] or "none"
    )
    return conflicts
