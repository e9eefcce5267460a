"""Sync-state classification.

Each side is compared against its *own* archived hash (never local against
remote), so a change is attributed to the side where it happened:

=================  ==================  =============
local changed      remote changed      state
=================  ==================  =============
no                 no                  InSync
yes                no                  NeedsPush
no                 yes                 NeedsPull
yes                yes                 Conflict
=================  ==================  =============

Without a baseline on both sides the state is ``Unknown`` (first sync).
Both sides converging on the same new value still counts as ``Conflict``;
field-level detection then finds nothing to resolve.
"""

from __future__ import annotations

from .models import SyncStatus


def classify(
    local_hash: str,
    remote_hash: str,
    baseline_local: str | None,
    baseline_remote: str | None,
) -> SyncStatus:
    """Derive the sync state of one entity from its current and baseline hashes."""
    if baseline_local is None or baseline_remote is None:
        return SyncStatus.UNKNOWN

    local_changed = local_hash != baseline_local
    remote_changed = remote_hash != baseline_remote

    if local_changed and remote_changed:
        return SyncStatus.CONFLICT
    if local_changed:
        return SyncStatus.NEEDS_PUSH
    if remote_changed:
        return SyncStatus.NEEDS_PULL
    return SyncStatus.IN_SYNC
