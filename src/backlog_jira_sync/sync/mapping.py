"""Config-driven vocabulary mapping between the local and remote trackers.

Translates status and priority names between Backlog.md and Jira using
the ``status_mapping`` / ``priority_mapping`` tables of ``BacklogConfig``.

Status resolution:

1. **Local -> remote** -- a local status maps to an ordered list of
   acceptable remote statuses (first entry is preferred).
2. **Remote -> local** -- reverse lookup of the same table,
   case-insensitive; unmapped remote statuses pass through unchanged.
3. **Transitions** -- remote status changes go through workflow
   transitions; the first transition whose target matches an acceptable
   status exactly wins, then a case-insensitive match.

Priorities map ``high`` / ``medium`` / ``low`` to lists of remote names;
unknown remote priorities fall back to ``medium``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import Transition

logger = logging.getLogger(__name__)

DEFAULT_STATUS_MAPPING: dict[str, list[str]] = {
    "To Do": ["To Do", "Open", "Backlog", "Todo"],
    "In Progress": ["In Progress", "In Development", "In Review"],
    "Done": ["Done", "Closed", "Resolved", "Complete"],
}

DEFAULT_PRIORITY_MAPPING: dict[str, list[str]] = {
    "high": ["High", "Highest", "Critical", "Blocker"],
    "medium": ["Medium", "Major"],
    "low": ["Low", "Lowest", "Minor", "Trivial"],
}

DEFAULT_LOCAL_PRIORITY = "medium"


class FieldMapper:
    """Map status and priority vocabularies between the two trackers.

    Args:
        status_mapping: Local status -> acceptable remote statuses.
        priority_mapping: Local priority -> acceptable remote priorities.
    """

    def __init__(
        self,
        status_mapping: dict[str, list[str]] | None = None,
        priority_mapping: dict[str, list[str]] | None = None,
    ) -> None:
        self._status_mapping = dict(status_mapping or DEFAULT_STATUS_MAPPING)
        self._priority_mapping = dict(
            priority_mapping or DEFAULT_PRIORITY_MAPPING
        )
        self._remote_to_local_status = _reverse(self._status_mapping)
        self._remote_to_local_priority = _reverse(self._priority_mapping)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def remote_statuses_for(self, local_status: str) -> list[str]:
        """Return acceptable remote statuses for *local_status*.

        Unmapped statuses map to themselves.
        """
        for local, remote in self._status_mapping.items():
            if local.lower() == local_status.lower():
                return list(remote)
        return [local_status]

    def to_local_status(self, remote_status: str) -> str:
        """Map a remote status to the local vocabulary."""
        return self._remote_to_local_status.get(
            remote_status.lower(), remote_status
        )

    def status_matches(self, remote_status: str, local_status: str) -> bool:
        """``True`` if *remote_status* already represents *local_status*."""
        acceptable = {s.lower() for s in self.remote_statuses_for(local_status)}
        return remote_status.lower() in acceptable

    def find_transition(
        self, transitions: Iterable[Transition], local_status: str
    ) -> Transition | None:
        """Pick the transition leading to a status acceptable for *local_status*.

        Exact target-name matches win over case-insensitive ones; within a
        pass, the order of the acceptable-status list decides.
        """
        transitions = list(transitions)
        acceptable = self.remote_statuses_for(local_status)
        for status in acceptable:
            for transition in transitions:
                if transition.to_status == status:
                    return transition
        for status in acceptable:
            for transition in transitions:
                if transition.to_status.lower() == status.lower():
                    return transition
        logger.debug(
            "No transition to %s among %s",
            acceptable,
            [t.to_status for t in transitions],
        )
        return None

    # ------------------------------------------------------------------
    # Priority
    # ------------------------------------------------------------------

    def to_remote_priority(self, local_priority: str | None) -> str | None:
        """Map a local priority to the preferred remote priority name."""
        if not local_priority:
            return None
        for local, remote in self._priority_mapping.items():
            if local.lower() == local_priority.lower() and remote:
                return remote[0]
        return local_priority

    def to_local_priority(self, remote_priority: str | None) -> str | None:
        """Map a remote priority to the local vocabulary (unknown -> medium)."""
        if not remote_priority:
            return None
        return self._remote_to_local_priority.get(
            remote_priority.lower(), DEFAULT_LOCAL_PRIORITY
        )


def _reverse(mapping: dict[str, list[str]]) -> dict[str, str]:
    """Build a lowercase remote-name -> local-name lookup (first wins)."""
    reverse: dict[str, str] = {}
    for local, remotes in mapping.items():
        reverse.setdefault(local.lower(), local)
        for remote in remotes:
            reverse.setdefault(remote.lower(), local)
    return reverse
