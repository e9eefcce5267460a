"""Conflict resolution strategies for the sync engine.

Provides the conflict resolution approaches selectable by configuration:

- ``PreferLocalResolver``: Local record overwrites the remote issue.
- ``PreferRemoteResolver``: Remote issue overwrites the local record.
- ``ManualResolver``: No writes; the entity is flagged for a human.
- ``PromptResolver``: Asks a ``DecisionSource`` which side wins for each
  conflicting field.  If the source is cancelled or unavailable, the
  entity falls back to manual resolution.

Resolvers only decide; the engine performs the writes.  The
``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
from typing import Protocol

from ..errors import DecisionUnavailableError, ValidationError
from .models import ConflictStrategy, Decision, FieldConflict, Resolution

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class DecisionSource(Protocol):
    """Capability answering per-field conflict questions."""

    def resolve(self, conflicts: list[FieldConflict]) -> list[Decision]:
        """Return one decision per conflict.

        Raises:
            DecisionUnavailableError: If the user cancelled or no decision
                can be obtained.
        """
        ...  # pragma: no cover


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    strategy: ConflictStrategy

    def resolve(
        self, local_id: str, conflicts: list[FieldConflict]
    ) -> Resolution:
        """Decide how the conflicting entity *local_id* is resolved."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Decision sources
# ---------------------------------------------------------------------------


class AutoDeclineDecisionSource:
    """Decision source for unattended runs: always declines to decide."""

    def resolve(self, conflicts: list[FieldConflict]) -> list[Decision]:
        raise DecisionUnavailableError(
            "No interactive decision source available"
        )


# ---------------------------------------------------------------------------
# Simple resolvers
# ---------------------------------------------------------------------------


class PreferLocalResolver:
    """Always resolve conflicts in favour of the local record."""

    strategy = ConflictStrategy.PREFER_LOCAL

    def resolve(
        self, local_id: str, conflicts: list[FieldConflict]
    ) -> Resolution:
        return Resolution(outcome="local", label=self.strategy.value)


class PreferRemoteResolver:
    """Always resolve conflicts in favour of the remote issue."""

    strategy = ConflictStrategy.PREFER_REMOTE

    def resolve(
        self, local_id: str, conflicts: list[FieldConflict]
    ) -> Resolution:
        return Resolution(outcome="remote", label=self.strategy.value)


class ManualResolver:
    """Leave conflicts for a human; nothing is written."""

    strategy = ConflictStrategy.MANUAL

    def resolve(
        self, local_id: str, conflicts: list[FieldConflict]
    ) -> Resolution:
        logger.info("Conflict on %s left for manual resolution", local_id)
        return Resolution(outcome="manual", label=self.strategy.value)


# ---------------------------------------------------------------------------
# Prompt resolver
# ---------------------------------------------------------------------------


class PromptResolver:
    """Resolve field conflicts through an injected decision source.

    The source is only consulted when at least one field conflicts; with
    zero field conflicts the one-sided changes merge without asking.

    Args:
        decision_source: Where per-field decisions come from.
    """

    strategy = ConflictStrategy.PROMPT

    def __init__(self, decision_source: DecisionSource) -> None:
        self.decision_source = decision_source

    def resolve(
        self, local_id: str, conflicts: list[FieldConflict]
    ) -> Resolution:
        """Collect decisions; fall back to manual if none can be had."""
        if not conflicts:
            return Resolution(outcome="merged", label=self.strategy.value)

        try:
            decisions = self.decision_source.resolve(conflicts)
        except DecisionUnavailableError as exc:
            logger.warning(
                "Decision unavailable for %s (%s); falling back to manual",
                local_id,
                exc,
            )
            return Resolution(outcome="manual", label="prompt-fallback-manual")

        decided = {d.field for d in decisions}
        missing = [c.field for c in conflicts if c.field not in decided]
        if missing:
            logger.warning(
                "No decision for %s on %s; falling back to manual",
                ", ".join(missing),
                local_id,
            )
            return Resolution(outcome="manual", label="prompt-fallback-manual")

        logger.info(
            "Prompt decisions for %s: %s",
            local_id,
            ", ".join(f"{d.field}={d.source}" for d in decisions),
        )
        return Resolution(
            outcome="merged", label=self.strategy.value, decisions=decisions
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    ConflictStrategy.PREFER_LOCAL.value: PreferLocalResolver,
    ConflictStrategy.PREFER_REMOTE.value: PreferRemoteResolver,
    ConflictStrategy.MANUAL.value: ManualResolver,
}


def create_resolver(
    strategy: str | ConflictStrategy,
    decision_source: DecisionSource | None = None,
) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: One of ``"prefer-local"``, ``"prefer-remote"``,
            ``"prompt"``, ``"manual"``.
        decision_source: Used by ``"prompt"``; defaults to
            ``AutoDeclineDecisionSource`` (every conflict becomes manual).

    Raises:
        ValidationError: If the strategy string is not recognised.
    """
    key = strategy.value if isinstance(strategy, ConflictStrategy) else strategy
    if key == ConflictStrategy.PROMPT.value:
        return PromptResolver(decision_source or AutoDeclineDecisionSource())
    cls = _STRATEGY_MAP.get(key)
    if cls is None:
        valid = sorted([*_STRATEGY_MAP, ConflictStrategy.PROMPT.value])
        raise ValidationError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {valid}"
        )
    return cls()  # type: ignore[return-value]
