"""Error taxonomy for the sync engine.

Per-entity errors (``NotFoundError``, ``ConflictError``,
``RemoteUnavailableError``, ``LocalStoreError``) are captured by the
orchestrator and reported against the entity that raised them; they never
abort a batch.  ``ValidationError`` is configuration-level and is raised
before any entity is processed.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync engine errors."""


class NotFoundError(SyncError):
    """A mapping, local task, or remote issue does not exist.

    Args:
        entity: Kind of entity that was missing (``"mapping"``,
            ``"task"``, ``"issue"``).
        identifier: The id or key that was looked up.
    """

    def __init__(self, entity: str, identifier: str) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity.capitalize()} not found: {identifier}")


class ConflictError(SyncError):
    """A one-directional push/pull was attempted while both sides changed."""


class DuplicateMappingError(SyncError):
    """Linking would break the one-to-one task/issue mapping."""


class RemoteUnavailableError(SyncError):
    """The remote issue tracker could not be reached or failed server-side."""


class RateLimitError(RemoteUnavailableError):
    """The remote issue tracker asked us to slow down.

    Args:
        message: Error description.
        retry_after: Seconds suggested by the server, when provided.
    """

    def __init__(
        self, message: str, retry_after: float | None = None
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class LocalStoreError(SyncError):
    """The local task tracker rejected or failed an operation."""


class ValidationError(SyncError, ValueError):
    """Invalid configuration or input; fatal before processing starts."""


class DecisionUnavailableError(SyncError):
    """The interactive decision source was cancelled or is unavailable."""


def is_rate_limit_message(message: str) -> bool:
    """Return ``True`` if *message* looks like a rate-limit signal."""
    lowered = message.lower()
    return (
        "rate limit" in lowered
        or "429" in lowered
        or "too many requests" in lowered
    )
