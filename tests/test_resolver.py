"""Tests for conflict resolution strategies."""

from __future__ import annotations

import pytest

from backlog_jira_sync.errors import DecisionUnavailableError, ValidationError
from backlog_jira_sync.sync.models import (
    ConflictStrategy,
    Decision,
    FieldConflict,
)
from backlog_jira_sync.sync.resolver import (
    AutoDeclineDecisionSource,
    ManualResolver,
    PreferLocalResolver,
    PreferRemoteResolver,
    PromptResolver,
    create_resolver,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _conflict(field: str = "title") -> FieldConflict:
    return FieldConflict(
        field=field,
        local_value="local",
        remote_value="remote",
        base_local_value="base",
        base_remote_value="base",
    )


class ScriptedDecisions:
    """Decision source answering every field with a fixed side."""

    def __init__(self, source: str = "remote", skip: set[str] | None = None):
        self.source = source
        self.skip = skip or set()
        self.asked: list[list[str]] = []

    def resolve(self, conflicts):
        self.asked.append([c.field for c in conflicts])
        return [
            Decision(field=c.field, source=self.source)
            for c in conflicts
            if c.field not in self.skip
        ]


class CancellingDecisions:
    def resolve(self, conflicts):
        raise DecisionUnavailableError("cancelled")


# ---------------------------------------------------------------------------
# Simple strategies
# ---------------------------------------------------------------------------


class TestSimpleResolvers:
    def test_prefer_local(self):
        resolution = PreferLocalResolver().resolve("task-1", [_conflict()])
        assert resolution.outcome == "local"
        assert resolution.label == "prefer-local"

    def test_prefer_remote(self):
        resolution = PreferRemoteResolver().resolve("task-1", [_conflict()])
        assert resolution.outcome == "remote"
        assert resolution.label == "prefer-remote"

    def test_manual_writes_nothing(self):
        resolution = ManualResolver().resolve("task-1", [_conflict()])
        assert resolution.outcome == "manual"
        assert resolution.decisions == []


# ---------------------------------------------------------------------------
# Prompt strategy
# ---------------------------------------------------------------------------


class TestPromptResolver:
    def test_collects_decisions(self):
        source = ScriptedDecisions("local")
        resolution = PromptResolver(source).resolve(
            "task-1", [_conflict("title"), _conflict("status")]
        )
        assert resolution.outcome == "merged"
        assert resolution.label == "prompt"
        assert [d.field for d in resolution.decisions] == ["title", "status"]
        assert source.asked == [["title", "status"]]

    def test_no_field_conflicts_merges_without_asking(self):
        source = ScriptedDecisions()
        resolution = PromptResolver(source).resolve("task-1", [])
        assert resolution.outcome == "merged"
        assert source.asked == []

    def test_cancelled_falls_back_to_manual(self):
        resolution = PromptResolver(CancellingDecisions()).resolve(
            "task-1", [_conflict()]
        )
        assert resolution.outcome == "manual"
        assert resolution.label == "prompt-fallback-manual"

    def test_missing_decision_falls_back_to_manual(self):
        resolution = PromptResolver(
            ScriptedDecisions(skip={"status"})
        ).resolve("task-1", [_conflict("title"), _conflict("status")])
        assert resolution.outcome == "manual"
        assert resolution.label == "prompt-fallback-manual"

    def test_auto_decline_source(self):
        with pytest.raises(DecisionUnavailableError):
            AutoDeclineDecisionSource().resolve([_conflict()])


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestCreateResolver:
    @pytest.mark.parametrize(
        "strategy, cls",
        [
            ("prefer-local", PreferLocalResolver),
            ("prefer-remote", PreferRemoteResolver),
            ("manual", ManualResolver),
            ("prompt", PromptResolver),
            (ConflictStrategy.PREFER_LOCAL, PreferLocalResolver),
        ],
    )
    def test_known_strategies(self, strategy, cls):
        assert isinstance(create_resolver(strategy), cls)

    def test_prompt_without_source_declines(self):
        resolver = create_resolver("prompt")
        resolution = resolver.resolve("task-1", [_conflict()])
        assert resolution.outcome == "manual"

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError, match="Unknown conflict strategy"):
            create_resolver("newest-wins")
