"""Tests for field-level conflict detection."""

from backlog_jira_sync.sync.conflicts import (
    changed_fields,
    detect_field_conflicts,
    field_value,
)
from backlog_jira_sync.sync.models import CanonicalPayload, CriterionState


def _payload(**overrides) -> CanonicalPayload:
    fields = {
        "title": "Fix login",
        "description": "Line one\nLine two\nLine three",
        "status": "todo",
        "priority": "high",
        "assignee": "alice",
        "labels": ["auth"],
        "acceptance_criteria": [CriterionState(text="Works")],
    }
    fields.update(overrides)
    return CanonicalPayload(**fields)


BASE = _payload()


class TestChangedFields:
    def test_no_changes(self):
        assert changed_fields(_payload(), BASE) == []

    def test_reports_in_tracked_order(self):
        current = _payload(labels=["x"], title="New", status="done")
        assert changed_fields(current, BASE) == ["title", "status", "labels"]

    def test_criteria_value_is_plain_data(self):
        assert field_value(BASE, "acceptance_criteria") == [
            {"text": "Works", "checked": False}
        ]


class TestDetectFieldConflicts:
    def test_one_sided_changes_are_not_conflicts(self):
        conflicts = detect_field_conflicts(
            _payload(title="Local title"),
            _payload(status="done"),
            BASE,
            BASE,
        )
        assert conflicts == []

    def test_same_field_changed_differently(self):
        conflicts = detect_field_conflicts(
            _payload(title="Local title", status="in_progress"),
            _payload(title="Remote title"),
            BASE,
            BASE,
        )
        assert [c.field for c in conflicts] == ["title"]
        conflict = conflicts[0]
        assert conflict.local_value == "Local title"
        assert conflict.remote_value == "Remote title"
        assert conflict.base_local_value == "Fix login"
        assert conflict.suggested_value is None

    def test_convergent_change_needs_no_decision(self):
        conflicts = detect_field_conflicts(
            _payload(status="done"), _payload(status="done"), BASE, BASE
        )
        assert conflicts == []

    def test_each_side_uses_its_own_baseline(self):
        remote_base = _payload(assignee="")
        conflicts = detect_field_conflicts(
            _payload(assignee="bob"),
            _payload(assignee=""),
            BASE,
            remote_base,
        )
        # Remote assignee is unchanged against its own baseline.
        assert conflicts == []

    def test_description_clean_merge_is_suggested(self):
        conflicts = detect_field_conflicts(
            _payload(description="Line ONE\nLine two\nLine three"),
            _payload(description="Line one\nLine two\nLine THREE"),
            BASE,
            BASE,
        )
        assert [c.field for c in conflicts] == ["description"]
        assert conflicts[0].suggested_value == "Line ONE\nLine two\nLine THREE"

    def test_description_diverged_baselines_have_no_suggestion(self):
        conflicts = detect_field_conflicts(
            _payload(description="Line ONE\nLine two\nLine three"),
            _payload(description="Line one\nLine two\nLine THREE"),
            BASE,
            _payload(description="Line one\nLine two\nLine 3"),
        )
        assert [c.field for c in conflicts] == ["description"]
        assert conflicts[0].base_remote_value == "Line one\nLine two\nLine 3"
        assert conflicts[0].suggested_value is None

    def test_description_overlapping_edit_has_no_suggestion(self):
        conflicts = detect_field_conflicts(
            _payload(description="Line one\nLocal\nLine three"),
            _payload(description="Line one\nRemote\nLine three"),
            BASE,
            BASE,
        )
        assert conflicts[0].suggested_value is None

    def test_acceptance_criteria_conflict(self):
        conflicts = detect_field_conflicts(
            _payload(acceptance_criteria=[CriterionState(text="Works", checked=True)]),
            _payload(acceptance_criteria=[CriterionState(text="Other")]),
            BASE,
            BASE,
        )
        assert [c.field for c in conflicts] == ["acceptance_criteria"]
        assert conflicts[0].local_value == [{"text": "Works", "checked": True}]
