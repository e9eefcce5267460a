"""Tests for sync/merger.py: three-way description merge and diffs."""

from backlog_jira_sync.sync.merger import attempt_merge, generate_diff


class TestAttemptMerge:
    """Tests for attempt_merge()."""

    def test_clean_merge_both_sides(self):
        """Non-overlapping edits merge cleanly."""
        base = "line1\nline2\nline3"
        local = "line1 local\nline2\nline3"
        remote = "line1\nline2\nline3 remote"

        merged, has_conflicts = attempt_merge(base, local, remote)

        assert not has_conflicts
        assert merged == "line1 local\nline2\nline3 remote\n"

    def test_conflict_same_line(self):
        """Both sides rewrite the same line."""
        merged, has_conflicts = attempt_merge(
            "original", "local version", "remote version"
        )

        assert has_conflicts
        assert "<<<<<<< LOCAL\n" in merged
        assert "=======" in merged
        assert ">>>>>>> REMOTE\n" in merged

    def test_missing_trailing_newline_does_not_conflict(self):
        """A final line without newline is still comparable."""
        merged, has_conflicts = attempt_merge("a\nb", "a\nb\nc", "z\na\nb")

        assert not has_conflicts
        assert merged == "z\na\nb\nc\n"

    def test_local_only_change(self):
        merged, has_conflicts = attempt_merge("old\n", "new\n", "old\n")

        assert not has_conflicts
        assert merged == "new\n"

    def test_empty_all(self):
        merged, has_conflicts = attempt_merge("", "", "")

        assert not has_conflicts
        assert merged == ""


class TestGenerateDiff:
    """Tests for generate_diff()."""

    def test_basic_diff(self):
        diff = generate_diff("line1\nline2", "line1\nchanged")

        assert "--- local" in diff
        assert "+++ remote" in diff
        assert "-line2" in diff
        assert "+changed" in diff

    def test_no_changes(self):
        assert generate_diff("same", "same") == ""

    def test_custom_labels(self):
        diff = generate_diff("old", "new", label_old="base", label_new="mine")

        assert "--- base" in diff
        assert "+++ mine" in diff
