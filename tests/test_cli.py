"""Tests for the command line: parsing, terminal decisions and exit codes.

Network and subprocess collaborators are replaced by mocks; ``main`` is
exercised through its config-error, init and error-mapping paths.
"""

import json
from unittest.mock import Mock, patch

import pytest

from backlog_jira_sync.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_OK,
    STRATEGIES,
    AppContext,
    TerminalDecisionSource,
    build_parser,
    cmd_link,
    cmd_map_auto,
    cmd_status,
    main,
)
from backlog_jira_sync.errors import (
    DecisionUnavailableError,
    DuplicateMappingError,
    NotFoundError,
)
from backlog_jira_sync.sync.models import (
    EntityOutcome,
    FieldConflict,
    LocalTask,
    Mapping,
    OutcomeKind,
    SyncAction,
    SyncReport,
    TaskSyncView,
)
from backlog_jira_sync.sync.store import SyncStore


@pytest.fixture
def isolated(tmp_path, clean_env):
    """Empty CWD and HOME, no .env loading, logging left untouched."""
    clean_env.chdir(tmp_path)
    clean_env.setenv("HOME", str(tmp_path / "home"))
    with patch("backlog_jira_sync.cli.load_dotenv"), patch(
        "backlog_jira_sync.cli.setup_logging"
    ):
        yield tmp_path


def _conflict(**kwargs) -> FieldConflict:
    values = {"field": "title", "local_value": "Mine", "remote_value": "Theirs"}
    values.update(kwargs)
    return FieldConflict(**values)


def _fake_context(engine: Mock) -> AppContext:
    return AppContext(
        config=Mock(),
        unified=Mock(),
        engine=engine,
        store=SyncStore(),
        jira=Mock(),
    )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:
    def test_strategies(self):
        assert STRATEGIES == ["prefer-local", "prefer-remote", "prompt", "manual"]

    def test_push_flags(self):
        args = build_parser().parse_args(
            ["push", "task-1", "task-2", "--force", "--dry-run", "--project", "X"]
        )
        assert args.command == "push"
        assert args.task_ids == ["task-1", "task-2"]
        assert args.force and args.dry_run
        assert args.project == "X"
        assert not args.all

    def test_pull_import(self):
        args = build_parser().parse_args(
            ["pull", "--import", "--query", "project = PROJ"]
        )
        assert args.do_import
        assert args.query == "project = PROJ"

    def test_sync_strategy_choices(self):
        args = build_parser().parse_args(["sync", "--strategy", "manual"])
        assert args.strategy == "manual"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sync", "--strategy", "newest"])

    def test_watch(self):
        args = build_parser().parse_args(
            ["watch", "--interval", "5m", "--stop-on-error"]
        )
        assert args.interval == "5m"
        assert args.stop_on_error

    def test_status_ops(self):
        args = build_parser().parse_args(["status", "--ops", "20", "--json"])
        assert args.ops == 20
        assert args.json

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_link_requires_both_ids(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["link", "task-1"])

    def test_map_auto_flags(self):
        args = build_parser().parse_args(["map-auto", "--dry-run"])
        assert args.min_score == 0.7
        assert args.dry_run
        args = build_parser().parse_args(["map-auto", "--min-score", "0.5"])
        assert args.min_score == 0.5


# ---------------------------------------------------------------------------
# TerminalDecisionSource
# ---------------------------------------------------------------------------


class TestTerminalDecisionSource:
    def test_answers(self, capsys):
        answers = iter(["L", "remote"])
        source = TerminalDecisionSource(
            input_func=lambda _: next(answers), interactive=True
        )

        decisions = source.resolve(
            [_conflict(field="title"), _conflict(field="status")]
        )

        assert [(d.field, d.source) for d in decisions] == [
            ("title", "local"),
            ("status", "remote"),
        ]
        assert "Field: title" in capsys.readouterr().err

    def test_merged_uses_suggestion(self):
        source = TerminalDecisionSource(input_func=lambda _: "m", interactive=True)
        decision = source.resolve(
            [_conflict(field="description", suggested_value="merged text")]
        )[0]
        assert decision.source == "explicit"
        assert decision.value == "merged text"

    def test_merged_without_suggestion_reprompts(self, capsys):
        answers = iter(["m", "x", "r"])
        source = TerminalDecisionSource(
            input_func=lambda _: next(answers), interactive=True
        )
        assert source.resolve([_conflict()])[0].source == "remote"
        assert capsys.readouterr().err.count("Please answer") == 2

    def test_skip_declines(self):
        source = TerminalDecisionSource(input_func=lambda _: "s", interactive=True)
        with pytest.raises(DecisionUnavailableError, match="skipped"):
            source.resolve([_conflict()])

    def test_eof_declines(self):
        def closed(_):
            raise EOFError

        source = TerminalDecisionSource(input_func=closed, interactive=True)
        with pytest.raises(DecisionUnavailableError, match="input closed"):
            source.resolve([_conflict()])

    def test_non_interactive_declines(self):
        source = TerminalDecisionSource(
            input_func=Mock(), interactive=False
        )
        with pytest.raises(DecisionUnavailableError):
            source.resolve([_conflict()])
        source._input.assert_not_called()


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


class TestHandlers:
    def test_link_prints_mapping(self, capsys):
        engine = Mock()
        engine.link.return_value = Mapping(
            local_id="task-1", remote_key="PROJ-1", created_at="t", updated_at="t"
        )
        args = build_parser().parse_args(["link", "task-1", "PROJ-1"])

        assert cmd_link(_fake_context(engine), args) == EXIT_OK
        assert "Linked task-1 <-> PROJ-1" in capsys.readouterr().out

    def test_status_lists_mapped_tasks(self, capsys):
        engine = Mock()
        engine.mapped_ids.return_value = ["task-1"]
        engine.describe.return_value = TaskSyncView(
            task=LocalTask(id="task-1", title="Fix bug", status="To Do"),
            remote_key="PROJ-1",
        )
        args = build_parser().parse_args(["status"])

        assert cmd_status(_fake_context(engine), args) == EXIT_OK
        assert "task-1: Fix bug" in capsys.readouterr().out

    def test_map_auto_prints_report(self, capsys):
        report = SyncReport(
            operation="auto_map",
            started_at="t0",
            outcomes=[
                EntityOutcome(
                    local_id="task-2",
                    remote_key="PROJ-2",
                    kind=OutcomeKind.SYNCED,
                    action=SyncAction.LINK,
                )
            ],
        )

        async def auto_map(**kwargs):
            assert kwargs == {"min_score": 0.8, "dry_run": False}
            return report

        engine = Mock()
        engine.auto_map = auto_map
        args = build_parser().parse_args(["map-auto", "--min-score", "0.8"])

        assert cmd_map_auto(_fake_context(engine), args) == EXIT_OK
        assert "task-2 <-> PROJ-2 (link)" in capsys.readouterr().out

    def test_status_nothing_mapped(self, capsys):
        engine = Mock()
        engine.mapped_ids.return_value = []
        args = build_parser().parse_args(["status"])

        cmd_status(_fake_context(engine), args)

        assert "No mapped tasks" in capsys.readouterr().out

    def test_status_ops_json(self, capsys):
        ctx = _fake_context(Mock())
        ctx.store.log_operation(
            "link", "success", local_id="task-1", remote_key="PROJ-1"
        )
        args = build_parser().parse_args(["status", "--ops", "5", "--json"])

        cmd_status(ctx, args)

        entries = json.loads(capsys.readouterr().out)
        assert entries[0]["operation"] == "link"


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


class TestMain:
    def test_missing_credentials_is_config_error(self, isolated, capsys):
        assert main(["push", "--all"]) == EXIT_CONFIG_ERROR
        assert "Jira URL not found" in capsys.readouterr().err

    def test_invalid_yaml_value_is_config_error(self, isolated, capsys):
        config_dir = isolated / ".backlog-jira"
        config_dir.mkdir()
        (config_dir / "config.yml").write_text("sync:\n  batch_size: 0\n")

        assert main(["sync"]) == EXIT_CONFIG_ERROR
        assert "Configuration error" in capsys.readouterr().err

    def test_init_writes_starter(self, isolated, capsys):
        assert main(["init"]) == EXIT_OK
        assert (isolated / ".backlog-jira" / "config.yml").exists()
        assert "Config file:" in capsys.readouterr().out

    def test_report_exit_code(self, isolated, capsys):
        report = SyncReport(
            operation="sync",
            started_at="t0",
            outcomes=[
                EntityOutcome(
                    local_id="task-1",
                    kind=OutcomeKind.FAILED,
                    action=SyncAction.PUSH,
                    error="boom",
                )
            ],
        )

        async def sync_all(*args, **kwargs):
            return report

        engine = Mock()
        engine.sync_all = sync_all
        with patch(
            "backlog_jira_sync.cli.build_context",
            return_value=_fake_context(engine),
        ):
            assert main(["sync", "--json"]) == EXIT_FAILURE

        assert json.loads(capsys.readouterr().out)["counts"]["failed"] == 1

    @pytest.mark.parametrize(
        "error, code",
        [
            (DuplicateMappingError("already linked"), EXIT_FAILURE),
            (NotFoundError("issue", "PROJ-9"), EXIT_FAILURE),
        ],
    )
    def test_sync_errors_map_to_failure(self, isolated, capsys, error, code):
        engine = Mock()
        engine.link.side_effect = error
        with patch(
            "backlog_jira_sync.cli.build_context",
            return_value=_fake_context(engine),
        ):
            assert main(["link", "task-1", "PROJ-9"]) == code
        assert str(error) in capsys.readouterr().err
