"""Command line interface for backlog-jira-sync.

Commands:
    push     Push local tasks to Jira (creates issues for unmapped tasks)
    pull     Pull Jira issues into local tasks (``--import`` for new issues)
    sync     Bidirectional sync with conflict resolution
    watch    Run sync periodically until interrupted
    status   Show mapping and sync state of tasks, or the audit log
    link     Map an existing task to an existing issue
    unlink   Remove a mapping
    map-auto Map unmapped tasks to issues with matching titles
    import   Create local tasks for unmapped Jira issues
    init     Write a starter config file

Exit codes: 0 on success, 1 if any entity failed, 2 on configuration error.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import threading
from dataclasses import dataclass

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import (
    discover_config_files,
    ensure_config,
    load_hierarchical_config,
)
from .config_schema import UnifiedConfig, build_config
from .core import BacklogClient, JiraClient
from .errors import DecisionUnavailableError, SyncError, ValidationError
from .logger import setup_logging
from .sync.engine import DEFAULT_MIN_SCORE, SyncEngine
from .sync.mapping import FieldMapper
from .sync.models import ConflictStrategy, Decision, FieldConflict, SyncReport
from .sync.reporter import (
    format_dry_run_preview,
    format_field_conflict,
    format_ops,
    format_sync_report,
    format_task_view,
    format_watch_stats,
    report_to_json_text,
)
from .sync.store import SyncStore
from .sync.watch import BackoffPolicy, WatchLoop, parse_interval

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

STRATEGIES = [s.value for s in ConflictStrategy]


# ---------------------------------------------------------------------------
# Interactive decisions
# ---------------------------------------------------------------------------


class TerminalDecisionSource:
    """Ask on the terminal which side wins each conflicting field.

    Prompts are serialised so concurrent entities never interleave.
    Without an interactive stdin every request is declined.
    """

    _CHOICES = "[l]ocal / [r]emote / [m]erged / [s]kip"

    def __init__(self, input_func=input, interactive: bool | None = None):
        self._input = input_func
        self._interactive = (
            sys.stdin.isatty() if interactive is None else interactive
        )
        self._lock = threading.Lock()

    def resolve(self, conflicts: list[FieldConflict]) -> list[Decision]:
        if not self._interactive:
            raise DecisionUnavailableError("stdin is not interactive")
        with self._lock:
            return [self._ask(conflict) for conflict in conflicts]

    def _ask(self, conflict: FieldConflict) -> Decision:
        print(format_field_conflict(conflict), file=sys.stderr)
        while True:
            try:
                answer = self._input(f"{self._CHOICES}? ").strip().lower()
            except EOFError:
                raise DecisionUnavailableError("input closed") from None
            if answer in ("l", "local"):
                return Decision(field=conflict.field, source="local")
            if answer in ("r", "remote"):
                return Decision(field=conflict.field, source="remote")
            if answer in ("m", "merged") and conflict.suggested_value is not None:
                return Decision(
                    field=conflict.field,
                    source="explicit",
                    value=conflict.suggested_value,
                )
            if answer in ("s", "skip"):
                raise DecisionUnavailableError(
                    f"skipped field {conflict.field}"
                )
            print("Please answer l, r, m or s.", file=sys.stderr)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class AppContext:
    config: Config
    unified: UnifiedConfig
    engine: SyncEngine
    store: SyncStore
    jira: JiraClient


def load_unified_config() -> UnifiedConfig:
    """Load ``.env`` and the YAML config files into a ``UnifiedConfig``."""
    # .env first so ${VAR} interpolation can use its values
    load_dotenv()
    return build_config(load_hierarchical_config())


def build_context(
    args: argparse.Namespace,
    unified: UnifiedConfig,
    interactive: bool = True,
) -> AppContext:
    """Resolve the connection config and assemble the engine."""
    yaml_fallbacks = {
        k: v for k, v in unified.jira.model_dump().items() if v is not None
    }
    config = load_config(
        url=args.url,
        email=args.email,
        project_key=args.project,
        insecure=args.insecure,
        debug=args.debug,
        yaml_fallbacks=yaml_fallbacks,
        backlog_cli=unified.backlog.cli_path,
        batch_size=unified.sync.batch_size,
    )
    logger.info("Jira URL: %s", config.jira_url)

    store = SyncStore.in_state_dir(unified.sync.state_dir, unified.sync.db_name)
    jira = JiraClient(config)
    engine = SyncEngine(
        local=BacklogClient(config.backlog_cli),
        remote=jira,
        store=store,
        mapper=FieldMapper(
            unified.backlog.status_mapping, unified.backlog.priority_mapping
        ),
        strategy=unified.sync.conflict_strategy,
        decision_source=TerminalDecisionSource() if interactive else None,
        batch_size=config.batch_size,
        project_key=config.project_key,
        issue_type=config.issue_type,
        browse_url=config.jira_url,
    )
    return AppContext(
        config=config, unified=unified, engine=engine, store=store, jira=jira
    )


def _print_report(report: SyncReport, as_json: bool) -> int:
    if as_json:
        print(report_to_json_text(report))
    elif report.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_sync_report(report))
    return report.exit_code


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def cmd_push(ctx: AppContext, args: argparse.Namespace) -> int:
    report = asyncio.run(
        ctx.engine.push_all(
            args.task_ids,
            all_mapped=args.all,
            force=args.force,
            dry_run=args.dry_run,
        )
    )
    return _print_report(report, args.json)


def cmd_pull(ctx: AppContext, args: argparse.Namespace) -> int:
    if args.do_import:
        return cmd_import(ctx, args)
    report = asyncio.run(
        ctx.engine.pull_all(
            args.task_ids,
            all_mapped=args.all,
            force=args.force,
            dry_run=args.dry_run,
        )
    )
    return _print_report(report, args.json)


def cmd_import(ctx: AppContext, args: argparse.Namespace) -> int:
    query = args.query or ctx.unified.sync.import_query
    report = asyncio.run(
        ctx.engine.import_issues(query, dry_run=args.dry_run)
    )
    return _print_report(report, args.json)


def cmd_sync(ctx: AppContext, args: argparse.Namespace) -> int:
    report = asyncio.run(
        ctx.engine.sync_all(
            args.task_ids, strategy=args.strategy, dry_run=args.dry_run
        )
    )
    return _print_report(report, args.json)


def cmd_watch(ctx: AppContext, args: argparse.Namespace) -> int:
    watch = ctx.unified.watch
    interval = parse_interval(args.interval or watch.interval)
    strategy = args.strategy or watch.strategy.value

    user = ctx.jira.validate_connection()
    logger.info("Connected to Jira as %s", user or "(unknown user)")

    loop = WatchLoop(
        lambda: asyncio.run(ctx.engine.sync_all(strategy=strategy)),
        interval,
        stop_on_error=args.stop_on_error or watch.stop_on_error,
        error_backoff=BackoffPolicy(watch.backoff_base, watch.max_backoff),
        rate_limit_backoff=BackoffPolicy(
            watch.rate_limit_backoff_base, watch.max_backoff
        ),
    )
    signal.signal(signal.SIGTERM, lambda *_: loop.stop())
    print(
        f"Watching every {interval:.0f}s with strategy {strategy}. "
        "Press Ctrl+C to stop.",
        file=sys.stderr,
    )
    stats = loop.run()
    print(format_watch_stats(stats))
    if loop.stop_on_error and stats.consecutive_errors:
        return EXIT_FAILURE
    return EXIT_OK


def cmd_status(ctx: AppContext, args: argparse.Namespace) -> int:
    if args.ops:
        entries = ctx.store.recent_ops(args.ops)
        if args.json:
            print(
                json.dumps(
                    [e.model_dump(mode="json") for e in entries], indent=2
                )
            )
        else:
            print(format_ops(entries))
        return EXIT_OK

    ids = args.task_ids or ctx.engine.mapped_ids()
    views = [ctx.engine.describe(task_id) for task_id in ids]
    if args.json:
        print(json.dumps([v.model_dump(mode="json") for v in views], indent=2))
    elif not views:
        print("No mapped tasks. Use 'backlog-jira link' or 'push' first.")
    else:
        print("\n".join(format_task_view(v) for v in views))
    return EXIT_OK


def cmd_link(ctx: AppContext, args: argparse.Namespace) -> int:
    mapping = ctx.engine.link(args.task_id, args.issue_key)
    print(f"Linked {mapping.local_id} <-> {mapping.remote_key}")
    return EXIT_OK


def cmd_unlink(ctx: AppContext, args: argparse.Namespace) -> int:
    mapping = ctx.engine.unlink(args.task_id)
    print(f"Unlinked {mapping.local_id} <-> {mapping.remote_key}")
    return EXIT_OK


def cmd_map_auto(ctx: AppContext, args: argparse.Namespace) -> int:
    report = asyncio.run(
        ctx.engine.auto_map(min_score=args.min_score, dry_run=args.dry_run)
    )
    return _print_report(report, args.json)


_HANDLERS = {
    "push": cmd_push,
    "pull": cmd_pull,
    "import": cmd_import,
    "sync": cmd_sync,
    "watch": cmd_watch,
    "status": cmd_status,
    "link": cmd_link,
    "unlink": cmd_unlink,
    "map-auto": cmd_map_auto,
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--url",
        help="Override Jira URL (takes precedence over JIRA_URL and config files)",
    )
    common.add_argument(
        "--email",
        help="Override Jira account email (takes precedence over JIRA_EMAIL)",
    )
    common.add_argument(
        "--project",
        help="Override Jira project key (takes precedence over JIRA_PROJECT)",
    )
    common.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    common.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    common.add_argument("--log-file", help="Also append logs to this file")
    common.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Log output format (default: text)",
    )

    parser = argparse.ArgumentParser(
        prog="backlog-jira",
        description="Bidirectional sync between Backlog.md tasks and Jira issues",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview a bidirectional sync
  backlog-jira sync --dry-run

  # Resolve every conflict in favour of local tasks
  backlog-jira sync --strategy prefer-local

  # Push one task, creating its Jira issue if needed
  backlog-jira push task-12 --project PROJ

  # Import all issues from a JQL query
  backlog-jira pull --import --query "project = PROJ AND sprint in openSprints()"

Credentials are read from JIRA_URL, JIRA_EMAIL and JIRA_API_TOKEN (a .env
file in the current directory is loaded automatically).
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"backlog-jira version {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add(name: str, help_text: str) -> argparse.ArgumentParser:
        return sub.add_parser(name, parents=[common], help=help_text)

    def add_run_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--dry-run", action="store_true", help="Preview without writing"
        )
        p.add_argument(
            "--json", action="store_true", help="Print the report as JSON"
        )

    push = add("push", "Push local tasks to Jira")
    push.add_argument("task_ids", nargs="*", metavar="TASK_ID")
    push.add_argument(
        "--all", action="store_true", help="Push every mapped task"
    )
    push.add_argument(
        "--force", action="store_true", help="Overwrite Jira even on conflict"
    )
    add_run_flags(push)

    pull = add("pull", "Pull Jira issues into local tasks")
    pull.add_argument("task_ids", nargs="*", metavar="TASK_ID")
    pull.add_argument(
        "--all", action="store_true", help="Pull every mapped task"
    )
    pull.add_argument(
        "--force", action="store_true", help="Overwrite local even on conflict"
    )
    pull.add_argument(
        "--import",
        dest="do_import",
        action="store_true",
        help="Create local tasks for unmapped Jira issues",
    )
    pull.add_argument("--query", help="JQL for --import")
    add_run_flags(pull)

    imp = add("import", "Create local tasks for unmapped Jira issues")
    imp.add_argument("--query", help="JQL (default: whole project)")
    add_run_flags(imp)

    sync = add("sync", "Bidirectional sync with conflict resolution")
    sync.add_argument("task_ids", nargs="*", metavar="TASK_ID")
    sync.add_argument("--strategy", choices=STRATEGIES)
    add_run_flags(sync)

    watch = add("watch", "Run sync periodically")
    watch.add_argument("--interval", help="e.g. 60s, 5m, 1h (default: 60s)")
    watch.add_argument("--strategy", choices=STRATEGIES)
    watch.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Stop after the first failing cycle",
    )

    status = add("status", "Show sync state of mapped tasks")
    status.add_argument("task_ids", nargs="*", metavar="TASK_ID")
    status.add_argument(
        "--ops",
        type=int,
        metavar="N",
        help="Show the N most recent operations instead",
    )
    status.add_argument("--json", action="store_true")

    link = add("link", "Map a task to an existing Jira issue")
    link.add_argument("task_id")
    link.add_argument("issue_key")

    unlink = add("unlink", "Remove a task's mapping")
    unlink.add_argument("task_id")

    map_auto = add(
        "map-auto", "Map unmapped tasks to Jira issues with matching titles"
    )
    map_auto.add_argument(
        "--min-score",
        type=float,
        default=DEFAULT_MIN_SCORE,
        help="Lowest title similarity (0-1) accepted as a match (default: 0.7)",
    )
    add_run_flags(map_auto)

    add("init", "Write a starter config file if none exists")

    return parser


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Run one command and return its exit code."""
    args = build_parser().parse_args(argv)

    try:
        unified = load_unified_config()
    except (ValueError, OSError, yaml.YAMLError) as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.log_format or unified.logging.format,
        level=unified.logging.level,
    )
    config_files = discover_config_files()
    if config_files:
        logger.info("Configuration loaded from: %s", config_files[0])

    if args.command == "init":
        print(f"Config file: {ensure_config()}")
        return EXIT_OK

    try:
        ctx = build_context(args, unified, interactive=args.command != "watch")
        with ctx.store:
            return _HANDLERS[args.command](ctx, args)
    except ValidationError as e:
        logger.error("Configuration error: %s", e)
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except SyncError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FAILURE


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(EXIT_OK)


if __name__ == "__main__":
    run()
