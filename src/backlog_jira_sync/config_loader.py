"""
Hierarchical configuration loader for backlog-jira-sync.

Finds config files by convention, expands YAML ``!include`` directives,
interpolates ``${VAR}`` references and merges files so that the project
file wins over the global one.

Usage:
    from backlog_jira_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BACKLOG_JIRA_CONFIG"
STATE_DIR_NAME = ".backlog-jira"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with environment values.

    An unset or empty variable becomes *default* when one is given and the
    empty string otherwise.  A ``${`` without a closing brace is left as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        default = match.group(2)
        return default if default is not None else ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``SafeLoader`` subclass that understands ``!include``.

    The global ``yaml.SafeLoader`` is left untouched.  Each load carries an
    include stack used to detect include cycles.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Handle ``!include path/to/file.yml``, relative to the including file."""
    include_path = Path(loader.construct_scalar(node))
    if not include_path.is_absolute():
        include_path = Path(loader.name).resolve().parent / include_path
    include_path = include_path.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if include_path in include_stack:
        chain = " -> ".join(str(p) for p in [*include_stack, include_path])
        raise ValidationError(f"Circular include detected: {chain}")

    if not include_path.exists():
        raise FileNotFoundError(
            f"Include file not found: {include_path} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return load_yaml(include_path, _include_stack=[*include_stack, include_path])


ConfigLoader.add_constructor("!include", _include_constructor)


def load_yaml(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Load one YAML file, expanding ``!include`` directives."""
    path = path.resolve()
    if _include_stack is None:
        _include_stack = [path]

    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``BACKLOG_JIRA_CONFIG`` env var (explicit single path)
        2. ``.backlog-jira/config.yml`` in CWD
        3. ``.backlog-jira/config.yaml`` in CWD
        4. ``~/.config/backlog_jira/config.yml``
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    cwd = Path.cwd()
    candidates.append(cwd / STATE_DIR_NAME / "config.yml")
    candidates.append(cwd / STATE_DIR_NAME / "config.yaml")
    candidates.append(Path.home() / ".config" / "backlog_jira" / "config.yml")

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# backlog-jira configuration
#
# Jira credentials are best kept in the environment or a .env file:
#   JIRA_URL, JIRA_EMAIL, JIRA_API_TOKEN, JIRA_PROJECT
#
# jira:
#   url: https://your-org.atlassian.net
#   email: you@example.com
#   api_token: ${JIRA_API_TOKEN}
#   project_key: PROJ
#   issue_type: Task
#
# backlog:
#   cli_path: backlog
#   status_mapping:
#     To Do: [To Do, Open, Backlog]
#     In Progress: [In Progress, In Review]
#     Done: [Done, Closed, Resolved]
#
# sync:
#   conflict_strategy: prompt
#   batch_size: 10
#
# watch:
#   interval: 60s
#   strategy: prefer-local
#   stop_on_error: false
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the active config file, or the default project-level path."""
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / STATE_DIR_NAME / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to create the starter file.  Defaults to
            ``resolve_config_path()``.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files are applied from lowest to highest precedence; top-level keys of
    a higher-precedence file replace (not deep-merge) earlier ones.  Env
    var interpolation runs after the merge.  No files means ``{}``.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
