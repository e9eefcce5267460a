"""Connection and runtime configuration for backlog-jira-sync.

Reads Jira connection settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    JIRA_URL: Jira base URL (required)
    JIRA_EMAIL: Account email (required)
    JIRA_API_TOKEN: API token (required)
    JIRA_PROJECT: Project key for created/imported issues (optional)
    JIRA_ISSUE_TYPE: Issue type for created issues (optional, default: Task)
    JIRA_INSECURE: Skip SSL verification (optional, default: false)
    BACKLOG_JIRA_BATCH_SIZE: Entities processed concurrently (optional, default: 10)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .errors import ValidationError
from .validators import check_project_key

logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 100


@dataclass
class Config:
    jira_url: str
    email: str
    api_token: str
    project_key: str | None = None
    issue_type: str = "Task"
    insecure: bool = False
    debug: bool = False
    backlog_cli: str = "backlog"
    batch_size: int = 10


def validate_config(config: Config) -> None:
    """Validate configuration values in place.

    Raises:
        ValidationError: If the URL is malformed, credentials are empty,
            the project key is malformed, or the batch size is out of range.
    """
    config.jira_url = config.jira_url.strip()

    if not config.jira_url.startswith(("http://", "https://")):
        raise ValidationError(
            f"Invalid Jira URL '{config.jira_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.jira_url)
    if not parsed.hostname:
        raise ValidationError(
            f"Invalid Jira URL '{config.jira_url}': URL must include a hostname"
        )

    config.jira_url = config.jira_url.removesuffix("/")

    if not config.email.strip():
        raise ValidationError(
            "Jira email cannot be empty. Set JIRA_EMAIL environment variable."
        )

    if not config.api_token.strip():
        raise ValidationError(
            "Jira API token cannot be empty. Set JIRA_API_TOKEN environment variable."
        )

    if config.project_key:
        valid, reason = check_project_key(config.project_key)
        if not valid:
            raise ValidationError(reason)
        config.project_key = config.project_key.strip().upper()

    if not (MIN_BATCH_SIZE <= config.batch_size <= MAX_BATCH_SIZE):
        raise ValidationError(
            f"Invalid batch size {config.batch_size}: must be a number "
            f"between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    url: str | None = None,
    email: str | None = None,
    api_token: str | None = None,
    project_key: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
    backlog_cli: str | None = None,
    batch_size: int | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override Jira URL.
        email: Override account email.
        api_token: Override API token.
        project_key: Override project key.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Values from the YAML ``jira`` section, used when
            neither a CLI arg nor an env var is set.
        backlog_cli: Path of the ``backlog`` executable (from the YAML
            ``backlog`` section).
        batch_size: Batch size from the YAML ``sync`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValidationError: If required settings are missing after checking
            all sources, or any value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error ---

    jira_url = url or os.getenv("JIRA_URL") or fb.get("url")
    if not jira_url:
        raise ValidationError(
            "Jira URL not found. Set JIRA_URL environment variable, "
            "pass --url CLI argument, or add 'url' to the jira config."
        )

    jira_email = email or os.getenv("JIRA_EMAIL") or fb.get("email")
    if not jira_email:
        raise ValidationError(
            "Jira email not found. Set JIRA_EMAIL environment variable, "
            "pass --email CLI argument, or add 'email' to the jira config."
        )

    jira_token = api_token or os.getenv("JIRA_API_TOKEN") or fb.get("api_token")
    if not jira_token:
        raise ValidationError(
            "Jira API token not found. Set JIRA_API_TOKEN environment variable "
            "or add 'api_token' to the jira config."
        )

    final_project = (
        project_key or os.getenv("JIRA_PROJECT") or fb.get("project_key")
    )
    final_issue_type = (
        os.getenv("JIRA_ISSUE_TYPE") or fb.get("issue_type") or "Task"
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("JIRA_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("BACKLOG_JIRA_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    batch_raw = os.getenv("BACKLOG_JIRA_BATCH_SIZE")
    if batch_raw is not None:
        try:
            final_batch = int(batch_raw)
        except ValueError:
            raise ValidationError(
                f"Invalid BACKLOG_JIRA_BATCH_SIZE '{batch_raw}': must be a "
                f"number between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}"
            ) from None
    elif batch_size is not None:
        final_batch = batch_size
    else:
        final_batch = 10

    config = Config(
        jira_url=jira_url.strip(),
        email=jira_email.strip(),
        api_token=jira_token.strip(),
        project_key=final_project.strip() if final_project else None,
        issue_type=final_issue_type.strip(),
        insecure=final_insecure,
        debug=final_debug,
        backlog_cli=backlog_cli or "backlog",
        batch_size=final_batch,
    )

    validate_config(config)

    return config
