"""Tests for backlog_jira_sync.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models).
"""

import logging

import pytest

from backlog_jira_sync.config import Config, load_config, validate_config
from backlog_jira_sync.errors import ValidationError

# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


def _config(**overrides) -> Config:
    values = {
        "jira_url": "https://example.atlassian.net",
        "email": "dev@example.com",
        "api_token": "secret-token",
    }
    values.update(overrides)
    return Config(**values)


class TestValidateConfig:
    """URL format, credential, project key and batch size checks."""

    def test_valid_config(self):
        validate_config(_config())

    def test_http_url_valid(self):
        validate_config(_config(jira_url="http://localhost:8080"))

    @pytest.mark.parametrize("url", ["example.com", "ftp://example.com"])
    def test_invalid_scheme(self, url):
        with pytest.raises(
            ValidationError, match="must start with http:// or https://"
        ):
            validate_config(_config(jira_url=url))

    def test_missing_hostname(self):
        with pytest.raises(ValidationError, match="must include a hostname"):
            validate_config(_config(jira_url="https://"))

    def test_trailing_slash_stripped(self):
        config = _config(jira_url="https://example.atlassian.net/")
        validate_config(config)
        assert config.jira_url == "https://example.atlassian.net"

    def test_empty_email(self):
        with pytest.raises(ValidationError, match="email cannot be empty"):
            validate_config(_config(email="  "))

    def test_empty_token(self):
        with pytest.raises(ValidationError, match="API token cannot be empty"):
            validate_config(_config(api_token=""))

    def test_project_key_uppercased(self):
        config = _config(project_key="proj")
        validate_config(config)
        assert config.project_key == "PROJ"

    def test_bad_project_key(self):
        with pytest.raises(ValidationError, match="Project key"):
            validate_config(_config(project_key="my project"))

    @pytest.mark.parametrize("size", [0, 101])
    def test_batch_size_out_of_range(self, size):
        with pytest.raises(ValidationError, match="Invalid batch size"):
            validate_config(_config(batch_size=size))

    def test_insecure_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="backlog_jira_sync.config"):
            validate_config(_config(insecure=True))
        assert "SSL verification disabled" in caplog.text

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_config(_config(jira_url="nope"))


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


@pytest.fixture
def jira_env(clean_env):
    clean_env.setenv("JIRA_URL", "https://env.atlassian.net")
    clean_env.setenv("JIRA_EMAIL", "env@example.com")
    clean_env.setenv("JIRA_API_TOKEN", "env-token")
    return clean_env


class TestLoadConfig:
    def test_from_env(self, jira_env):
        config = load_config()
        assert config.jira_url == "https://env.atlassian.net"
        assert config.email == "env@example.com"
        assert config.api_token == "env-token"
        assert config.project_key is None
        assert config.issue_type == "Task"
        assert config.batch_size == 10
        assert config.backlog_cli == "backlog"

    def test_cli_overrides_env(self, jira_env):
        config = load_config(
            url="https://cli.atlassian.net", project_key="cli"
        )
        assert config.jira_url == "https://cli.atlassian.net"
        assert config.project_key == "CLI"

    def test_yaml_fallbacks_used_last(self, clean_env):
        config = load_config(
            yaml_fallbacks={
                "url": "https://yaml.atlassian.net",
                "email": "yaml@example.com",
                "api_token": "yaml-token",
                "project_key": "YAML",
                "issue_type": "Story",
                "insecure": True,
            },
            backlog_cli="/opt/bin/backlog",
            batch_size=25,
        )
        assert config.jira_url == "https://yaml.atlassian.net"
        assert config.project_key == "YAML"
        assert config.issue_type == "Story"
        assert config.insecure is True
        assert config.backlog_cli == "/opt/bin/backlog"
        assert config.batch_size == 25

    def test_env_beats_yaml(self, jira_env):
        config = load_config(yaml_fallbacks={"url": "https://yaml.example"})
        assert config.jira_url == "https://env.atlassian.net"

    @pytest.mark.parametrize(
        "missing, message",
        [
            ("JIRA_URL", "Jira URL not found"),
            ("JIRA_EMAIL", "Jira email not found"),
            ("JIRA_API_TOKEN", "Jira API token not found"),
        ],
    )
    def test_missing_required(self, jira_env, missing, message):
        jira_env.delenv(missing)
        with pytest.raises(ValidationError, match=message):
            load_config()

    @pytest.mark.parametrize("value", ["true", "1", "yes", "ON"])
    def test_bool_env_truthy(self, jira_env, value):
        jira_env.setenv("JIRA_INSECURE", value)
        jira_env.setenv("BACKLOG_JIRA_DEBUG", value)
        config = load_config()
        assert config.insecure is True
        assert config.debug is True

    def test_bool_env_false_beats_yaml(self, jira_env):
        jira_env.setenv("JIRA_INSECURE", "false")
        config = load_config(yaml_fallbacks={"insecure": True})
        assert config.insecure is False

    def test_batch_size_from_env(self, jira_env):
        jira_env.setenv("BACKLOG_JIRA_BATCH_SIZE", "5")
        assert load_config(batch_size=50).batch_size == 5

    def test_batch_size_not_a_number(self, jira_env):
        jira_env.setenv("BACKLOG_JIRA_BATCH_SIZE", "lots")
        with pytest.raises(
            ValidationError, match="Invalid BACKLOG_JIRA_BATCH_SIZE 'lots'"
        ):
            load_config()

    def test_issue_type_from_env(self, jira_env):
        jira_env.setenv("JIRA_ISSUE_TYPE", "Bug")
        assert load_config().issue_type == "Bug"
