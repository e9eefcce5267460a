"""Tracker clients and async helpers shared by the CLI and the sync engine."""

from .async_utils import run_batched, run_sync
from .backlog import BacklogClient
from .jira import JiraClient

__all__ = ["BacklogClient", "JiraClient", "run_batched", "run_sync"]
