"""Bidirectional sync agent between Backlog.md tasks and Jira issues."""

__version__ = "0.1.0"
