import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..errors import (
    NotFoundError,
    RateLimitError,
    RemoteUnavailableError,
    SyncError,
    ValidationError,
)
from ..sync.models import RemoteIssue, SearchResult, Transition
from ..validators import validate_issue_key, validate_project_key

logger = logging.getLogger(__name__)

API_PATH = "/rest/api/2"
ISSUE_FIELDS = "summary,description,status,issuetype,assignee,priority,labels"


def _name_of(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("displayName") or value.get("name")
    return value or None


def parse_issue(data: dict[str, Any]) -> RemoteIssue:
    """Build a ``RemoteIssue`` from a REST issue resource."""
    fields = data.get("fields") or {}
    return RemoteIssue(
        key=data["key"],
        id=str(data.get("id", "")),
        summary=fields.get("summary") or "",
        description=fields.get("description"),
        status=_name_of(fields.get("status")) or "Unknown",
        issue_type=_name_of(fields.get("issuetype")) or "Task",
        assignee=_name_of(fields.get("assignee")),
        priority=_name_of(fields.get("priority")),
        labels=list(fields.get("labels") or []),
    )


def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _error_text(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if not isinstance(body, dict):
        return response.text[:200]
    messages = list(body.get("errorMessages") or [])
    messages.extend(f"{k}: {v}" for k, v in (body.get("errors") or {}).items())
    return "; ".join(messages) or response.reason or ""


class JiraClient:
    """Remote issue store backed by the Jira REST API (v2)."""

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.api_url = f"{config.jira_url.rstrip('/')}{API_PATH}"

    @property
    def session(self) -> requests.Session:
        """Current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = (self.config.email, self.config.api_token)
        session.verify = not self.config.insecure
        session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        return session

    def _request(
        self,
        method: str,
        path: str,
        *,
        entity: tuple[str, str] | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Make a REST request and translate failures into sync errors.

        ``entity`` names what a 404 means, e.g. ``("issue", "PROJ-1")``.
        """
        url = f"{self.api_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self._get_session().request(
                method, url, timeout=(10, 60), **kwargs
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise RemoteUnavailableError(
                f"Cannot reach Jira at {self.config.jira_url}: {exc}"
            ) from exc

        status = response.status_code
        if status == 404 and entity is not None:
            raise NotFoundError(*entity)
        if status == 429:
            raise RateLimitError(
                f"Jira rate limit exceeded (429): {_error_text(response)}",
                retry_after=_retry_after(response),
            )
        if status >= 500:
            raise RemoteUnavailableError(
                f"Jira server error {status}: {_error_text(response)}"
            )
        if status >= 400:
            raise SyncError(
                f"Jira rejected {method} {path} ({status}): "
                f"{_error_text(response)}"
            )
        if status == 204 or not response.content:
            return None
        return response.json()

    def validate_connection(self) -> str:
        """
        Check credentials by fetching the current user.
        Returns the user's display name.
        """
        data = self._request("GET", "/myself")
        return str(data.get("displayName") or data.get("emailAddress") or "")

    def get_issue(self, key: str) -> RemoteIssue:
        key = validate_issue_key(key)
        data = self._request(
            "GET",
            f"/issue/{key}",
            entity=("issue", key),
            params={"fields": ISSUE_FIELDS},
        )
        return parse_issue(data)

    def search_issues(
        self, jql: str, max_results: int = 50, start_at: int = 0
    ) -> SearchResult:
        """
        Run a JQL search and return one page of results.
        """
        data = self._request(
            "GET",
            "/search",
            params={
                "jql": jql,
                "startAt": start_at,
                "maxResults": max_results,
                "fields": ISSUE_FIELDS,
            },
        )
        issues = [parse_issue(item) for item in data.get("issues") or []]
        logger.info(
            "Searched Jira issues: %d of %d for '%s'",
            len(issues),
            data.get("total", 0),
            jql,
        )
        return SearchResult(issues=issues, total=int(data.get("total", 0)))

    def update_issue(self, key: str, fields: dict[str, Any]) -> None:
        """
        Update issue fields.

        Accepts plain values for ``summary``, ``description``, ``assignee``,
        ``priority`` and ``labels``; they are wrapped as the API expects.
        """
        payload = self._wire_fields(fields)
        if not payload:
            return
        self._request(
            "PUT",
            f"/issue/{key}",
            entity=("issue", key),
            json={"fields": payload},
        )
        logger.info("Updated Jira issue %s", key)

    def get_transitions(self, key: str) -> list[Transition]:
        data = self._request(
            "GET", f"/issue/{key}/transitions", entity=("issue", key)
        )
        return [
            Transition(
                id=str(item["id"]),
                name=item.get("name", ""),
                to_status=(item.get("to") or {}).get("name", ""),
            )
            for item in data.get("transitions") or []
        ]

    def transition_issue(
        self, key: str, transition_id: str, comment: str | None = None
    ) -> None:
        body: dict[str, Any] = {"transition": {"id": transition_id}}
        if comment:
            body["update"] = {"comment": [{"add": {"body": comment}}]}
        self._request(
            "POST",
            f"/issue/{key}/transitions",
            entity=("issue", key),
            json=body,
        )
        logger.info("Transitioned Jira issue %s via %s", key, transition_id)

    def create_issue(
        self,
        project_key: str,
        issue_type: str,
        summary: str,
        description: str | None = None,
        assignee: str | None = None,
        priority: str | None = None,
        labels: list[str] | None = None,
    ) -> RemoteIssue:
        """
        Create an issue and return it as stored by Jira.

        Raises:
            ValidationError: If the project key or summary is invalid.
        """
        project_key = validate_project_key(project_key)
        if not summary or not summary.strip():
            raise ValidationError("Summary is required and cannot be empty")

        fields: dict[str, Any] = {
            "project": {"key": project_key},
            "issuetype": {"name": issue_type},
            "summary": summary,
        }
        fields.update(
            self._wire_fields(
                {
                    "description": description,
                    "assignee": assignee,
                    "priority": priority,
                    "labels": labels,
                },
                drop_empty=True,
            )
        )
        data = self._request("POST", "/issue", json={"fields": fields})
        key = data["key"]
        logger.info("Created Jira issue %s in %s", key, project_key)
        return self.get_issue(key)

    @staticmethod
    def _wire_fields(
        fields: dict[str, Any], drop_empty: bool = False
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name, value in fields.items():
            if drop_empty and not value:
                continue
            match name:
                case "assignee":
                    payload[name] = {"name": value} if value else None
                case "priority":
                    if value:
                        payload[name] = {"name": value}
                case "labels":
                    payload[name] = list(value or [])
                case "description":
                    payload[name] = value or ""
                case _:
                    payload[name] = value
        return payload
