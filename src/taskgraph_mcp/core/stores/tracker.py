"""Task store backed by a Jira Cloud project (REST API v3).

Issues are tasks, and a dependency ``A -> B`` is a typed issue link
(``Blocks`` by default) with ``B`` as the inward issue and ``A`` as the
outward issue. Status changes go through the issue's workflow transitions.

Example usage:
    store = TrackerTaskStore(TrackerConfig(
        base_url="https://example.atlassian.net",
        email="me@example.com",
        api_token="...",
        project="PROJ",
    ))
    tasks = store.list_tasks()
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from taskgraph_mcp.config import TrackerConfig
from taskgraph_mcp.core.models import (
    ExternalKey,
    Task,
    TaskId,
    TaskPriority,
    TaskStatus,
)
from taskgraph_mcp.core.observability import redact_sensitive_data
from taskgraph_mcp.core.stores.base import (
    EdgeResult,
    StoreUnavailableError,
    TaskStore,
    TaskStoreReadError,
)

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = "/rest/api/3/search"
ISSUE_ENDPOINT = "/rest/api/3/issue/{key}"
ISSUE_LINK_ENDPOINT = "/rest/api/3/issueLink"
TRANSITIONS_ENDPOINT = "/rest/api/3/issue/{key}/transitions"
SEARCH_FIELDS = "summary,description,status,priority,issuetype,parent,issuelinks,subtasks"

STATUS_MAP: Dict[str, TaskStatus] = {
    "to do": TaskStatus.PENDING,
    "in progress": TaskStatus.IN_PROGRESS,
    "done": TaskStatus.DONE,
    "blocked": TaskStatus.BLOCKED,
    "deferred": TaskStatus.DEFERRED,
    "cancelled": TaskStatus.CANCELLED,
    "in review": TaskStatus.REVIEW,
}

PRIORITY_MAP: Dict[str, TaskPriority] = {
    "highest": TaskPriority.HIGH,
    "high": TaskPriority.HIGH,
    "medium": TaskPriority.MEDIUM,
    "low": TaskPriority.LOW,
    "lowest": TaskPriority.LOW,
}

# Workflow status names a transition may lead to, per task status
TRANSITION_TARGETS: Dict[TaskStatus, Tuple[str, ...]] = {
    TaskStatus.PENDING: ("to do", "open", "backlog"),
    TaskStatus.IN_PROGRESS: ("in progress",),
    TaskStatus.DONE: ("done", "closed", "resolved"),
    TaskStatus.COMPLETED: ("done", "closed", "resolved"),
    TaskStatus.BLOCKED: ("blocked",),
    TaskStatus.DEFERRED: ("deferred",),
    TaskStatus.CANCELLED: ("cancelled", "canceled", "won't do"),
    TaskStatus.REVIEW: ("in review", "review"),
}


def build_jql(project: str, parent_key: Optional[str] = None) -> str:
    """JQL selecting the project's issues (optionally one parent and its children)."""
    if parent_key:
        return (
            f'project = "{project}" AND (parent = "{parent_key}" OR issuekey = "{parent_key}") '
            "ORDER BY created ASC"
        )
    return f'project = "{project}" ORDER BY created ASC'


def map_status(name: Optional[str]) -> TaskStatus:
    if not name:
        return TaskStatus.PENDING
    mapped = STATUS_MAP.get(name.strip().lower())
    return mapped if mapped is not None else TaskStatus.normalize(name)


def map_priority(name: Optional[str]) -> TaskPriority:
    if not name:
        return TaskPriority.MEDIUM
    return PRIORITY_MAP.get(name.strip().lower(), TaskPriority.MEDIUM)


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] if response.text else "Unknown error"
    if not isinstance(data, dict):
        return response.text[:200]
    messages = list(data.get("errorMessages") or [])
    messages.extend(f"{k}: {v}" for k, v in (data.get("errors") or {}).items())
    return "; ".join(messages) if messages else response.text[:200]


class TrackerRequestError(Exception):
    """A tracker request failed (transport error or error status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    """Decode a response body that must be a JSON object.

    Raises:
        TrackerRequestError: For non-JSON bodies (login pages, truncated
            replies) and for JSON that is not an object
    """
    try:
        data = response.json()
    except ValueError as exc:
        raise TrackerRequestError(
            f"Tracker returned a non-JSON response (HTTP {response.status_code})",
            response.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise TrackerRequestError(
            f"Tracker returned unexpected JSON (HTTP {response.status_code})",
            response.status_code,
        )
    return data


def _find_transition_id(transitions: Any, status: TaskStatus) -> Optional[str]:
    """Id of the first transition named after, or leading to, ``status``."""
    targets = TRANSITION_TARGETS.get(status, ())
    if not isinstance(transitions, list):
        return None
    for transition in transitions:
        if not isinstance(transition, dict):
            continue
        to = transition.get("to")
        to_name = to.get("name") if isinstance(to, dict) else None
        names = {
            str(transition.get("name") or "").strip().lower(),
            str(to_name or "").strip().lower(),
        }
        if names & set(targets) and transition.get("id") is not None:
            return str(transition["id"])
    return None


class TrackerTaskStore(TaskStore):
    """Tasks stored as issues in a remote tracker project."""

    name = "tracker"

    def __init__(
        self,
        config: TrackerConfig,
        *,
        parent_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the tracker store.

        Args:
            config: Connection settings
            parent_key: Restrict the snapshot to one parent issue and its
                children (overrides ``config.parent_key``)
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self.config = config
        self.parent_key = parent_key or config.parent_key
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.base_url.rstrip("/"),
                auth=httpx.BasicAuth(self.config.email, self.config.api_token),
                headers={"Accept": "application/json"},
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue one request; error statuses other than 404 raise."""
        try:
            response = self.client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as exc:
            raise TrackerRequestError(f"Tracker request timed out: {method} {path}") from exc
        except httpx.RequestError as exc:
            raise TrackerRequestError(f"Tracker request failed: {exc}") from exc

        if response.status_code == 401:
            raise TrackerRequestError(
                "Tracker authentication failed (check email and API token)", 401
            )
        if response.status_code >= 400 and response.status_code != 404:
            raise TrackerRequestError(
                f"Tracker API error {response.status_code}: "
                f"{_extract_error_message(response)}",
                response.status_code,
            )
        return response

    # ------------------------------------------------------------------
    # TaskStore
    # ------------------------------------------------------------------

    def ensure_available(self) -> None:
        missing = self.config.missing_fields()
        if missing:
            raise StoreUnavailableError(
                "Tracker configuration incomplete, missing: " + ", ".join(missing),
                backend=self.name,
            )

    def list_tasks(self) -> List[Task]:
        self.ensure_available()
        jql = build_jql(self.config.project, self.parent_key)
        logger.debug(
            "Searching tracker issues",
            extra={"jql": jql, "config": redact_sensitive_data(self.config.to_dict())},
        )

        tasks: List[Task] = []
        start_at = 0
        while True:
            params = {
                "jql": jql,
                "startAt": start_at,
                "maxResults": self.config.page_size,
                "fields": SEARCH_FIELDS,
            }
            try:
                response = self._request("GET", SEARCH_ENDPOINT, params=params)
            except TrackerRequestError as exc:
                raise TaskStoreReadError(str(exc), backend=self.name) from exc
            if response.status_code == 404:
                raise TaskStoreReadError(
                    f"Tracker search endpoint not found: {_extract_error_message(response)}",
                    backend=self.name,
                )

            try:
                data = _json_object(response)
            except TrackerRequestError as exc:
                raise TaskStoreReadError(str(exc), backend=self.name) from exc
            issues = data.get("issues") or []
            if not isinstance(issues, list):
                raise TaskStoreReadError(
                    "Tracker search returned a malformed issue list", backend=self.name
                )
            tasks.extend(
                self._issue_to_task(issue) for issue in issues if isinstance(issue, dict)
            )

            start_at += len(issues)
            total = data.get("total")
            if not isinstance(total, int):
                total = start_at
            if not issues or start_at >= total:
                break

        logger.info("Fetched %d issue(s) from tracker project %s", len(tasks), self.config.project)
        return tasks

    def id_exists(self, task_id: TaskId) -> bool:
        try:
            response = self._request(
                "GET", ISSUE_ENDPOINT.format(key=task_id), params={"fields": "summary"}
            )
        except TrackerRequestError as exc:
            raise TaskStoreReadError(str(exc), backend=self.name) from exc
        return response.status_code != 404

    def remove_dependency_edge(self, task_id: TaskId, dependency_id: TaskId) -> EdgeResult:
        # Step 1: locate the link record between the two issues
        try:
            response = self._request(
                "GET", ISSUE_ENDPOINT.format(key=task_id), params={"fields": "issuelinks"}
            )
        except TrackerRequestError as exc:
            return False, f"Could not read links of {task_id}: {exc}"
        if response.status_code == 404:
            return False, f"Issue {task_id} not found"

        try:
            issue = _json_object(response)
        except TrackerRequestError as exc:
            return False, f"Could not read links of {task_id}: {exc}"
        fields = issue.get("fields")
        links = (fields.get("issuelinks") if isinstance(fields, dict) else None) or []
        link_id = self._find_link_id(links, dependency_id)
        if link_id is None:
            return False, f"No dependency link found between issues {task_id} and {dependency_id}"

        # Step 2: delete that link by its own id
        try:
            response = self._request("DELETE", f"{ISSUE_LINK_ENDPOINT}/{link_id}")
        except TrackerRequestError as exc:
            return False, f"Could not delete link {link_id}: {exc}"
        if response.status_code == 404:
            return False, f"Link {link_id} between {task_id} and {dependency_id} no longer exists"

        logger.debug("Deleted issue link %s (%s -> %s)", link_id, task_id, dependency_id)
        return True, None

    def add_dependency_edge(self, task_id: TaskId, dependency_id: TaskId) -> EdgeResult:
        payload = {
            "type": {"name": self.config.link_type},
            "inwardIssue": {"key": str(dependency_id)},
            "outwardIssue": {"key": str(task_id)},
        }
        try:
            response = self._request("POST", ISSUE_LINK_ENDPOINT, json=payload)
        except TrackerRequestError as exc:
            return False, f"Could not link {task_id} to {dependency_id}: {exc}"
        if response.status_code == 404:
            return False, f"Issue {task_id} or {dependency_id} not found"
        return True, None

    def set_task_status(self, task_id: TaskId, status: TaskStatus) -> EdgeResult:
        path = TRANSITIONS_ENDPOINT.format(key=task_id)
        # Step 1: find a workflow transition that ends in the wanted status
        try:
            response = self._request("GET", path)
            if response.status_code == 404:
                return False, f"Issue {task_id} not found"
            transitions = _json_object(response).get("transitions") or []
        except TrackerRequestError as exc:
            return False, f"Could not read transitions of {task_id}: {exc}"

        transition_id = _find_transition_id(transitions, status)
        if transition_id is None:
            return False, f"No transition to '{status.value}' available for issue {task_id}"

        # Step 2: perform it
        try:
            response = self._request(
                "POST", path, json={"transition": {"id": transition_id}}
            )
        except TrackerRequestError as exc:
            return False, f"Could not transition {task_id}: {exc}"
        if response.status_code == 404:
            return False, f"Issue {task_id} not found"

        logger.debug("Transitioned %s to %s (transition %s)", task_id, status.value, transition_id)
        return True, None

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _matches_type(self, link: Dict[str, Any]) -> bool:
        if not self.config.link_type:
            return True
        return (link.get("type") or {}).get("name") == self.config.link_type

    def _find_link_id(self, links: List[Dict[str, Any]], dependency_id: TaskId) -> Optional[str]:
        for link in links:
            if not isinstance(link, dict):
                continue
            inward = link.get("inwardIssue") or {}
            if inward.get("key") == str(dependency_id) and self._matches_type(link):
                return str(link.get("id"))
        return None

    def _issue_to_task(self, issue: Dict[str, Any]) -> Task:
        fields = issue.get("fields")
        if not isinstance(fields, dict):
            fields = {}
        key = issue.get("key")

        dependencies = []
        for link in fields.get("issuelinks") or []:
            if not isinstance(link, dict):
                continue
            inward = link.get("inwardIssue") or {}
            if inward.get("key") and self._matches_type(link):
                dependencies.append(ExternalKey(inward["key"]))

        parent = fields.get("parent") or {}
        return Task(
            id=ExternalKey(key) if key else None,
            title=fields.get("summary") or "",
            status=map_status((fields.get("status") or {}).get("name")),
            priority=map_priority((fields.get("priority") or {}).get("name")),
            dependencies=tuple(dependencies),
            parent_id=ExternalKey(parent["key"]) if parent.get("key") else None,
        )
