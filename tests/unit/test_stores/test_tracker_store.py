"""Tests for the Jira-backed store using httpx.MockTransport."""

import json
from typing import Dict, List, Optional

import httpx
import pytest

from taskgraph_mcp.config import TrackerConfig
from taskgraph_mcp.core.dependencies import fix_dependencies
from taskgraph_mcp.core.models import ExternalKey, TaskPriority, TaskStatus
from taskgraph_mcp.core.stores import (
    StoreUnavailableError,
    TaskStoreReadError,
    TrackerTaskStore,
)
from taskgraph_mcp.core.stores.tracker import (
    _extract_error_message,
    build_jql,
    map_priority,
    map_status,
)
from tests.fixtures.tracker_responses import issue, link, search_page


def _config(**overrides) -> TrackerConfig:
    values = dict(
        base_url="https://example.atlassian.net",
        email="dev@example.com",
        api_token="secret-token",
        project="PROJ",
        page_size=50,
    )
    values.update(overrides)
    return TrackerConfig(**values)


WORKFLOW = [
    {"id": "11", "name": "Reopen", "to": {"name": "To Do"}},
    {"id": "21", "name": "Start work", "to": {"name": "In Progress"}},
    {"id": "31", "name": "Done", "to": {"name": "Done"}},
]


class FakeJira:
    """Minimal stateful Jira: search, issue links, link deletion and transitions."""

    def __init__(self, issues: List[dict]):
        self.issues: Dict[str, dict] = {i["key"]: i for i in issues}
        self.requests: List[httpx.Request] = []
        self.fail_delete: Dict[str, int] = {}
        self.search_status: Optional[int] = None
        # Raw 200 bodies served instead of JSON (e.g. an SSO login page)
        self.search_body: Optional[str] = None
        self.issue_bodies: Dict[str, str] = {}
        self.workflow: List[dict] = list(WORKFLOW)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/rest/api/3/search":
            if self.search_status:
                return httpx.Response(
                    self.search_status, json={"errorMessages": ["search failed"]}
                )
            if self.search_body is not None:
                return httpx.Response(200, text=self.search_body)
            start = int(request.url.params.get("startAt", 0))
            size = int(request.url.params.get("maxResults", 50))
            ordered = list(self.issues.values())
            page = ordered[start : start + size]
            return httpx.Response(
                200, json=search_page(page, start_at=start, total=len(ordered))
            )

        if path.endswith("/transitions"):
            return self._transitions(request, path.split("/")[-2])

        if path.startswith("/rest/api/3/issue/"):
            key = path.rsplit("/", 1)[-1]
            if key not in self.issues:
                return httpx.Response(404, json={"errorMessages": ["Issue does not exist"]})
            if key in self.issue_bodies:
                return httpx.Response(200, text=self.issue_bodies[key])
            return httpx.Response(200, json=self.issues[key])

        if path.startswith("/rest/api/3/issueLink/") and request.method == "DELETE":
            link_id = path.rsplit("/", 1)[-1]
            if link_id in self.fail_delete:
                return httpx.Response(
                    self.fail_delete[link_id], json={"errorMessages": ["nope"]}
                )
            for data in self.issues.values():
                links = data["fields"]["issuelinks"]
                data["fields"]["issuelinks"] = [l for l in links if l["id"] != link_id]
            return httpx.Response(204)

        if path == "/rest/api/3/issueLink" and request.method == "POST":
            body = json.loads(request.content)
            outward = body["outwardIssue"]["key"]
            inward = body["inwardIssue"]["key"]
            if outward not in self.issues or inward not in self.issues:
                return httpx.Response(404, json={"errorMessages": ["Issue does not exist"]})
            self.issues[outward]["fields"]["issuelinks"].append(
                link(f"new-{outward}-{inward}", inward, type_name=body["type"]["name"])
            )
            return httpx.Response(201)

        return httpx.Response(404)

    def _transitions(self, request: httpx.Request, key: str) -> httpx.Response:
        if key not in self.issues:
            return httpx.Response(404, json={"errorMessages": ["Issue does not exist"]})
        if request.method == "GET":
            return httpx.Response(200, json={"transitions": self.workflow})
        wanted = json.loads(request.content)["transition"]["id"]
        for transition in self.workflow:
            if transition["id"] == wanted:
                self.issues[key]["fields"]["status"] = {"name": transition["to"]["name"]}
                return httpx.Response(204)
        return httpx.Response(400, json={"errorMessages": ["Transition is not valid"]})

    def store(self, **config_overrides) -> TrackerTaskStore:
        return TrackerTaskStore(
            _config(**config_overrides), transport=httpx.MockTransport(self.handler)
        )


@pytest.fixture
def jira():
    return FakeJira(
        [
            issue("PROJ-1", "Design", status="Done", priority="Highest"),
            issue("PROJ-2", "Build", links=[link("100", "PROJ-1")]),
            issue(
                "PROJ-3",
                "Ship",
                status="In Progress",
                priority="Low",
                links=[link("101", "PROJ-2"), link("102", "PROJ-1", type_name="Relates")],
                parent="PROJ-1",
            ),
        ]
    )


class TestMapping:
    def test_build_jql(self):
        assert build_jql("PROJ") == 'project = "PROJ" ORDER BY created ASC'
        assert 'parent = "PROJ-7"' in build_jql("PROJ", "PROJ-7")

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("To Do", TaskStatus.PENDING),
            ("In Progress", TaskStatus.IN_PROGRESS),
            ("Done", TaskStatus.DONE),
            ("In Review", TaskStatus.REVIEW),
            (None, TaskStatus.PENDING),
        ],
    )
    def test_map_status(self, name, expected):
        assert map_status(name) is expected

    def test_map_priority(self):
        assert map_priority("Highest") is TaskPriority.HIGH
        assert map_priority("Lowest") is TaskPriority.LOW
        assert map_priority("Urgent-ish") is TaskPriority.MEDIUM
        assert map_priority(None) is TaskPriority.MEDIUM


class TestAvailability:
    def test_missing_settings_are_named(self):
        store = TrackerTaskStore(_config(api_token="", project=""))
        with pytest.raises(StoreUnavailableError) as exc_info:
            store.ensure_available()
        assert "JIRA_API_TOKEN" in str(exc_info.value)
        assert "JIRA_PROJECT" in str(exc_info.value)

    def test_list_tasks_checks_settings_first(self):
        fake = FakeJira([])
        store = fake.store(base_url="")
        with pytest.raises(StoreUnavailableError):
            store.list_tasks()
        assert fake.requests == []


class TestListTasks:
    def test_issues_become_tasks(self, jira):
        tasks = jira.store().list_tasks()

        assert [str(task.id) for task in tasks] == ["PROJ-1", "PROJ-2", "PROJ-3"]
        assert tasks[0].status is TaskStatus.DONE
        assert tasks[0].priority is TaskPriority.HIGH
        assert tasks[1].dependencies == (ExternalKey("PROJ-1"),)
        assert tasks[2].dependencies == (ExternalKey("PROJ-2"),)
        assert tasks[2].parent_id == ExternalKey("PROJ-1")

    def test_sends_basic_auth_and_jql(self, jira):
        jira.store().list_tasks()
        request = jira.requests[0]
        assert request.headers["Authorization"].startswith("Basic ")
        assert request.url.params["jql"] == 'project = "PROJ" ORDER BY created ASC'

    def test_follows_pagination(self, jira):
        tasks = jira.store(page_size=2).list_tasks()
        assert len(tasks) == 3
        assert [r.url.params["startAt"] for r in jira.requests] == ["0", "2"]

    def test_parent_key_narrows_search(self, jira):
        TrackerTaskStore(
            _config(), parent_key="PROJ-1", transport=httpx.MockTransport(jira.handler)
        ).list_tasks()
        assert 'issuekey = "PROJ-1"' in jira.requests[0].url.params["jql"]

    def test_authentication_failure_is_read_error(self, jira):
        jira.search_status = 401
        with pytest.raises(TaskStoreReadError, match="authentication failed"):
            jira.store().list_tasks()

    def test_server_error_is_read_error(self, jira):
        jira.search_status = 500
        with pytest.raises(TaskStoreReadError, match="500: search failed"):
            jira.store().list_tasks()

    def test_non_json_page_is_read_error(self, jira):
        jira.search_body = "<html>login</html>"
        with pytest.raises(TaskStoreReadError, match="non-JSON response"):
            jira.store().list_tasks()

    def test_malformed_issue_list_is_read_error(self, jira):
        jira.search_body = json.dumps({"issues": "none", "total": 1})
        with pytest.raises(TaskStoreReadError, match="malformed issue list"):
            jira.store().list_tasks()

    def test_skips_issue_entries_that_are_not_objects(self, jira):
        jira.search_body = json.dumps(
            {"startAt": 0, "total": 2, "issues": [None, issue("PROJ-7", "Kept")]}
        )
        tasks = jira.store().list_tasks()
        assert [str(task.id) for task in tasks] == ["PROJ-7"]

    def test_transport_error_is_read_error(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = TrackerTaskStore(_config(), transport=httpx.MockTransport(boom))
        with pytest.raises(TaskStoreReadError, match="connection refused"):
            store.list_tasks()


class TestEdges:
    def test_remove_looks_up_link_then_deletes_it(self, jira):
        store = jira.store()
        assert store.remove_dependency_edge(ExternalKey("PROJ-3"), ExternalKey("PROJ-2")) == (
            True,
            None,
        )
        calls = [(r.method, r.url.path) for r in jira.requests]
        assert calls == [
            ("GET", "/rest/api/3/issue/PROJ-3"),
            ("DELETE", "/rest/api/3/issueLink/101"),
        ]
        remaining = jira.issues["PROJ-3"]["fields"]["issuelinks"]
        assert [l["id"] for l in remaining] == ["102"]

    def test_remove_ignores_other_link_types(self, jira):
        removed, reason = jira.store().remove_dependency_edge(
            ExternalKey("PROJ-3"), ExternalKey("PROJ-1")
        )
        assert removed is False
        assert reason == "No dependency link found between issues PROJ-3 and PROJ-1"

    def test_remove_on_unknown_issue(self, jira):
        removed, reason = jira.store().remove_dependency_edge(
            ExternalKey("PROJ-9"), ExternalKey("PROJ-1")
        )
        assert (removed, reason) == (False, "Issue PROJ-9 not found")

    def test_delete_failure_is_reported(self, jira):
        jira.fail_delete["100"] = 403
        removed, reason = jira.store().remove_dependency_edge(
            ExternalKey("PROJ-2"), ExternalKey("PROJ-1")
        )
        assert removed is False
        assert reason.startswith("Could not delete link 100")

    def test_add_creates_typed_link(self, jira):
        assert jira.store().add_dependency_edge(
            ExternalKey("PROJ-1"), ExternalKey("PROJ-3")
        ) == (True, None)
        body = json.loads(jira.requests[-1].content)
        assert body == {
            "type": {"name": "Blocks"},
            "inwardIssue": {"key": "PROJ-3"},
            "outwardIssue": {"key": "PROJ-1"},
        }

    def test_id_exists(self, jira):
        store = jira.store()
        assert store.id_exists(ExternalKey("PROJ-2")) is True
        assert store.id_exists(ExternalKey("PROJ-42")) is False

    def test_close_releases_client(self, jira):
        store = jira.store()
        store.list_tasks()
        store.close()
        assert store._client is None


def test_fix_over_tracker_counts_unfixable_and_continues():
    fake = FakeJira(
        [
            issue("PROJ-1", links=[link("200", "PROJ-2")]),
            issue("PROJ-2", links=[link("201", "PROJ-1")]),
            issue("PROJ-3", links=[link("202", "PROJ-99"), link("203", "PROJ-3")]),
        ]
    )
    fake.fail_delete["202"] = 500

    result = fix_dependencies(fake.store())

    assert result.self_removed == 1
    assert result.missing_removed == 0
    assert result.circular_removed == 1
    assert result.unfixable == 1
    assert result.failures[0].violation.dependency_id == ExternalKey("PROJ-99")
    deletes = [r.url.path for r in fake.requests if r.method == "DELETE"]
    assert deletes == [
        "/rest/api/3/issueLink/203",
        "/rest/api/3/issueLink/202",
        "/rest/api/3/issueLink/201",
    ]


def test_fix_over_tracker_survives_non_json_link_lookup():
    fake = FakeJira(
        [
            issue("P-1", links=[link("300", "P-98")]),
            issue("P-2", links=[link("301", "P-99")]),
        ]
    )
    fake.issue_bodies["P-1"] = "<html>login</html>"

    result = fix_dependencies(fake.store())

    assert result.unfixable == 1
    assert result.missing_removed == 1
    failure = result.failures[0]
    assert failure.violation.task_id == ExternalKey("P-1")
    assert "non-JSON response" in failure.reason
    assert fake.issues["P-2"]["fields"]["issuelinks"] == []


class TestErrorMessages:
    def test_jira_error_shape(self):
        response = httpx.Response(
            400, json={"errorMessages": ["bad jql"], "errors": {"project": "unknown"}}
        )
        assert _extract_error_message(response) == "bad jql; project: unknown"

    def test_json_list_body_falls_back_to_text(self):
        response = httpx.Response(500, json=["boom"])
        assert _extract_error_message(response) == '["boom"]'

    def test_non_json_body(self):
        assert _extract_error_message(httpx.Response(502, text="Bad gateway")) == "Bad gateway"


class TestSetStatus:
    def test_performs_matching_transition(self, jira):
        store = jira.store()
        assert store.set_task_status(ExternalKey("PROJ-2"), TaskStatus.IN_PROGRESS) == (
            True,
            None,
        )
        calls = [(r.method, r.url.path) for r in jira.requests]
        assert calls == [
            ("GET", "/rest/api/3/issue/PROJ-2/transitions"),
            ("POST", "/rest/api/3/issue/PROJ-2/transitions"),
        ]
        assert json.loads(jira.requests[-1].content) == {"transition": {"id": "21"}}
        assert jira.issues["PROJ-2"]["fields"]["status"] == {"name": "In Progress"}

    def test_matches_transition_name_case_insensitively(self, jira):
        jira.workflow = [{"id": "77", "name": "DONE", "to": {"name": "Closed"}}]
        assert jira.store().set_task_status(ExternalKey("PROJ-2"), TaskStatus.DONE) == (
            True,
            None,
        )
        assert jira.issues["PROJ-2"]["fields"]["status"] == {"name": "Closed"}

    def test_no_matching_transition(self, jira):
        updated, reason = jira.store().set_task_status(
            ExternalKey("PROJ-2"), TaskStatus.DEFERRED
        )
        assert updated is False
        assert reason == "No transition to 'deferred' available for issue PROJ-2"
        assert [r.method for r in jira.requests] == ["GET"]

    def test_unknown_issue(self, jira):
        assert jira.store().set_task_status(ExternalKey("PROJ-9"), TaskStatus.DONE) == (
            False,
            "Issue PROJ-9 not found",
        )

    def test_rejected_transition_is_reported(self, jira):
        jira.workflow = [{"id": "31", "name": "Done", "to": {"name": "Done"}}]
        original = jira._transitions

        def reject_post(request, key):
            if request.method == "POST":
                return httpx.Response(400, json={"errorMessages": ["Resolution required"]})
            return original(request, key)

        jira._transitions = reject_post
        updated, reason = jira.store().set_task_status(ExternalKey("PROJ-2"), TaskStatus.DONE)
        assert updated is False
        assert reason.startswith("Could not transition PROJ-2")
        assert "Resolution required" in reason
