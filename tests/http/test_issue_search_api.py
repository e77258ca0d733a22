from __future__ import annotations

import io
import json
import zipfile
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tracker.errors import SearchError
from tracker.http import issues
from tracker.schemas import (
    IssuesCountResponse,
    IssuesGroup,
    IssuesLightSearchResponse,
    SearchLightIssue,
)
from tracker.services import export, search

HEADERS = {"X-User-Id": "u-1"}


class FakeConn:
    def __init__(self, value: Any = None) -> None:
        self.value = value
        self.fetchval_calls: list[tuple[str, tuple[Any, ...]]] = []

    async def fetchval(self, query: str, *args: Any):
        self.fetchval_calls.append((query, args))
        return self.value


class FakeAcquire:
    def __init__(self, conn: FakeConn) -> None:
        self.conn = conn

    async def __aenter__(self) -> FakeConn:
        return self.conn

    async def __aexit__(self, exc_type, exc, tb) -> None:   # noqa: ANN001
        return None


class FakePool:
    def __init__(self, conn: FakeConn) -> None:
        self.conn = conn

    def acquire(self) -> FakeAcquire:
        return FakeAcquire(self.conn)


def _build_app(conn: FakeConn) -> FastAPI:
    app = FastAPI()
    app.include_router(issues.router)
    app.add_exception_handler(SearchError, issues.search_error_handler)
    app.state.db_pool = FakePool(conn)
    return app


@pytest.fixture
def conn() -> FakeConn:
    return FakeConn(value=True)


@pytest.fixture
def client(conn: FakeConn) -> TestClient:
    return TestClient(_build_app(conn))


def test_missing_identity_is_rejected(client: TestClient) -> None:
    response = client.post("/api/issues/search")

    assert response.status_code == 401


def test_search_passes_body_filters_and_query_params(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    async def fake_search(pool, caller, scope, params, *, sink=None, text=None):  # noqa: ANN001
        captured.update(caller=caller, scope=scope, params=params)
        return IssuesLightSearchResponse(
            count=1,
            offset=0,
            limit=10,
            issues=[SearchLightIssue(id="i-1", workspace="w-1", project="p-1", sequence_id=1, name="Login")],
        )

    monkeypatch.setattr(search, "search_issues", fake_search)

    response = client.post(
        "/api/issues/search",
        params={"light": "true", "order_by": "-priority", "only_active": "true"},
        json={"labels": ["l-1", ""], "search_query": "login"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["issues"][0]["name"] == "Login"
    assert captured["caller"].id == "u-1"
    assert captured["scope"].is_global
    assert captured["params"].light is True
    assert captured["params"].only_active is True
    assert captured["params"].order_by == "-priority"
    assert captured["params"].filters.labels == ["l-1", ""]
    assert captured["params"].search_query == "login"


def test_search_errors_are_rendered_with_their_code(client: TestClient) -> None:
    response = client.post("/api/issues/search", params={"limit": 500}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json() == {"code": 5002, "error": "limit must be less than 100"}


def test_unsupported_grouping_is_rejected(client: TestClient) -> None:
    response = client.post("/api/issues/search", params={"group_by": "colour"}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["code"] == 4023


def test_project_search_requires_membership(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = FakeConn(value=False)
    client = TestClient(_build_app(conn))

    async def fail_search(*args, **kwargs):  # noqa: ANN002, ANN003
        raise AssertionError("search must not run for non-members")

    monkeypatch.setattr(search, "search_issues", fail_search)

    response = client.post("/api/workspaces/w-1/projects/p-1/issues/search", headers=HEADERS)

    assert response.status_code == 403
    (_, args), = conn.fetchval_calls
    assert args == ("p-1", "w-1", "u-1")


def test_project_search_runs_in_project_scope(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    scopes = []

    async def fake_search(pool, caller, scope, params, *, sink=None, text=None):  # noqa: ANN001
        scopes.append(scope)
        return IssuesCountResponse(count=7)

    monkeypatch.setattr(search, "search_issues", fake_search)

    response = client.post(
        "/api/workspaces/w-1/projects/p-1/issues/search", params={"only_count": "true"}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.json() == {"count": 7}
    assert (scopes[0].workspace_id, scopes[0].project_id) == ("w-1", "p-1")


def test_unknown_sprint_is_not_found() -> None:
    client = TestClient(_build_app(FakeConn(value=None)))

    response = client.post("/api/sprints/sp-1/issues/search", headers=HEADERS)

    assert response.status_code == 404


def test_grouped_search_streams_ndjson(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_stream(pool, caller, scope, params, *, text=None):  # noqa: ANN001
        assert params.group_by == "priority"
        yield IssuesGroup(group_key="high", entity="high", count=2)
        yield IssuesGroup(group_key="", entity=None, count=1)

    monkeypatch.setattr(search, "stream_issue_groups", fake_stream)

    response = client.post(
        "/api/issues/search", params={"group_by": "priority", "stream": "true"}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    lines = [json.loads(line) for line in response.text.splitlines()]
    assert [line["group_key"] for line in lines] == ["high", ""]
    assert lines[1]["entity"] is None


def test_export_returns_zip_attachment(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_export(pool, caller, scope, params, *, text=None):  # noqa: ANN001
        return export.build_archive([("issues.csv", "ID,Name\ni-1,Login\n")])

    monkeypatch.setattr(export, "export_issues", fake_export)

    response = client.post("/api/issues/search/export", headers=HEADERS)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert "issues-export.zip" in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert archive.read("issues.csv").decode().startswith("ID,Name")


def test_healthcheck_pings_the_database(monkeypatch: pytest.MonkeyPatch) -> None:
    from tracker import main

    class PingConn:
        def __init__(self) -> None:
            self.executed: list[str] = []

        async def execute(self, query: str) -> None:
            self.executed.append(query)

    conn = PingConn()
    monkeypatch.setattr(main.app.state, "db_pool", FakePool(conn), raising=False)

    response = TestClient(main.app).get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert conn.executed == ["SELECT 1"]
