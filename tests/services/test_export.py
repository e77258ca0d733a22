import io
import zipfile
from typing import Any

import pandas as pd
import pytest

from tracker.schemas import Caller, IssueWithCountResponse, ProjectLight, SearchParams, SearchScope, UserLight
from tracker.services import export

CALLER = Caller(id="u-1")


def issue_row(issue_id: str, sequence_id: int, **overrides: Any) -> dict[str, Any]:
    row = {
        "id": issue_id,
        "name": f"Issue {sequence_id}",
        "priority": "low",
        "sequence_id": sequence_id,
        "created_by_id": None,
        "project_id": "p-1",
        "workspace_id": "w-1",
        "state_id": None,
        "all_count": 1,
    }
    row.update(overrides)
    return row


class FakeConn:
    def __init__(self, responses=None, pages=None):     # noqa: ANN001
        self.responses = list(responses or [])
        self.pages = list(pages or [])
        self.fetch_calls: list[tuple[str, tuple[Any, ...]]] = []

    async def fetch(self, query: str, *args: Any):
        self.fetch_calls.append((query, args))
        if "all_count" in query:
            return self.pages.pop(0) if self.pages else []
        for needle, rows in self.responses:
            if needle in query:
                return rows
        return []


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


def _read_archive(payload: bytes) -> dict[str, pd.DataFrame]:
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        return {name: pd.read_csv(archive.open(name)) for name in archive.namelist()}


def test_group_file_name_sanitizes_and_falls_back():
    project = ProjectLight(id="p-1", identifier="WEB", name="Web/App: v2", emoji=None)

    assert export.group_file_name(project, 0) == "Web_App_ v2.csv"
    assert export.group_file_name(UserLight(id="u-1", email="ada@example.com"), 1) == "ada@example.com.csv"
    assert export.group_file_name(None, 2) == "group_3.csv"
    assert export.group_file_name("urgent", 3) == "urgent.csv"


def test_issue_record_formats_people_and_labels():
    issue = IssueWithCountResponse(
        id="i-1",
        workspace="w-1",
        project="p-1",
        sequence_id=3,
        name="Broken export",
        assignee_details=[UserLight(id="u-2", email="b@example.com", first_name="Bob", last_name="Stone")],
        comments_count=4,
    )

    record = export.issue_to_record(issue)

    assert record["Assignees"] == "Bob Stone"
    assert record["Comments"] == 4
    assert record["Priority"] == ""
    assert list(record) == export.EXPORT_COLUMNS


@pytest.mark.asyncio
async def test_flat_export_pages_until_exhausted():
    first_page = [issue_row(f"i-{n}", n, all_count=101) for n in range(100)]
    second_page = [issue_row("i-100", 100, all_count=101)]
    conn = FakeConn(pages=[first_page, second_page])

    payload = await export.export_issues(FakePool(conn), CALLER, SearchScope(), SearchParams(light=True, limit=5))

    files = _read_archive(payload)
    assert list(files) == ["issues.csv"]
    assert len(files["issues.csv"]) == 101
    assert list(files["issues.csv"].columns) == export.EXPORT_COLUMNS
    page_args = [args for query, args in conn.fetch_calls if "all_count" in query]
    assert [args[-2:] for args in page_args] == [(100, 0), (100, 100)]
    # exports always carry full details
    assert "AS comments_count" in conn.fetch_calls[0][0]


@pytest.mark.asyncio
async def test_grouped_export_writes_one_file_per_bucket():
    conn = FakeConn(
        responses=[
            ("WITH matched AS", [{"key": "high", "count": 1}, {"key": "", "count": 1}]),
        ],
        pages=[[issue_row("i-1", 1, priority="high")], [issue_row("i-2", 2, priority=None)]],
    )

    payload = await export.export_issues(FakePool(conn), CALLER, SearchScope(), SearchParams(group_by="priority"))

    files = _read_archive(payload)
    assert list(files) == ["high.csv", "group_2.csv"]
    assert files["high.csv"]["Name"].tolist() == ["Issue 1"]
