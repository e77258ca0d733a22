"""Export search results as a ZIP archive of CSV files.

Flat searches produce a single ``issues.csv``; grouped searches one file per bucket,
named after the bucket entity. Rows are read in pages of the maximum page size until
the filtered relation is exhausted.
"""
from __future__ import annotations

import io
import re
import zipfile
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Optional

import asyncpg
import pandas as pd

from ..schemas import (
    MAX_LIMIT,
    Caller,
    GroupEntity,
    IssueWithCountResponse,
    SearchParams,
    SearchScope,
    UserLight,
)
from .filters import build_filter_plan, filter_context
from .fulltext import TextSearchConfig
from .grouping import restrict_to_bucket, selected_groups
from .hydrate import fetch_group_entities
from .pages import build_page_plan, fetch_page_rows
from .params import prepare_search_params
from .projector import group_entity, to_issue_with_count
from .query_plan import QueryPlan
from tracker.utils.logging_utils import get_logger, logging_context

logger = get_logger("tracker.services.export")

EXPORT_COLUMNS = [
    "ID",
    "Sequence",
    "Name",
    "Priority",
    "State",
    "Start date",
    "Target date",
    "Completed at",
    "Created at",
    "Updated at",
    "Author",
    "Assignees",
    "Watchers",
    "Labels",
    "Project",
    "Workspace",
    "Draft",
    "Pinned",
    "Sub-issues",
    "Links",
    "Attachments",
    "Linked issues",
    "Comments",
]

_UNSAFE_FILENAME_RE = re.compile(r'[/\\:*?"<>|]')


def format_user_name(user: Optional[UserLight]) -> str:
    if user is None:
        return ""
    name = f"{user.first_name} {user.last_name}".strip()
    return name or (user.email or "")


def _format_date(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def issue_to_record(issue: IssueWithCountResponse) -> dict[str, Any]:
    return {
        "ID": issue.id,
        "Sequence": issue.sequence_id,
        "Name": issue.name,
        "Priority": issue.priority or "",
        "State": issue.state_detail.name if issue.state_detail else "",
        "Start date": _format_date(issue.start_date),
        "Target date": _format_date(issue.target_date),
        "Completed at": _format_date(issue.completed_at),
        "Created at": _format_date(issue.created_at),
        "Updated at": _format_date(issue.updated_at),
        "Author": format_user_name(issue.author_detail),
        "Assignees": ", ".join(format_user_name(user) for user in issue.assignee_details),
        "Watchers": ", ".join(format_user_name(user) for user in issue.watcher_details),
        "Labels": ", ".join(label.name for label in issue.label_details),
        "Project": issue.project_detail.name if issue.project_detail else "",
        "Workspace": issue.workspace_detail.name if issue.workspace_detail else "",
        "Draft": issue.draft,
        "Pinned": issue.pinned,
        "Sub-issues": issue.sub_issues_count,
        "Links": issue.link_count,
        "Attachments": issue.attachment_count,
        "Linked issues": issue.linked_issues_count,
        "Comments": issue.comments_count,
    }


def issues_to_csv(issues: Iterable[IssueWithCountResponse]) -> str:
    frame = pd.DataFrame.from_records([issue_to_record(issue) for issue in issues], columns=EXPORT_COLUMNS)
    return frame.to_csv(index=False)


def group_file_name(entity: GroupEntity, index: int) -> str:
    """File name for the ``index``-th bucket, derived from its entity."""

    if isinstance(entity, UserLight):
        name = format_user_name(entity)
    elif isinstance(entity, str):
        name = entity
    elif entity is not None:
        name = entity.name
    else:
        name = ""
    if not name:
        name = f"group_{index + 1}"
    return _UNSAFE_FILENAME_RE.sub("_", name) + ".csv"


async def _collect_all(conn: asyncpg.Connection, plan: QueryPlan, params: SearchParams) -> list[IssueWithCountResponse]:
    issues: list[IssueWithCountResponse] = []
    offset = 0
    while True:
        window = params.model_copy(update={"offset": offset})
        rows, _ = await fetch_page_rows(conn, plan, window)
        issues.extend(to_issue_with_count(row) for row in rows)
        if len(rows) < params.limit:
            return issues
        offset += params.limit


def _unique_name(name: str, used: set[str]) -> str:
    candidate = name
    suffix = 2
    while candidate in used:
        candidate = f"{name[:-4]}_{suffix}.csv"
        suffix += 1
    used.add(candidate)
    return candidate


def build_archive(files: Sequence[tuple[str, str]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in files:
            archive.writestr(name, content)
    return buffer.getvalue()


async def export_issues(
        pool: asyncpg.Pool,
        caller: Caller,
        scope: SearchScope,
        params: SearchParams,
        *,
        text: Optional[TextSearchConfig] = None,
) -> bytes:
    """Return a ZIP archive with every issue matching ``params`` in full detail."""

    params = prepare_search_params(
        params.model_copy(
            update={"light": False, "only_count": False, "stream": False, "offset": 0, "limit": MAX_LIMIT}
        )
    )
    text = text or TextSearchConfig()
    ctx = filter_context(caller, scope, params, text)
    filter_plan = build_filter_plan(caller, scope, params, text)
    page_plan = build_page_plan(filter_plan, params, text)
    files: list[tuple[str, str]] = []

    with logging_context(user_id=caller.id, group_by=params.group_by or None, export=True):
        async with pool.acquire() as conn:
            group_key = params.group_key
            if group_key is None:
                issues = await _collect_all(conn, page_plan, params)
                files.append(("issues.csv", issues_to_csv(issues)))
            else:
                # empty buckets produce no file
                sizes = [size for size in await selected_groups(conn, filter_plan, ctx) if size.count]
                entities = await fetch_group_entities(conn, group_key, (size.key for size in sizes))
                used: set[str] = set()
                for index, size in enumerate(sizes):
                    bucket_plan = page_plan.copy()
                    restrict_to_bucket(bucket_plan, group_key, size.key)
                    issues = await _collect_all(conn, bucket_plan, params)
                    name = _unique_name(group_file_name(group_entity(group_key, size.key, entities), index), used)
                    files.append((name, issues_to_csv(issues)))

        logger.info("issue export built", extra={"context": {"file_count": len(files)}})
    return build_archive(files)
