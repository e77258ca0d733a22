"""Batch loading of the relations attached to issue rows.

Each relation is fetched with a single ``= ANY($1::text[])`` query per page so the
cost of a page does not grow with the number of rows. Rows are plain dicts and are
enriched in place with ``*_detail`` entries consumed by the projector.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import asyncpg

from ..schemas import GroupKey
from tracker.utils.logging_utils import get_logger

logger = get_logger("tracker.services.hydrate")

USERS_SQL = "SELECT id, email, first_name, last_name, avatar FROM users WHERE id = ANY($1::text[])"
STATES_SQL = 'SELECT id, name, color, "group" FROM states WHERE id = ANY($1::text[])'
LABELS_SQL = "SELECT id, name, color FROM labels WHERE id = ANY($1::text[])"
PROJECTS_SQL = "SELECT id, identifier, name, emoji FROM projects WHERE id = ANY($1::text[])"
WORKSPACES_SQL = "SELECT id, slug, name FROM workspaces WHERE id = ANY($1::text[])"
PARENTS_SQL = """
    SELECT id, sequence_id, name, project_id, workspace_id, state_id, priority
    FROM issues
    WHERE id = ANY($1::text[])
"""
ASSIGNEES_SQL = """
    SELECT ia.issue_id, u.id, u.email, u.first_name, u.last_name, u.avatar
    FROM issue_assignees ia
    JOIN users u ON u.id = ia.assignee_id
    WHERE ia.issue_id = ANY($1::text[])
    ORDER BY ia.issue_id, COALESCE(NULLIF(u.last_name, ''), u.email), u.id
"""
WATCHERS_SQL = """
    SELECT iw.issue_id, u.id, u.email, u.first_name, u.last_name, u.avatar
    FROM issue_watchers iw
    JOIN users u ON u.id = iw.watcher_id
    WHERE iw.issue_id = ANY($1::text[])
    ORDER BY iw.issue_id, COALESCE(NULLIF(u.last_name, ''), u.email), u.id
"""
ISSUE_LABELS_SQL = """
    SELECT il.issue_id, l.id, l.name, l.color
    FROM issue_labels il
    JOIN labels l ON l.id = il.label_id
    WHERE il.issue_id = ANY($1::text[])
    ORDER BY il.issue_id, l.name, l.id
"""
LINKED_ISSUES_SQL = """
    SELECT id1, id2
    FROM linked_issues
    WHERE id1 = ANY($1::text[]) OR id2 = ANY($1::text[])
"""

_ENTITY_SQL = {
    GroupKey.AUTHOR: USERS_SQL,
    GroupKey.ASSIGNEES: USERS_SQL,
    GroupKey.WATCHERS: USERS_SQL,
    GroupKey.STATE: STATES_SQL,
    GroupKey.LABELS: LABELS_SQL,
    GroupKey.PROJECT: PROJECTS_SQL,
}


def _distinct(values: Iterable[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(str(value), None)
    return list(seen)


async def _fetch_by_id(conn: asyncpg.Connection, query: str, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
    if not ids:
        return {}
    rows = await conn.fetch(query, list(ids))
    return {row["id"]: dict(row) for row in rows}


async def _fetch_grouped(conn: asyncpg.Connection, query: str, issue_ids: Sequence[str]) -> dict[str, list[dict[str, Any]]]:
    grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
    if not issue_ids:
        return grouped
    for row in await conn.fetch(query, list(issue_ids)):
        item = dict(row)
        grouped[item.pop("issue_id")].append(item)
    return grouped


async def hydrate_issues(conn: asyncpg.Connection, rows: list[dict[str, Any]], *, light: bool) -> None:
    """Attach author, state, project, workspace, assignee, watcher and label details.

    Full (non-light) rows additionally receive ``parent_detail`` and the ids of
    every linked issue.
    """

    if not rows:
        return

    issue_ids = _distinct(row["id"] for row in rows)
    authors = await _fetch_by_id(conn, USERS_SQL, _distinct(row.get("created_by_id") for row in rows))
    states = await _fetch_by_id(conn, STATES_SQL, _distinct(row.get("state_id") for row in rows))
    projects = await _fetch_by_id(conn, PROJECTS_SQL, _distinct(row.get("project_id") for row in rows))
    workspaces = await _fetch_by_id(conn, WORKSPACES_SQL, _distinct(row.get("workspace_id") for row in rows))
    assignees = await _fetch_grouped(conn, ASSIGNEES_SQL, issue_ids)
    watchers = await _fetch_grouped(conn, WATCHERS_SQL, issue_ids)
    labels = await _fetch_grouped(conn, ISSUE_LABELS_SQL, issue_ids)

    for row in rows:
        row["author_detail"] = authors.get(row.get("created_by_id"))
        row["state_detail"] = states.get(row.get("state_id"))
        row["project_detail"] = projects.get(row.get("project_id"))
        row["workspace_detail"] = workspaces.get(row.get("workspace_id"))
        row["assignee_details"] = assignees.get(row["id"], [])
        row["watcher_details"] = watchers.get(row["id"], [])
        row["label_details"] = labels.get(row["id"], [])

    if not light:
        await hydrate_parents(conn, rows)
        await hydrate_linked_issues(conn, rows, issue_ids)

    logger.debug(
        "issue relations hydrated",
        extra={"context": {"row_count": len(rows), "light": light}},
    )


async def hydrate_parents(conn: asyncpg.Connection, rows: list[dict[str, Any]]) -> None:
    parents = await _fetch_by_id(conn, PARENTS_SQL, _distinct(row.get("parent_id") for row in rows))
    for row in rows:
        row["parent_detail"] = parents.get(row.get("parent_id"))


async def hydrate_linked_issues(conn: asyncpg.Connection, rows: list[dict[str, Any]], issue_ids: Sequence[str]) -> None:
    linked: dict[str, list[str]] = defaultdict(list)
    if issue_ids:
        for link in await conn.fetch(LINKED_ISSUES_SQL, list(issue_ids)):
            first, second = link["id1"], link["id2"]
            linked[first].append(second)
            linked[second].append(first)
    for row in rows:
        row["linked_issues_ids"] = sorted(set(linked.get(row["id"], [])))


async def fetch_group_entities(
        conn: asyncpg.Connection,
        group_key: GroupKey,
        keys: Iterable[str],
) -> Mapping[str, dict[str, Any]]:
    """Load the light representation of every bucket key in one query.

    Priority buckets have no backing table; their key is the entity.
    """

    query = _ENTITY_SQL.get(group_key)
    if query is None:
        return {}
    return await _fetch_by_id(conn, query, _distinct(keys))
