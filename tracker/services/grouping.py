"""Grouped issue search: bucket discovery followed by one windowed page per bucket.

Discovery aggregates the exact relation produced by the filter plan, so bucket
counts can never disagree with the flat search for the same request. States,
authors and projects also list every value reachable in the search scope, so a
board keeps its empty columns as zero-count buckets. Buckets are processed one at
a time, in a fixed order, on a single connection.
"""
from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

import asyncpg

from ..schemas import NO_VALUE, GroupKey, IssuesGroup, IssuesGroupedResponse, SearchParams
from .filters import INACTIVE_STATE_GROUPS, FilterContext, in_scope_projects, split_values
from .hydrate import fetch_group_entities
from .pages import build_page_plan, fetch_page_rows
from .projector import group_entity, project_issues
from .query_plan import QueryPlan
from tracker.utils.logging_utils import get_logger, timed

logger = get_logger("tracker.services.grouping")

GroupSink = Callable[[IssuesGroup], Awaitable[None]]

MATCHED_COLUMNS = (
    "issues.id",
    "issues.priority",
    "issues.created_by_id",
    "issues.state_id",
    "issues.project_id",
)

# Keys whose buckets come from the ``buckets`` CTE: matched counts plus the scope's
# remaining values at zero.
BUCKET_COLUMNS = {
    GroupKey.AUTHOR: "created_by_id",
    GroupKey.STATE: "state_id",
    GroupKey.PROJECT: "project_id",
}

_USER_NAME = "COALESCE(NULLIF(btrim(u.first_name || ' ' || u.last_name), ''), u.email)"

_PRIORITY_ORDINAL = (
    "CASE m.priority WHEN 'urgent' THEN 5 WHEN 'high' THEN 4 "
    "WHEN 'medium' THEN 3 WHEN 'low' THEN 2 ELSE 1 END"
)

_STATE_ORDINAL = (
    "CASE s.\"group\" WHEN 'backlog' THEN 1 WHEN 'unstarted' THEN 2 WHEN 'started' THEN 3 "
    "WHEN 'completed' THEN 4 WHEN 'cancelled' THEN 5 END"
)

# Per key: SELECT body over the CTEs returning (key, count) in bucket order.
DISCOVERY_SQL = {
    GroupKey.PRIORITY: f"""
        SELECT coalesce(m.priority, '') AS key, count(*) AS count
        FROM matched m
        GROUP BY m.priority
        ORDER BY min({_PRIORITY_ORDINAL})
    """,
    GroupKey.AUTHOR: f"""
        SELECT coalesce(b.key, '') AS key, b.count AS count
        FROM buckets b
        LEFT JOIN users u ON u.id = b.key
        ORDER BY {_USER_NAME} NULLS FIRST, key
    """,
    GroupKey.STATE: f"""
        SELECT coalesce(b.key, '') AS key, b.count AS count
        FROM buckets b
        LEFT JOIN states s ON s.id = b.key
        ORDER BY {_STATE_ORDINAL} NULLS FIRST, s.name, key
    """,
    GroupKey.PROJECT: """
        SELECT b.key AS key, b.count AS count
        FROM buckets b
        LEFT JOIN projects pr ON pr.id = b.key
        ORDER BY pr.name, key
    """,
    GroupKey.LABELS: """
        SELECT coalesce(il.label_id, '') AS key, count(*) AS count
        FROM matched m
        LEFT JOIN issue_labels il ON il.issue_id = m.id
        LEFT JOIN labels l ON l.id = il.label_id
        GROUP BY il.label_id
        ORDER BY min(l.name) NULLS FIRST, key
    """,
    GroupKey.ASSIGNEES: f"""
        SELECT coalesce(ia.assignee_id, '') AS key, count(*) AS count
        FROM matched m
        LEFT JOIN issue_assignees ia ON ia.issue_id = m.id
        LEFT JOIN users u ON u.id = ia.assignee_id
        GROUP BY ia.assignee_id
        ORDER BY min({_USER_NAME}) NULLS FIRST, key
    """,
    GroupKey.WATCHERS: f"""
        SELECT coalesce(iw.watcher_id, '') AS key, count(*) AS count
        FROM matched m
        LEFT JOIN issue_watchers iw ON iw.issue_id = m.id
        LEFT JOIN users u ON u.id = iw.watcher_id
        GROUP BY iw.watcher_id
        ORDER BY min({_USER_NAME}) NULLS FIRST, key
    """,
}

_COLUMN_KEYS = {
    GroupKey.PRIORITY: "issues.priority",
    GroupKey.AUTHOR: "issues.created_by_id",
    GroupKey.STATE: "issues.state_id",
    GroupKey.PROJECT: "issues.project_id",
}

_RELATION_KEYS = {
    GroupKey.LABELS: ("issue_labels", "label_id"),
    GroupKey.ASSIGNEES: ("issue_assignees", "assignee_id"),
    GroupKey.WATCHERS: ("issue_watchers", "watcher_id"),
}


@dataclass(frozen=True)
class GroupSize:
    key: str
    count: int


def _filter_values(params: SearchParams, group_key: GroupKey) -> list[str]:
    filters = params.filters
    return {
        GroupKey.PRIORITY: filters.priorities,
        GroupKey.AUTHOR: filters.authors,
        GroupKey.STATE: filters.states,
        GroupKey.PROJECT: filters.projects,
        GroupKey.LABELS: filters.labels,
        GroupKey.ASSIGNEES: filters.assignees,
        GroupKey.WATCHERS: filters.watchers,
    }[group_key]


def is_bucket_selected(params: SearchParams, group_key: GroupKey, key: str) -> bool:
    """A bucket is kept unless the matching filter list is set and does not name its key."""

    values = _filter_values(params, group_key)
    if not values:
        return True
    concrete, include_empty = split_values(values)
    if key == NO_VALUE:
        return include_empty
    return key in concrete


def restrict_to_bucket(plan: QueryPlan, group_key: GroupKey, key: str) -> None:
    if group_key in _COLUMN_KEYS:
        column = _COLUMN_KEYS[group_key]
        if key == NO_VALUE:
            plan.add_where(f"{column} IS NULL")
        else:
            plan.add_where(f"{column} = {plan.bind(key)}")
        return

    table, column = _RELATION_KEYS[group_key]
    if key == NO_VALUE:
        plan.add_where(f"NOT EXISTS (SELECT 1 FROM {table} WHERE {table}.issue_id = issues.id)")
    else:
        plan.add_where(
            f"EXISTS (SELECT 1 FROM {table} WHERE {table}.issue_id = issues.id AND {table}.{column} = {plan.bind(key)})"
        )


def bucket_domain(plan: QueryPlan, ctx: FilterContext, group_key: GroupKey) -> Optional[str]:
    """Every key a bucket could have in the search scope, as a ``SELECT ... AS key``."""

    if group_key is GroupKey.STATE:
        query = f"SELECT id AS key FROM states WHERE {in_scope_projects(plan, ctx, 'project_id')}"
        if ctx.params.only_active or ctx.params.filters.only_active:
            excluded = ", ".join(f"'{group}'" for group in INACTIVE_STATE_GROUPS)
            query += f' AND "group" NOT IN ({excluded})'
        return query
    if group_key is GroupKey.AUTHOR:
        return f"SELECT DISTINCT member_id AS key FROM project_members WHERE {in_scope_projects(plan, ctx, 'project_id')}"
    if group_key is GroupKey.PROJECT:
        return f"SELECT id AS key FROM projects WHERE deleted_at IS NULL AND {in_scope_projects(plan, ctx, 'id')}"
    return None


def discovery_query(filter_plan: QueryPlan, ctx: FilterContext) -> tuple[str, list[Any]]:
    group_key = ctx.params.group_key
    plan = filter_plan.copy()
    ctes = [f"matched AS ({plan.render_matched(MATCHED_COLUMNS)})"]
    column = BUCKET_COLUMNS.get(group_key)
    if column:
        buckets = f"SELECT m.{column} AS key, count(*) AS count FROM matched m GROUP BY m.{column}"
        domain = bucket_domain(plan, ctx, group_key)
        if domain:
            buckets += (
                f" UNION ALL SELECT d.key, 0 FROM ({domain}) d "
                f"WHERE d.key NOT IN (SELECT m.{column} FROM matched m WHERE m.{column} IS NOT NULL)"
            )
        ctes.append(f"buckets AS ({buckets})")
    return f"WITH {', '.join(ctes)} {DISCOVERY_SQL[group_key]}", list(plan.params)


async def discover_groups(
        conn: asyncpg.Connection,
        filter_plan: QueryPlan,
        ctx: FilterContext,
) -> list[GroupSize]:
    query, args = discovery_query(filter_plan, ctx)
    with timed(logger, "issue groups discovered", group_by=ctx.params.group_by) as details:
        rows = await conn.fetch(query, *args)
        details["group_count"] = len(rows)
    return [GroupSize(key=row["key"] or NO_VALUE, count=int(row["count"])) for row in rows]


async def selected_groups(
        conn: asyncpg.Connection,
        filter_plan: QueryPlan,
        ctx: FilterContext,
) -> list[GroupSize]:
    """Discovered buckets minus the ones excluded by the dimension's own filter list."""

    params = ctx.params
    return [
        size for size in await discover_groups(conn, filter_plan, ctx)
        if is_bucket_selected(params, params.group_key, size.key)
    ]


async def iter_issue_groups(
        conn: asyncpg.Connection,
        filter_plan: QueryPlan,
        ctx: FilterContext,
) -> AsyncIterator[IssuesGroup]:
    """Yield one :class:`IssuesGroup` per selected bucket, each paginated on its own.

    ``ctx.params`` must already be prepared and carry a group key. Zero-count
    buckets are yielded without a page query.
    """

    params = ctx.params
    group_key = params.group_key
    sizes = await selected_groups(conn, filter_plan, ctx)
    entities = await fetch_group_entities(conn, group_key, (size.key for size in sizes))
    page_plan = build_page_plan(filter_plan, params, ctx.text)

    for size in sizes:
        rows: list[dict[str, Any]] = []
        if size.count:
            bucket_plan = page_plan.copy()
            restrict_to_bucket(bucket_plan, group_key, size.key)
            rows, _ = await fetch_page_rows(conn, bucket_plan, params)
            if not rows and params.offset == 0:
                logger.warning(
                    "empty page for non-empty issue group",
                    extra={"context": {"group_key": size.key, "group_count": size.count}},
                )
        yield IssuesGroup(
            group_key=size.key,
            entity=group_entity(group_key, size.key, entities),
            count=size.count,
            issues=project_issues(rows, light=params.light),
        )


async def group_issues(
        conn: asyncpg.Connection,
        filter_plan: QueryPlan,
        ctx: FilterContext,
        *,
        sink: Optional[GroupSink] = None,
) -> Optional[IssuesGroupedResponse]:
    """Collect every bucket into a response, or hand each one to ``sink`` as soon as it is built.

    With a sink nothing is returned. An exception raised by the sink stops the
    remaining buckets and propagates unchanged.
    """

    params = ctx.params
    collected: list[IssuesGroup] = []
    total = 0
    async with contextlib.aclosing(iter_issue_groups(conn, filter_plan, ctx)) as groups:
        async for group in groups:
            total += group.count
            if sink is not None:
                await sink(group)
            else:
                collected.append(group)

    logger.info(
        "grouped issue search completed",
        extra={"context": {"group_by": params.group_by, "total": total, "streamed": sink is not None}},
    )
    if sink is not None:
        return None
    return IssuesGroupedResponse(
        count=total,
        offset=params.offset,
        limit=params.limit,
        group_by=params.group_by,
        issues=collected,
    )
