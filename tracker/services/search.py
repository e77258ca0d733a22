"""Entry points of the issue search: count-only, flat page and grouped results."""
from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Optional, Union

import asyncpg

from ..errors import UnsupportedGroup
from ..schemas import (
    Caller,
    IssuesCountResponse,
    IssuesGroup,
    IssuesGroupedResponse,
    IssuesLightSearchResponse,
    IssuesSearchResponse,
    SearchParams,
    SearchScope,
)
from .filters import build_filter_plan, filter_context
from .fulltext import TextSearchConfig
from .grouping import GroupSink, group_issues, iter_issue_groups
from .pages import build_page_plan, fetch_page_rows
from .params import prepare_search_params
from .projector import project_page
from .query_plan import QueryPlan
from tracker.utils.logging_utils import get_logger, logging_context, timed

logger = get_logger("tracker.services.search")

SearchResult = Union[
    IssuesCountResponse,
    IssuesSearchResponse,
    IssuesLightSearchResponse,
    IssuesGroupedResponse,
    None,
]


async def count_issues(conn: asyncpg.Connection, filter_plan: QueryPlan) -> IssuesCountResponse:
    query, args = filter_plan.render_count()
    with timed(logger, "issue count fetched"):
        total = await conn.fetchval(query, *args)
    return IssuesCountResponse(count=int(total or 0))


async def fetch_issue_page(
        conn: asyncpg.Connection,
        filter_plan: QueryPlan,
        params: SearchParams,
        text: TextSearchConfig,
) -> Union[IssuesSearchResponse, IssuesLightSearchResponse]:
    plan = build_page_plan(filter_plan, params, text)
    rows, total = await fetch_page_rows(conn, plan, params)
    return project_page(rows, total=total, params=params)


async def search_issues(
        pool: asyncpg.Pool,
        caller: Caller,
        scope: SearchScope,
        params: SearchParams,
        *,
        sink: Optional[GroupSink] = None,
        text: Optional[TextSearchConfig] = None,
) -> SearchResult:
    """Run one issue search and return the response matching the request shape.

    Validation errors are raised before a connection is acquired. ``sink`` requires
    ``group_by``; when given, buckets are handed to it and ``None`` is returned.
    """

    params = prepare_search_params(params)
    if sink is not None and params.group_key is None:
        raise UnsupportedGroup("a group sink requires group_by")
    text = text or TextSearchConfig()
    ctx = filter_context(caller, scope, params, text)
    filter_plan = build_filter_plan(caller, scope, params, text)

    with logging_context(
        user_id=caller.id,
        project_id=scope.project_id,
        sprint_id=scope.sprint_id,
        group_by=params.group_by or None,
    ):
        async with pool.acquire() as conn:
            if params.only_count:
                result: SearchResult = await count_issues(conn, filter_plan)
                logger.info("issue count completed", extra={"context": {"count": result.count}})
                return result
            if params.group_key is not None:
                return await group_issues(conn, filter_plan, ctx, sink=sink)
            result = await fetch_issue_page(conn, filter_plan, params, text)
        logger.info(
            "issue search completed",
            extra={"context": {"count": result.count, "returned": len(result.issues), "light": params.light}},
        )
        return result


async def stream_issue_groups(
        pool: asyncpg.Pool,
        caller: Caller,
        scope: SearchScope,
        params: SearchParams,
        *,
        text: Optional[TextSearchConfig] = None,
) -> AsyncIterator[IssuesGroup]:
    """Async iterator over the buckets of a grouped search.

    Callers that need errors before the first bucket (HTTP streaming) validate with
    :func:`prepare_search_params` beforehand.
    """

    params = prepare_search_params(params)
    if params.group_key is None:
        raise UnsupportedGroup("streaming requires group_by")
    text = text or TextSearchConfig()
    ctx = filter_context(caller, scope, params, text)
    filter_plan = build_filter_plan(caller, scope, params, text)
    emitted = 0
    async with pool.acquire() as conn:
        async for group in iter_issue_groups(conn, filter_plan, ctx):
            emitted += 1
            yield group
    logger.info(
        "issue groups streamed",
        extra={"context": {"user_id": caller.id, "group_by": params.group_by, "group_count": emitted}},
    )
