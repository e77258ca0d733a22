"""Windowed page queries shared by the flat and the grouped search paths."""
from __future__ import annotations

from typing import Any

import asyncpg

from ..schemas import SearchParams
from .fulltext import TextSearchConfig, apply_highlight_projection, apply_rank_projection
from .hydrate import hydrate_issues
from .query_plan import COUNT_EXPRESSIONS, ISSUE_COLUMNS, QueryPlan
from .sorting import apply_sort
from tracker.utils.logging_utils import get_logger, timed

logger = get_logger("tracker.services.pages")


def build_page_plan(filter_plan: QueryPlan, params: SearchParams, text: TextSearchConfig) -> QueryPlan:
    """Extend a copy of ``filter_plan`` with the issue projection and the requested ordering.

    Every row carries ``all_count``, the size of the filtered relation before
    ``LIMIT``/``OFFSET``. Light pages skip the correlated counters and highlights.
    """

    plan = filter_plan.copy()
    for column in ISSUE_COLUMNS:
        plan.add_select(column)
    plan.add_select("count(*) OVER () AS all_count")
    if not params.light:
        for alias, expression in COUNT_EXPRESSIONS.items():
            plan.add_select(f"{expression} AS {alias}")

    search_query = params.search_query
    if search_query:
        apply_rank_projection(plan, search_query)
        if not params.light:
            apply_highlight_projection(plan, search_query, text)

    apply_sort(plan, params)
    return plan


async def fetch_page_rows(
        conn: asyncpg.Connection,
        plan: QueryPlan,
        params: SearchParams,
) -> tuple[list[dict[str, Any]], int]:
    """Execute ``plan`` for the requested window and return hydrated rows with the total."""

    query, args = plan.render_page(params.limit, params.offset)
    with timed(logger, "issue page fetched", limit=params.limit, offset=params.offset) as details:
        records = await conn.fetch(query, *args)
        details["row_count"] = len(records)

    rows = [dict(record) for record in records]
    total = int(rows[0]["all_count"]) if rows else 0
    await hydrate_issues(conn, rows, light=params.light)
    return rows, total
