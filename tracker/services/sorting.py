"""Resolve a sort key into projections and ORDER BY terms of a :class:`QueryPlan`."""
from __future__ import annotations

from collections.abc import Callable

from ..schemas import SearchParams, SortKey
from .query_plan import COUNT_EXPRESSIONS, QueryPlan

PRIORITY_RANK = (
    "CASE WHEN issues.priority = 'urgent' THEN 5 "
    "WHEN issues.priority = 'high' THEN 4 "
    "WHEN issues.priority = 'medium' THEN 3 "
    "WHEN issues.priority = 'low' THEN 2 "
    "ELSE 1 END"
)

STATE_GROUP_ORDINAL = (
    "CASE \"group\" WHEN 'backlog' THEN 1 WHEN 'unstarted' THEN 2 WHEN 'started' THEN 3 "
    "WHEN 'completed' THEN 4 WHEN 'cancelled' THEN 5 END"
)

USER_DISPLAY_NAME = "COALESCE(NULLIF(users.last_name, ''), users.email)"

# Projected sort values, ordered by their alias.
SORT_PROJECTIONS = {
    SortKey.AUTHOR: f"(SELECT {USER_DISPLAY_NAME} FROM users WHERE users.id = issues.created_by_id)",
    SortKey.STATE: (
        f"(SELECT concat({STATE_GROUP_ORDINAL}, states.name, states.color) "
        "FROM states WHERE states.id = issues.state_id)"
    ),
    SortKey.LABELS: (
        "array(SELECT labels.name FROM labels JOIN issue_labels ON issue_labels.label_id = labels.id "
        "WHERE issue_labels.issue_id = issues.id ORDER BY labels.name)"
    ),
    SortKey.ASSIGNEES: (
        f"array(SELECT {USER_DISPLAY_NAME} FROM users JOIN issue_assignees ON issue_assignees.assignee_id = users.id "
        f"WHERE issue_assignees.issue_id = issues.id ORDER BY {USER_DISPLAY_NAME})"
    ),
    SortKey.WATCHERS: (
        f"array(SELECT {USER_DISPLAY_NAME} FROM users JOIN issue_watchers ON issue_watchers.watcher_id = users.id "
        f"WHERE issue_watchers.issue_id = issues.id ORDER BY {USER_DISPLAY_NAME})"
    ),
}

COUNT_SORT_KEYS = (
    SortKey.SUB_ISSUES_COUNT,
    SortKey.LINK_COUNT,
    SortKey.ATTACHMENT_COUNT,
    SortKey.LINKED_ISSUES_COUNT,
)

DIRECT_SORT_KEYS = (
    SortKey.ID,
    SortKey.CREATED_AT,
    SortKey.UPDATED_AT,
    SortKey.NAME,
    SortKey.TARGET_DATE,
    SortKey.SEQUENCE_ID,
)


def _direction(desc: bool) -> str:
    return "DESC" if desc else "ASC"


def _sort_priority(plan: QueryPlan, params: SearchParams) -> None:
    plan.add_order(f"{PRIORITY_RANK} {_direction(params.desc)}")


def _sort_projected(plan: QueryPlan, params: SearchParams) -> None:
    alias = f"{params.sort_key.value}_sort"
    plan.add_select(f"{SORT_PROJECTIONS[params.sort_key]} AS {alias}")
    plan.add_order(f"{alias} {_direction(params.desc)}")


def _sort_count(plan: QueryPlan, params: SearchParams) -> None:
    plan.add_order(f"{COUNT_EXPRESSIONS[params.sort_key.value]} {_direction(params.desc)}")


def _sort_direct(plan: QueryPlan, params: SearchParams) -> None:
    plan.add_order(f"issues.{params.sort_key.value} {_direction(params.desc)}")


def _sort_search_rank(plan: QueryPlan, params: SearchParams) -> None:
    if not params.search_query:
        plan.add_order(f"issues.sequence_id {_direction(params.desc)}")
        return
    plan.add_order("ts_rank DESC")


SortBuilder = Callable[[QueryPlan, SearchParams], None]

SORTS: dict[SortKey, SortBuilder] = {
    SortKey.PRIORITY: _sort_priority,
    SortKey.SEARCH_RANK: _sort_search_rank,
    **{key: _sort_projected for key in SORT_PROJECTIONS},
    **{key: _sort_count for key in COUNT_SORT_KEYS},
    **{key: _sort_direct for key in DIRECT_SORT_KEYS},
}


def apply_sort(plan: QueryPlan, params: SearchParams) -> None:
    """Add the ordering for ``params.sort_key`` followed by an ``issues.id`` tie-breaker.

    ``search_rank`` always sorts by descending relevance; ``desc`` does not apply.
    """

    SORTS[params.sort_key](plan, params)
    plan.add_order("issues.id ASC")
