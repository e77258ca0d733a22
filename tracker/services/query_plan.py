"""Incremental SQL builder shared by every issue search path.

Predicates, projections and orderings are appended as SQL fragments while values
are bound to asyncpg positional parameters (``$1``, ``$2``...). The plan is copied
before path-specific additions so the flat, count and grouped queries all start
from the very same filtered relation.
"""
from __future__ import annotations

from typing import Any, Hashable

ISSUE_COLUMNS = (
    "issues.id",
    "issues.created_at",
    "issues.updated_at",
    "issues.name",
    "issues.priority",
    "issues.start_date",
    "issues.target_date",
    "issues.completed_at",
    "issues.sequence_id",
    "issues.created_by_id",
    "issues.updated_by_id",
    "issues.parent_id",
    "issues.project_id",
    "issues.workspace_id",
    "issues.state_id",
    "issues.description_html",
    "issues.description_stripped",
    "issues.sort_order",
    "issues.estimate_point",
    "issues.draft",
    "issues.pinned",
)

# Correlated per-row aggregates, keyed by the alias they are projected under.
COUNT_EXPRESSIONS = {
    "sub_issues_count": (
        "(SELECT count(*) FROM issues AS child "
        "WHERE child.parent_id = issues.id AND child.deleted_at IS NULL)"
    ),
    "link_count": "(SELECT count(*) FROM issue_links WHERE issue_links.issue_id = issues.id)",
    "attachment_count": "(SELECT count(*) FROM issue_attachments WHERE issue_attachments.issue_id = issues.id)",
    "linked_issues_count": (
        "(SELECT count(*) FROM linked_issues "
        "WHERE linked_issues.id1 = issues.id OR linked_issues.id2 = issues.id)"
    ),
    "comments_count": "(SELECT count(*) FROM issue_comments WHERE issue_comments.issue_id = issues.id)",
}


class QueryPlan:
    """Mutable collection of SQL fragments over the ``issues`` relation."""

    def __init__(self) -> None:
        self.params: list[Any] = []
        self.joins: list[str] = []
        self.where: list[str] = []
        self.select: list[str] = []
        self.order: list[str] = []
        self._named: dict[Hashable, str] = {}

    def bind(self, value: Any, *, key: Hashable | None = None) -> str:
        """Register ``value`` as a parameter and return its placeholder.

        Values bound under the same ``key`` share one placeholder.
        """

        if key is not None and key in self._named:
            return self._named[key]
        self.params.append(value)
        placeholder = f"${len(self.params)}"
        if key is not None:
            self._named[key] = placeholder
        return placeholder

    def add_join(self, clause: str) -> None:
        if clause not in self.joins:
            self.joins.append(clause)

    def add_where(self, clause: str) -> None:
        self.where.append(clause)

    def add_select(self, expression: str) -> None:
        self.select.append(expression)

    def add_order(self, expression: str) -> None:
        self.order.append(expression)

    def copy(self) -> "QueryPlan":
        clone = QueryPlan()
        clone.params = list(self.params)
        clone.joins = list(self.joins)
        clone.where = list(self.where)
        clone.select = list(self.select)
        clone.order = list(self.order)
        clone._named = dict(self._named)
        return clone

    def from_sql(self) -> str:
        return " ".join(["FROM issues", *self.joins])

    def where_sql(self) -> str:
        if not self.where:
            return ""
        return "WHERE " + " AND ".join(f"({clause})" for clause in self.where)

    def render_count(self) -> tuple[str, list[Any]]:
        query = f"SELECT count(*) {self.from_sql()} {self.where_sql()}"
        return query, list(self.params)

    def render_matched(self, columns: tuple[str, ...]) -> str:
        """Render the filtered relation as a sub-select for use inside a CTE."""

        return f"SELECT {', '.join(columns)} {self.from_sql()} {self.where_sql()}"

    def render_page(self, limit: int, offset: int) -> tuple[str, list[Any]]:
        plan = self.copy()
        limit_ref = plan.bind(limit)
        offset_ref = plan.bind(offset)
        columns = ",\n               ".join(plan.select or ["issues.id"])
        order_sql = f"ORDER BY {', '.join(plan.order)}" if plan.order else ""
        query = f"""
        SELECT {columns}
        {plan.from_sql()}
        {plan.where_sql()}
        {order_sql}
        LIMIT {limit_ref} OFFSET {offset_ref}
        """
        return query, plan.params
