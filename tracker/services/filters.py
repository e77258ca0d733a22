"""Compile search filters into predicates over the ``issues`` relation.

The builders in :data:`FILTERS` run in order against one :class:`QueryPlan`. The
count-only, flat and grouped paths all start from the plan returned by
:func:`build_filter_plan`, which is what keeps their totals consistent.

Within one dimension the values are ORed. The empty string stands for "no value"
and additionally matches issues without any related row in that dimension.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from ..schemas import NO_VALUE, Caller, SearchParams, SearchScope
from .fulltext import TextSearchConfig, apply_text_filter
from .query_plan import QueryPlan

INACTIVE_STATE_GROUPS = ("cancelled", "completed")


@dataclass(frozen=True)
class FilterContext:
    params: SearchParams
    caller: Caller
    scope: SearchScope
    text: TextSearchConfig

    def user_ref(self, plan: QueryPlan) -> str:
        return plan.bind(self.caller.id, key="user")


def split_values(values: Iterable[str]) -> tuple[list[str], bool]:
    """Return the distinct concrete identifiers and whether the sentinel was requested."""

    concrete: list[str] = []
    include_empty = False
    for value in values:
        if value == NO_VALUE:
            include_empty = True
        elif value not in concrete:
            concrete.append(value)
    return concrete, include_empty


def _column_filter(plan: QueryPlan, column: str, values: Iterable[str]) -> None:
    concrete, include_empty = split_values(values)
    clauses = []
    if concrete:
        clauses.append(f"{column} = ANY({plan.bind(concrete)}::text[])")
    if include_empty:
        clauses.append(f"{column} IS NULL")
    if clauses:
        plan.add_where(" OR ".join(clauses))


def _relation_filter(plan: QueryPlan, table: str, column: str, values: Iterable[str]) -> None:
    concrete, include_empty = split_values(values)
    clauses = []
    if concrete:
        clauses.append(
            f"issues.id IN (SELECT issue_id FROM {table} WHERE {column} = ANY({plan.bind(concrete)}::text[]))"
        )
    if include_empty:
        clauses.append(f"NOT EXISTS (SELECT 1 FROM {table} WHERE {table}.issue_id = issues.id)")
    if clauses:
        plan.add_where(" OR ".join(clauses))


def filter_not_deleted(plan: QueryPlan, ctx: FilterContext) -> None:
    plan.add_where("issues.deleted_at IS NULL")


def filter_scope(plan: QueryPlan, ctx: FilterContext) -> None:
    scope = ctx.scope
    if not scope.is_global:
        if scope.workspace_id:
            plan.add_where(f"issues.workspace_id = {plan.bind(scope.workspace_id)}")
        plan.add_where(f"issues.project_id = {plan.bind(scope.project_id)}")
    else:
        plan.add_where(
            f"issues.project_id IN (SELECT project_id FROM project_members WHERE member_id = {ctx.user_ref(plan)})"
        )
    if scope.sprint_id:
        plan.add_where(
            f"issues.id IN (SELECT issue_id FROM sprint_issues WHERE sprint_id = {plan.bind(scope.sprint_id)})"
        )


def filter_authors(plan: QueryPlan, ctx: FilterContext) -> None:
    _column_filter(plan, "issues.created_by_id", ctx.params.filters.authors)


def filter_assignees(plan: QueryPlan, ctx: FilterContext) -> None:
    _relation_filter(plan, "issue_assignees", "assignee_id", ctx.params.filters.assignees)


def filter_watchers(plan: QueryPlan, ctx: FilterContext) -> None:
    _relation_filter(plan, "issue_watchers", "watcher_id", ctx.params.filters.watchers)


def filter_priorities(plan: QueryPlan, ctx: FilterContext) -> None:
    _column_filter(plan, "issues.priority", ctx.params.filters.priorities)


def filter_labels(plan: QueryPlan, ctx: FilterContext) -> None:
    _relation_filter(plan, "issue_labels", "label_id", ctx.params.filters.labels)


def filter_sprints(plan: QueryPlan, ctx: FilterContext) -> None:
    _relation_filter(plan, "sprint_issues", "sprint_id", ctx.params.filters.sprints)


def filter_memberships(plan: QueryPlan, ctx: FilterContext) -> None:
    """Intersect requested workspaces and projects with the caller's memberships.

    A global search without an explicit workspace is confined to every workspace
    the caller belongs to. Superusers get no exemption.
    """

    filters = ctx.params.filters
    workspace_ids, _ = split_values(filters.workspaces)
    workspace_slugs, _ = split_values(filters.workspace_slugs)
    project_ids, _ = split_values(filters.projects)

    if workspace_ids:
        plan.add_where(
            "issues.workspace_id IN (SELECT workspace_id FROM workspace_members "
            f"WHERE member_id = {ctx.user_ref(plan)} AND workspace_id = ANY({plan.bind(workspace_ids)}::text[]))"
        )
    if workspace_slugs:
        plan.add_where(
            "issues.workspace_id IN (SELECT wm.workspace_id FROM workspace_members wm "
            "JOIN workspaces w ON w.id = wm.workspace_id "
            f"WHERE wm.member_id = {ctx.user_ref(plan)} AND w.slug = ANY({plan.bind(workspace_slugs)}::text[]))"
        )
    if project_ids:
        plan.add_where(
            "issues.project_id IN (SELECT project_id FROM project_members "
            f"WHERE member_id = {ctx.user_ref(plan)} AND project_id = ANY({plan.bind(project_ids)}::text[]))"
        )
    if ctx.scope.is_global and not workspace_ids and not workspace_slugs:
        plan.add_where(
            f"issues.workspace_id IN (SELECT workspace_id FROM workspace_members WHERE member_id = {ctx.user_ref(plan)})"
        )


def in_scope_projects(plan: QueryPlan, ctx: FilterContext, column: str) -> str:
    """Predicate restricting ``column`` to the projects a search can reach.

    That is the scoped project, the projects of the scoped sprint, or the caller's
    member projects narrowed by the requested projects and workspaces.
    """

    scope = ctx.scope
    if not scope.is_global:
        return f"{column} = {plan.bind(scope.project_id)}"
    if scope.sprint_id:
        return f"{column} IN (SELECT project_id FROM sprint_issues WHERE sprint_id = {plan.bind(scope.sprint_id)})"

    filters = ctx.params.filters
    clauses = [f"{column} IN (SELECT project_id FROM project_members WHERE member_id = {ctx.user_ref(plan)})"]
    project_ids, _ = split_values(filters.projects)
    workspace_ids, _ = split_values(filters.workspaces)
    workspace_slugs, _ = split_values(filters.workspace_slugs)
    if project_ids:
        clauses.append(f"{column} = ANY({plan.bind(project_ids)}::text[])")
    if workspace_ids:
        clauses.append(
            f"{column} IN (SELECT id FROM projects WHERE workspace_id = ANY({plan.bind(workspace_ids)}::text[]))"
        )
    if workspace_slugs:
        clauses.append(
            f"{column} IN (SELECT pr.id FROM projects pr JOIN workspaces w ON w.id = pr.workspace_id "
            f"WHERE w.slug = ANY({plan.bind(workspace_slugs)}::text[]))"
        )
    return " AND ".join(clauses)


def filter_mine(plan: QueryPlan, ctx: FilterContext) -> None:
    filters = ctx.params.filters
    if filters.assigned_to_me:
        plan.add_where(
            f"issues.id IN (SELECT issue_id FROM issue_assignees WHERE assignee_id = {ctx.user_ref(plan)})"
        )
    if filters.watched_by_me:
        plan.add_where(
            f"issues.id IN (SELECT issue_id FROM issue_watchers WHERE watcher_id = {ctx.user_ref(plan)})"
        )
    if filters.authored_by_me:
        plan.add_where(f"issues.created_by_id = {ctx.user_ref(plan)}")


def filter_states(plan: QueryPlan, ctx: FilterContext) -> None:
    """Requested states and the ``only_active`` flag share one subquery over ``states``."""

    concrete, include_empty = split_values(ctx.params.filters.states)
    only_active = ctx.params.only_active or ctx.params.filters.only_active
    if not concrete and not include_empty and not only_active:
        return

    conditions = []
    if only_active:
        excluded = ", ".join(f"'{group}'" for group in INACTIVE_STATE_GROUPS)
        conditions.append(f'"group" NOT IN ({excluded})')
    if concrete:
        conditions.append(f"id = ANY({plan.bind(concrete)}::text[])")

    clauses = []
    if concrete or only_active:
        clauses.append(f"issues.state_id IN (SELECT id FROM states WHERE {' AND '.join(conditions)})")
    if include_empty:
        clauses.append("issues.state_id IS NULL")
    plan.add_where(" OR ".join(clauses))


def filter_flags(plan: QueryPlan, ctx: FilterContext) -> None:
    params = ctx.params
    if params.only_pinned:
        plan.add_where("issues.pinned = true")
    if params.hide_sub_issues:
        plan.add_where("issues.parent_id IS NULL")
    if not params.draft:
        plan.add_where("issues.draft = false OR issues.draft IS NULL")


def filter_text(plan: QueryPlan, ctx: FilterContext) -> None:
    if ctx.params.search_query:
        apply_text_filter(plan, ctx.params.search_query, ctx.text)


FilterBuilder = Callable[[QueryPlan, FilterContext], None]

FILTERS: tuple[FilterBuilder, ...] = (
    filter_not_deleted,
    filter_scope,
    filter_authors,
    filter_assignees,
    filter_watchers,
    filter_priorities,
    filter_labels,
    filter_sprints,
    filter_memberships,
    filter_mine,
    filter_states,
    filter_flags,
    filter_text,
)


def filter_context(
        caller: Caller,
        scope: SearchScope,
        params: SearchParams,
        text: TextSearchConfig | None = None,
) -> FilterContext:
    return FilterContext(params=params, caller=caller, scope=scope, text=text or TextSearchConfig())


def build_filter_plan(
        caller: Caller,
        scope: SearchScope,
        params: SearchParams,
        text: TextSearchConfig | None = None,
) -> QueryPlan:
    """Return a plan holding every predicate of the request and nothing else."""

    ctx = filter_context(caller, scope, params, text)
    plan = QueryPlan()
    for builder in FILTERS:
        builder(plan, ctx)
    return plan
