import pytest

from tracker.schemas import Caller, IssuesListFilters, SearchParams, SearchScope
from tracker.services.filters import FILTERS, build_filter_plan, split_values
from tracker.services.fulltext import TextSearchConfig

CALLER = Caller(id="user-1")


def _plan(scope: SearchScope | None = None, **kwargs):
    filters = kwargs.pop("filters", None) or IssuesListFilters()
    params = SearchParams(filters=filters, **kwargs)
    return build_filter_plan(CALLER, scope or SearchScope(), params, TextSearchConfig())


def _clauses_with(plan, needle: str) -> list[str]:
    return [clause for clause in plan.where if needle in clause]


def test_split_values_separates_sentinel_and_dedupes():
    assert split_values(["a", "", "b", "a"]) == (["a", "b"], True)
    assert split_values([]) == ([], False)


def test_global_scope_restricts_to_caller_memberships():
    plan = _plan()

    assert "issues.deleted_at IS NULL" in plan.where
    project_scope = _clauses_with(plan, "FROM project_members WHERE member_id")
    workspace_scope = _clauses_with(plan, "FROM workspace_members WHERE member_id")
    assert len(project_scope) == 1
    assert len(workspace_scope) == 1
    # the caller id is bound once and reused
    assert plan.params.count("user-1") == 1
    assert "draft = false OR issues.draft IS NULL" in plan.where[-1]


def test_project_scope_restricts_to_single_project():
    plan = _plan(SearchScope(workspace_id="ws-1", project_id="proj-1"))

    assert "issues.project_id = $2" in plan.where
    assert "issues.workspace_id = $1" in plan.where
    assert plan.params[:2] == ["ws-1", "proj-1"]
    assert not _clauses_with(plan, "workspace_members")


def test_sprint_scope_confines_to_sprint_issues():
    plan = _plan(SearchScope(sprint_id="sprint-1"))

    clauses = _clauses_with(plan, "FROM sprint_issues WHERE sprint_id")
    assert len(clauses) == 1
    assert "sprint-1" in plan.params


def test_unspecified_dimensions_add_no_predicates():
    baseline = _plan()
    filtered = _plan(filters=IssuesListFilters(authors=[], labels=[]))

    assert baseline.where == filtered.where
    assert baseline.params == filtered.params


def test_column_filter_values_are_ored_with_sentinel():
    plan = _plan(filters=IssuesListFilters(priorities=["urgent", "high", ""]))

    (clause,) = _clauses_with(plan, "issues.priority")
    assert "issues.priority = ANY(" in clause
    assert " OR issues.priority IS NULL" in clause
    assert ["urgent", "high"] in plan.params


def test_only_sentinel_matches_missing_values_only():
    plan = _plan(filters=IssuesListFilters(authors=[""]))

    assert "issues.created_by_id IS NULL" in plan.where


def test_relation_filter_uses_not_exists_for_sentinel():
    plan = _plan(filters=IssuesListFilters(assignees=["u-2", ""]))

    (clause,) = _clauses_with(plan, "issue_assignees")
    assert "issues.id IN (SELECT issue_id FROM issue_assignees WHERE assignee_id = ANY(" in clause
    assert "OR NOT EXISTS (SELECT 1 FROM issue_assignees WHERE issue_assignees.issue_id = issues.id)" in clause
    assert ["u-2"] in plan.params


@pytest.mark.parametrize(
    ("field", "table", "column"),
    [
        ("watchers", "issue_watchers", "watcher_id"),
        ("labels", "issue_labels", "label_id"),
        ("sprints", "sprint_issues", "sprint_id"),
    ],
)
def test_relation_backed_dimensions(field, table, column):
    plan = _plan(filters=IssuesListFilters(**{field: ["x"]}))

    (clause,) = _clauses_with(plan, f"{column} = ANY(")
    assert f"FROM {table}" in clause
    assert "NOT EXISTS" not in clause


def test_explicit_workspaces_replace_default_membership_clause():
    plan = _plan(filters=IssuesListFilters(workspaces=["ws-1"], workspace_slugs=["acme"]))

    clauses = _clauses_with(plan, "workspace_members")
    assert len(clauses) == 2
    assert any("w.slug = ANY(" in clause for clause in clauses)
    assert ["ws-1"] in plan.params and ["acme"] in plan.params


def test_project_ids_are_intersected_with_memberships():
    plan = _plan(filters=IssuesListFilters(projects=["proj-9"]))

    clauses = _clauses_with(plan, "project_id = ANY(")
    assert len(clauses) == 1
    assert "FROM project_members" in clauses[0]


def test_mine_flags_use_caller():
    plan = _plan(filters=IssuesListFilters(assigned_to_me=True, watched_by_me=True, authored_by_me=True))

    user_ref = f"${plan.params.index('user-1') + 1}"
    assert f"issues.created_by_id = {user_ref}" in plan.where
    assert any(f"assignee_id = {user_ref}" in clause for clause in plan.where)
    assert any(f"watcher_id = {user_ref}" in clause for clause in plan.where)


def test_only_active_excludes_closed_state_groups():
    plan = _plan(only_active=True)

    (clause,) = _clauses_with(plan, "FROM states")
    assert "\"group\" NOT IN ('cancelled', 'completed')" in clause


def test_states_with_sentinel_and_only_active():
    plan = _plan(only_active=True, filters=IssuesListFilters(states=["st-1", ""]))

    (clause,) = _clauses_with(plan, "FROM states")
    assert " AND id = ANY(" in clause
    assert clause.endswith("OR issues.state_id IS NULL")


def test_flags_pinned_sub_issues_and_drafts():
    plan = _plan(only_pinned=True, hide_sub_issues=True, draft=True)

    assert "issues.pinned = true" in plan.where
    assert "issues.parent_id IS NULL" in plan.where
    assert not _clauses_with(plan, "issues.draft")


def test_text_query_joins_projects_and_matches_tokens():
    plan = _plan(filters=IssuesListFilters(search_query="login"))

    assert plan.joins == ["JOIN projects p ON p.id = issues.project_id"]
    assert "p.deleted_at IS NULL" in plan.where
    assert _clauses_with(plan, "issues.tokens @@ plainto_tsquery(")


def test_builder_order_is_stable():
    names = [builder.__name__ for builder in FILTERS]

    assert names[0] == "filter_not_deleted"
    assert names[1] == "filter_scope"
    assert names[-1] == "filter_text"
