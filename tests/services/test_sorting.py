import pytest

from tracker.schemas import IssuesListFilters, SearchParams, SortKey
from tracker.services.query_plan import COUNT_EXPRESSIONS, QueryPlan
from tracker.services.sorting import PRIORITY_RANK, SORTS, apply_sort


def _sorted_plan(**kwargs) -> QueryPlan:
    plan = QueryPlan()
    apply_sort(plan, SearchParams(**kwargs))
    return plan


def test_every_sort_key_has_a_builder():
    assert set(SORTS) == set(SortKey)


@pytest.mark.parametrize("key", ["id", "created_at", "updated_at", "name", "target_date", "sequence_id"])
def test_direct_columns(key):
    plan = _sorted_plan(order_by=key, desc=True)

    assert plan.order == [f"issues.{key} DESC", "issues.id ASC"]
    assert plan.select == []


def test_priority_uses_rank_ladder():
    plan = _sorted_plan(order_by="priority", desc=True)

    assert plan.order[0] == f"{PRIORITY_RANK} DESC"
    assert "'urgent' THEN 5" in PRIORITY_RANK
    assert PRIORITY_RANK.endswith("ELSE 1 END")


@pytest.mark.parametrize("key", ["author", "state", "labels", "assignees", "watchers"])
def test_derived_keys_project_sort_value(key):
    plan = _sorted_plan(order_by=key)

    assert plan.select[0].endswith(f" AS {key}_sort")
    assert plan.order[0] == f"{key}_sort ASC"


def test_author_sort_falls_back_to_email():
    plan = _sorted_plan(order_by="author")

    assert "COALESCE(NULLIF(users.last_name, ''), users.email)" in plan.select[0]


def test_state_sort_chains_group_ordinal_name_and_color():
    plan = _sorted_plan(order_by="state")

    assert "concat(CASE \"group\" WHEN 'backlog' THEN 1" in plan.select[0]
    assert "states.name, states.color)" in plan.select[0]


@pytest.mark.parametrize("key", ["sub_issues_count", "link_count", "attachment_count", "linked_issues_count"])
def test_count_keys_order_by_correlated_count(key):
    plan = _sorted_plan(order_by=key, desc=True)

    assert plan.order[0] == f"{COUNT_EXPRESSIONS[key]} DESC"


def test_search_rank_ignores_desc():
    plan = _sorted_plan(order_by="search_rank", desc=False, filters=IssuesListFilters(search_query="crash"))

    assert plan.order == ["ts_rank DESC", "issues.id ASC"]


def test_search_rank_without_query_degrades_to_sequence():
    plan = _sorted_plan(order_by="search_rank")

    assert plan.order[0] == "issues.sequence_id ASC"
