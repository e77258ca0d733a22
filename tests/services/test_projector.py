from tracker.schemas import (
    GroupKey,
    IssuesLightSearchResponse,
    IssuesSearchResponse,
    SearchParams,
    StateLight,
)
from tracker.services import projector


def _row(**overrides):
    row = {
        "id": "i-1",
        "workspace_id": "w-1",
        "project_id": "p-1",
        "sequence_id": 4,
        "name": "Fix login",
        "priority": "urgent",
        "state_id": "s-1",
        "created_by_id": "u-1",
        "parent_id": "i-0",
        "author_detail": {"id": "u-1", "email": "ada@example.com", "first_name": "Ada", "last_name": "L", "avatar": None},
        "state_detail": {"id": "s-1", "name": "Todo", "color": "#fff", "group": "unstarted"},
        "assignee_details": [{"id": "u-2", "email": "bob@example.com", "first_name": "Bob", "last_name": "", "avatar": None}],
        "watcher_details": [],
        "label_details": [{"id": "l-1", "name": "bug", "color": "#f00"}],
        "parent_detail": {
            "id": "i-0",
            "sequence_id": 1,
            "name": "Epic",
            "project_id": "p-1",
            "workspace_id": "w-1",
            "state_id": None,
            "priority": None,
        },
        "linked_issues_ids": ["i-7"],
        "comments_count": 2,
        "draft": None,
    }
    row.update(overrides)
    return row


def test_light_issue_carries_details_only():
    issue = projector.to_light_issue(_row())

    assert issue.workspace == "w-1"
    assert issue.state == "s-1"
    assert issue.author_detail.first_name == "Ada"
    assert issue.assignee_details[0].id == "u-2"
    assert not hasattr(issue, "comments_count")


def test_full_issue_maps_ids_counts_and_parent():
    issue = projector.to_issue_with_count(_row())

    assert issue.created_by == "u-1"
    assert issue.parent == "i-0"
    assert issue.parent_detail.name == "Epic"
    assert issue.assignees == ["u-2"]
    assert issue.labels == ["l-1"]
    assert issue.watchers == []
    assert issue.linked_issues_ids == ["i-7"]
    assert issue.comments_count == 2
    assert issue.link_count == 0
    assert issue.draft is False
    assert issue.ts_rank is None


def test_missing_details_project_to_none():
    issue = projector.to_issue_with_count(_row(author_detail=None, state_detail=None, parent_detail=None))

    assert issue.author_detail is None
    assert issue.state_detail is None
    assert issue.parent_detail is None


def test_project_page_switches_on_light():
    params = SearchParams(limit=10, offset=20)

    light = projector.project_page([_row()], total=31, params=params.model_copy(update={"light": True}))
    full = projector.project_page([_row()], total=31, params=params)

    assert isinstance(light, IssuesLightSearchResponse)
    assert isinstance(full, IssuesSearchResponse)
    assert (full.count, full.offset, full.limit) == (31, 20, 10)


def test_group_entity_resolution():
    states = {"s-1": {"id": "s-1", "name": "Todo", "color": "#fff", "group": "unstarted"}}

    assert projector.group_entity(GroupKey.PRIORITY, "low", {}) == "low"
    assert projector.group_entity(GroupKey.PRIORITY, "", {}) is None
    assert projector.group_entity(GroupKey.STATE, "s-1", states) == StateLight(**states["s-1"])
    assert projector.group_entity(GroupKey.STATE, "s-404", states) is None
