"""Pure mapping from hydrated rows to response models."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Optional, Union

from ..schemas import (
    NO_VALUE,
    GroupEntity,
    GroupKey,
    IssueLight,
    IssuesLightSearchResponse,
    IssuesSearchResponse,
    IssueWithCountResponse,
    LabelLight,
    ProjectLight,
    SearchLightIssue,
    SearchParams,
    StateLight,
    UserLight,
    WorkspaceLight,
)


def _model(cls, data: Optional[Mapping[str, Any]]):
    return cls(**data) if data else None


def _light_fields(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "workspace": row["workspace_id"],
        "workspace_detail": _model(WorkspaceLight, row.get("workspace_detail")),
        "project": row["project_id"],
        "project_detail": _model(ProjectLight, row.get("project_detail")),
        "sequence_id": row["sequence_id"],
        "name": row["name"],
        "priority": row.get("priority"),
        "start_date": row.get("start_date"),
        "target_date": row.get("target_date"),
        "completed_at": row.get("completed_at"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
        "author_detail": _model(UserLight, row.get("author_detail")),
        "state": row.get("state_id"),
        "state_detail": _model(StateLight, row.get("state_detail")),
        "assignee_details": [UserLight(**user) for user in row.get("assignee_details") or []],
        "watcher_details": [UserLight(**user) for user in row.get("watcher_details") or []],
        "label_details": [LabelLight(**label) for label in row.get("label_details") or []],
    }


def to_light_issue(row: Mapping[str, Any]) -> SearchLightIssue:
    return SearchLightIssue(**_light_fields(row))


def to_issue_with_count(row: Mapping[str, Any]) -> IssueWithCountResponse:
    assignees = row.get("assignee_details") or []
    watchers = row.get("watcher_details") or []
    labels = row.get("label_details") or []
    return IssueWithCountResponse(
        **_light_fields(row),
        created_by=row.get("created_by_id"),
        updated_by=row.get("updated_by_id"),
        parent=row.get("parent_id"),
        parent_detail=_model(IssueLight, row.get("parent_detail")),
        description_html=row.get("description_html") or "",
        description_stripped=row.get("description_stripped"),
        sort_order=row.get("sort_order") or 0,
        estimate_point=row.get("estimate_point") or 0,
        draft=bool(row.get("draft")),
        pinned=bool(row.get("pinned")),
        assignees=[user["id"] for user in assignees],
        watchers=[user["id"] for user in watchers],
        labels=[label["id"] for label in labels],
        linked_issues_ids=list(row.get("linked_issues_ids") or []),
        sub_issues_count=row.get("sub_issues_count") or 0,
        link_count=row.get("link_count") or 0,
        attachment_count=row.get("attachment_count") or 0,
        linked_issues_count=row.get("linked_issues_count") or 0,
        comments_count=row.get("comments_count") or 0,
        ts_rank=row.get("ts_rank"),
        name_highlighted=row.get("name_highlighted"),
        desc_highlighted=row.get("desc_highlighted"),
    )


def project_issues(
        rows: Sequence[Mapping[str, Any]],
        *,
        light: bool,
) -> list[Union[IssueWithCountResponse, SearchLightIssue]]:
    convert = to_light_issue if light else to_issue_with_count
    return [convert(row) for row in rows]


def project_page(
        rows: Sequence[Mapping[str, Any]],
        *,
        total: int,
        params: SearchParams,
) -> Union[IssuesSearchResponse, IssuesLightSearchResponse]:
    meta = {"count": total, "offset": params.offset, "limit": params.limit}
    if params.light:
        return IssuesLightSearchResponse(**meta, issues=[to_light_issue(row) for row in rows])
    return IssuesSearchResponse(**meta, issues=[to_issue_with_count(row) for row in rows])


_ENTITY_MODELS = {
    GroupKey.AUTHOR: UserLight,
    GroupKey.ASSIGNEES: UserLight,
    GroupKey.WATCHERS: UserLight,
    GroupKey.STATE: StateLight,
    GroupKey.LABELS: LabelLight,
    GroupKey.PROJECT: ProjectLight,
}


def group_entity(group_key: GroupKey, key: str, entities: Mapping[str, Mapping[str, Any]]) -> GroupEntity:
    """Resolve the entity shown for a bucket: the priority string, a light model, or ``None``."""

    if key == NO_VALUE:
        return None
    if group_key is GroupKey.PRIORITY:
        return key
    return _model(_ENTITY_MODELS[group_key], entities.get(key))
