"""Pydantic schemas for the issue search API."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

NO_VALUE = ""
MAX_LIMIT = 100
DEFAULT_LIMIT = 10


class SortKey(str, Enum):
    ID = "id"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    NAME = "name"
    PRIORITY = "priority"
    TARGET_DATE = "target_date"
    SEQUENCE_ID = "sequence_id"
    STATE = "state"
    LABELS = "labels"
    SUB_ISSUES_COUNT = "sub_issues_count"
    LINK_COUNT = "link_count"
    ATTACHMENT_COUNT = "attachment_count"
    LINKED_ISSUES_COUNT = "linked_issues_count"
    ASSIGNEES = "assignees"
    WATCHERS = "watchers"
    AUTHOR = "author"
    SEARCH_RANK = "search_rank"


class GroupKey(str, Enum):
    PRIORITY = "priority"
    AUTHOR = "author"
    STATE = "state"
    LABELS = "labels"
    ASSIGNEES = "assignees"
    WATCHERS = "watchers"
    PROJECT = "project"


class IssuesListFilters(BaseModel):
    """Filter body of a search request.

    Every identifier list may contain ``""`` to also match issues that have no
    value in that dimension (unassigned, unlabelled, ...).
    """

    model_config = ConfigDict(frozen=True)

    authors: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)
    watchers: list[str] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list)
    priorities: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    workspaces: list[str] = Field(default_factory=list)
    workspace_slugs: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    sprints: list[str] = Field(default_factory=list)

    only_active: bool = False
    assigned_to_me: bool = False
    watched_by_me: bool = False
    authored_by_me: bool = False

    search_query: str = ""


class SearchParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    filters: IssuesListFilters = Field(default_factory=IssuesListFilters)
    order_by: str = ""
    desc: bool = False
    group_by: str = ""
    limit: int = 0
    offset: int = 0
    light: bool = False
    only_count: bool = False
    only_active: bool = False
    only_pinned: bool = False
    hide_sub_issues: bool = False
    draft: bool = False
    stream: bool = False

    @property
    def sort_key(self) -> SortKey:
        return SortKey(self.order_by)

    @property
    def group_key(self) -> Optional[GroupKey]:
        return GroupKey(self.group_by) if self.group_by else None

    @property
    def search_query(self) -> str:
        return self.filters.search_query.strip()


class Caller(BaseModel):
    """Identity resolved by the authentication layer."""

    model_config = ConfigDict(frozen=True)

    id: str


class SearchScope(BaseModel):
    """Where a search runs: a single project, a sprint, or every project of the caller."""

    model_config = ConfigDict(frozen=True)

    workspace_id: Optional[str] = None
    project_id: Optional[str] = None
    sprint_id: Optional[str] = None

    @property
    def is_global(self) -> bool:
        return not self.project_id


class UserLight(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    avatar: Optional[str] = None


class StateLight(BaseModel):
    id: str
    name: str
    color: str = ""
    group: str


class LabelLight(BaseModel):
    id: str
    name: str
    color: str = ""


class ProjectLight(BaseModel):
    id: str
    identifier: str
    name: str
    emoji: Optional[str] = None


class WorkspaceLight(BaseModel):
    id: str
    slug: str
    name: str


class IssueLight(BaseModel):
    id: str
    sequence_id: int
    name: str
    project_id: str
    workspace_id: str
    state_id: Optional[str] = None
    priority: Optional[str] = None


class SearchLightIssue(BaseModel):
    id: str
    workspace: str
    workspace_detail: Optional[WorkspaceLight] = None
    project: str
    project_detail: Optional[ProjectLight] = None
    sequence_id: int
    name: str
    priority: Optional[str] = None
    start_date: Optional[datetime] = None
    target_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    author_detail: Optional[UserLight] = None
    state: Optional[str] = None
    state_detail: Optional[StateLight] = None
    assignee_details: list[UserLight] = Field(default_factory=list)
    watcher_details: list[UserLight] = Field(default_factory=list)
    label_details: list[LabelLight] = Field(default_factory=list)


class IssueWithCountResponse(SearchLightIssue):
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    parent: Optional[str] = None
    parent_detail: Optional[IssueLight] = None
    description_html: str = ""
    description_stripped: Optional[str] = None
    sort_order: int = 0
    estimate_point: int = 0
    draft: bool = False
    pinned: bool = False
    assignees: list[str] = Field(default_factory=list)
    watchers: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    linked_issues_ids: list[str] = Field(default_factory=list)

    sub_issues_count: int = 0
    link_count: int = 0
    attachment_count: int = 0
    linked_issues_count: int = 0
    comments_count: int = 0

    ts_rank: Optional[float] = None
    name_highlighted: Optional[str] = None
    desc_highlighted: Optional[str] = None


class PaginationMeta(BaseModel):
    count: int
    offset: int
    limit: int


class IssuesSearchResponse(PaginationMeta):
    issues: list[IssueWithCountResponse]


class IssuesLightSearchResponse(PaginationMeta):
    issues: list[SearchLightIssue]


GroupEntity = Union[UserLight, StateLight, LabelLight, ProjectLight, str, None]


class IssuesGroup(BaseModel):
    group_key: str
    entity: GroupEntity = None
    count: int
    issues: list[Union[IssueWithCountResponse, SearchLightIssue]] = Field(default_factory=list)


class IssuesGroupedResponse(PaginationMeta):
    group_by: str
    issues: list[IssuesGroup]


class IssuesCountResponse(BaseModel):
    count: int


class HealthResponse(BaseModel):
    status: str
    details: Optional[dict[str, Any]] = None
