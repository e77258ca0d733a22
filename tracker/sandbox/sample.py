"""Generate a deterministic demo tracker for the sandbox database.

The same seed always yields the same workspaces, projects, users and issues, so
search results in a local sandbox are reproducible.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from faker import Faker

DEFAULT_SEED = 20240517
BASE_TIME = datetime(2024, 5, 17, 9, 0, tzinfo=timezone.utc)

PRIORITIES = ["urgent", "high", "medium", "low", None]
PRIORITY_WEIGHTS = [1, 3, 5, 3, 2]

STATE_TEMPLATES = [
    ("Backlog", "#a3a3a3", "backlog"),
    ("Todo", "#3b82f6", "unstarted"),
    ("In Progress", "#f59e0b", "started"),
    ("Done", "#16a34a", "completed"),
    ("Cancelled", "#ef4444", "cancelled"),
]

LABEL_TEMPLATES = [
    ("bug", "#ef4444"),
    ("regression", "#f97316"),
    ("performance", "#eab308"),
    ("documentation", "#0ea5e9"),
    ("good first issue", "#22c55e"),
]

COMPONENTS = ["auth", "billing", "search", "webhooks", "cache", "exports", "ui"]
VERBS = ["fails", "crashes", "times out", "returns stale data", "double-submits"]
CONDITIONS = ["after deploy", "on cold start", "with large payloads", "for archived projects", "behind a proxy"]

# Insert order respects foreign keys.
TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "users": ("id", "email", "first_name", "last_name", "avatar", "is_superuser"),
    "workspaces": ("id", "slug", "name", "owner_id"),
    "workspace_members": ("workspace_id", "member_id", "role"),
    "projects": ("id", "workspace_id", "identifier", "name", "emoji"),
    "project_members": ("project_id", "workspace_id", "member_id", "role"),
    "states": ("id", "project_id", "workspace_id", "name", "color", "group", "sequence"),
    "labels": ("id", "project_id", "workspace_id", "name", "color"),
    "sprints": ("id", "workspace_id", "name", "start_date", "end_date"),
    "issues": (
        "id",
        "created_at",
        "updated_at",
        "name",
        "priority",
        "start_date",
        "target_date",
        "completed_at",
        "sequence_id",
        "created_by_id",
        "updated_by_id",
        "parent_id",
        "project_id",
        "workspace_id",
        "state_id",
        "description_html",
        "description_stripped",
        "sort_order",
        "estimate_point",
        "draft",
        "pinned",
    ),
    "issue_assignees": ("issue_id", "assignee_id", "project_id"),
    "issue_watchers": ("issue_id", "watcher_id", "project_id"),
    "issue_labels": ("issue_id", "label_id", "project_id"),
    "sprint_issues": ("sprint_id", "issue_id", "project_id"),
    "issue_links": ("id", "issue_id", "title", "url"),
    "issue_attachments": ("id", "issue_id", "name", "size"),
    "linked_issues": ("id1", "id2"),
    "issue_comments": ("id", "issue_id", "actor_id", "comment_stripped", "created_at"),
}


@dataclass
class SandboxDataset:
    tables: dict[str, list[dict[str, Any]]] = field(
        default_factory=lambda: {table: [] for table in TABLE_COLUMNS}
    )

    def add(self, table: str, **row: Any) -> dict[str, Any]:
        self.tables[table].append(row)
        return row

    def records(self, table: str) -> list[tuple[Any, ...]]:
        columns = TABLE_COLUMNS[table]
        return [tuple(row.get(column) for column in columns) for row in self.tables[table]]


def _issue_title(rng: random.Random) -> str:
    return f"{rng.choice(COMPONENTS)}: {rng.choice(VERBS)} {rng.choice(CONDITIONS)}"


def generate_sample(
        *,
        seed: int = DEFAULT_SEED,
        workspaces: int = 2,
        projects_per_workspace: int = 2,
        users: int = 8,
        issues_per_project: int = 40,
) -> SandboxDataset:
    faker = Faker()
    faker.seed_instance(seed)
    rng = random.Random(seed)
    data = SandboxDataset()

    people = []
    for index in range(users):
        first, last = faker.first_name(), faker.last_name()
        people.append(
            data.add(
                "users",
                id=faker.uuid4(),
                email=f"{first}.{last}.{index}@example.com".lower(),
                first_name=first,
                # an empty last name exercises the email fallback of the author sort
                last_name="" if index % 5 == 4 else last,
                avatar=None,
                is_superuser=index == 0,
            )
        )

    for ws_index in range(workspaces):
        company = faker.company()
        owner = people[ws_index % len(people)]
        workspace = data.add(
            "workspaces",
            id=faker.uuid4(),
            slug=f"{faker.slug(company)}-{ws_index}",
            name=company,
            owner_id=owner["id"],
        )
        members = [person for i, person in enumerate(people) if i == ws_index or rng.random() < 0.75]
        for person in members:
            data.add("workspace_members", workspace_id=workspace["id"], member_id=person["id"], role=15)

        sprint_start = BASE_TIME.date()
        sprints = [
            data.add(
                "sprints",
                id=faker.uuid4(),
                workspace_id=workspace["id"],
                name=f"Sprint {number + 1}",
                start_date=sprint_start + timedelta(days=14 * number),
                end_date=sprint_start + timedelta(days=14 * number + 13),
            )
            for number in range(2)
        ]

        for project_index in range(projects_per_workspace):
            _generate_project(faker, rng, data, workspace, members, sprints, ws_index, project_index, issues_per_project)

    return data


def _generate_project(
        faker: Faker,
        rng: random.Random,
        data: SandboxDataset,
        workspace: dict[str, Any],
        members: list[dict[str, Any]],
        sprints: list[dict[str, Any]],
        ws_index: int,
        project_index: int,
        issue_count: int,
) -> None:
    identifier = f"{faker.lexify('???').upper()}{ws_index}{project_index}"
    project = data.add(
        "projects",
        id=faker.uuid4(),
        workspace_id=workspace["id"],
        identifier=identifier,
        name=f"{faker.catch_phrase()} ({identifier})",
        emoji=None,
    )
    project_members = [person for person in members if rng.random() < 0.8] or members[:1]
    for person in project_members:
        data.add(
            "project_members",
            project_id=project["id"],
            workspace_id=workspace["id"],
            member_id=person["id"],
            role=15,
        )

    states = [
        data.add(
            "states",
            id=faker.uuid4(),
            project_id=project["id"],
            workspace_id=workspace["id"],
            name=name,
            color=color,
            group=group,
            sequence=sequence,
        )
        for sequence, (name, color, group) in enumerate(STATE_TEMPLATES)
    ]
    labels = [
        data.add(
            "labels",
            id=faker.uuid4(),
            project_id=project["id"],
            workspace_id=workspace["id"],
            name=name,
            color=color,
        )
        for name, color in LABEL_TEMPLATES
    ]

    issues: list[dict[str, Any]] = []
    for sequence_id in range(1, issue_count + 1):
        created_at = BASE_TIME + timedelta(hours=rng.randint(0, 24 * 60))
        state = rng.choice(states) if rng.random() > 0.05 else None
        author = rng.choice(project_members)
        description = faker.paragraph(nb_sentences=3)
        parent = rng.choice(issues) if issues and rng.random() < 0.15 else None
        issue = data.add(
            "issues",
            id=faker.uuid4(),
            created_at=created_at,
            updated_at=created_at + timedelta(hours=rng.randint(0, 72)),
            name=_issue_title(rng),
            priority=rng.choices(PRIORITIES, weights=PRIORITY_WEIGHTS)[0],
            start_date=None,
            target_date=created_at + timedelta(days=rng.randint(3, 30)) if rng.random() < 0.5 else None,
            completed_at=created_at + timedelta(days=2) if state and state["group"] == "completed" else None,
            sequence_id=sequence_id,
            created_by_id=author["id"],
            updated_by_id=author["id"],
            parent_id=parent["id"] if parent else None,
            project_id=project["id"],
            workspace_id=workspace["id"],
            state_id=state["id"] if state else None,
            description_html=f"<p>{description}</p>",
            description_stripped=description,
            sort_order=sequence_id,
            estimate_point=rng.choice([0, 1, 2, 3, 5, 8]),
            draft=rng.random() < 0.05,
            pinned=rng.random() < 0.05,
        )
        issues.append(issue)

        for person in rng.sample(project_members, k=min(len(project_members), rng.randint(0, 2))):
            data.add("issue_assignees", issue_id=issue["id"], assignee_id=person["id"], project_id=project["id"])
        for person in rng.sample(project_members, k=min(len(project_members), rng.randint(0, 2))):
            data.add("issue_watchers", issue_id=issue["id"], watcher_id=person["id"], project_id=project["id"])
        for label in rng.sample(labels, k=rng.randint(0, 2)):
            data.add("issue_labels", issue_id=issue["id"], label_id=label["id"], project_id=project["id"])
        if rng.random() < 0.4:
            data.add("sprint_issues", sprint_id=rng.choice(sprints)["id"], issue_id=issue["id"], project_id=project["id"])
        for _ in range(rng.randint(0, 2)):
            data.add("issue_links", id=faker.uuid4(), issue_id=issue["id"], title=faker.sentence(nb_words=4), url=faker.url())
        if rng.random() < 0.2:
            data.add("issue_attachments", id=faker.uuid4(), issue_id=issue["id"], name=faker.file_name(), size=rng.randint(1, 10_000_000))
        for _ in range(rng.randint(0, 3)):
            data.add(
                "issue_comments",
                id=faker.uuid4(),
                issue_id=issue["id"],
                actor_id=rng.choice(project_members)["id"],
                comment_stripped=faker.sentence(),
                created_at=created_at + timedelta(hours=rng.randint(1, 48)),
            )

    linked: set[tuple[str, str]] = set()
    for _ in range(issue_count // 8):
        first, second = rng.sample(issues, k=2)
        pair = (first["id"], second["id"])
        if pair not in linked and pair[::-1] not in linked:
            linked.add(pair)
            data.add("linked_issues", id1=pair[0], id2=pair[1])
