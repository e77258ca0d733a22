"""Routes exposing the issue search in its global, project and sprint scopes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Optional

import asyncpg
from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response, StreamingResponse

from tracker.errors import SearchError
from tracker.schemas import Caller, IssuesGroup, IssuesListFilters, SearchParams, SearchScope
from tracker.services import export, search
from tracker.services.fulltext import TextSearchConfig
from tracker.services.params import prepare_search_params
from tracker.utils.logging_utils import get_logger, logging_context

logger = get_logger("tracker.http.issues")

router = APIRouter(prefix="/api", tags=["issues"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"


async def search_error_handler(request: Request, exc: SearchError) -> JSONResponse:
    logger.info(
        "search request rejected",
        extra={"context": {"path": request.url.path, "code": exc.code, "error": exc.message}},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def get_db_pool(request: Request) -> asyncpg.Pool:
    pool = getattr(request.app.state, "db_pool", None)
    if pool is None:
        raise RuntimeError("Database pool is not configured on the application state")
    return pool


def get_text_config(request: Request) -> TextSearchConfig:
    return getattr(request.app.state, "text_search", None) or TextSearchConfig()


async def get_caller(request: Request, x_user_id: Optional[str] = Header(default=None)) -> Caller:
    """Identity set by the authentication layer, or the trusted ``X-User-Id`` gateway header."""

    caller = getattr(request.state, "caller", None)
    if caller is not None:
        return caller
    if x_user_id:
        return Caller(id=x_user_id)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")


def get_search_params(
        filters: Optional[IssuesListFilters] = Body(default=None),
        hide_sub_issues: bool = Query(default=False),
        draft: bool = Query(default=False),
        order_by: str = Query(default=""),
        group_by: str = Query(default=""),
        offset: int = Query(default=0),
        limit: int = Query(default=0),
        desc: bool = Query(default=False),
        only_count: bool = Query(default=False),
        light: bool = Query(default=False),
        only_active: bool = Query(default=False),
        only_pinned: bool = Query(default=False),
        stream: bool = Query(default=False),
) -> SearchParams:
    return SearchParams(
        filters=filters or IssuesListFilters(),
        hide_sub_issues=hide_sub_issues,
        draft=draft,
        order_by=order_by,
        group_by=group_by,
        offset=offset,
        limit=limit,
        desc=desc,
        only_count=only_count,
        light=light,
        only_active=only_active,
        only_pinned=only_pinned,
        stream=stream,
    )


async def get_project_scope(
        workspace_id: str,
        project_id: str,
        caller: Caller = Depends(get_caller),
        pool: asyncpg.Pool = Depends(get_db_pool),
) -> SearchScope:
    async with pool.acquire() as conn:
        is_member = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT 1
                FROM project_members pm
                JOIN projects p ON p.id = pm.project_id
                WHERE pm.project_id = $1 AND pm.workspace_id = $2 AND pm.member_id = $3
                  AND p.deleted_at IS NULL
            )
            """,
            project_id,
            workspace_id,
            caller.id,
        )
    if not is_member:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not a member of this project")
    return SearchScope(workspace_id=workspace_id, project_id=project_id)


async def get_sprint_scope(
        sprint_id: str,
        caller: Caller = Depends(get_caller),
        pool: asyncpg.Pool = Depends(get_db_pool),
) -> SearchScope:
    async with pool.acquire() as conn:
        workspace_id = await conn.fetchval(
            """
            SELECT s.workspace_id
            FROM sprints s
            JOIN workspace_members wm ON wm.workspace_id = s.workspace_id
            WHERE s.id = $1 AND wm.member_id = $2
            """,
            sprint_id,
            caller.id,
        )
    if workspace_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="sprint not found")
    return SearchScope(workspace_id=workspace_id, sprint_id=sprint_id)


async def _ndjson(groups: AsyncIterator[IssuesGroup]) -> AsyncIterator[str]:
    async for group in groups:
        yield group.model_dump_json() + "\n"


async def _run_search(
        pool: asyncpg.Pool,
        caller: Caller,
        scope: SearchScope,
        params: SearchParams,
        text: TextSearchConfig,
) -> Any:
    with logging_context(route="issues.search", user_id=caller.id, project_id=scope.project_id):
        if params.stream and params.group_by:
            prepared = prepare_search_params(params)
            logger.info("Streaming grouped issue search", extra={"context": {"group_by": prepared.group_by}})
            groups = search.stream_issue_groups(pool, caller, scope, prepared, text=text)
            return StreamingResponse(_ndjson(groups), media_type=NDJSON_MEDIA_TYPE)
        return await search.search_issues(pool, caller, scope, params, text=text)


@router.post("/issues/search", response_model=None)
async def search_all_issues(
        params: SearchParams = Depends(get_search_params),
        caller: Caller = Depends(get_caller),
        pool: asyncpg.Pool = Depends(get_db_pool),
        text: TextSearchConfig = Depends(get_text_config),
) -> Any:
    return await _run_search(pool, caller, SearchScope(), params, text)


@router.post("/workspaces/{workspace_id}/projects/{project_id}/issues/search", response_model=None)
async def search_project_issues(
        params: SearchParams = Depends(get_search_params),
        scope: SearchScope = Depends(get_project_scope),
        caller: Caller = Depends(get_caller),
        pool: asyncpg.Pool = Depends(get_db_pool),
        text: TextSearchConfig = Depends(get_text_config),
) -> Any:
    return await _run_search(pool, caller, scope, params, text)


@router.post("/sprints/{sprint_id}/issues/search", response_model=None)
async def search_sprint_issues(
        params: SearchParams = Depends(get_search_params),
        scope: SearchScope = Depends(get_sprint_scope),
        caller: Caller = Depends(get_caller),
        pool: asyncpg.Pool = Depends(get_db_pool),
        text: TextSearchConfig = Depends(get_text_config),
) -> Any:
    return await _run_search(pool, caller, scope, params, text)


@router.post("/issues/search/export", response_model=None)
async def export_issues(
        params: SearchParams = Depends(get_search_params),
        caller: Caller = Depends(get_caller),
        pool: asyncpg.Pool = Depends(get_db_pool),
        text: TextSearchConfig = Depends(get_text_config),
) -> Response:
    with logging_context(route="issues.export", user_id=caller.id):
        archive = await export.export_issues(pool, caller, SearchScope(), params, text=text)
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": "attachment; filename=issues-export.zip"},
    )
