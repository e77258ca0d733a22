"""FastAPI application serving the issue search."""
from __future__ import annotations

import os
from contextlib import asynccontextmanager

import asyncpg
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .errors import SearchError
from .http import issues
from .schemas import HealthResponse
from .services.fulltext import TextSearchConfig
from tracker.utils.logging_utils import get_logger, logging_context, setup_logging

setup_logging()
logger = get_logger("tracker.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is required")
    text_search = TextSearchConfig.from_env()
    with logging_context(component="api", event="startup"):
        logger.info(
            "Initializing API dependencies",
            extra={"context": {"text_configs": list(text_search.text_configs)}},
        )
    app.state.db_pool = await asyncpg.create_pool(dsn=database_url)
    app.state.text_search = text_search

    try:
        yield
    finally:
        with logging_context(component="api", event="shutdown"):
            logger.info("Shutting down API dependencies")
        await app.state.db_pool.close()


app = FastAPI(title="Issue Tracker Search", lifespan=lifespan)
app.include_router(issues.router)
app.add_exception_handler(SearchError, issues.search_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz", response_model=HealthResponse)
async def healthcheck(pool: asyncpg.Pool = Depends(issues.get_db_pool)) -> HealthResponse:
    async with pool.acquire() as conn:
        await conn.execute("SELECT 1")
    return HealthResponse(status="ok")
