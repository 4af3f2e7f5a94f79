from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from clipbot.api.routers import health_router, jobs_router, webhook_router
from clipbot.core.config import settings
from clipbot.core.logging import configure_logging
from clipbot.models import init_db

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    init_db()
    logger.info("api_started", prefix=settings.api_prefix)
    yield


app = FastAPI(
    title="clipbot",
    description="""
## Telegram video download bot

Receives bot commands, queues download jobs and reports on their progress.

### Flow

1. Telegram posts updates to `/api/v1/telegram/webhook`
2. A `/dl` command creates a job and queues it
3. Workers download, trim and send the file back to the chat
4. Follow a job at `/api/v1/jobs/{id}/status`
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Telegram", "description": "Bot API webhook"},
        {"name": "Jobs", "description": "Download job status"},
    ],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(health_router)
app.include_router(webhook_router, prefix=settings.api_prefix)
app.include_router(jobs_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"service": "clipbot", "version": "1.0.0", "docs": "/docs"}
