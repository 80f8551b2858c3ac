from typing import Any, cast
from contextlib import asynccontextmanager

import anyio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.db_utils import check_db_connection
from app.core.errors import capture_exception, init_sentry
from app.core.exceptions import ExplorerError
from app.core.logging_config import get_logger
from app.api import collections, currencies
from app.db import engine
from app.middleware.context import RequestContextMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Limit AnyIO worker threads so sync handlers don't outnumber pooled connections.
    thread_limiter = anyio.to_thread.current_default_thread_limiter()  # type: ignore[attr-defined]
    max_workers = max(1, settings.THREADPOOL_MAX_WORKERS)
    if thread_limiter.total_tokens != max_workers:
        logger.info("Configuring AnyIO thread limiter", workers=max_workers)
        thread_limiter.total_tokens = max_workers

    logger.info("Collection explorer API starting", environment=settings.ENVIRONMENT)
    yield


init_sentry(
    dsn=settings.SENTRY_DSN,
    environment=settings.ENVIRONMENT,
    traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
)

app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

origins = [
    "http://localhost:5173",  # Vite default
    "http://localhost:3000",  # React default
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
    settings.FRONTEND_URL,  # Dynamic from env
]

# Clean up duplicates and empty strings
origins = list(set([o for o in origins if o]))

# GZip compression for responses > 1KB
app.add_middleware(cast(Any, GZipMiddleware), minimum_size=1000)

app.add_middleware(cast(Any, RequestContextMiddleware))

app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=["X-Cache", "X-Request-ID"],
)


@app.exception_handler(ExplorerError)
async def explorer_error_handler(request: Request, exc: ExplorerError):
    """Domain errors -> {"detail": {"error": <name>, "message": ...}} with the mapped status."""
    if exc.status_code >= 500:
        # Logs and reports in one place
        capture_exception(exc, context={**exc.context, "request_path": request.url.path})
    else:
        logger.info("Request rejected", error=exc.error_code, message=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


app.include_router(collections.router, prefix=f"{settings.API_V1_STR}/collections", tags=["collections"])
app.include_router(currencies.router, prefix=f"{settings.API_V1_STR}/currencies", tags=["currencies"])


@app.get("/")
def root():
    return {"message": "Welcome to the NFT Collection Explorer API"}


@app.get("/health")
def health():
    """Liveness plus a database round trip."""
    db_ok = check_db_connection(engine)
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={"status": "healthy" if db_ok else "degraded", "database": db_ok},
    )
