"""FastAPI application for the channel sync service.

Run:
    uv run uvicorn api.channel.app:app --reload --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.channel.routes import router as api_router
from db.client import close_db, init_db
from services.channel.errors import (
    AuthError,
    CapacityError,
    ChannelSyncError,
    ConnectionNotFound,
    MappingNotFound,
    PartialImportError,
    ProviderError,
    ProviderTimeout,
    RefreshError,
    RoomTypeNotFound,
)

# Most specific first; the first isinstance match wins
STATUS_BY_ERROR = [
    (ProviderTimeout, 504),
    (ProviderError, 502),
    (RefreshError, 502),
    (AuthError, 502),
    (ConnectionNotFound, 404),
    (RoomTypeNotFound, 404),
    (MappingNotFound, 404),
    (CapacityError, 409),
    (PartialImportError, 409),
]


def status_for(exc: ChannelSyncError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _trace_id(request: Request, exc: Exception = None):
    return getattr(exc, "trace_id", None) or getattr(request.state, "trace_id", None)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


def create_app(use_db: bool = True) -> FastAPI:
    app = FastAPI(title="Channel Sync Service", lifespan=lifespan if use_db else None)

    @app.exception_handler(ChannelSyncError)
    async def channel_error(request: Request, exc: ChannelSyncError):
        status = status_for(exc)
        trace_id = _trace_id(request, exc)
        logger.error(f"{request.method} {request.url.path} -> {status} {exc.code}: {exc} [{trace_id}]")
        return JSONResponse(
            status_code=status,
            content={**exc.to_dict(), "success": False, "trace_id": trace_id},
        )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "invalid_request",
                "details": jsonable_errors(exc),
                "trace_id": _trace_id(request),
            },
        )

    @app.exception_handler(ValueError)
    async def invalid_value(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=422,
            content={"success": False, "error": "invalid_request", "message": str(exc), "trace_id": _trace_id(request)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail, "trace_id": _trace_id(request)},
            headers=getattr(exc, "headers", None),
        )

    # POST /api/sync/pull, /api/sync/push, /api/bootstrap, /api/availability
    # GET  /api/tokens/diagnostics
    app.include_router(api_router)
    return app


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]


app = create_app()
