import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.cache.layer import MembershipCache
from app.core.config import Settings, get_settings
from app.core.errors import AppError
from app.core.logging import setup_logging
from app.core.middleware import RequestTimingMiddleware
from app.core.responses import error_body
from app.realtime.broadcaster import Broadcaster
from app.routers import auth, realtime, tasks, teams

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    setup_logging(settings.log_level)

    sweeper = asyncio.create_task(
        app.state.membership_cache.run_sweeper(settings.cache_sweep_interval_seconds)
    )
    logger.info("Team Task Manager API started")
    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    logger.info("Team Task Manager API stopped")


def _validation_details(exc: RequestValidationError) -> dict[str, str]:
    details = {}
    for error in exc.errors():
        field = str((error.get("loc") or ("body",))[-1])
        message = error.get("msg", "Invalid value")
        details.setdefault(field, message.removeprefix("Value error, "))
    return details


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code, content=error_body(exc.message, exc.details)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = _validation_details(exc)
        message = next(iter(details.values()), "Validation failed")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content=error_body(message, details)
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Internal server error"),
        )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Team Task Manager API",
        description="Team-scoped task management with JWT auth and live updates",
        swagger_ui_parameters={"displayRequestDuration": True},
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.membership_cache = MembershipCache(
        default_ttl=settings.membership_cache_ttl_seconds,
        maxsize=settings.cache_maxsize,
    )
    app.state.broadcaster = Broadcaster()

    app.add_middleware(
        RequestTimingMiddleware,
        timeout_seconds=settings.request_timeout_seconds,
        slow_request_ms=settings.slow_request_ms,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    # Include routers
    app.include_router(auth.router)
    app.include_router(tasks.router)
    app.include_router(teams.router)
    app.include_router(realtime.router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Team Task Manager API",
            "docs": "/docs",
            "version": VERSION,
        }

    @app.get("/health")
    async def health_check(request: Request):
        return {
            "status": "healthy",
            "cache": request.app.state.membership_cache.get_stats(),
            "realtime": request.app.state.broadcaster.get_stats(),
        }

    return app


app = create_app()
