import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Iterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette import status
from sqlalchemy import text

from ratings.api.health import router as health_router
from ratings.api.ratings import router as ratings_router
from ratings.api.scheduler import router as scheduler_router
from ratings.config import load_settings
from ratings.contests import SqlContestSource
from ratings.db import engine, session_scope
from ratings.errors import StoreError
from ratings.glicko import Glicko2Params
from ratings.orchestrator import RecalculationOrchestrator
from ratings.scheduler import RatingsScheduler
from ratings.store import SqlRatingStore

logger = logging.getLogger(__name__)


@contextmanager
def open_orchestrator(params: Glicko2Params) -> Iterator[RecalculationOrchestrator]:
    """Orchestrator bound to a fresh database session for one run."""
    with session_scope() as db:
        yield RecalculationOrchestrator(SqlRatingStore(db), SqlContestSource(db), params)


def build_scheduler() -> RatingsScheduler:
    settings = load_settings()
    params = Glicko2Params(
        tau=settings.tau,
        epsilon=settings.epsilon,
        max_iterations=settings.max_iterations,
    ).validate()
    scheduler = RatingsScheduler(
        lambda: open_orchestrator(params),
        run_day=settings.run_day,
        run_hour=settings.run_hour,
    )
    scheduler.start(monthly=settings.scheduler_enabled)
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    app.state.scheduler = build_scheduler()
    yield
    app.state.scheduler.shutdown()
    engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(title="Ratings API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(ratings_router)
    app.include_router(scheduler_router)

    def _build_error_response(
        status_code: int,
        message: str,
        *,
        code: str,
        details: object | None = None,
    ) -> JSONResponse:
        # Keep `detail` for backwards compatibility while adding a standard envelope.
        payload = {
            "detail": message,
            "error": {
                "code": code,
                "message": message,
                "retryable": status_code == status.HTTP_429_TOO_MANY_REQUESTS or status_code >= 500,
            },
        }
        if details is not None:
            payload["error"]["details"] = details
        return JSONResponse(status_code=status_code, content=payload)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, str):
            message = exc.detail
            details = None
        else:
            message = "Request failed"
            details = exc.detail
        return _build_error_response(
            exc.status_code,
            message,
            code=f"http_{exc.status_code}",
            details=details,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _build_error_response(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            "Validation error",
            code="validation_error",
            details=exc.errors(),
        )

    @app.exception_handler(StoreError)
    async def store_exception_handler(_: Request, exc: StoreError) -> JSONResponse:
        logger.error(f"Rating store unavailable: {exc}")
        return _build_error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Rating store unavailable",
            code="store_unavailable",
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_: Request, __: Exception) -> JSONResponse:
        return _build_error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            code="internal_error",
        )

    @app.get("/")
    def root() -> dict:
        return {"name": "ratings-api", "status": "ok"}

    return app


app = create_app()
