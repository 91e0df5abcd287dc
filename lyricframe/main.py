import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lyricframe.api import export
from lyricframe.config import get_settings
from lyricframe.constants.error_codes import get_error_spec
from lyricframe.exceptions import LyricFrameError
from lyricframe.schemas.envelope import ErrorInfo, ErrorResponse
from lyricframe.schemas.export import HealthResponse
from lyricframe.services.session_store import ExportSessionStore

settings = get_settings()
logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    body = ErrorResponse(error=error)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(exclude_none=True)),
    )


def create_app(session_store: Optional[ExportSessionStore] = None) -> FastAPI:
    store = session_store if session_store is not None else ExportSessionStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        Path(store.root).mkdir(parents=True, exist_ok=True)
        purged = store.purge_expired()
        if purged:
            logger.info(f"[SESSION] Purged {len(purged)} expired sessions on startup")
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.session_store = store

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LyricFrameError)
    async def lyricframe_exception_handler(request: Request, exc: LyricFrameError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"[API] {request.url.path}: [{exc.code}] {exc.message}")
        else:
            logger.warning(f"[API] {request.url.path}: [{exc.code}] {exc.message}")
        return _error_response(exc.status_code, exc.to_error_info())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Request validation errors (422) in the same error envelope."""
        spec = get_error_spec("VALIDATION_ERROR")
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            loc = " -> ".join(str(x) for x in first_error.get("loc", []))
            msg = first_error.get("msg", "Validation error")
            message = f"{loc}: {msg}" if loc else msg
        else:
            message = "Request validation failed"

        error = ErrorInfo(
            code="VALIDATION_ERROR",
            message=message,
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
        return _error_response(422, error)

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        spec = get_error_spec("INTERNAL_ERROR")
        error = ErrorInfo(
            code="INTERNAL_ERROR",
            message="Internal server error",
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
        return _error_response(500, error)

    # Routers
    app.include_router(export.router, prefix="/api", tags=["export"])

    @app.get("/api/health", response_model=HealthResponse, response_model_by_alias=True)
    async def health_check() -> HealthResponse:
        return HealthResponse(version=settings.app_version, active_sessions=len(store))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Run as standalone export server
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    uvicorn.run(app, host="0.0.0.0", port=3001)
