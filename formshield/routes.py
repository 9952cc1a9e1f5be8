import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.session_routes import router as session_router
from .api.submit_routes import router as submit_router
from .api.system_routes import router as system_router
from .db import init_db
from .log_sanitizer import sanitize_headers_for_log
from .logging_config import logger
from .redis_client import close_redis_client


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    Catch-all handler: log the failure and return a structured 500 body
    that carries an error id instead of internals.
    """

    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error_code": "internal_error",
            "message": "Internal server error, please try again later",
            "error_id": error_id,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle:
    - startup: create the submission tables if missing
    - shutdown: release the Redis connection pool
    """
    init_db()
    yield
    await close_redis_client()


def create_app() -> FastAPI:
    from fastapi.middleware.cors import CORSMiddleware

    from .settings import settings

    docs_url = "/docs" if settings.enable_api_docs else None
    redoc_url = "/redoc" if settings.enable_api_docs else None
    openapi_url = "/openapi.json" if settings.enable_api_docs else None

    app = FastAPI(
        title="FormShield",
        version="0.1.0",
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )
    app.add_exception_handler(Exception, handle_unexpected_error)

    if not settings.enable_api_docs:
        logger.info(
            "API docs routes are disabled (environment=%s); set ENABLE_API_DOCS=true to enable.",
            settings.environment,
        )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    app.include_router(system_router)
    app.include_router(session_router)
    app.include_router(submit_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Log each request and its response status; credential and session
        headers are masked.
        """

        client_host = request.client.host if request.client else "-"
        headers_for_log = sanitize_headers_for_log(request.headers)

        logger.info(
            "HTTP %s %s from %s, headers=%s",
            request.method,
            request.url.path,
            client_host,
            headers_for_log,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            response = await handle_unexpected_error(request, exc)
        logger.info(
            "HTTP %s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response

    return app


__all__ = ["create_app", "handle_unexpected_error", "lifespan"]
