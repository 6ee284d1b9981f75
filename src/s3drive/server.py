"""FastAPI application factory and route setup for s3drive."""

import logging
import secrets
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from s3drive import __version__
from s3drive.config import DriveConfig
from s3drive.drive import Drive
from s3drive.errors import DriveError, StoreError
from s3drive.handlers.drive import DriveHandler
from s3drive.oplog import FileOperationLog
from s3drive.storage import create_object_store

logger = logging.getLogger(__name__)

NOT_FOUND_BODY = {"message": "404 Not Found"}

# Ordered route table: (method, path, DriveHandler method). Path parameters
# never match "/", so one-segment user routes and two-segment file routes
# are distinct shapes.
API_ROUTES: list[tuple[str, str, str]] = [
    ("GET", "/api", "list_users"),
    ("GET", "/api/{user_id}/{file_name}", "download_file"),
    ("GET", "/api/{user_id}", "list_files"),
    ("POST", "/api", "create_user"),
    ("POST", "/api/{user_id}", "upload_files"),
    ("DELETE", "/api/{user_id}/{file_name}", "delete_file"),
    ("DELETE", "/api/{user_id}", "delete_user"),
]


# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus collectors in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: DriveConfig) -> FastAPI:
    """Create and configure the s3drive FastAPI application.

    The lifespan context manager creates and initializes the object store,
    opens the operation log and builds the Drive facade on startup, and
    closes them on shutdown.

    Args:
        config: The loaded s3drive configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = create_object_store(config.storage)
        await store.init()
        oplog = FileOperationLog(config.server.operation_log)
        oplog.open()

        app.state.store = store
        app.state.oplog = oplog
        app.state.drive = Drive(store, oplog, config.upload)
        logger.info("Object store initialized: %s", config.storage.backend)

        yield

        await store.close()
        oplog.close()
        logger.info("Object store and operation log closed")

    app = FastAPI(
        title="s3drive",
        version=__version__,
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
        redirect_slashes=False,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app)

    if config.observability.metrics:
        import s3drive.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="s3drive").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app.

    Every error body has the shape ``{"message": <string>}``.
    """

    @app.exception_handler(DriveError)
    async def drive_error_handler(request: Request, exc: DriveError) -> Response:
        return JSONResponse(content=exc.to_body(), status_code=exc.http_status)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI body validation errors (e.g. a missing userId) to 400."""
        problems = [
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body') or 'body'}: "
            f"{err.get('msg', 'Invalid value')}"
            for err in exc.errors()
        ]
        message = "; ".join(problems) or "Invalid request body"
        return JSONResponse(content={"message": message}, status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
        """Unknown paths and unsupported methods both answer 404."""
        if exc.status_code in (404, 405):
            return JSONResponse(content=NOT_FOUND_BODY, status_code=404)
        return JSONResponse(content={"message": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        logger.exception("Unhandled exception in request handler")
        return JSONResponse(content={"message": "Internal Server Error"}, status_code=500)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI) -> None:
    """Register the request-id and access-log middleware."""

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health"}

    @app.middleware("http")
    async def request_log_middleware(request: Request, call_next) -> Response:
        """Tag every response with X-Request-Id and log one line for it."""
        request_id = request.headers.get("x-request-id") or secrets.token_hex(8)
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        response.headers["X-Request-Id"] = request_id
        if request.url.path in _QUIET_PATHS:
            return response

        # For a streamed download this is the time to first byte
        access = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.monotonic() - start) * 1000, 2),
            "request_id": request_id,
        }
        logger.info("%(method)s %(path)s %(status)d %(duration_ms).2fms", access, extra=access)
        return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: DriveConfig) -> None:
    """Register the health endpoint and the /api route table.

    Args:
        app: The FastAPI application to attach routes to.
        config: The s3drive configuration.
    """
    handler = DriveHandler(app)

    if config.observability.health_check:

        @app.get("/health")
        async def health_check() -> Response:
            """Return 200 when the store answers a check, 503 otherwise."""
            drive: Drive | None = getattr(app.state, "drive", None)
            if drive is None:
                return JSONResponse(
                    content={"status": "degraded", "error": "store not initialized"},
                    status_code=503,
                )
            try:
                await drive.check()
            except StoreError as exc:
                return JSONResponse(
                    content={"status": "degraded", "error": exc.message},
                    status_code=503,
                )
            return JSONResponse(content={"status": "ok"})

    for method, path, name in API_ROUTES:
        app.add_api_route(path, getattr(handler, name), methods=[method], name=name)
