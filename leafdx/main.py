"""
Leaf Diagnostics API Service.

FastAPI service exposing the diagnostic inference pipeline:
- Leaf / lesion segmentation through TensorFlow Serving (REST or gRPC)
- Severity scoring and label resolution
- Artifact persistence (image + masks) in blob storage
- Prediction records linked to their image and masks
"""

import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

from leafdx.config import Settings, get_settings
from leafdx.core.dependencies import app_state, run_health_checks
from leafdx.core.exceptions import AppError
from leafdx.core.logging import configure_logging, get_logger
from leafdx.routers import health_router, predictions_router, public_router
from leafdx.schemas import ErrorResponse


# =============================================================================
# Request Context (for correlation IDs)
# =============================================================================

# Context variable to store current request ID
request_id_ctx: ContextVar[str] = ContextVar('request_id', default='-')


def get_request_id() -> str:
    """Get the current request ID from context."""
    return request_id_ctx.get()


# Initialize structured logging
settings = get_settings()
configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle manager.

    Startup:
    - Build model serving and blob storage clients from settings
      (unless app_state was initialized beforehand)
    - Run integration health checks; abort startup if any fails
      (when startup_health_check is enabled)

    Shutdown:
    - Close integration clients
    """
    settings: Settings = app.state.settings

    # =========================================================================
    # STARTUP
    # =========================================================================
    logger.info('startup_begin', phase='initialization')

    if not app_state.initialized:
        app_state.initialize(settings)

    if settings.startup_health_check:
        report = await run_health_checks(app_state.integrations())
        failed = {name: item for name, item in report.items() if item['status'] != 'healthy'}
        if failed:
            logger.error('startup_health_check_failed', integrations=failed)
            await app_state.close()
            raise RuntimeError(f'Integration health check failed: {failed}')
        logger.info('startup_health_check_passed', integrations=list(report))

    logger.info(
        'service_ready',
        model_serving_provider=settings.model_serving_provider,
        model_serving_url=settings.model_serving_url,
        storage_provider=settings.storage_provider,
    )

    yield

    # =========================================================================
    # SHUTDOWN
    # =========================================================================
    logger.info('shutdown_begin', phase='cleanup')
    await app_state.close()
    logger.info('shutdown_complete')


def error_response(status_code: int, code: str, message: str, req_id: str) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=status_code, message=f'{code}: {message}').model_dump(),
        headers={'X-Request-ID': req_id},
    )


# =============================================================================
# FastAPI Application Factory
# =============================================================================
def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    application = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )
    application.state.settings = settings

    # Performance Middleware (defined first, runs second in LIFO order)
    @application.middleware('http')
    async def performance_middleware(request: Request, call_next):
        """Reject oversized uploads, time requests and log slow ones."""
        start_time = time.time()
        req_id = get_request_id()

        if request.method == 'POST':
            content_length = request.headers.get('content-length')
            if content_length and int(content_length) > settings.max_file_size_bytes:
                return error_response(
                    413,
                    'PAYLOAD_TOO_LARGE',
                    f'File too large. Maximum: {settings.max_file_size_mb}MB',
                    req_id,
                )

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        response.headers['X-Process-Time'] = f'{duration_ms:.2f}ms'

        if duration_ms > settings.slow_request_threshold_ms:
            logger.warning(
                'slow_request',
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )

        return response

    @application.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        """Map the error taxonomy onto status codes."""
        req_id = get_request_id()
        log = logger.error if exc.is_server_error else logger.warning
        log(
            'request_failed',
            method=request.method,
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return error_response(exc.status_code, exc.code, exc.public_message(), req_id)

    # Global Exception Handler - include request ID for debugging
    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions with request context for debugging."""
        req_id = get_request_id()
        logger.error(
            'unhandled_exception',
            method=request.method,
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=True,
        )
        return error_response(500, 'INTERNAL_ERROR', 'Internal server error', req_id)

    # Request ID Middleware (defined last, runs first in LIFO order)
    @application.middleware('http')
    async def request_id_middleware(request: Request, call_next):
        """
        Add correlation ID (X-Request-ID) to all requests.

        If client provides X-Request-ID header, use it. Otherwise generate a new one.
        """
        req_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())[:8]
        request_id_ctx.set(req_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=req_id)

        response = await call_next(request)

        response.headers['X-Request-ID'] = req_id
        return response

    application.include_router(health_router)  # /, /health
    application.include_router(predictions_router)  # /users/{user_id}/...
    application.include_router(public_router)  # /public/predict

    return application


# Create application instance
app = create_app()
