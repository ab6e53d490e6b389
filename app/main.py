from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.correlation import CorrelationIdMiddleware
from app.core.database import close_database, init_database
from app.core.exceptions import ErrorCode, ErrorResponse
from app.core.metrics import MetricsMiddleware
from app.log.logging import logger
from app.routers.application_import_router import router as application_import_router
from app.routers.application_scheduler_router import router as application_scheduler_router
from app.routers.healthcheck_router import SERVICE_VERSION
from app.routers.healthcheck_router import router as healthcheck_router
from app.routers.metrics_router import router as metrics_router
from app.scheduler.scheduler import start_scheduler, stop_scheduler
from app.services.dependencies import get_notification_publisher

_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_ERROR,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.UNAUTHORIZED,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    logger.info("Starting Application Scheduler Service...")

    await init_database()
    logger.info("Database initialized successfully")

    await start_scheduler()

    yield

    # Shutdown
    logger.info("Shutting down Application Scheduler Service...")
    await stop_scheduler()
    await get_notification_publisher().close()
    await close_database()
    logger.info("Shutdown complete")


# Initialize FastAPI
app = FastAPI(
    title="Application Scheduler Service",
    description="Schedules job application submissions and imports applications made elsewhere",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

# Add middlewares in order (last added = first executed)
app.add_middleware(MetricsMiddleware)
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# Error handlers
# =============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Serve structured errors at the top level of the body, with the request path filled in."""
    if isinstance(exc.detail, dict):
        content = {**exc.detail, "path": request.url.path}
    else:
        code = _STATUS_CODES.get(
            exc.status_code,
            ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.VALIDATION_ERROR,
        )
        content = ErrorResponse.create(
            error_type="HTTPException", code=code, message=str(exc.detail), path=request.url.path
        ).model_dump(by_alias=True)
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    content = ErrorResponse.create(
        error_type="ValidationError", code=ErrorCode.VALIDATION_ERROR, message=message, path=request.url.path
    ).model_dump(by_alias=True)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(
        "Unhandled error on {method} {path}: {error}",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        event_type="unhandled_exception",
    )
    content = ErrorResponse.create(
        error_type="InternalServerError",
        code=ErrorCode.INTERNAL_ERROR,
        message="Internal server error",
        path=request.url.path,
    ).model_dump(by_alias=True)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# Root endpoint
@app.get("/")
async def root():
    return {
        "message": "Application Scheduler Service is running!",
        "version": SERVICE_VERSION,
        "environment": settings.environment,
    }


# =============================================================================
# Routers
# =============================================================================

app.include_router(application_scheduler_router)
app.include_router(application_import_router)

# Infrastructure
app.include_router(healthcheck_router)
app.include_router(metrics_router)
