"""FastAPI application entry point with lifecycle management."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
import asyncio
import os

from .config import settings
from .routes import router, limiter
from .db import dispose_engine
from .cache import cache_manager
from .errors import ServiceError
from .responses import error_response
from .logger import logger
from .middleware import (
    error_boundary_middleware,
    graceful_shutdown_middleware,
    add_request_id_middleware,
    request_logging_middleware,
    security_headers_middleware,
    set_shutdown_manager,
)
from .monitoring import setup_monitoring

# ==================== Graceful Shutdown ====================


class GracefulShutdownManager:
    """Tracks active requests so shutdown can wait for in-flight ones."""

    def __init__(self):
        self.is_shutting_down = False
        self.active_requests = 0
        self.shutdown_timeout = settings.GRACEFUL_SHUTDOWN_TIMEOUT

    def request_started(self):
        if not self.is_shutting_down:
            self.active_requests += 1

    def request_finished(self):
        self.active_requests -= 1

    async def initiate_shutdown(self):
        """Stop accepting requests and wait (bounded) for active ones to finish."""
        if self.is_shutting_down:
            return

        logger.info("Graceful shutdown initiated")
        self.is_shutting_down = True

        if self.active_requests > 0:
            logger.info(f"Waiting for {self.active_requests} active request(s) to complete...")

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            while self.active_requests > 0:
                if loop.time() - start_time >= self.shutdown_timeout:
                    logger.warning(
                        f"Shutdown timeout ({self.shutdown_timeout}s) reached with "
                        f"{self.active_requests} request(s) still active - forcing shutdown"
                    )
                    break
                await asyncio.sleep(0.1)

            if self.active_requests <= 0:
                logger.info("All active requests completed successfully")
        else:
            logger.info("No active requests - proceeding with immediate shutdown")


shutdown_manager = GracefulShutdownManager()
set_shutdown_manager(shutdown_manager)

# ==================== Application Lifecycle ====================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - handles startup and graceful shutdown."""
    logger.info(f"Starting {settings.APP_NAME} in {settings.APP_ENV} mode")
    logger.info("Database schema managed by Alembic migrations")
    os.makedirs(settings.MEDIA_ROOT, exist_ok=True)

    if settings.CACHE_ENABLED:
        await cache_manager.connect()

    logger.info(f"{settings.APP_NAME} started successfully - ready to accept requests")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await shutdown_manager.initiate_shutdown()

    if settings.CACHE_ENABLED:
        await cache_manager.disconnect()

    await dispose_engine()

    logger.info(f"{settings.APP_NAME} shutdown complete")

# ==================== Error Envelope Handlers ====================


async def service_error_handler(request: Request, exc: ServiceError):
    logger.info(f"{request.method} {request.url.path} - {exc.error_code}: {exc.message}")
    return error_response(exc.message, status_code=exc.status_code)


def first_validation_message(exc: RequestValidationError) -> str:
    """Human-readable text of the first failing rule (bail semantics)."""
    errors = exc.errors()
    if not errors:
        return "The given data was invalid."
    error = errors[0]
    field = next((str(part) for part in reversed(error.get("loc", ())) if part not in ("body", "query", "path")), None)
    message = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
    return f"{field}: {message}" if field else message


async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = first_validation_message(exc)
    logger.info(f"{request.method} {request.url.path} - validation failed: {message}")
    return error_response(message, status_code=422)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return error_response(detail, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(f"Too many requests: {exc.detail}", status_code=429)

# ==================== Application Setup ====================


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Middleware registration (last registered = outermost layer)
app.middleware("http")(error_boundary_middleware)
app.middleware("http")(graceful_shutdown_middleware)
app.middleware("http")(request_logging_middleware)
app.middleware("http")(add_request_id_middleware)
app.middleware("http")(security_headers_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

app.include_router(router)

# Uploaded images, served under the public prefix stored on Image rows
app.mount(
    f"/{settings.MEDIA_PUBLIC_PREFIX}",
    StaticFiles(directory=settings.MEDIA_ROOT, check_dir=False),
    name="media",
)

setup_monitoring(app)
