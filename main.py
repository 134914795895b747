"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers, startup/shutdown events.
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import InterfaceError, OperationalError

from config.database import close_db, get_db_context, init_db
from config.redis_client import close_redis, init_redis
from config.settings import settings
from shared.exceptions import DomainError, UnavailableError, ValidationError

# Service routers
from services.admin.router import router as admin_router
from services.auth.router import router as auth_router
from services.case.router import router as case_router
from services.donor.router import router as donor_router
from services.funding.router import router as funding_router
from services.user.router import router as user_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    # Admins cannot sign up; seed one in development
    if settings.APP_ENV == "development":
        await seed_admin()

    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── Error rendering ───────────────────────────────────────────

def _error_body(exc: DomainError, request: Request) -> dict:
    body = exc.to_dict()
    body["requestId"] = getattr(request.state, "request_id", None)
    return body


def _field_path(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header", "cookie")]
    return ".".join(parts) or "body"


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        if exc.status_code >= 500:
            logger.error(f"[{getattr(request.state, 'request_id', None)}] {exc.kind}: {exc.message}")
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code, content=_error_body(exc, request), headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = {}
        for err in exc.errors():
            errors.setdefault(_field_path(err.get("loc", ())), err.get("msg", "Invalid value"))
        wrapped = ValidationError("Request validation failed", errors=errors)
        return JSONResponse(status_code=wrapped.status_code, content=_error_body(wrapped, request))

    @app.exception_handler(OperationalError)
    @app.exception_handler(InterfaceError)
    @app.exception_handler(RedisConnectionError)
    @app.exception_handler(RedisTimeoutError)
    async def unavailable_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Backing service unavailable: {exc}", exc_info=True)
        wrapped = UnavailableError("Service temporarily unavailable. Please try again later.")
        return JSONResponse(status_code=wrapped.status_code, content=_error_body(wrapped, request))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": str(exc) if settings.DEBUG else "An internal server error occurred",
                "code": "internal",
                "errors": {},
                "requestId": request_id,
            },
        )


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Transplant Coordination API

Role-based coordination of organ transplant cases:
- **Patients** open cases and attach medical files
- **Donors** register (living or deceased), choose organs, give or withdraw consent
- **Hospitals** take cases, match donors, advance case status
- **Sponsors** fund cases; a case becomes `funded` once its goal is met
- **Admins** approve hospitals/sponsors and read the audit log

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>` header.
Get a token from `/auth/signin`.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware ───────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from sqlalchemy import text

        from config.database import AsyncSessionLocal
        from config.redis_client import redis_client

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except (OperationalError, InterfaceError, OSError):
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client is None:
                raise RedisConnectionError("Redis not initialized")
            await redis_client.ping()
            checks["redis"] = "ok"
        except (RedisConnectionError, RedisTimeoutError, OSError):
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    # Register all service routers
    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(case_router)
    app.include_router(donor_router)
    app.include_router(funding_router)
    app.include_router(admin_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

async def seed_admin():
    """Create the bootstrap admin from settings (development only)."""
    from services.auth.service import bootstrap_admin

    async with get_db_context() as db:
        admin = await bootstrap_admin(db)
    if admin is None:
        logger.info("No BOOTSTRAP_ADMIN_EMAIL/PASSWORD set; skipping admin seed")


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
