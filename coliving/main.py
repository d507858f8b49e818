"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coliving.core.config import settings
from coliving.core.exceptions import ColivingError, ValidationError
from coliving.core.middleware import setup_middleware

from coliving.api.admin import router as admin_router
from coliving.api.cron import router as cron_router
from coliving.api.payments import router as payments_router
from coliving.api.reminders import router as reminders_router
from coliving.api.webhooks import router as webhooks_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("coliving")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("🚀 Starting %s API", settings.APP_NAME)
    from coliving.db.kv import kv_store

    if kv_store.health_check():
        logger.info("✅ Redis connected")
    else:
        logger.warning("⚠️  Redis not available")
    if not settings.CRON_SECRET:
        logger.warning("⚠️  CRON_SECRET not set, scheduler calls will be rejected")

    yield

    logger.info("🔻 Shutting down %s API", settings.APP_NAME)


app = FastAPI(
    title="Coliving Operations API",
    description="Audit trail and automated payment reminders",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


@app.exception_handler(ColivingError)
async def coliving_exception_handler(request: Request, exc: ColivingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    content = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError.from_pydantic(exc)
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.message, "errors": error.errors},
    )


# Register routers
app.include_router(admin_router, prefix="/api")
app.include_router(cron_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(reminders_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
