from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
import time
import logging

from .api.routes import admin, auth, doctors, patients
from .core.config import settings
from .core.database import init_db
from .core.exceptions import (
    not_found_handler, validation_exception_handler, unhandled_exception_handler
)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION}...")

    db_url = settings.get_database_url
    db_type = "PostgreSQL" if "postgresql" in db_url else "SQLite" if "sqlite" in db_url else "Unknown"
    logger.info(f"Using {db_type} database")

    try:
        init_db()
    except Exception:
        logger.exception("Failed to initialize database")
        raise

    hours = settings.working_hours
    logger.info(
        f"Appointments bookable {hours.describe_days()} between {hours.describe_hours()} "
        f"in {hours.slot_minutes}-minute slots, up to {settings.BOOKING_HORIZON_MONTHS} months ahead"
    )
    yield
    logger.info(f"Shutting down {settings.APP_NAME}...")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Appointment booking with doctor availability, cancellation rules and medical records",
    lifespan=lifespan,
    openapi_url="/api/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_exception_handler(404, not_found_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# TestClient requests do not need host checks
if not settings.TESTING:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"]
    )

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"

    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {elapsed:.4f}s"
    )
    return response

for module in (auth, patients, doctors, admin):
    app.include_router(module.router, prefix="/api")

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION
    }

@app.get("/")
async def root():
    return {
        "message": f"Welcome to the {settings.APP_NAME} API",
        "version": settings.VERSION,
        "docs": "/docs",
        "health": "/health"
    }

@app.get("/api/info")
async def api_info():
    """Service name, version and the mounted API sections."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "authentication": "/api/auth",
            "patients": "/api/patients",
            "doctors": "/api/doctors",
            "admin": "/api/admin",
            "docs": "/docs",
            "openapi": "/api/openapi.json"
        },
        "scheduling": {
            "working_days": settings.working_hours.describe_days(),
            "working_hours": settings.working_hours.describe_hours(),
            "slot_minutes": settings.SLOT_MINUTES,
            "booking_horizon_months": settings.BOOKING_HORIZON_MONTHS,
            "cancellation_window_hours": settings.CANCELLATION_WINDOW_HOURS
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "medibook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
