# backend/tutorspool/main.py
"""
TutorsPool booking core API.

Run with:
    uvicorn tutorspool.main:app --app-dir backend
"""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.exceptions import DomainException
from .routes import prometheus
from .routes.v1 import bookings as bookings_v1, payments as payments_v1, tutors as tutors_v1
from .schemas.main_responses import HealthResponse

API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


app = FastAPI(
    title="TutorsPool Booking API",
    description="Booking lifecycle and availability reconciliation for TutorsPool",
    version=API_VERSION,
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Render domain errors that escaped a route with their own status code."""
    logger.warning(f"Unhandled domain error on {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"message": exc.message, "code": exc.code, "details": exc.details}},
    )


# API v1 - all application routes live under /api/v1
api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(tutors_v1.router, prefix="/tutors")
app.include_router(api_v1)

# Infrastructure routes keep fixed, unversioned paths
app.include_router(prometheus.router)


@app.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service="tutorspool-booking-api",
        version=API_VERSION,
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )
