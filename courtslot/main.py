"""CourtSlot API application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError

from courtslot.core.config import settings
from courtslot.core.database import engine
from courtslot.routes import admin, bookings, courts
from courtslot.services.errors import BookingError, TransientError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url=f"{settings.api_prefix}/docs",
    openapi_url=f"{settings.api_prefix}/openapi.json",
    lifespan=lifespan,
)

# CORS - permissive in dev, lock down in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [settings.api_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.as_detail()})


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    # Constraint violations that slipped past the service checks are lost races
    if isinstance(exc, IntegrityError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": [{"rule": "slot_taken", "message": "Slot already booked or unavailable."}]},
        )
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return await booking_error_handler(
        request, TransientError("unavailable", "Service temporarily unavailable, please retry.")
    )


# Mount routes
app.include_router(courts.router, prefix=settings.api_prefix)
app.include_router(bookings.router, prefix=settings.api_prefix)
app.include_router(admin.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
