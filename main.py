"""Main application entry point."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from shift_reschedule.config import settings
from shift_reschedule.database import init_db, SessionLocal
from shift_reschedule.exceptions import RescheduleError, format_error_for_api
from shift_reschedule.scheduler import start_scheduler, stop_scheduler
from shift_reschedule.api.reschedule import router as reschedule_router
from shift_reschedule.services.line_push import LinePushSubscriber
from shift_reschedule.services.notification_service import event_bus


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Shift Reschedule Service",
    description="Shift swap, giveaway and cover request workflow",
    version="1.0.0",
    debug=settings.debug
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(reschedule_router)


@app.exception_handler(RescheduleError)
async def reschedule_error_handler(request: Request, exc: RescheduleError):
    """Convert workflow errors into the coded JSON error response."""
    logger.info(f"{request.method} {request.url.path} failed: {exc.code}")
    return JSONResponse(status_code=exc.http_status, content=format_error_for_api(exc))


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info("Application starting up...")

    # Local SQLite databases are created on the fly; MySQL is migrated with alembic
    if settings.db_user.lower() == "sqlite":
        init_db()

    if settings.line_push_enabled:
        app.state.line_subscription = LinePushSubscriber(SessionLocal).subscribe(event_bus)
    else:
        app.state.line_subscription = None
        logger.info("LINE channel token not set, push delivery disabled")

    if settings.scheduler_enabled:
        start_scheduler()

    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on application shutdown."""
    subscription = getattr(app.state, "line_subscription", None)
    if subscription is not None:
        subscription.stop()

    if settings.scheduler_enabled:
        stop_scheduler()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Shift Reschedule Service"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    import os
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.debug
    )
