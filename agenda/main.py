"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from agenda.core.config import settings
from agenda.core.structured_logging import build_log_context, configure_logging
from agenda.db.session import engine
from agenda.services.event_service import EventWorkflowError

configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# Error tracking
# ============================================================================

def _init_sentry() -> None:
    """Report unhandled API errors to Sentry outside dev, when a DSN is set."""
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=f"agenda@{settings.VERSION}",
        integrations=[FastApiIntegration(transaction_style="endpoint"), SqlalchemyIntegration()],
        traces_sample_rate=0.1,
        # Event titles and user emails stay out of Sentry.
        send_default_pii=False,
    )
    logger.info("Sentry enabled", extra={"environment": settings.ENV})


_init_sentry()


# ============================================================================
# Lifespan: realtime hub and calendar client
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    from agenda.core.websocket import ConnectionManager
    from agenda.services.calendar_sync_service import build_calendar_client

    hub = ConnectionManager()
    await hub.startup()
    app.state.realtime = hub
    app.state.calendar = build_calendar_client()
    if app.state.calendar is None:
        logger.warning("Google Calendar not configured; approved events will not be synced")
    try:
        yield
    finally:
        await hub.shutdown()
        app.state.realtime = None


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Agenda API",
    description="Calendar event submission and approval API",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# The SPA sends bearer tokens, never cookies.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================================================
# Error bodies: {"message": ...} or {"errors": [...]}
# ============================================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"errors": jsonable_encoder(errors)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(EventWorkflowError)
async def workflow_exception_handler(request: Request, exc: EventWorkflowError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error",
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ============================================================================
# Routers
# ============================================================================

from agenda.routers import admin, events, websocket as ws_router  # noqa: E402

app.include_router(events.router, prefix="/events", tags=["events"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])
app.include_router(ws_router.router)


@app.get("/health")
def health():
    """Liveness probe; fails with 500 when the database is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
