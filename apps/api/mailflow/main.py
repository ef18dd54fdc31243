"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from mailflow.core.config import settings
from mailflow.core.error_tracking import init_error_tracking
from mailflow.db.session import engine

logger = logging.getLogger(__name__)

# Sentry (optional, for production error tracking)
init_error_tracking("api")

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Mailflow API",
    description="Email automation flows, enrollments and delivery queue",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

# ============================================================================
# Routers
# ============================================================================

from mailflow.routers import automations_router, internal_router  # noqa: E402

app.include_router(automations_router, prefix="/automations")
app.include_router(internal_router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health_check():
    """Liveness check with a database round-trip."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "version": settings.VERSION}
    except Exception:
        logger.exception("Health check database query failed")
        return {"status": "degraded", "version": settings.VERSION}
