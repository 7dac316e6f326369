"""
Safeguard FastAPI application.

API Structure (v1):
- POST /v1/moderate - Moderate one submission
- GET /v1/audit/{review_id} - Audit trail for a review
- GET /v1/reports/pending - Authority reports awaiting redelivery
- GET /v1/health
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from safeguard.api.routes import router
from safeguard.core.config import settings
from safeguard.core.logging import get_logger, setup_logging
from safeguard.db.repository import SqlAuditStore, SqlReportOutbox
from safeguard.moderation.errors import ValidationError
from safeguard.moderation.service import ModerationService

logger = get_logger("main")


def create_app(
    service: ModerationService = None,
    session_factory: sessionmaker = None,
) -> FastAPI:
    """
    Build the API app.

    Args:
        service: Prebuilt service; built from settings at startup when omitted
        session_factory: Session factory for the operator read endpoints
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown."""
        logger.info("Starting Safeguard moderation service")
        logger.info(
            f"Database: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'configured'}"
        )

        owns_service = getattr(app.state, "service", None) is None
        if owns_service:
            from safeguard.db.connection import get_session_factory, init_db

            init_db()
            factory = session_factory or get_session_factory()
            app.state.service = ModerationService.from_settings(settings, session_factory=factory)
            app.state.audit_store = SqlAuditStore(factory)
            app.state.outbox = SqlReportOutbox(factory)

        yield

        logger.info("Shutting down Safeguard moderation service")
        if owns_service:
            await app.state.service.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="Content moderation decision pipeline",
        lifespan=lifespan,
    )

    if service is not None:
        app.state.service = service
        app.state.audit_store = SqlAuditStore(session_factory)
        app.state.outbox = SqlReportOutbox(session_factory)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": {"message": str(exc), "errors": exc.errors}},
        )

    app.include_router(router, prefix=settings.api_prefix)
    return app


setup_logging(settings.log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
