"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from pricesync.api.routes import sync as sync_routes
from pricesync.db.engine import get_engine, init_db
from pricesync.errors import InvocationError

logger = logging.getLogger(__name__)


def _invocation_fault(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": message, "timestamp": datetime.now(timezone.utc).isoformat()},
    )


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        init_db(get_engine())
        yield

    app = FastAPI(
        title="Pricing Sync API",
        description="Outbound pricing synchronization to the channel manager",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(InvocationError)
    async def invocation_error_handler(request: Request, exc: InvocationError):
        logger.error("Invocation failed: %s", exc)
        return _invocation_fault(str(exc))

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("Store unavailable: %s", exc)
        return _invocation_fault("Store unavailable")

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
