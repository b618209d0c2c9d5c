"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from splitsync.api.routes import conversions, feed, sync as sync_routes
from splitsync.db.engine import get_engine, init_db


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        init_db(get_engine())
        yield

    app = FastAPI(
        title="splitsync",
        description="Offline-first sync engine for shared expenses",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(conversions.router, prefix="/payments", tags=["payments"])
    app.include_router(feed.router, prefix="/feed", tags=["feed"])

    return app


# uvicorn splitsync.api.main:app
app = create_app()
