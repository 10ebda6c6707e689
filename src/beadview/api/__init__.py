"""beadview Web API — FastAPI application exposing the viewer state."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beadview.api.routes_system import router as system_router
from beadview.api.routes_viewer import router as viewer_router
from beadview.api.session import ViewerSession

logger = logging.getLogger(__name__)


def create_app(session: ViewerSession | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Without an explicit session, one is built around the configured store;
    the first request performs the initial load.
    """
    from beadview.config import get_settings
    from beadview.logging_config import configure_logging

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        json_format=settings.log_json,
    )
    if session is None:
        from beadview.refresh import RefreshReconciler
        from beadview.store import BeadsStore

        session = ViewerSession(RefreshReconciler(BeadsStore(settings), settings=settings))

    app = FastAPI(
        title="beadview",
        description="Tree viewer API for beads issues",
        version="0.1.0",
    )
    app.state.session = session

    # CORS for a local presentation layer on another port
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(system_router, prefix="/api", tags=["system"])
    app.include_router(viewer_router, prefix="/api", tags=["viewer"])

    @app.get("/")
    async def root():
        return {"message": "beadview API is running.", "docs": "/docs", "rows": "/api/rows"}

    return app
