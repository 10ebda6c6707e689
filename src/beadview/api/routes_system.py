"""System API routes — health, config, doctor."""

from __future__ import annotations

import logging
import platform

from fastapi import APIRouter, Depends

from beadview.api.session import ViewerSession, get_session

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health(session: ViewerSession = Depends(get_session)):
    """Liveness plus a summary of the last refresh."""
    reconciler = session.reconciler
    return {
        "ok": reconciler.last_error is None,
        "issues": len(session.state.forest.records),
        "refresh_in_flight": reconciler.in_flight,
        "refresh_interval": reconciler.interval,
        "last_error": reconciler.last_error,
    }


@router.get("/config")
async def config_show():
    """Return resolved configuration."""
    from beadview.config import get_settings

    settings = get_settings()
    return {
        "config": settings.as_display_dict(),
        "errors": settings.validate_store_config(),
    }


@router.get("/doctor")
def doctor(session: ViewerSession = Depends(get_session)):
    """Run diagnostics and return a JSON report."""
    from beadview.config import get_settings

    settings = get_settings()
    with session.lock:
        session.sync()
        diagnostics = session.reconciler.diagnostics
        return {
            "platform": f"{platform.system()} {platform.release()}",
            "store": {
                "database": str(settings.database_file),
                "database_exists": settings.database_file.exists(),
                "bd_binary": settings.bd_binary,
                "errors": settings.validate_store_config(),
            },
            "data_integrity": {
                "total_issues": len(session.state.forest.records),
                **(diagnostics.as_dict() if diagnostics else {}),
            },
        }
