"""Per-process viewer session shared by the API routes."""

from __future__ import annotations

import logging
import threading

from fastapi import HTTPException, Request

from beadview.refresh import RefreshReconciler
from beadview.store import StoreError

logger = logging.getLogger(__name__)


class ViewerSession:
    """One reconciler plus the lock that serializes every state change.

    Routes run on worker threads, so each request takes the lock, drains any
    finished refresh and only then touches the navigation state.
    """

    def __init__(self, reconciler: RefreshReconciler) -> None:
        self.reconciler = reconciler
        self.lock = threading.RLock()
        self._loaded = False

    @property
    def state(self):
        return self.reconciler.state

    def ensure_loaded(self) -> None:
        if self._loaded:
            return
        try:
            self.reconciler.load_initial()
        except StoreError as exc:
            logger.warning("Initial load failed: %s", exc)
            raise HTTPException(status_code=502, detail=f"Store error: {exc}")
        self._loaded = True

    def sync(self) -> None:
        """Load on first use, then apply whatever the background fetch produced."""
        self.ensure_loaded()
        self.reconciler.tick()


def get_session(request: Request) -> ViewerSession:
    return request.app.state.session
