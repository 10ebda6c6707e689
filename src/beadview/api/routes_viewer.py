"""Viewer API routes — visible rows and navigation operations."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from beadview.api.session import ViewerSession, get_session
from beadview.search import ViewMode
from beadview.store import StoreError

router = APIRouter()
logger = logging.getLogger(__name__)


class RowOut(BaseModel):
    issue_id: str
    parent_id: Optional[str]
    title: str
    status: str
    priority: int
    depth: int
    has_children: bool
    expanded: bool
    hidden_children: int
    blocked: bool
    active: bool
    ready: bool
    matches: bool
    selected: bool


class CursorRequest(BaseModel):
    delta: Optional[int] = None
    position: Optional[str] = Field(default=None, description="'top' or 'bottom'")


class FilterRequest(BaseModel):
    text: str = ""
    view_mode: Optional[ViewMode] = None


class CreateRequest(BaseModel):
    title: str
    issue_type: str = "task"
    priority: int = Field(default=2, ge=0, le=4)
    labels: list[str] = []
    assignee: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[str] = None


def _rows(session: ViewerSession) -> list[RowOut]:
    state = session.state
    forest = state.forest
    out = []
    for idx, row in enumerate(state.visible_rows):
        issue = forest.nodes[row.node_index].issue
        out.append(RowOut(
            issue_id=row.issue_id,
            parent_id=row.parent_id,
            title=issue.title,
            status=issue.status,
            priority=issue.priority,
            depth=row.depth,
            has_children=row.has_children,
            expanded=row.expanded,
            hidden_children=row.hidden_children,
            blocked=row.blocked,
            active=row.active,
            ready=row.ready,
            matches=row.matches,
            selected=idx == state.cursor,
        ))
    return out


def _state_payload(session: ViewerSession) -> dict:
    state = session.state
    reconciler = session.reconciler
    delta = reconciler.last_delta
    return {
        "cursor": state.cursor,
        "selected_id": state.selected_id,
        "row_count": len(state.visible_rows),
        "expanded": sorted(state.expanded),
        "filter_text": state.filter_text,
        "view_mode": state.view_mode.value,
        "refresh_in_flight": reconciler.in_flight,
        "last_delta": None if delta is None else {
            "added": list(delta.added),
            "changed": list(delta.changed),
            "removed": list(delta.removed),
            "summary": delta.summary(),
        },
        "notifications": [
            {"message": n.message, "level": n.level} for n in reconciler.notifications()
        ],
    }


@router.get("/rows", response_model=list[RowOut])
def rows(session: ViewerSession = Depends(get_session)):
    """Return the visible row list in display order."""
    with session.lock:
        session.sync()
        return _rows(session)


@router.get("/state")
def state(session: ViewerSession = Depends(get_session)):
    """Return the navigation state and refresh status."""
    with session.lock:
        session.sync()
        return _state_payload(session)


@router.post("/toggle/{issue_id}")
def toggle(issue_id: str, session: ViewerSession = Depends(get_session)):
    """Flip expansion of every instance of an issue."""
    with session.lock:
        session.sync()
        if issue_id not in session.state.forest.records:
            raise HTTPException(status_code=404, detail=f"Issue {issue_id} not found")
        expanded = session.state.toggle(issue_id)
        return {"issue_id": issue_id, "expanded": expanded, **_state_payload(session)}


@router.post("/cursor")
def cursor(req: CursorRequest, session: ViewerSession = Depends(get_session)):
    """Move the cursor by a delta, or to the top or bottom."""
    with session.lock:
        session.sync()
        state = session.state
        if req.position == "top":
            state.cursor_to_top()
        elif req.position == "bottom":
            state.cursor_to_bottom()
        elif req.position is not None:
            raise HTTPException(status_code=422, detail=f"Unknown position: {req.position}")
        if req.delta:
            state.move_cursor(req.delta)
        return _state_payload(session)


@router.post("/select/{issue_id}")
def select(
    issue_id: str,
    parent_id: Optional[str] = None,
    session: ViewerSession = Depends(get_session),
):
    """Move the cursor to an issue, expanding its ancestors."""
    with session.lock:
        session.sync()
        if not session.state.select(issue_id, parent_id):
            raise HTTPException(status_code=404, detail=f"Issue {issue_id} is not visible")
        return _state_payload(session)


@router.post("/filter")
def set_filter(req: FilterRequest, session: ViewerSession = Depends(get_session)):
    """Set (or clear, with empty text) the title filter and view mode."""
    with session.lock:
        session.sync()
        state = session.state
        if req.text:
            state.set_filter(req.text)
        else:
            state.clear_filter()
        if req.view_mode is not None:
            state.set_view_mode(req.view_mode)
        return _state_payload(session)


@router.post("/refresh")
def refresh(session: ViewerSession = Depends(get_session)):
    """Force a refresh and wait for it to be applied."""
    with session.lock:
        session.ensure_loaded()
        applied = session.reconciler.refresh_now()
        payload = _state_payload(session)
        payload["applied"] = applied
        payload["error"] = session.reconciler.last_error
        return payload


@router.get("/issues/{issue_id}")
def issue_detail(issue_id: str, session: ViewerSession = Depends(get_session)):
    """Return one issue with its related lists in work order."""
    from beadview.ordering import sort_blocked, sort_blockers, sort_subtasks

    with session.lock:
        session.sync()
        forest = session.state.forest
        record = forest.records.get(issue_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Issue {issue_id} not found")
        return {
            "id": record.id,
            "title": record.title,
            "status": record.status,
            "priority": record.priority,
            "issue_type": record.issue_type,
            "labels": sorted(record.labels),
            "assignee": record.assignee,
            "description": record.description,
            "created_at": record.created_at.isoformat() if record.created_at else None,
            "updated_at": record.updated_at.isoformat() if record.updated_at else None,
            "closed_at": record.closed_at.isoformat() if record.closed_at else None,
            "parents": list(forest.parents_of.get(issue_id, [])),
            "subtasks": sort_subtasks(forest, list(forest.children_of.get(issue_id, []))),
            "blocked_by": sort_blockers(forest, list(forest.blocked_by.get(issue_id, []))),
            "blocks": sort_blocked(forest, list(forest.blocks.get(issue_id, []))),
            "related": sorted(forest.related.get(issue_id, [])),
            "blocked": issue_id in forest.blocked_ids,
        }


@router.post("/issues", status_code=201)
def create_issue(req: CreateRequest, session: ViewerSession = Depends(get_session)):
    """Create an issue and show it immediately, ahead of the next refresh."""
    with session.lock:
        session.sync()
        store = session.reconciler.store
        try:
            record = store.create(
                req.title,
                issue_type=req.issue_type,
                priority=req.priority,
                labels=req.labels,
                assignee=req.assignee,
                description=req.description,
                parent_id=req.parent_id,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        except StoreError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        session.reconciler.inject_created(record, req.parent_id)
        return {"id": record.id, **_state_payload(session)}


@router.get("/stats")
def stats(session: ViewerSession = Depends(get_session)):
    """Return issue counts by state."""
    with session.lock:
        session.sync()
        return session.state.stats().as_dict()
