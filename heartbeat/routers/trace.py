"""Read-only view of recent monitor events"""
from typing import Optional

from fastapi import APIRouter

from trace_manager import EventKind, trace_manager

router = APIRouter(prefix="/trace", tags=["trace"])


@router.get("/events")
async def get_recent_events(limit: int = 100, kind: Optional[EventKind] = None):
    """Most recent events, oldest first. `kind` keeps only events of that kind."""
    return {"events": trace_manager.get_recent_events(limit, kind=kind)}
