from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query

from ragchat.deps import get_activity, get_lifecycle, get_store
from ragchat.memory.store import SessionActivityTracker, SessionDocumentStore
from ragchat.services import metrics
from ragchat.services.lifecycle import LifecycleManager

router = APIRouter()


@router.post("/admin/reclaim")
async def admin_reclaim(
    idle_minutes: Optional[float] = Query(default=None, ge=0, description="Override the idle threshold"),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict:
    """Run idle-session reclamation and the orphan sweep now."""
    threshold = idle_minutes * 60 if idle_minutes is not None else None
    report = await lifecycle.reclaim_idle_sessions(threshold)
    return report.model_dump()


@router.get("/admin/stats")
async def admin_stats(
    store: SessionDocumentStore = Depends(get_store),
    activity: SessionActivityTracker = Depends(get_activity),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict:
    last = lifecycle.last_report
    return {
        "sessions": len(store),
        "documents": store.document_count(),
        "tracked_sessions": len(activity),
        "last_cleanup": last.model_dump() if last else None,
        "providers": metrics.snapshot(),
    }
