from fastapi import APIRouter, Depends, Request
import logging

from ragchat.deps import cookie_session_id, get_lifecycle, get_scheduler
from ragchat.services.lifecycle import LifecycleManager
from ragchat.services.scheduler import CleanupScheduler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/cleanup")
async def cleanup(request: Request, lifecycle: LifecycleManager = Depends(get_lifecycle)):
    """End-of-use signal. Always runs idle reclamation; also clears the
    caller's session when a session cookie is present. Any body is accepted
    (the browser sends this as a beacon on unload)."""
    idle = await lifecycle.reclaim_idle_sessions()
    session_id = cookie_session_id(request)
    if not session_id:
        logger.debug("cleanup: no sessionId cookie, only idle cleanup performed")
        return {
            "success": True,
            "message": "Idle cleanup completed",
            "idleCleaned": idle.cleaned,
            "currentSession": None,
        }

    cleared = await lifecycle.clear_session(session_id)
    return {
        "success": True,
        "uploads": {"deleted": cleared.files_deleted, "failures": cleared.failures},
        "documentStore": {"cleared": cleared.cleared},
        "idleCleaned": idle.cleaned,
        "currentSession": session_id,
        "message": f"Uploads and document store cleared for session {session_id}. "
                   f"Idle sessions cleaned: {idle.cleaned}",
    }


@router.post("/cleanup-scheduler")
async def start_scheduler(scheduler: CleanupScheduler = Depends(get_scheduler)):
    status = scheduler.arm()
    return {
        "success": True,
        "message": f"Periodic cleanup scheduler started (every {status['intervalMinutes']:g} minutes)",
        **status,
    }


@router.get("/cleanup-scheduler")
async def scheduler_status(scheduler: CleanupScheduler = Depends(get_scheduler)):
    return {"message": "Cleanup scheduler status", **scheduler.status()}
