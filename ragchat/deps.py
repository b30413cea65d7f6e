import os
from typing import Optional

from fastapi import Request

from ragchat.memory.store import SessionActivityTracker, SessionDocumentStore
from ragchat.services.chat import ChatOrchestrator
from ragchat.services.embedder import DEFAULT_MODEL
from ragchat.services.lifecycle import LifecycleManager
from ragchat.services.scheduler import CleanupScheduler

SESSION_COOKIE = "sessionId"


def consolidation_enabled() -> bool:
    return os.getenv("RAG_CONSOLIDATE_SESSIONS", "1").strip().lower() not in ("0", "false", "no", "off")


def get_store(request: Request) -> SessionDocumentStore:
    return request.app.state.store


def get_activity(request: Request) -> SessionActivityTracker:
    return request.app.state.activity


def get_lifecycle(request: Request) -> LifecycleManager:
    return request.app.state.lifecycle


def get_scheduler(request: Request) -> CleanupScheduler:
    return request.app.state.scheduler


def cookie_session_id(request: Request) -> Optional[str]:
    return (request.cookies.get(SESSION_COOKIE) or "").strip() or None


def get_orchestrator(request: Request) -> ChatOrchestrator:
    # Built per request from the shared components so tests can swap any of them on app.state
    state = request.app.state
    return ChatOrchestrator(
        store=state.store,
        activity=state.activity,
        embedder=state.embedder,
        http_client=state.http_client,
        api_key=state.api_key,
        base_url=state.base_url,
        default_model=os.getenv("CHAT_MODEL", DEFAULT_MODEL),
        consolidate=consolidation_enabled(),
    )
