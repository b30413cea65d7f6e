import os
import logging
from datetime import datetime, timezone
from dotenv import load_dotenv

# Load .env as early as possible so downstream modules see provider keys and paths
load_dotenv()

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from ragchat.memory.store import SessionActivityTracker, SessionDocumentStore
from ragchat.routes import admin, chat, cleanup, documents, health
from ragchat.services.embedder import EmbeddingClient, provider_api_key, provider_base_url, provider_timeout
from ragchat.services.errors import RagChatError
from ragchat.services.lifecycle import LifecycleManager
from ragchat.services.scheduler import CleanupScheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _autostart_cleanup() -> bool:
    return os.getenv("CLEANUP_AUTOSTART", "1").strip().lower() not in ("0", "false", "no", "off")


def create_app() -> FastAPI:
    app = FastAPI(title="RAG Chat Backend")

    origins_env = os.getenv("ALLOW_ORIGINS", "*")
    allowed_origins = [o.strip() for o in origins_env.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.on_event("startup")
    async def _startup():
        state = app.state
        state.store = SessionDocumentStore()
        state.store.init()
        state.activity = SessionActivityTracker()
        state.activity.init()
        state.api_key = provider_api_key()
        state.base_url = provider_base_url()
        state.embedder = EmbeddingClient.from_env()
        state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(provider_timeout(), connect=10.0))
        state.lifecycle = LifecycleManager(state.store, state.activity)
        state.scheduler = CleanupScheduler(state.lifecycle)
        if not state.api_key:
            logger.warning("startup: GRAVIXLAYER_API_KEY not set; chat disabled, embeddings use fallback vectors")
        if _autostart_cleanup():
            state.scheduler.arm()
        logger.info("startup: uploads_dir=%s idle_seconds=%s", state.lifecycle.directory, state.lifecycle.idle_seconds)

    @app.on_event("shutdown")
    async def _shutdown():
        state = app.state
        state.scheduler.shutdown()
        await state.http_client.aclose()
        await state.embedder.aclose()
        state.activity.shutdown()
        state.store.shutdown()

    @app.exception_handler(RagChatError)
    async def _ragchat_error(request: Request, exc: RagChatError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("unhandled error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to process chat request",
                "details": str(exc),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    app.include_router(health.router)
    app.include_router(chat.router, prefix="/api")
    app.include_router(documents.router, prefix="/api")
    app.include_router(cleanup.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")

    @app.get("/")
    def root():
        return {"message": "RAG Chat Backend running"}

    return app


app = create_app()
