from fastapi import APIRouter, Depends, HTTPException, Request
from pathlib import Path
import asyncio
import logging
import re
import uuid

from ragchat.deps import cookie_session_id, get_activity, get_lifecycle, get_store
from ragchat.memory.store import SessionActivityTracker, SessionDocumentStore
from ragchat.models.types import Document, DocumentRequest
from ragchat.services.errors import InvalidInput
from ragchat.services.lifecycle import LifecycleManager, artifact_prefix

router = APIRouter()
logger = logging.getLogger(__name__)


def _safe_name(filename: str) -> str:
    name = Path(filename).name or "document"
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name)


def _write_artifact(directory: Path, name: str, chunks) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text("\n\n".join(chunks), encoding="utf-8")


def _require_session(request: Request, body_session_id=None) -> str:
    sid = cookie_session_id(request) or (body_session_id or "").strip()
    if not sid:
        raise InvalidInput("sessionId is required (cookie or request body)")
    return sid


@router.post("/documents")
async def register_document(
    req: DocumentRequest,
    request: Request,
    store: SessionDocumentStore = Depends(get_store),
    activity: SessionActivityTracker = Depends(get_activity),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Register an already-extracted document (chunks, optional embeddings)
    for the caller's session."""
    session_id = _require_session(request, req.session_id)
    if not req.chunks:
        raise InvalidInput("chunks must contain at least one passage")

    embeddings = req.embeddings
    if embeddings is None:
        embeddings = await request.app.state.embedder.embed_many(req.chunks)
    elif len(embeddings) != len(req.chunks):
        logger.warning("documents: chunks=%d embeddings=%d differ; retrieval uses the shared prefix",
                       len(req.chunks), len(embeddings))

    # activity first: the idle sweep re-checks it before dropping the session
    activity.touch(session_id)
    file_id = str(uuid.uuid4())
    doc = Document(document_id=file_id, filename=req.filename, chunks=req.chunks, embeddings=embeddings)
    artifact = f"{artifact_prefix(session_id)}{file_id}__{_safe_name(req.filename)}"
    try:
        await asyncio.to_thread(_write_artifact, lifecycle.directory, artifact, req.chunks)
    except OSError as e:
        logger.warning("documents: could not write artifact %s: %s", artifact, e)

    store.add_document(session_id, doc)
    return {"sessionId": session_id, "fileId": file_id, "chunkCount": len(req.chunks)}


@router.get("/documents")
async def list_documents(
    request: Request,
    store: SessionDocumentStore = Depends(get_store),
    activity: SessionActivityTracker = Depends(get_activity),
):
    session_id = _require_session(request, request.query_params.get("sessionId"))
    activity.touch(session_id)
    docs = store.get_documents(session_id)
    return {
        "sessionId": session_id,
        "documents": [
            {
                "fileId": d.document_id,
                "filename": d.filename,
                "chunkCount": len(d.chunks),
                "createdAt": d.created_at.isoformat(),
            }
            for d in docs.values()
        ],
    }


@router.delete("/documents/{file_id}")
async def remove_document(
    file_id: str,
    request: Request,
    store: SessionDocumentStore = Depends(get_store),
    activity: SessionActivityTracker = Depends(get_activity),
):
    session_id = _require_session(request, request.query_params.get("sessionId"))
    activity.touch(session_id)
    if not store.remove_document(session_id, file_id):
        raise HTTPException(status_code=404, detail="Unknown fileId")
    return {"sessionId": session_id, "fileId": file_id, "removed": True}
