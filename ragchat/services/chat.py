from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ragchat.memory.store import SessionActivityTracker, SessionDocumentStore, SessionDocuments
from ragchat.models.types import ChatMessage, ChatRequest
from ragchat.services.embedder import DEFAULT_BASE_URL, DEFAULT_MODEL, EmbeddingClient
from ragchat.services.errors import InvalidInput, MissingConfiguration, ProviderError, RetrievalDegraded
from ragchat.services.metrics import elapsed_ms, now, record_llm
from ragchat.services.retriever import retrieve
from ragchat.services.streaming import error_frame, relay_lines

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "system")
CONTEXT_DELIMITER = "\n\n---\n\n"
CONTEXT_INSTRUCTION = (
    "Use the following context from uploaded documents to answer questions. "
    "If the answer is not in the context, say so clearly."
)


def resolve_session_id(cookie_value: Optional[str], body_value: Optional[str]) -> Optional[str]:
    # cookie wins over the request body
    return (cookie_value or "").strip() or (body_value or "").strip() or None


def context_message(blocks: List[str]) -> Dict[str, str]:
    return {
        "role": "system",
        "content": f"{CONTEXT_INSTRUCTION}\n\nContext:\n{CONTEXT_DELIMITER.join(blocks)}",
    }


def _normalize_messages(raw: Any) -> List[Dict[str, Any]]:
    if raw is None or not isinstance(raw, (list, tuple)):
        raise InvalidInput("Messages array is required")
    out = []
    for i, m in enumerate(raw):
        try:
            msg = ChatMessage.model_validate(m)
        except ValidationError as e:
            raise InvalidInput(f"Invalid message at index {i}", details=str(e))
        if msg.role not in ROLES:
            raise InvalidInput(f"Invalid role {msg.role!r} at index {i}")
        out.append({"role": msg.role, "content": msg.content})
    return out


class ChatOrchestrator:
    """Per-request chat pipeline: validate, optionally augment with retrieved
    context, call the provider in streaming mode and relay its lines."""

    def __init__(
        self,
        store: SessionDocumentStore,
        activity: SessionActivityTracker,
        embedder: EmbeddingClient,
        http_client: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        default_model: str = DEFAULT_MODEL,
        consolidate: bool = True,
        top_k: int = 3,
    ):
        self.store = store
        self.activity = activity
        self.embedder = embedder
        self.http = http_client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.consolidate = consolidate
        self.top_k = top_k

    async def _retrieve_context(self, query: str, documents: SessionDocuments) -> List[str]:
        try:
            query_embedding = await self.embedder.embed(query)
            return retrieve(query_embedding, documents, top_k=self.top_k)
        except Exception as e:
            raise RetrievalDegraded(f"context retrieval failed: {e}") from e

    async def augment(self, messages: List[Dict[str, Any]], session_id: Optional[str]) -> List[Dict[str, Any]]:
        """Splice a context system message before the last user message.

        Any failure here leaves the message list unchanged.
        """
        try:
            documents = self.store.resolve_documents(session_id, consolidate=self.consolidate)
        except Exception as e:
            logger.warning("chat: document lookup failed for session=%s: %s", session_id, e)
            return messages
        if not documents:
            logger.info("chat: no documents available for RAG, session=%s", session_id)
            return messages

        last_user = next((i for i in range(len(messages) - 1, -1, -1) if messages[i]["role"] == "user"), None)
        query = messages[last_user]["content"] if last_user is not None else None
        if not isinstance(query, str) or not query.strip():
            logger.info("chat: last user message has no text query, skipping RAG")
            return messages

        logger.info("chat: RAG retrieval session=%s docs=%d q=%r", session_id, len(documents), query[:100])
        try:
            blocks = await self._retrieve_context(query, documents)
        except RetrievalDegraded as e:
            logger.warning("chat: %s; continuing without context", e)
            return messages
        if not blocks:
            logger.info("chat: no relevant chunks found")
            return messages
        logger.info("chat: injecting %d context blocks", len(blocks))
        return messages[:last_user] + [context_message(blocks)] + messages[last_user:]

    async def open_stream(self, req: ChatRequest, cookie_session_id: Optional[str] = None) -> httpx.Response:
        if not self.api_key:
            logger.error("chat: GRAVIXLAYER_API_KEY is not set")
            raise MissingConfiguration("API key not configured")
        messages = _normalize_messages(req.messages)

        session_id = resolve_session_id(cookie_session_id, req.session_id)
        self.activity.touch(session_id)
        if req.use_rag:
            messages = await self.augment(messages, session_id)

        model = req.model or self.default_model
        body = {
            "model": model,
            "messages": messages,
            "temperature": req.temperature,
            "max_tokens": req.max_tokens,
            "stream": True,
        }
        logger.info("chat: request model=%s messages=%d use_rag=%s session=%s",
                    model, len(messages), req.use_rag, session_id)
        request = self.http.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}", "Accept": "text/event-stream"},
        )
        t0 = now()
        try:
            resp = await self.http.send(request, stream=True)
        except httpx.TimeoutException as e:
            record_llm("gravixlayer", model, latency_ms=elapsed_ms(t0), ok=False)
            raise ProviderError("Chat provider timed out", body=str(e), timeout=True)
        except httpx.HTTPError as e:
            record_llm("gravixlayer", model, latency_ms=elapsed_ms(t0), ok=False)
            raise ProviderError("Chat provider unreachable", body=str(e))

        if not resp.is_success:
            try:
                text = (await resp.aread()).decode("utf-8", errors="replace")
            finally:
                await resp.aclose()
            record_llm("gravixlayer", model, latency_ms=elapsed_ms(t0), ok=False)
            logger.error("chat: provider error status=%d body=%s", resp.status_code, text[:500])
            raise ProviderError(f"API request failed: {resp.status_code}", status=resp.status_code, body=text)
        record_llm("gravixlayer", model, latency_ms=elapsed_ms(t0), ok=True)
        return resp

    async def relay(self, resp: httpx.Response) -> AsyncIterator[bytes]:
        # Closing the provider response in ``finally`` also covers client
        # disconnects, which cancel this generator.
        lines = 0
        try:
            async for line in relay_lines(resp.aiter_bytes()):
                lines += 1
                yield line
        except Exception as e:
            logger.exception("chat: stream interrupted after %d lines: %s", lines, e)
            yield error_frame("Stream interrupted", str(e))
        finally:
            await resp.aclose()
            logger.info("chat: stream closed after %d lines", lines)

    async def handle(self, req: ChatRequest, cookie_session_id: Optional[str] = None) -> AsyncIterator[bytes]:
        resp = await self.open_stream(req, cookie_session_id)
        return self.relay(resp)
