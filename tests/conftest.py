# Ensure `import ragchat` works whether tests are run from repo root or tests/
import json
import os
import sys

import httpx
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from fastapi.testclient import TestClient  # noqa: E402

from ragchat.main import create_app  # noqa: E402
from ragchat.models.types import Document  # noqa: E402


class StubEmbedder:
    """Deterministic stand-in for EmbeddingClient."""

    def __init__(self, vector=None, exc=None):
        self.vector = vector if vector is not None else [1.0, 0.0]
        self.exc = exc
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if self.exc is not None:
            raise self.exc
        return list(self.vector)

    async def embed_many(self, texts):
        return [await self.embed(t) if t.strip() else [] for t in texts]

    async def aclose(self):
        pass


class FakeProvider:
    """Chat provider behind an httpx.MockTransport."""

    def __init__(self, chunks=None, status=200, body=b"", fail_mid_stream=False):
        self.chunks = chunks if chunks is not None else [
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n',
            b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\ndata: [DONE]\n\n',
        ]
        self.status = status
        self.body = body
        self.fail_mid_stream = fail_mid_stream
        self.requests = []

    async def _stream(self):
        for c in self.chunks:
            yield c
        if self.fail_mid_stream:
            raise httpx.ReadError("connection reset by peer")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append({
            "url": str(request.url),
            "auth": request.headers.get("authorization"),
            "json": json.loads(request.content),
        })
        if self.status != 200:
            return httpx.Response(self.status, content=self.body)
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self._stream())

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def last_messages(self):
        return self.requests[-1]["json"]["messages"]


def make_doc(doc_id, chunks, embeddings, filename="notes.txt"):
    return Document(document_id=doc_id, filename=filename, chunks=chunks, embeddings=embeddings)


@pytest.fixture
def uploads(tmp_path):
    d = tmp_path / "uploads"
    d.mkdir()
    return d


@pytest.fixture
def app(uploads, monkeypatch):
    monkeypatch.setenv("UPLOADS_DIR", str(uploads))
    monkeypatch.setenv("CLEANUP_AUTOSTART", "0")
    monkeypatch.setenv("GRAVIXLAYER_API_KEY", "test-key")
    monkeypatch.delenv("RAG_CONSOLIDATE_SESSIONS", raising=False)
    return create_app()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(app, provider):
    with TestClient(app) as c:
        app.state.embedder = StubEmbedder()
        app.state.http_client = provider.client()
        yield c
