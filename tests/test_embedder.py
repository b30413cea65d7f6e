import asyncio
from types import SimpleNamespace

import httpx
import pytest

from ragchat.services import metrics
from ragchat.services.embedder import EMBED_DIM, EmbeddingClient
from ragchat.services.errors import InvalidInput


class FakeEmbeddings:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        return self.response


def _client(response=None, exc=None):
    return SimpleNamespace(embeddings=FakeEmbeddings(response, exc))


def _embed(client, text):
    return asyncio.run(client.embed(text))


def test_blank_text_is_rejected():
    c = EmbeddingClient(api_key="k", client=_client())
    with pytest.raises(InvalidInput):
        _embed(c, "   ")
    with pytest.raises(InvalidInput):
        _embed(c, "")


def test_fallback_without_key_is_uniform_and_unseeded():
    c = EmbeddingClient(api_key=None)
    a = _embed(c, "hello")
    b = _embed(c, "hello")
    assert len(a) == EMBED_DIM
    assert all(0.0 <= x < 1.0 for x in a)
    assert a != b


def test_provider_success_returns_first_embedding():
    fake = _client(SimpleNamespace(data=[SimpleNamespace(embedding=[0.5, 0.25]), SimpleNamespace(embedding=[9.0])]))
    c = EmbeddingClient(api_key="k", model="embed-model", client=fake)
    assert _embed(c, "  what is revenue?  ") == [0.5, 0.25]
    call = fake.embeddings.calls[0]
    assert call == {"model": "embed-model", "input": "what is revenue?", "encoding_format": "float"}


@pytest.mark.parametrize("exc", [httpx.ConnectError("down"), httpx.ReadTimeout("slow"), RuntimeError("500")])
def test_provider_failure_falls_back(exc):
    metrics.reset()
    c = EmbeddingClient(api_key="k", client=_client(exc=exc))
    vec = _embed(c, "hello")
    assert len(vec) == EMBED_DIM
    assert metrics.snapshot()["fallbacks"].get("embedding_error") == 1


@pytest.mark.parametrize("response", [
    SimpleNamespace(data=[]),
    SimpleNamespace(data=None),
    SimpleNamespace(data=[SimpleNamespace(embedding=[])]),
    SimpleNamespace(),
])
def test_malformed_response_falls_back(response):
    c = EmbeddingClient(api_key="k", client=_client(response))
    assert len(_embed(c, "hello")) == EMBED_DIM


def test_embed_many_keeps_order_and_skips_blank():
    fake = _client(SimpleNamespace(data=[SimpleNamespace(embedding=[1.0])]))
    c = EmbeddingClient(api_key="k", client=fake)
    out = asyncio.run(c.embed_many(["a", " ", "b"]))
    assert out == [[1.0], [], [1.0]]
    assert [k["input"] for k in fake.embeddings.calls] == ["a", "b"]
