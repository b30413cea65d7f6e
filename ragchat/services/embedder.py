import logging
import os
from typing import List, Optional
import numpy as np
from ragchat.services.errors import InvalidInput
from ragchat.services.metrics import now, elapsed_ms, record_llm, record_fallback

logger = logging.getLogger(__name__)

EMBED_DIM = 1536
DEFAULT_BASE_URL = "https://api.gravixlayer.com/v1/inference"
DEFAULT_MODEL = "llama3.1:8b"


def provider_api_key() -> Optional[str]:
    return os.getenv("GRAVIXLAYER_API_KEY", "").strip() or None


def provider_base_url() -> str:
    return os.getenv("GRAVIXLAYER_BASE_URL", "").strip().rstrip("/") or DEFAULT_BASE_URL


def provider_timeout() -> float:
    try:
        return float(os.getenv("PROVIDER_TIMEOUT_S", "60"))
    except ValueError:
        return 60.0


# Fallback when the provider is missing or fails. Unseeded on purpose: scores
# against these vectors carry no meaning, they only keep the pipeline running.

def _fallback_embed() -> List[float]:
    return np.random.default_rng().random(EMBED_DIM).tolist()


def _openai_client(api_key: str, base_url: str, timeout: float):
    from openai import AsyncOpenAI  # lazy import
    # single attempt; any failure falls back immediately
    return AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)


class EmbeddingClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client=None,
    ):
        self.api_key = api_key
        self.base_url = base_url or DEFAULT_BASE_URL
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout if timeout is not None else 60.0
        self._client = client

    @classmethod
    def from_env(cls) -> "EmbeddingClient":
        return cls(
            api_key=provider_api_key(),
            base_url=provider_base_url(),
            model=os.getenv("EMBEDDING_MODEL", DEFAULT_MODEL),
            timeout=provider_timeout(),
        )

    def _get_client(self):
        if self._client is None:
            self._client = _openai_client(self.api_key, self.base_url, self.timeout)
        return self._client

    async def embed(self, text: str) -> List[float]:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Text to embed must be a non-empty string")
        if not self.api_key:
            logger.warning("embedder: no provider key configured, using fallback vector")
            record_fallback("embedding_no_key")
            return _fallback_embed()
        t0 = now()
        try:
            resp = await self._get_client().embeddings.create(
                model=self.model,
                input=text.strip(),
                encoding_format="float",
            )
            vec = [float(x) for x in resp.data[0].embedding]
            if not vec:
                raise ValueError("empty embedding in provider response")
        except Exception as e:
            record_llm("gravixlayer", self.model, latency_ms=elapsed_ms(t0), ok=False)
            record_fallback("embedding_error")
            logger.error("embedder: provider call failed (%s: %s), using fallback vector", type(e).__name__, e)
            return _fallback_embed()
        record_llm("gravixlayer", self.model, latency_ms=elapsed_ms(t0), ok=True)
        return vec

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed each text in order; blank texts map to an empty vector."""
        out: List[List[float]] = []
        for t in texts:
            out.append(await self.embed(t) if isinstance(t, str) and t.strip() else [])
        return out

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
