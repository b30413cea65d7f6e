import logging
from typing import List, Mapping, NamedTuple, Sequence
import numpy as np
from ragchat.models.types import Document

logger = logging.getLogger(__name__)

MAX_TOP_K = 5
PREVIOUS_LABEL = "[Previous Context]"
MAIN_LABEL = "[Main Content]"
FOLLOWING_LABEL = "[Following Context]"


class Match(NamedTuple):
    chunk: str
    similarity: float
    index: int
    doc_chunks: Sequence[str]


def _as_vector(v) -> np.ndarray:
    try:
        arr = np.asarray(v, dtype=np.float64)
    except (TypeError, ValueError):
        return np.zeros(0)
    if arr.ndim != 1:
        return np.zeros(0)
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)


def cosine_similarity(a, b) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 for empty, mismatched or zero-magnitude input."""
    va, vb = _as_vector(a), _as_vector(b)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def clamp_top_k(top_k: int) -> int:
    return max(1, min(int(top_k), MAX_TOP_K))


def _is_text(s) -> bool:
    return isinstance(s, str) and bool(s.strip())


def _context_block(m: Match) -> str:
    chunks = m.doc_chunks
    parts = []
    if m.index > 0 and _is_text(chunks[m.index - 1]):
        parts.append(f"{PREVIOUS_LABEL}: {chunks[m.index - 1].strip()}")
    parts.append(f"{MAIN_LABEL}: {m.chunk}")
    if m.index < len(chunks) - 1 and _is_text(chunks[m.index + 1]):
        parts.append(f"{FOLLOWING_LABEL}: {chunks[m.index + 1].strip()}")
    return "\n\n".join(parts)


def find_matches(query_embedding, documents: Mapping[str, Document]) -> List[Match]:
    matches: List[Match] = []
    if not documents or query_embedding is None or len(query_embedding) == 0:
        return matches
    for doc in documents.values():
        n = min(len(doc.chunks), len(doc.embeddings))
        for i in range(n):
            chunk = doc.chunks[i]
            if not _is_text(chunk):
                continue
            sim = cosine_similarity(query_embedding, doc.embeddings[i])
            if sim > 0:
                matches.append(Match(chunk.strip(), sim, i, doc.chunks))
    # stable: ties keep discovery order
    matches.sort(key=lambda m: -m.similarity)
    return matches


def retrieve(query_embedding, documents: Mapping[str, Document], top_k: int = 3) -> List[str]:
    """Top matching chunks across all of a session's documents, each expanded
    with its neighbouring chunks, ordered by descending similarity."""
    matches = find_matches(query_embedding, documents)
    if not matches:
        return []
    top = matches[: clamp_top_k(top_k)]
    logger.info("retriever: candidates=%d returned=%d top_sims=%s",
                len(matches), len(top), [round(m.similarity, 3) for m in top])
    return [_context_block(m) for m in top]
