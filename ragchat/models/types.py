from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    # Immutable once stored; shared by reference between sessions and requests.
    model_config = ConfigDict(frozen=True)

    document_id: str
    filename: str
    chunks: List[str]
    embeddings: List[List[float]]
    created_at: datetime = Field(default_factory=_utcnow)


class ChatMessage(BaseModel):
    role: str
    # forwarded as given: a string, a list of content parts or null
    content: Any


class ChatRequest(BaseModel):
    """Incoming chat body, as the web client sends it (camelCase).

    ``messages`` is left untyped so that the orchestrator can check the
    credential before it rejects a malformed message list.
    """
    model_config = ConfigDict(populate_by_name=True)

    messages: Any = None
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = Field(default=1000, alias="maxTokens")
    use_rag: bool = Field(default=False, alias="useRAG")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class DocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    chunks: List[str]
    embeddings: Optional[List[List[float]]] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class CleanupReport(BaseModel):
    sessions_reclaimed: int = 0
    files_deleted: int = 0
    failures: List[Dict[str, str]] = []

    @property
    def cleaned(self) -> int:
        return self.sessions_reclaimed + self.files_deleted


class SessionClearReport(BaseModel):
    session_id: str
    files_deleted: int = 0
    cleared: int = 0
    failures: List[Dict[str, str]] = []
