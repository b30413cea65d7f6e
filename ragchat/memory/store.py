import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from ragchat.models.types import Document

logger = logging.getLogger(__name__)

# session_id -> {document_id -> Document}
SessionDocuments = Dict[str, Document]


class SessionDocumentStore:
    """Process-lifetime store of uploaded documents, grouped by session.

    Every read-modify-write sequence (lookup-then-insert, consolidate-then-store,
    delete) runs under one lock, so request handlers and the cleanup sweep can
    share an instance. Lookups hand out shallow copies of a session's mapping;
    ``Document`` records are immutable and shared by reference.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: Dict[str, SessionDocuments] = {}

    def init(self) -> None:
        with self._lock:
            self._sessions = {}
        logger.info("store: initialized (in-memory, process lifetime)")

    def shutdown(self) -> None:
        with self._lock:
            n = len(self._sessions)
            self._sessions.clear()
        logger.info("store: shutdown, dropped %d sessions", n)

    def add_document(self, session_id: str, document: Document) -> None:
        with self._lock:
            self._sessions.setdefault(session_id, {})[document.document_id] = document
            total = len(self._sessions[session_id])
        logger.info("store: added doc_id=%s session=%s docs_in_session=%d", document.document_id, session_id, total)

    def remove_document(self, session_id: str, document_id: str) -> bool:
        with self._lock:
            docs = self._sessions.get(session_id)
            if not docs or document_id not in docs:
                return False
            del docs[document_id]
            return True

    def get_documents(self, session_id: Optional[str]) -> SessionDocuments:
        if not session_id:
            return {}
        with self._lock:
            return dict(self._sessions.get(session_id) or {})

    def resolve_documents(self, session_id: Optional[str], consolidate: bool = True) -> SessionDocuments:
        """Return the documents a chat turn for ``session_id`` should search.

        When the session has none, the union of every session's documents is
        returned instead and, if a session id was given, stored under it. This
        covers uploads that landed under a session id the client had not yet
        picked up.
        """
        with self._lock:
            docs = self._sessions.get(session_id) if session_id else None
            if docs or not consolidate or not self._sessions:
                return dict(docs or {})
            merged: SessionDocuments = {}
            for sid, stored in self._sessions.items():
                if stored:
                    logger.info("store: consolidating %d documents from session=%s", len(stored), sid)
                    merged.update(stored)
            if session_id and merged:
                self._sessions[session_id] = dict(merged)
                logger.info("store: consolidated %d documents into session=%s", len(merged), session_id)
            return merged

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def document_count(self) -> int:
        with self._lock:
            return sum(len(d) for d in self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class SessionActivityTracker:
    """Last-activity timestamps (epoch seconds) per session."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._last: Dict[str, float] = {}

    def init(self) -> None:
        with self._lock:
            self._last = {}

    def shutdown(self) -> None:
        with self._lock:
            self._last.clear()

    def touch(self, session_id: Optional[str], at: Optional[float] = None) -> None:
        if not session_id:
            return
        with self._lock:
            self._last[session_id] = self._clock() if at is None else at

    def last_activity(self, session_id: str) -> Optional[float]:
        with self._lock:
            return self._last.get(session_id)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._last.pop(session_id, None) is not None

    def idle_sessions(self, idle_seconds: float, now: Optional[float] = None) -> List[str]:
        now = self._clock() if now is None else now
        with self._lock:
            return [sid for sid, last in self._last.items() if now - last > idle_seconds]

    def remove_if_idle(
        self,
        session_id: str,
        idle_seconds: float,
        now: Optional[float] = None,
        on_idle: Optional[Callable[[str], object]] = None,
    ) -> bool:
        """Drop ``session_id`` only if it is still idle at ``now``.

        ``on_idle`` runs under the tracker lock before the entry is dropped,
        so a concurrent ``touch`` lands either before the check or after it.
        Returns False when the session was touched since the idle scan.
        """
        now = self._clock() if now is None else now
        with self._lock:
            last = self._last.get(session_id)
            if last is None or not now - last > idle_seconds:
                return False
            if on_idle is not None:
                on_idle(session_id)
            del self._last[session_id]
            return True

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._last)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)
