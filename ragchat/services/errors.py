from typing import Optional


class RagChatError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class InvalidInput(RagChatError):
    status_code = 400


class MissingConfiguration(RagChatError):
    status_code = 500


class ProviderError(RagChatError):
    """Non-success, malformed or timed-out provider response.

    ``status`` is the provider's HTTP status when there was one; the error is
    surfaced with that status, or 502/504 for transport failures/timeouts.
    """

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None, timeout: bool = False):
        super().__init__(message, details=body)
        self.status = status
        self.body = body
        if status is not None and status >= 400:
            self.status_code = status
        else:
            self.status_code = 504 if timeout else 502


class RetrievalDegraded(RagChatError):
    # Raised inside RAG augmentation only; the chat turn proceeds without context.
    pass
