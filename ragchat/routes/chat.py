from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
import logging

from ragchat.deps import cookie_session_id, get_orchestrator
from ragchat.models.types import ChatRequest
from ragchat.services.chat import ChatOrchestrator
from ragchat.services.errors import InvalidInput
from ragchat.services.streaming import SSE_HEADERS

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/chat")
async def chat(request: Request, orchestrator: ChatOrchestrator = Depends(get_orchestrator)):
    try:
        payload = await request.json()
    except ValueError:
        raise InvalidInput("Request body must be JSON")
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")
    try:
        req = ChatRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidInput("Invalid chat request", details=str(e))

    stream = await orchestrator.handle(req, cookie_session_id(request))
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)
