"""Chat route — one conversational turn over the session's current dataset.

The user's turn is recorded before the workflow runs, so a failed turn still
shows in the history, followed by a generic apology.
"""

import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from datachat.core.config import settings
from datachat.services.agent.state import ChatTurn
from datachat.services.agent.workflow import AnalysisWorkflow
from datachat.services.session_store import SessionStore
from datachat.services.ws_manager import StatusRegistry
from .utils import get_session_store, get_status_registry, get_workflow

logger = logging.getLogger(__name__)
router = APIRouter()

APOLOGY_MESSAGE = (
    "❌ Sorry, I encountered an error processing your request. "
    "Please try again with a different approach."
)


class ChatRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=128)
    message: str = Field(..., min_length=1, max_length=settings.MAX_MESSAGE_LENGTH)
    message_id: Optional[str] = Field(default=None, max_length=128)

    @field_validator("session_id", "message")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class ChatResponse(BaseModel):
    success: bool
    response: str
    message_id: str
    has_visualization: bool = False
    files: List[str] = []


@router.post("/chat", response_model=ChatResponse)
async def chat_endpoint(
    request: ChatRequest,
    store: SessionStore = Depends(get_session_store),
    registry: StatusRegistry = Depends(get_status_registry),
    workflow: AnalysisWorkflow = Depends(get_workflow),
):
    start_time = time.time()
    session = store.get_or_create(request.session_id)
    history = session.history()

    turn_kwargs = {"id": request.message_id} if request.message_id else {}
    user_turn = ChatTurn(role="user", content=request.message, **turn_kwargs)
    store.add_message(session.id, user_turn)

    try:
        result = await workflow.run(
            session_id=session.id,
            user_input=request.message,
            dataset=session.current_dataset,
            chat_history=history,
            notifier=registry.notifier(session.id),
        )
    except Exception as exc:
        logger.exception("Chat turn failed for session %s: %s", session.id, exc)
        apology = ChatTurn(role="assistant", content=APOLOGY_MESSAGE)
        store.add_message(session.id, apology)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Processing failed",
                "response": apology.content,
                "message_id": apology.id,
            },
        )

    reply = ChatTurn(role="assistant", content=result.response, execution_result=result.execution_result)
    store.add_message(session.id, reply)

    files = result.artifacts
    logger.info(
        "Chat turn for session %s: mode=%s files=%d in %.2fs",
        session.id, result.mode.value, len(files), time.time() - start_time,
    )
    return ChatResponse(
        success=True,
        response=reply.content,
        message_id=reply.id,
        has_visualization=bool(files),
        files=files,
    )
