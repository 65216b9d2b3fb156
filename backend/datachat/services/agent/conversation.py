"""Conversation context rendering and the direct chat reply."""

from __future__ import annotations

import logging
import os
from typing import Any, Optional, Sequence

from datachat.core.config import settings
from datachat.prompts import get_chat_prompt
from datachat.services.agent.state import ChatTurn, DatasetDescriptor, recent_turns
from datachat.services.llm_service.llm import generate_text

logger = logging.getLogger(__name__)

_NO_DATASET_CONTEXT = (
    "User hasn't uploaded any CSV yet. Help them understand what they can do with this tool."
)


def render_history(turns: Sequence[ChatTurn]) -> str:
    """Render turns as ``User:`` / ``Assistant:`` lines.

    Assistant turns whose run succeeded with charts get a
    ``[Charts created: ...]`` line naming the files.
    """
    lines = []
    for turn in turns:
        role = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{role}: {turn.content}")
        result = turn.execution_result
        if result is not None and result.success and result.artifacts:
            names = ", ".join(os.path.basename(a) for a in result.artifacts)
            lines.append(f"[Charts created: {names}]")
    return "\n".join(lines)


def build_conversation_context(history: Sequence[ChatTurn], limit: Optional[int] = None) -> str:
    """Bounded transcript block for prompts, or "" for a fresh session."""
    turns = recent_turns(tuple(history), limit if limit is not None else settings.CHAT_HISTORY_LIMIT)
    if not turns:
        return ""
    return f"Previous conversation:\n{render_history(turns)}\n"


def describe_dataset(dataset: Optional[DatasetDescriptor]) -> str:
    if dataset is None:
        return _NO_DATASET_CONTEXT
    return (
        f"User has uploaded a CSV file ({dataset.name}) with:\n"
        f"{dataset.schema_text()}\n\n"
        "Be conversational, helpful, and suggest what kind of analysis they might "
        "want to perform. Keep responses concise but informative."
    )


async def chat_reply(
    user_input: str,
    dataset: Optional[DatasetDescriptor],
    history: Sequence[ChatTurn],
    llm: Optional[Any] = None,
) -> str:
    """One conversational reply. Model failures propagate to the caller."""
    prompt = get_chat_prompt(
        conversation_context=build_conversation_context(history),
        data_context=describe_dataset(dataset),
        user_message=user_input,
    )
    reply = await generate_text(prompt, mode="chat", llm=llm)
    logger.info("Chat reply generated (%d chars)", len(reply))
    return reply
