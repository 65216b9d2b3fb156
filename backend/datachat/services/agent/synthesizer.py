"""Result synthesizer — turns dataset context and run output into an answer.

A failed narrative call never fails the turn: the reply degrades to a fixed
"completed" line.  Both paths end with the same next-step suggestions.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Optional, Sequence

from datachat.core.config import settings
from datachat.prompts import get_analysis_summary_prompt
from datachat.services.agent.conversation import build_conversation_context
from datachat.services.agent.state import ChatTurn, DatasetDescriptor
from datachat.services.code_execution.sandbox import ExecutionResult
from datachat.services.llm_service.llm import generate_text

logger = logging.getLogger(__name__)

SUMMARY_HEADER = "📈 **Analysis Summary:**"
FALLBACK_SUMMARY = "📈 **Analysis completed successfully!**"

SUGGESTIONS = (
    "💡 **What you can do next:**\n"
    '• "Show me how salary relates to experience"\n'
    '• "Create a different type of chart"\n'
    '• "Find unusual patterns in the data"\n'
    '• "Compare different departments or groups"'
)

_MAX_OUTPUT_IN_PROMPT = 8000


def render_execution_section(result: Optional[ExecutionResult]) -> str:
    """Prompt block describing the sandbox run, or "" when nothing ran."""
    if result is None:
        return ""
    output = (result.output or "(no printed output)")[:_MAX_OUTPUT_IN_PROMPT]
    charts = ", ".join(os.path.basename(a) for a in result.artifacts) or "none"
    if result.success:
        return (
            "\nAnalysis Code Output:\n"
            f"{output}\n"
            f"Charts created: {charts}\n"
        )
    return (
        "\nThe analysis code did not complete successfully.\n"
        f"Error: {result.error}\n"
        f"Partial output:\n{output}\n"
        f"Charts created: {charts}\n"
        "Explain briefly what could not be computed and answer from the data where possible.\n"
    )


async def summarize_analysis(
    user_input: str,
    dataset: DatasetDescriptor,
    history: Sequence[ChatTurn],
    execution_result: Optional[ExecutionResult] = None,
    llm: Optional[Any] = None,
) -> str:
    """Narrative answer plus suggestions; falls back instead of raising."""
    try:
        loop = asyncio.get_running_loop()
        csv_data = await loop.run_in_executor(
            None, dataset.read_csv_text, settings.SUMMARY_MAX_ROWS
        )
        prompt = get_analysis_summary_prompt(
            conversation_context=build_conversation_context(history),
            csv_data=csv_data.strip(),
            data_summary=dataset.schema_text(),
            execution_section=render_execution_section(execution_result),
            user_input=user_input,
        )
        summary = await generate_text(prompt, mode="chat", llm=llm)
        if not summary:
            raise ValueError("empty summary")
        body = f"{SUMMARY_HEADER}\n{summary}"
    except Exception as exc:
        logger.error("Summary generation failed, using fallback: %s", exc)
        body = FALLBACK_SUMMARY

    return f"{body}\n\n{SUGGESTIONS}"
