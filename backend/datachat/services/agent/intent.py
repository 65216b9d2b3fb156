"""Intent classifier — chat vs. analysis, and whether a chart is wanted.

Two tiers:
  1. The model is asked for ``{"mode": ..., "wantsVisualization": ...}``;
     the reply is parsed tolerantly and validated.
  2. If the reply is unusable (or the call fails), a deterministic keyword
     rule decides instead.  Classification never raises.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Sequence

from datachat.core.config import settings
from datachat.prompts import get_intent_prompt
from datachat.services.agent.conversation import render_history
from datachat.services.agent.state import ChatTurn, recent_turns
from datachat.services.llm_service.llm import generate_text
from datachat.services.llm_service.llm_schemas import IntentDecision
from datachat.services.llm_service.structured_invoker import StructuredOutputError, parse_structured

logger = logging.getLogger(__name__)


class ClassificationDegraded(Exception):
    """The model's classification reply could not be used."""


# ── Keyword fallback ──────────────────────────────────────────

# Explicit visualization vocabulary, matched anywhere in the text so
# compounds like "boxplot", "barplot" and "piechart" count.  "paragraph"
# is the one common word that would otherwise trip "graph".
VISUALIZATION_KEYWORDS = (
    "plot",
    "chart",
    "(?<!para)graph",
    "visual",
    "histogram",
    "heatmap",
    "scatter",
    "diagram",
)

_VISUALIZATION_RE = re.compile(
    r"(?:" + "|".join(VISUALIZATION_KEYWORDS) + r")",
    re.IGNORECASE,
)


def keyword_classify(user_input: str) -> IntentDecision:
    """Deterministic rule: visualization vocabulary means analysis + chart."""
    if _VISUALIZATION_RE.search(user_input or ""):
        return IntentDecision(mode="analysis", wants_visualization=True)
    return IntentDecision(mode="chat", wants_visualization=False)


# ── Model classification ──────────────────────────────────────


def parse_decision(raw: str) -> IntentDecision:
    """Read the classifier reply; raise ClassificationDegraded if unusable."""
    try:
        decision = parse_structured(raw, IntentDecision)
    except StructuredOutputError as exc:
        raise ClassificationDegraded(str(exc)) from exc
    if decision.mode != "analysis":
        return IntentDecision(mode="chat", wants_visualization=False)
    return decision


async def classify_intent(
    user_input: str,
    recent_history: Sequence[ChatTurn] = (),
    has_dataset: bool = True,
    llm: Optional[Any] = None,
) -> IntentDecision:
    """Classify one turn. Never raises."""
    turns = recent_turns(tuple(recent_history), settings.CLASSIFIER_HISTORY_TURNS)
    prompt = get_intent_prompt(user_input, render_history(turns), has_dataset)

    try:
        raw = await generate_text(prompt, mode="structured", llm=llm)
        decision = parse_decision(raw)
    except ClassificationDegraded as exc:
        fallback = keyword_classify(user_input)
        logger.warning("Intent reply unusable (%s) — keyword rule chose %s", exc, fallback.mode)
        return fallback
    except Exception as exc:
        fallback = keyword_classify(user_input)
        logger.warning("Intent classifier call failed (%s) — keyword rule chose %s", exc, fallback.mode)
        return fallback

    logger.info(
        "Intent classified: mode=%s visualization=%s", decision.mode, decision.wants_visualization
    )
    return decision
