"""Prompt template loader.

Each ``get_*_prompt`` function loads a ``.txt`` template from this
package directory and substitutes placeholders.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import Dict, List

_DIR = os.path.dirname(__file__)


@lru_cache(maxsize=32)
def _load(filename: str) -> str:
    """Read a template file, caching the result."""
    with open(os.path.join(_DIR, filename), encoding="utf-8") as f:
        return f.read()


def _render(filename: str, subs: Dict[str, str]) -> str:
    """Load *filename* and apply all substitutions."""
    text = _load(filename)
    for key, val in subs.items():
        text = text.replace(key, val)
    return text


# ── Public helpers ────────────────────────────────────────


def get_intent_prompt(user_input: str, recent_context: str, has_dataset: bool) -> str:
    context = f"Recent conversation context:\n{recent_context}\n" if recent_context else ""
    return _render("intent_prompt.txt", {
        "{{HAS_DATASET}}": "yes" if has_dataset else "no",
        "{{RECENT_CONTEXT}}": context,
        "{{USER_INPUT}}": user_input,
    })


def get_chat_prompt(conversation_context: str, data_context: str, user_message: str) -> str:
    return _render("chat_prompt.txt", {
        "{{CONVERSATION_CONTEXT}}": conversation_context,
        "{{DATA_CONTEXT}}": data_context,
        "{{USER_MESSAGE}}": user_message,
    })


def get_code_generation_prompt(
    user_query: str,
    headers: List[str],
    column_types: Dict[str, str],
    total_rows: int,
    wants_visualization: bool = True,
) -> str:
    def _of(kind: str) -> str:
        return ", ".join(c for c in headers if column_types.get(c) == kind) or "none"

    if wants_visualization:
        viz = (
            "- Create clear, publication-ready visualizations suited to the data types\n"
            "- Save each plot as a PNG file in the current directory with a descriptive name "
            "(plt.savefig('name.png')), then close the figure\n"
            "- Include proper titles, axis labels and legends\n"
        )
    else:
        viz = "- Do not create any plots\n"

    return _render("code_generation_prompt.txt", {
        "{{HEADERS}}": ", ".join(headers),
        "{{DATA_TYPES}}": json.dumps(column_types),
        "{{NUMERIC_COLUMNS}}": _of("numeric"),
        "{{CATEGORICAL_COLUMNS}}": _of("categorical"),
        "{{DATE_COLUMNS}}": _of("date"),
        "{{TOTAL_ROWS}}": str(total_rows),
        "{{VISUALIZATION_REQUIREMENTS}}": viz,
        "{{USER_QUERY}}": user_query,
    })


def get_analysis_summary_prompt(
    conversation_context: str,
    csv_data: str,
    data_summary: str,
    execution_section: str,
    user_input: str,
) -> str:
    return _render("analysis_summary_prompt.txt", {
        "{{DATA_SUMMARY}}": data_summary,
        "{{EXECUTION_SECTION}}": execution_section,
        "{{CONVERSATION_CONTEXT}}": conversation_context,
        "{{CSV_DATA}}": csv_data,
        "{{USER_INPUT}}": user_input,
    })
