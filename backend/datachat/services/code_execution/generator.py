"""Code generation adapter — asks the model for analysis code and sanitizes it."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from datachat.prompts import get_code_generation_prompt
from datachat.services.code_execution.security import sanitize_generated_code, validate_code
from datachat.services.llm_service.llm import generate_text

logger = logging.getLogger(__name__)


class GenerationFailed(Exception):
    """No usable analysis code could be produced for this turn."""


class CodeGenerator:
    """Produces sanitized analysis code for a query over a dataset schema."""

    def __init__(self, llm: Optional[Any] = None) -> None:
        self._llm = llm

    async def generate(self, query: str, dataset, wants_visualization: bool = True) -> str:
        """Return sanitized code operating on the pre-loaded ``df``.

        Args:
            query: The user's request.
            dataset: ``DatasetDescriptor`` supplying headers, types and row count.
            wants_visualization: Ask for saved PNG charts.

        Raises:
            GenerationFailed: model call failed or nothing usable survived
                sanitization.
        """
        prompt = get_code_generation_prompt(
            user_query=query,
            headers=list(dataset.columns),
            column_types=dict(dataset.column_types),
            total_rows=dataset.total_rows,
            wants_visualization=wants_visualization,
        )

        start_time = time.time()
        try:
            raw = await generate_text(prompt, mode="code", llm=self._llm)
        except Exception as exc:
            logger.error("Code generation call failed: %s", exc)
            raise GenerationFailed("Failed to generate analysis code") from exc

        code = sanitize_generated_code(raw)
        if not code:
            logger.error("Model reply contained no usable code (%d chars)", len(raw))
            raise GenerationFailed("Generated code was empty after sanitization")

        report = validate_code(code)
        logger.info(
            "Generated %d chars of analysis code in %.2fs (safe=%s, warnings=%d)",
            len(code), time.time() - start_time, report.is_safe, len(report.warnings),
        )
        return code
