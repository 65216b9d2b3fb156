"""Pydantic schemas for validating structured LLM outputs."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Intent ────────────────────────────────────────────────

class IntentDecision(BaseModel):
    """Classifier verdict for one turn.

    Unknown modes are read as ``chat``; the visualization flag accepts
    booleans, ``"true"``/``"false"`` strings and 0/1, defaulting to False.
    """
    model_config = ConfigDict(populate_by_name=True)

    mode: str = "chat"
    wants_visualization: bool = Field(default=False, alias="wantsVisualization")

    @field_validator("mode", mode="before")
    @classmethod
    def _coerce_mode(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip().lower() == "analysis":
            return "analysis"
        return "chat"

    @field_validator("wants_visualization", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1")
        if isinstance(v, (int, float)):
            return v == 1
        return False
