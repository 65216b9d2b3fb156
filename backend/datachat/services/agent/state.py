"""Workflow state schema.

Defines the typed records that flow through every step of the analysis
workflow.  ``WorkflowState`` is frozen: each step returns a ``StateUpdate``
holding only the fields it owns, and the orchestrator merges it into a new
state with :meth:`WorkflowState.merge`.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, TypedDict

import pandas as pd

from datachat.services.code_execution.sandbox import ExecutionResult


class Mode(str, Enum):
    CHAT = "chat"
    ANALYSIS = "analysis"


# ── Dataset ───────────────────────────────────────────────────


@dataclass(frozen=True)
class DatasetDescriptor:
    """Schema plus a reference to the uploaded tabular file.

    ``column_types`` values are one of ``numeric``, ``date`` or
    ``categorical``.
    """
    name: str
    path: str
    columns: Tuple[str, ...]
    column_types: Dict[str, str]
    total_rows: int
    sample_rows: Tuple[Dict[str, Any], ...] = ()
    dataset_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def columns_of_type(self, kind: str) -> List[str]:
        return [c for c in self.columns if self.column_types.get(c) == kind]

    def schema_text(self) -> str:
        """Human-readable schema block used in every prompt."""
        types = ", ".join(f"{c}: {self.column_types.get(c, 'unknown')}" for c in self.columns)
        return (
            f"- Total Rows: {self.total_rows}\n"
            f"- Columns: {', '.join(self.columns)}\n"
            f"- Data Types: {types}"
        )

    def read_bytes(self) -> bytes:
        with open(self.path, "rb") as f:
            return f.read()

    def read_csv_text(self, max_rows: Optional[int] = None) -> str:
        """Return header + up to *max_rows* rows as CSV text."""
        df = pd.read_csv(self.path, nrows=max_rows)
        return df.to_csv(index=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "name": self.name,
            "columns": list(self.columns),
            "column_types": dict(self.column_types),
            "total_rows": self.total_rows,
            "sample_rows": list(self.sample_rows),
        }


# ── Conversation ──────────────────────────────────────────────


@dataclass(frozen=True)
class ChatTurn:
    """One entry in a session transcript."""
    role: str                                   # "user" or "assistant"
    content: str
    execution_result: Optional[ExecutionResult] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "execution_result": self.execution_result.to_dict() if self.execution_result else None,
        }


def recent_turns(history: Tuple[ChatTurn, ...], limit: int) -> Tuple[ChatTurn, ...]:
    """Keep the most recent *limit* turns, preserving order."""
    if limit <= 0:
        return ()
    return tuple(history[-limit:])


# ── Workflow State ────────────────────────────────────────────


class StateUpdate(TypedDict, total=False):
    """Partial update returned by a workflow step."""
    mode: Mode
    wants_visualization: bool
    generated_code: str
    execution_result: Optional[ExecutionResult]
    response: str


_UPDATABLE_FIELDS = frozenset(StateUpdate.__annotations__)


@dataclass(frozen=True)
class WorkflowState:
    """Everything one chat turn carries from step to step."""
    # ── Input ─────────────────────────────────────────────
    session_id: str
    user_input: str
    dataset: Optional[DatasetDescriptor] = None
    chat_history: Tuple[ChatTurn, ...] = ()

    # ── Intent ────────────────────────────────────────────
    mode: Mode = Mode.CHAT
    wants_visualization: bool = False   # meaningful only in analysis mode

    # ── Code Execution ────────────────────────────────────
    generated_code: str = ""
    execution_result: Optional[ExecutionResult] = None

    # ── Response ──────────────────────────────────────────
    response: str = ""

    def merge(self, update: StateUpdate) -> "WorkflowState":
        """Return a new state with *update* applied.

        Raises KeyError if a step tries to set an input field.
        """
        unknown = set(update) - _UPDATABLE_FIELDS
        if unknown:
            raise KeyError(f"Steps may not set: {sorted(unknown)}")
        return dataclasses.replace(self, **update)
