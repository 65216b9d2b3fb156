"""Analysis workflow — explicit state machine for one chat turn.

    CLASSIFY ─┬─► CHAT ─────────────────────────────────────► END
              ├─► GENERATE_CODE ─► EXECUTE ─► SUMMARIZE ─► END
              └─► SUMMARIZE ─────────────────────────────► END

Each step is an async method from :class:`WorkflowState` to a
:class:`StateUpdate`; :func:`next_step` picks the successor from the merged
state.  On entry to every step a status line is pushed to the session's
notifier, best-effort.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from datachat.core.config import settings
from datachat.services.agent.conversation import chat_reply
from datachat.services.agent.intent import classify_intent
from datachat.services.agent.state import (
    ChatTurn,
    DatasetDescriptor,
    Mode,
    StateUpdate,
    WorkflowState,
)
from datachat.services.agent.synthesizer import summarize_analysis
from datachat.services.code_execution.generator import CodeGenerator, GenerationFailed
from datachat.services.code_execution.harness import build_harness_script
from datachat.services.code_execution.sandbox import ExecutionResult, SandboxExecutor
from datachat.services.ws_manager import NullNotifier

logger = logging.getLogger(__name__)


class Step(str, Enum):
    CLASSIFY = "classify"
    CHAT = "chat"
    GENERATE_CODE = "generate_code"
    EXECUTE = "execute"
    SUMMARIZE = "summarize"
    END = "end"


STATUS_MESSAGES: Dict[Step, str] = {
    Step.CLASSIFY: "Analyzing your request...",
    Step.CHAT: "Preparing a reply...",
    Step.GENERATE_CODE: "Generating analysis code...",
    Step.EXECUTE: "Executing code in secure sandbox...",
    Step.SUMMARIZE: "Summarizing the results...",
}


class WorkflowIncomplete(Exception):
    """The workflow reached END without a response."""


@dataclass(frozen=True)
class TurnResult:
    """What one workflow run hands back to the caller."""
    response: str
    mode: Mode
    wants_visualization: bool = False
    execution_result: Optional[ExecutionResult] = None
    generated_code: str = ""

    @property
    def artifacts(self) -> List[str]:
        if self.execution_result is None:
            return []
        return list(self.execution_result.artifacts)

    @classmethod
    def from_state(cls, state: WorkflowState) -> "TurnResult":
        return cls(
            response=state.response,
            mode=state.mode,
            wants_visualization=state.wants_visualization,
            execution_result=state.execution_result,
            generated_code=state.generated_code,
        )


def next_step(step: Step, state: WorkflowState) -> Step:
    """Transition rule, evaluated on the state after *step* has merged."""
    if step is Step.CLASSIFY:
        if state.dataset is None or state.mode is Mode.CHAT:
            return Step.CHAT
        if state.wants_visualization:
            return Step.GENERATE_CODE
        return Step.SUMMARIZE
    if step is Step.GENERATE_CODE:
        return Step.EXECUTE
    if step is Step.EXECUTE:
        return Step.SUMMARIZE
    if step in (Step.CHAT, Step.SUMMARIZE):
        return Step.END
    raise ValueError(f"No transition out of {step.value}")


class AnalysisWorkflow:
    """Runs one turn: classify, then chat or generate → execute → summarize."""

    def __init__(
        self,
        executor: SandboxExecutor,
        code_generator: Optional[CodeGenerator] = None,
        llm: Optional[Any] = None,
    ) -> None:
        self._executor = executor
        self._llm = llm
        self._generator = code_generator or CodeGenerator(llm=llm)
        self._steps: Dict[Step, Callable[[WorkflowState], Awaitable[StateUpdate]]] = {
            Step.CLASSIFY: self._classify,
            Step.CHAT: self._chat,
            Step.GENERATE_CODE: self._generate_code,
            Step.EXECUTE: self._execute,
            Step.SUMMARIZE: self._summarize,
        }

    async def run(
        self,
        session_id: str,
        user_input: str,
        dataset: Optional[DatasetDescriptor] = None,
        chat_history: Sequence[ChatTurn] = (),
        notifier=None,
    ) -> TurnResult:
        """Execute the pipeline for one turn.

        Raises:
            GenerationFailed, SandboxError: fatal step failures.
            WorkflowIncomplete: no response was produced.
        """
        notifier = notifier or NullNotifier()
        state = WorkflowState(
            session_id=session_id,
            user_input=user_input,
            dataset=dataset,
            chat_history=tuple(chat_history),
        )
        run_start = time.time()
        step = Step.CLASSIFY

        while step is not Step.END:
            self._notify(notifier, session_id, STATUS_MESSAGES[step])
            step_start = time.time()
            update = await self._steps[step](state)
            state = state.merge(update)
            logger.info(
                "[workflow:%s] %s done in %.2fs",
                session_id, step.value, time.time() - step_start,
            )
            step = next_step(step, state)

        if not state.response.strip():
            raise WorkflowIncomplete(f"Workflow for session {session_id} produced no response")

        logger.info(
            "[workflow:%s] Turn complete: mode=%s visualization=%s executed=%s in %.2fs",
            session_id, state.mode.value, state.wants_visualization,
            state.execution_result is not None, time.time() - run_start,
        )
        return TurnResult.from_state(state)

    @staticmethod
    def _notify(notifier, session_id: str, message: str) -> None:
        try:
            notifier.notify(message)
        except Exception as exc:
            logger.debug("[workflow:%s] Status notification dropped: %s", session_id, exc)

    # ── Steps ─────────────────────────────────────────────────

    async def _classify(self, state: WorkflowState) -> StateUpdate:
        if state.dataset is None:
            return {"mode": Mode.CHAT, "wants_visualization": False}
        decision = await classify_intent(
            state.user_input, state.chat_history, has_dataset=True, llm=self._llm
        )
        mode = Mode.ANALYSIS if decision.mode == "analysis" else Mode.CHAT
        return {
            "mode": mode,
            "wants_visualization": mode is Mode.ANALYSIS and decision.wants_visualization,
        }

    async def _chat(self, state: WorkflowState) -> StateUpdate:
        reply = await chat_reply(state.user_input, state.dataset, state.chat_history, llm=self._llm)
        return {"response": reply}

    async def _generate_code(self, state: WorkflowState) -> StateUpdate:
        dataset = state.dataset
        code = await self._generator.generate(
            state.user_input, dataset, wants_visualization=state.wants_visualization
        )

        loop = asyncio.get_running_loop()
        try:
            size = os.path.getsize(dataset.path)
            if size > settings.max_dataset_bytes:
                raise GenerationFailed(
                    f"Dataset is {size} bytes, above the {settings.SANDBOX_MAX_DATASET_MB} MB sandbox limit"
                )
            raw = await loop.run_in_executor(None, dataset.read_bytes)
        except OSError as exc:
            raise GenerationFailed(f"Dataset could not be embedded: {exc}") from exc

        script = build_harness_script(code, raw, wants_visualization=state.wants_visualization)
        return {"generated_code": script}

    async def _execute(self, state: WorkflowState) -> StateUpdate:
        result = await self._executor.execute_code(state.generated_code)
        return {"execution_result": result}

    async def _summarize(self, state: WorkflowState) -> StateUpdate:
        response = await summarize_analysis(
            state.user_input,
            state.dataset,
            state.chat_history,
            state.execution_result,
            llm=self._llm,
        )
        return {"response": response}
