"""
End-to-end tests for one chat turn through the analysis workflow
(datachat/services/agent/workflow.py)
Classify → Chat | GenerateCode → Execute → Summarize, with a fake chat model
and a fake container runtime standing in for the provider and Docker.
"""

import pytest

from datachat.services.agent.state import Mode, WorkflowState
from datachat.services.agent.synthesizer import SUGGESTIONS, SUMMARY_HEADER
from datachat.services.agent.workflow import (
    STATUS_MESSAGES,
    AnalysisWorkflow,
    Step,
    WorkflowIncomplete,
    next_step,
)
from datachat.services.code_execution.generator import GenerationFailed
from datachat.services.code_execution.harness import SUCCESS_MARKER
from datachat.services.code_execution.sandbox import SandboxExecutor

HIST_CODE = (
    "```python\n"
    "import matplotlib.pyplot as plt\n"
    "df['salary'].plot.hist()\n"
    "plt.savefig('salary_hist.png')\n"
    "```"
)


class RecordingNotifier:
    def __init__(self, fail=False):
        self.messages = []
        self.fail = fail

    def notify(self, message):
        self.messages.append(message)
        if self.fail:
            raise RuntimeError("socket closed")


def _workflow(fake_runtime, fake_llm, tmp_path, replies, **runtime_kwargs):
    runtime = fake_runtime(**runtime_kwargs)
    executor = SandboxExecutor(runtime=runtime, results_dir=str(tmp_path / "results"), timeout=5, build_timeout=5)
    llm = fake_llm(replies)
    return AnalysisWorkflow(executor=executor, llm=llm), runtime, llm


# ── Transition table ──────────────────────────────────────────────────────────

class TestNextStep:

    def test_chat_when_no_dataset(self):
        state = WorkflowState(session_id="s", user_input="x", mode=Mode.ANALYSIS, wants_visualization=True)
        assert next_step(Step.CLASSIFY, state) is Step.CHAT

    def test_analysis_with_chart_generates_code(self, sample_dataset):
        state = WorkflowState(
            session_id="s", user_input="x", dataset=sample_dataset,
            mode=Mode.ANALYSIS, wants_visualization=True,
        )
        assert next_step(Step.CLASSIFY, state) is Step.GENERATE_CODE

    def test_analysis_without_chart_summarizes(self, sample_dataset):
        state = WorkflowState(session_id="s", user_input="x", dataset=sample_dataset, mode=Mode.ANALYSIS)
        assert next_step(Step.CLASSIFY, state) is Step.SUMMARIZE

    def test_linear_tail(self):
        state = WorkflowState(session_id="s", user_input="x")
        assert next_step(Step.GENERATE_CODE, state) is Step.EXECUTE
        assert next_step(Step.EXECUTE, state) is Step.SUMMARIZE
        assert next_step(Step.SUMMARIZE, state) is Step.END
        assert next_step(Step.CHAT, state) is Step.END


# ── Scenario A: chart request runs code ───────────────────────────────────────

@pytest.mark.asyncio
async def test_histogram_request_executes_and_summarizes(
    fake_runtime, fake_llm, prompt_router, sample_dataset, tmp_path
):
    workflow, runtime, llm = _workflow(
        fake_runtime, fake_llm, tmp_path,
        prompt_router(
            intent='{"mode": "analysis", "wantsVisualization": true}',
            code=HIST_CODE,
            summary="Salaries cluster between 60k and 100k.",
        ),
        artifacts=("salary_hist.png",),
    )
    notifier = RecordingNotifier()

    result = await workflow.run("s1", "plot a histogram of salary", sample_dataset, [], notifier)

    assert result.mode is Mode.ANALYSIS
    assert result.wants_visualization is True
    assert result.execution_result is not None and result.execution_result.success
    exec_id = result.execution_result.execution_id
    assert result.artifacts == [f"{exec_id}/salary_hist.png"]
    assert result.response.startswith(f"{SUMMARY_HEADER}\nSalaries cluster")
    assert result.response.endswith(SUGGESTIONS)
    # Dataset embedded in the harness, not read from disk inside the container
    assert "df = pd.read_csv(io.BytesIO(_DATASET))" in result.generated_code
    assert notifier.messages == [
        STATUS_MESSAGES[Step.CLASSIFY],
        STATUS_MESSAGES[Step.GENERATE_CODE],
        STATUS_MESSAGES[Step.EXECUTE],
        STATUS_MESSAGES[Step.SUMMARIZE],
    ]
    assert len(runtime.started) == 1


# ── Scenario B: analysis without chart skips execution ────────────────────────

@pytest.mark.asyncio
async def test_trend_summary_skips_execution(
    fake_runtime, fake_llm, prompt_router, sample_dataset, tmp_path
):
    workflow, runtime, llm = _workflow(
        fake_runtime, fake_llm, tmp_path,
        prompt_router(
            intent='{"mode": "analysis", "wantsVisualization": false}',
            summary="Engineering has the highest salaries.",
        ),
    )
    result = await workflow.run("s1", "summarize the key trends", sample_dataset)

    assert result.mode is Mode.ANALYSIS
    assert result.execution_result is None
    assert result.artifacts == []
    assert runtime.started == []
    assert "Engineering has the highest salaries." in result.response


# ── Scenario C: no dataset means a single chat call ───────────────────────────

@pytest.mark.asyncio
async def test_no_dataset_single_chat_call(fake_runtime, fake_llm, tmp_path):
    workflow, runtime, llm = _workflow(
        fake_runtime, fake_llm, tmp_path, ["Hi! Upload a CSV to get started."]
    )
    notifier = RecordingNotifier()
    result = await workflow.run("s1", "hello", None, [], notifier)

    assert result.mode is Mode.CHAT
    assert result.response == "Hi! Upload a CSV to get started."
    assert len(llm.prompts) == 1
    assert runtime.started == []
    assert notifier.messages == [STATUS_MESSAGES[Step.CLASSIFY], STATUS_MESSAGES[Step.CHAT]]


@pytest.mark.asyncio
async def test_no_dataset_never_runs_code_even_for_chart_words(fake_runtime, fake_llm, tmp_path):
    workflow, runtime, llm = _workflow(fake_runtime, fake_llm, tmp_path, ["Please upload a CSV first."])
    result = await workflow.run("s1", "plot a histogram of salary")
    assert result.mode is Mode.CHAT
    assert runtime.started == []


# ── Scenario D: script raises inside the harness ──────────────────────────────

@pytest.mark.asyncio
async def test_script_failure_still_summarized(
    fake_runtime, fake_llm, prompt_router, failed_output, sample_dataset, tmp_path
):
    workflow, runtime, llm = _workflow(
        fake_runtime, fake_llm, tmp_path,
        prompt_router(
            intent='{"mode": "analysis", "wantsVisualization": true}',
            code=HIST_CODE,
            summary="The requested column does not exist.",
        ),
        output=failed_output,
        status="failed",
        status_error="name 'undefined_col' is not defined",
        artifacts=("partial.png",),
    )
    result = await workflow.run("s1", "plot undefined_col", sample_dataset)

    er = result.execution_result
    assert er.success is False
    assert "undefined_col" in er.error
    assert er.artifacts == (f"{er.execution_id}/partial.png",)
    summary_prompt = llm.prompts[-1]
    assert "did not complete successfully" in summary_prompt
    assert result.response.startswith(SUMMARY_HEADER)


# ── Degraded paths ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_classifier_failure_uses_keyword_rule(
    fake_runtime, fake_llm, prompt_router, sample_dataset, tmp_path
):
    workflow, runtime, llm = _workflow(
        fake_runtime, fake_llm, tmp_path,
        prompt_router(intent="no idea", code=HIST_CODE, summary="Done."),
    )
    result = await workflow.run("s1", "draw a scatter of salary vs experience", sample_dataset)
    assert result.mode is Mode.ANALYSIS
    assert result.wants_visualization is True
    assert len(runtime.started) == 1


@pytest.mark.asyncio
async def test_unusable_code_fails_the_turn(
    fake_runtime, fake_llm, prompt_router, sample_dataset, tmp_path
):
    workflow, runtime, llm = _workflow(
        fake_runtime, fake_llm, tmp_path,
        prompt_router(
            intent='{"mode": "analysis", "wantsVisualization": true}',
            code="```python\nimport os\nos.system('rm -rf /')\n```",
        ),
    )
    with pytest.raises(GenerationFailed):
        await workflow.run("s1", "plot salary", sample_dataset)
    assert runtime.started == []


@pytest.mark.asyncio
async def test_chat_failure_propagates(fake_runtime, fake_llm, tmp_path):
    workflow, runtime, llm = _workflow(fake_runtime, fake_llm, tmp_path, [RuntimeError("provider down")])
    with pytest.raises(RuntimeError):
        await workflow.run("s1", "hello")


@pytest.mark.asyncio
async def test_blank_chat_reply_is_incomplete(fake_runtime, fake_llm, tmp_path):
    workflow, runtime, llm = _workflow(fake_runtime, fake_llm, tmp_path, ["   "])
    with pytest.raises(WorkflowIncomplete):
        await workflow.run("s1", "hello")


@pytest.mark.asyncio
async def test_notifier_errors_do_not_affect_the_turn(fake_runtime, fake_llm, tmp_path):
    workflow, runtime, llm = _workflow(fake_runtime, fake_llm, tmp_path, ["Hello!"])
    notifier = RecordingNotifier(fail=True)
    result = await workflow.run("s1", "hello", None, [], notifier)
    assert result.response == "Hello!"
    assert len(notifier.messages) == 2


@pytest.mark.asyncio
async def test_success_marker_in_summary_prompt_only_via_output(
    fake_runtime, fake_llm, prompt_router, sample_dataset, tmp_path
):
    workflow, runtime, llm = _workflow(
        fake_runtime, fake_llm, tmp_path,
        prompt_router(
            intent='{"mode": "analysis", "wantsVisualization": true}',
            code=HIST_CODE,
            summary="ok",
        ),
        output=f"median: 71000\n{SUCCESS_MARKER}\n",
    )
    await workflow.run("s1", "chart the median salary", sample_dataset)
    summary_prompt = llm.prompts[-1]
    assert "median: 71000" in summary_prompt
    assert SUCCESS_MARKER not in summary_prompt
