"""
Shared pytest fixtures and configuration for the entire test suite.
Applies to all subdirectories: unit/, integration/, api/, e2e/
"""

import sys
import os
import json
import threading
import time
from types import SimpleNamespace

import pytest

# ── Ensure backend is importable from every pytest session ──────────────────
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

# Minimal env so that Pydantic Settings validate on import without warnings
os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ.setdefault("LLM_PROVIDER", "GOOGLE")

from datachat.services.code_execution.harness import (  # noqa: E402
    ERROR_PREFIX,
    FAILURE_MARKER,
    STATUS_FILE,
    SUCCESS_MARKER,
)
from datachat.services.code_execution.runtime import ContainerRuntime  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

SAMPLE_CSV = (
    "name,department,salary,experience,hired\n"
    "Alice,Engineering,95000,7,2018-03-01\n"
    "Bob,Marketing,62000,3,2021-07-15\n"
    "Carol,Engineering,105000,10,2015-01-20\n"
    "Dan,Sales,58000,2,2022-02-11\n"
    "Eve,Sales,71000,5,2019-09-30\n"
)


# ── Fake container runtime ──────────────────────────────────────────────────

class FakeRuntime(ContainerRuntime):
    """In-process stand-in for Docker.

    ``wait`` plays the role of the script: it writes artifacts and the
    status file into the bound working directory, then returns
    ``exit_code``.  With ``hang=True`` it blocks until ``kill`` is called.
    """

    def __init__(
        self,
        output=f"mean salary: 78200.0\n{SUCCESS_MARKER}\n",
        exit_code=0,
        status="completed",
        status_error=None,
        artifacts=("chart.png",),
        hang=False,
        fail_build=False,
        fail_start=False,
        fail_remove=False,
        run_seconds=0.0,
    ):
        self.output = output
        self.exit_code = exit_code
        self.status = status
        self.status_error = status_error
        self.artifacts = artifacts
        self.hang = hang
        self.fail_build = fail_build
        self.fail_start = fail_start
        self.fail_remove = fail_remove
        self.run_seconds = run_seconds

        self.built = []
        self.started = []
        self.killed = []
        self.removed_containers = []
        self.removed_images = []
        self.limits = []
        self.names = []
        self.work_dirs = {}
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()
        self._release = threading.Event()

    def build_image(self, context_dir, tag):
        if self.fail_build:
            raise RuntimeError("build exploded")
        self.built.append(tag)
        return tag

    def start_container(self, image, name, work_dir, limits):
        if self.fail_start:
            raise RuntimeError("daemon refused to start container")
        handle = f"handle-{name}"
        self.started.append(handle)
        self.names.append(name)
        self.limits.append(limits)
        self.work_dirs[handle] = work_dir
        return handle

    def wait(self, handle):
        work_dir = self.work_dirs[handle]
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            for name in self.artifacts:
                with open(os.path.join(work_dir, name), "wb") as f:
                    f.write(PNG_BYTES)
            if self.hang:
                self._release.wait(timeout=10)
                return 137
            if self.run_seconds:
                time.sleep(self.run_seconds)
            if self.status is not None:
                with open(os.path.join(work_dir, STATUS_FILE), "w", encoding="utf-8") as f:
                    json.dump({"protocol": 1, "status": self.status, "error": self.status_error}, f)
            return self.exit_code
        finally:
            with self._lock:
                self._active -= 1

    def logs(self, handle):
        return self.output

    def kill(self, handle):
        self.killed.append(handle)
        self._release.set()

    def remove_container(self, handle):
        self.removed_containers.append(handle)
        if self.fail_remove:
            raise RuntimeError("container removal failed")

    def remove_image(self, tag):
        self.removed_images.append(tag)
        if self.fail_remove:
            raise RuntimeError("image removal failed")

    def ping(self):
        return True


FAILED_OUTPUT = f"{ERROR_PREFIX} name 'undefined_col' is not defined\n{FAILURE_MARKER}\n"


# ── Fake chat model ──────────────────────────────────────────────────────────

def route_by_prompt(intent="", chat="", code="", summary=""):
    """Reply function that picks a canned answer from the prompt template."""
    def _reply(prompt):
        if "intent classifier" in prompt:
            return intent
        if "expert data analyst" in prompt:
            return code
        if "providing insights" in prompt:
            return summary
        return chat
    return _reply


class FakeLLM:
    """Anything with an async ``ainvoke`` works as the model."""

    def __init__(self, replies):
        self._replies = replies
        self.prompts = []

    async def ainvoke(self, prompt):
        self.prompts.append(prompt)
        reply = self._replies(prompt) if callable(self._replies) else self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(content=reply)


@pytest.fixture
def fake_runtime():
    """Factory: ``fake_runtime(**overrides)`` → FakeRuntime."""
    return FakeRuntime


@pytest.fixture
def fake_llm():
    """Factory: ``fake_llm(list_or_callable)`` → FakeLLM."""
    return FakeLLM


@pytest.fixture
def prompt_router():
    return route_by_prompt


@pytest.fixture
def failed_output():
    return FAILED_OUTPUT


# ── Sample dataset ───────────────────────────────────────────────────────────

@pytest.fixture
def sample_csv_text():
    return SAMPLE_CSV


@pytest.fixture
def sample_csv(tmp_path):
    """Write the sample CSV and return its path."""
    path = tmp_path / "employees.csv"
    path.write_text(SAMPLE_CSV, encoding="utf-8")
    return str(path)


@pytest.fixture
def sample_dataset(sample_csv):
    from datachat.services.dataset_service import load_dataset
    return load_dataset(sample_csv, name="employees.csv")


@pytest.fixture
def png_bytes():
    return PNG_BYTES
