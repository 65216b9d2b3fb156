"""Sandbox — container-based Python execution with hard resource limits.

Runs one self-contained script per call in a disposable image:

1. allocate an execution id and a private working directory
2. write the script plus its run descriptor (Dockerfile, pinned manifest)
3. build an image keyed by the execution id
4. run it with no network, a memory ceiling, CPU shares, a pid limit
   and a wall-clock timeout
5. collect combined stdout/stderr (partial output survives a timeout)
6. scan the working directory for image artifacts
7. remove container and image — always, and without ever failing the call
8. strip control characters from the captured output
9. classify the outcome through the harness protocol

Build and run are bounded by a semaphore so a burst of requests cannot
exhaust the host.  Artifacts are addressed as ``<execution_id>/<file>``
relative to the results directory.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from datachat.core.config import settings
from datachat.core.utils import strip_control_chars
from datachat.services.code_execution.harness import classify_completion, read_status_file
from datachat.services.code_execution.runtime import ContainerRuntime, DockerRuntime, ResourceLimits
from datachat.services.code_execution.sandbox_env import container_name, image_name, materialize_run

logger = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────

MAX_OUTPUT_SIZE = 1_000_000  # 1MB max output
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".svg", ".gif")

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,200}$")
_EXECUTION_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class SandboxError(Exception):
    """The sandbox could not produce a result for this run."""


class SandboxConstructionFailed(SandboxError):
    """Working directory, image build or container launch failed."""


class TeardownFailed(SandboxError):
    """Removing a container or image failed (logged, never propagated)."""


@dataclass(frozen=True)
class ExecutionResult:
    """Result from one sandbox execution."""
    execution_id: str
    success: bool
    output: str
    error: Optional[str]
    artifacts: Tuple[str, ...] = ()
    work_dir: str = ""
    timed_out: bool = False
    exit_code: Optional[int] = None
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        # work_dir is a host path and stays server-side
        return {
            "execution_id": self.execution_id,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "artifacts": list(self.artifacts),
            "timed_out": self.timed_out,
            "exit_code": self.exit_code,
            "elapsed_seconds": self.elapsed_seconds,
        }


def is_safe_artifact_name(name: str) -> bool:
    """True if *name* is a plain file name that is safe to expose in a URL."""
    return bool(_SAFE_NAME_RE.match(name)) and ".." not in name


def is_execution_id(value: str) -> bool:
    return bool(_EXECUTION_ID_RE.match(value))


@dataclass
class _RunCapture:
    exit_code: Optional[int] = None
    timed_out: bool = False
    raw_output: str = ""
    artifacts: Tuple[str, ...] = ()
    status: Optional[Dict[str, Any]] = field(default=None)


class SandboxExecutor:
    """Execution engine: one isolated container per ``execute_code`` call."""

    def __init__(
        self,
        runtime: Optional[ContainerRuntime] = None,
        results_dir: Optional[str] = None,
        timeout: Optional[float] = None,
        build_timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        limits: Optional[ResourceLimits] = None,
        base_image: Optional[str] = None,
    ) -> None:
        self._runtime = runtime or DockerRuntime()
        self._results_dir = results_dir or settings.RESULTS_DIR
        self._timeout = timeout or settings.CODE_EXECUTION_TIMEOUT
        self._build_timeout = build_timeout or settings.SANDBOX_BUILD_TIMEOUT
        self._limits = limits or ResourceLimits(
            memory=settings.SANDBOX_MEMORY_LIMIT,
            cpu_shares=settings.SANDBOX_CPU_SHARES,
            pids_limit=settings.SANDBOX_PIDS_LIMIT,
        )
        self._base_image = base_image or settings.SANDBOX_BASE_IMAGE
        self._slots = asyncio.Semaphore(max_concurrency or settings.SANDBOX_MAX_CONCURRENCY)

    @property
    def runtime(self) -> ContainerRuntime:
        return self._runtime

    @property
    def results_dir(self) -> str:
        return self._results_dir

    async def execute_code(self, code: str) -> ExecutionResult:
        """Run *code* in a fresh sandbox and return its result.

        Raises:
            SandboxConstructionFailed: the environment could not be built or
                launched (nothing partial is meaningful in that case).
            SandboxError: the run handle could not be awaited or read.

        A timeout or a failing script is reported in the returned
        ``ExecutionResult`` (``success=False``), not raised.
        """
        execution_id = uuid.uuid4().hex
        work_dir = os.path.join(self._results_dir, execution_id)
        tag = image_name(execution_id)
        handle: Optional[str] = None
        start_time = time.time()

        logger.info("[%s] Executing code (%d chars)", execution_id, len(code))

        discard_work_dir = False
        async with self._slots:
            try:
                handle = await self._construct(execution_id, work_dir, code, tag)
                try:
                    capture = await self._run(execution_id, handle)
                except SandboxError:
                    discard_work_dir = True
                    raise
                capture.artifacts = self._scan_artifacts(execution_id, work_dir)
                if not capture.timed_out:
                    capture.status = read_status_file(work_dir)
            finally:
                await self._teardown(execution_id, tag, handle)
                if discard_work_dir:
                    shutil.rmtree(work_dir, ignore_errors=True)

        elapsed = round(time.time() - start_time, 2)
        output = strip_control_chars(capture.raw_output)[:MAX_OUTPUT_SIZE]

        if capture.timed_out:
            completion = classify_completion(output)
            result = ExecutionResult(
                execution_id=execution_id,
                success=False,
                output=completion.output,
                error=f"Execution timeout: run exceeded the {self._timeout}s wall-clock limit",
                artifacts=capture.artifacts,
                work_dir=work_dir,
                timed_out=True,
                elapsed_seconds=elapsed,
            )
        else:
            completion = classify_completion(output, capture.status, capture.exit_code)
            result = ExecutionResult(
                execution_id=execution_id,
                success=completion.success,
                output=completion.output,
                error=completion.error,
                artifacts=capture.artifacts,
                work_dir=work_dir,
                exit_code=capture.exit_code,
                elapsed_seconds=elapsed,
            )

        logger.info(
            "[%s] Execution complete: success=%s, exit=%s, timeout=%s, "
            "elapsed=%ss, artifacts=%d",
            execution_id, result.success, result.exit_code, result.timed_out,
            elapsed, len(result.artifacts),
        )
        return result

    # ── Steps ─────────────────────────────────────────────────

    async def _construct(self, execution_id: str, work_dir: str, code: str, tag: str) -> str:
        """Materialize the run, build the image and launch the container."""
        created = False
        build: Optional[asyncio.Future] = None
        try:
            os.makedirs(work_dir)
            created = True
            materialize_run(work_dir, code, self._base_image)
            build = asyncio.get_running_loop().run_in_executor(
                None, self._runtime.build_image, work_dir, tag
            )
            # shielded: a build thread cannot be stopped, only waited for
            await asyncio.wait_for(asyncio.shield(build), timeout=self._build_timeout)
            return await self._call(
                self._runtime.start_container,
                tag,
                container_name(execution_id),
                work_dir,
                self._limits,
            )
        except asyncio.TimeoutError:
            logger.error("[%s] Image build exceeded %ss", execution_id, self._build_timeout)
            if build is not None:
                await self._settle_build(execution_id, build)
            if created:
                shutil.rmtree(work_dir, ignore_errors=True)
            raise SandboxConstructionFailed(
                f"Sandbox image build exceeded {self._build_timeout}s"
            ) from None
        except Exception as exc:
            logger.error("[%s] Sandbox construction failed: %s", execution_id, exc)
            if created:
                shutil.rmtree(work_dir, ignore_errors=True)
            raise SandboxConstructionFailed(f"Sandbox construction failed: {exc}") from exc

    async def _settle_build(self, execution_id: str, build: asyncio.Future) -> None:
        """Wait for a build that overran its limit to finish.

        Only then may the build context be deleted, and only then does
        teardown find the image it has to remove.
        """
        try:
            await build
        except Exception as exc:
            logger.warning("[%s] Abandoned image build failed: %s", execution_id, exc)
        else:
            logger.info("[%s] Abandoned image build finished; removing it", execution_id)

    async def _run(self, execution_id: str, handle: str) -> _RunCapture:
        """Wait for the container under the wall-clock limit and collect logs."""
        capture = _RunCapture()
        try:
            capture.exit_code = await asyncio.wait_for(
                self._call(self._runtime.wait, handle),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            capture.timed_out = True
            logger.warning(
                "[%s] Execution timed out after %ss — killing container",
                execution_id, self._timeout,
            )
            try:
                await self._call(self._runtime.kill, handle)
            except Exception as exc:
                logger.warning("[%s] Kill after timeout failed: %s", execution_id, exc)
        except Exception as exc:
            raise SandboxError(f"Sandbox run failed: {exc}") from exc

        try:
            capture.raw_output = await self._call(self._runtime.logs, handle)
        except Exception as exc:
            if not capture.timed_out:
                raise SandboxError(f"Could not read sandbox output: {exc}") from exc
            logger.warning("[%s] No output recovered after timeout: %s", execution_id, exc)
        return capture

    def _scan_artifacts(self, execution_id: str, work_dir: str) -> Tuple[str, ...]:
        """List produced image files as ``<execution_id>/<name>`` paths."""
        entries: List[Tuple[float, str]] = []
        for name in os.listdir(work_dir):
            if not name.lower().endswith(IMAGE_EXTENSIONS):
                continue
            path = os.path.join(work_dir, name)
            if not is_safe_artifact_name(name) or os.path.islink(path) or not os.path.isfile(path):
                logger.warning("[%s] Skipping unsafe artifact %r", execution_id, name)
                continue
            entries.append((os.path.getmtime(path), name))
        return tuple(f"{execution_id}/{name}" for _, name in sorted(entries))

    async def _teardown(self, execution_id: str, tag: str, handle: Optional[str]) -> None:
        """Remove the run handle and image; failures are logged only."""
        if handle is not None:
            try:
                await self._remove(self._runtime.remove_container, handle, "container")
            except TeardownFailed as exc:
                logger.warning("[%s] %s", execution_id, exc)
        try:
            await self._remove(self._runtime.remove_image, tag, "image")
        except TeardownFailed as exc:
            logger.warning("[%s] %s", execution_id, exc)
        logger.debug("[%s] Teardown complete", execution_id)

    async def _remove(self, fn: Callable[[str], None], target: str, kind: str) -> None:
        try:
            await self._call(fn, target)
        except Exception as exc:
            raise TeardownFailed(f"Failed to remove {kind} {target}: {exc}") from exc

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))


# ── Housekeeping ──────────────────────────────────────────────


def purge_expired_results(results_dir: str, max_age_seconds: float) -> int:
    """Delete execution directories older than *max_age_seconds*.

    Only directories named like an execution id are touched.
    Returns the number of directories removed.
    """
    if not os.path.isdir(results_dir):
        return 0
    cutoff = time.time() - max_age_seconds
    removed = 0
    for name in os.listdir(results_dir):
        path = os.path.join(results_dir, name)
        if not is_execution_id(name) or not os.path.isdir(path):
            continue
        if os.path.getmtime(path) < cutoff:
            shutil.rmtree(path, ignore_errors=True)
            removed += 1
    if removed:
        logger.info("Purged %d expired result directories", removed)
    return removed
