"""Execution harness — the contract between generated scripts and the engine.

Protocol version 1
------------------
The harness wraps sanitized analysis code into a self-contained script:

1. Prelude imports the approved analysis libraries, forces the ``Agg``
   matplotlib backend, replaces ``plt.show`` with a PNG saver, and decodes
   the dataset from an embedded base64 copy into ``df``.
2. The analysis code runs inside ``try:``.
3. On an exception the script prints ``Error during execution: <message>``
   followed by :data:`FAILURE_MARKER`.  Otherwise it saves any figures still
   open (visualization runs only) and prints :data:`SUCCESS_MARKER`.
   The marker is always the last line the harness prints.
4. Before printing the marker the harness writes :data:`STATUS_FILE`
   (``{"protocol": 1, "status": "completed"|"failed", "error": ...}``)
   into the working directory.  This out-of-band record is what the engine
   trusts first; the stdout marker is the fallback.

:func:`classify_completion` is the single place where that contract is
parsed.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import textwrap
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1

SUCCESS_MARKER = "=== EXECUTION_COMPLETED_SUCCESSFULLY ==="
FAILURE_MARKER = "=== EXECUTION_FAILED ==="
ERROR_PREFIX = "Error during execution:"
STATUS_FILE = "_execution_status.json"

_MARKERS = (SUCCESS_MARKER, FAILURE_MARKER)
_TRACEBACK_LINE_RE = re.compile(r"^\s*([A-Za-z_][\w.]*(Error|Exception|Exit|Interrupt))\b.*$")


_HARNESS_TEMPLATE = '''\
import base64
import io
import json
import warnings

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

warnings.filterwarnings("ignore")
plt.style.use("default")
sns.set_palette("husl")

_saved_figures = [0]


def _save_open_figures(*args, **kwargs):
    for _num in plt.get_fignums():
        _saved_figures[0] += 1
        plt.figure(_num).savefig(f"figure_{{_saved_figures[0]}}.png", dpi=100, bbox_inches="tight")
    plt.close("all")


plt.show = _save_open_figures


def _write_status(status, error=None):
    with open({status_file!r}, "w", encoding="utf-8") as _fh:
        json.dump({{"protocol": {protocol}, "status": status, "error": error}}, _fh)


# Load dataset from the embedded copy
_DATASET = base64.b64decode("{dataset_b64}")
df = pd.read_csv(io.BytesIO(_DATASET))

try:
{body}
{save_figures}
except Exception as _exc:
    print(f"{error_prefix} {{_exc}}", flush=True)
    _write_status("failed", str(_exc))
    print({failure!r}, flush=True)
else:
    _write_status("completed")
    print({success!r}, flush=True)
'''


def build_harness_script(code: str, dataset: bytes, wants_visualization: bool = False) -> str:
    """Wrap sanitized *code* in the protocol-v1 harness.

    Args:
        code: Sanitized analysis code operating on ``df``.
        dataset: Raw CSV bytes embedded into the script.
        wants_visualization: Save figures left open at the end of the run.

    Returns:
        Complete, self-contained Python source.
    """
    body = textwrap.indent(code.strip() or "pass", "    ")
    save_figures = "    _save_open_figures()" if wants_visualization else "    pass"
    return _HARNESS_TEMPLATE.format(
        status_file=STATUS_FILE,
        protocol=PROTOCOL_VERSION,
        dataset_b64=base64.b64encode(dataset).decode("ascii"),
        body=body,
        save_figures=save_figures,
        error_prefix=ERROR_PREFIX,
        failure=FAILURE_MARKER,
        success=SUCCESS_MARKER,
    )


# ── Completion parsing ────────────────────────────────────────


@dataclass(frozen=True)
class Completion:
    """Outcome of one run as read from the protocol signals."""
    success: bool
    error: Optional[str]
    output: str     # captured output with marker lines removed


def read_status_file(work_dir: str) -> Optional[Dict[str, Any]]:
    """Load the out-of-band status record, or None if absent/unreadable."""
    path = os.path.join(work_dir, STATUS_FILE)
    if not os.path.isfile(path):
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable status file %s: %s", path, exc)
        return None
    if not isinstance(data, dict) or data.get("protocol") != PROTOCOL_VERSION:
        logger.warning("Ignoring status file with unexpected shape: %r", data)
        return None
    return data


def _last_marker(lines) -> Optional[str]:
    for line in reversed(lines):
        stripped = line.strip()
        if stripped in _MARKERS:
            return stripped
    return None


def _extract_error(output: str) -> Optional[str]:
    """Text between the last error prefix and the failure marker."""
    end = output.rfind(FAILURE_MARKER)
    if end == -1:
        return None
    start = output.rfind(ERROR_PREFIX, 0, end)
    if start == -1:
        return None
    message = output[start + len(ERROR_PREFIX):end].strip()
    return message or None


def _last_traceback_line(lines) -> Optional[str]:
    for line in reversed(lines):
        if _TRACEBACK_LINE_RE.match(line):
            return line.strip()
    return None


def classify_completion(
    output: str,
    status: Optional[Dict[str, Any]] = None,
    exit_code: Optional[int] = None,
) -> Completion:
    """Decide success/error for a finished (non-timed-out) run.

    The status file wins when present; otherwise only the final marker line
    counts, so marker text printed earlier by analysis code is ignored.
    A failed completion always carries a non-null error.
    """
    lines = output.splitlines()
    marker = _last_marker(lines)
    cleaned = "\n".join(l for l in lines if l.strip() not in _MARKERS).strip()

    stdout_error = _extract_error(output) if marker == FAILURE_MARKER else None

    if status is not None:
        completed = status.get("status") == "completed"
        if marker is not None and (marker == SUCCESS_MARKER) != completed:
            return Completion(
                success=False,
                error=(
                    "Ambiguous completion signal: status file reports "
                    f"{status.get('status')!r} but output ends with {marker!r}"
                ),
                output=cleaned,
            )
        if completed:
            return Completion(success=True, error=None, output=cleaned)
        error = status.get("error") or stdout_error or "Analysis code raised an error"
        return Completion(success=False, error=str(error), output=cleaned)

    if marker == SUCCESS_MARKER:
        return Completion(success=True, error=None, output=cleaned)

    if marker == FAILURE_MARKER:
        return Completion(
            success=False,
            error=stdout_error or "Analysis code raised an error",
            output=cleaned,
        )

    # No completion signal: the script died before reaching a marker
    detail = _last_traceback_line(lines)
    if detail is None:
        detail = (
            f"Process exited with status {exit_code} without signalling completion"
            if exit_code is not None
            else "Run ended without signalling completion"
        )
    return Completion(success=False, error=detail, output=cleaned)
