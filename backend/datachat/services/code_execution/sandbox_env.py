"""Sandbox environment — pinned packages and the per-run image descriptor.

Every execution gets its own image built from a fixed minimal base plus the
pinned manifest below.  Identical manifests share Docker's layer cache, so
dependencies are fetched once per host, not once per run.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, FrozenSet, List

logger = logging.getLogger(__name__)

# ── Pinned Packages ───────────────────────────────────────────

PINNED_PACKAGES: List[str] = [
    "pandas==2.2.2",
    "numpy==1.26.4",
    "matplotlib==3.8.4",
    "seaborn==0.13.2",
    "scipy==1.13.1",
]

# ── Modules generated code may import ─────────────────────────

APPROVED_MODULES: FrozenSet[str] = frozenset({
    # Analysis stack (pinned above)
    "pandas", "numpy", "matplotlib", "seaborn", "scipy",
    # Standard lib (safe subset)
    "math", "statistics", "random", "datetime", "collections", "itertools",
    "functools", "operator", "string", "re", "json", "decimal", "fractions",
    "textwrap", "typing", "warnings", "io",
})

# ── Run descriptor ────────────────────────────────────────────

SCRIPT_NAME = "script.py"
REQUIREMENTS_NAME = "requirements.txt"
DOCKERFILE_NAME = "Dockerfile"
CONTAINER_WORKDIR = "/app"
IMAGE_PREFIX = "datachat-analysis"
CONTAINER_PREFIX = "execution"

_DOCKERFILE_TEMPLATE = """\
FROM {base_image}
WORKDIR {workdir}
ENV PYTHONUNBUFFERED=1 \\
    PYTHONDONTWRITEBYTECODE=1 \\
    MPLBACKEND=Agg \\
    MPLCONFIGDIR=/tmp/matplotlib \\
    OPENBLAS_NUM_THREADS=2 \\
    OMP_NUM_THREADS=2
COPY {requirements} .
RUN pip install --no-cache-dir --disable-pip-version-check -r {requirements}
COPY {script} .
CMD ["python", "{script}"]
"""


def image_name(execution_id: str) -> str:
    return f"{IMAGE_PREFIX}-{execution_id}"


def container_name(execution_id: str) -> str:
    return f"{CONTAINER_PREFIX}-{execution_id}"


def render_dockerfile(base_image: str) -> str:
    return _DOCKERFILE_TEMPLATE.format(
        base_image=base_image,
        workdir=CONTAINER_WORKDIR,
        requirements=REQUIREMENTS_NAME,
        script=SCRIPT_NAME,
    )


def render_requirements() -> str:
    return "\n".join(PINNED_PACKAGES) + "\n"


def materialize_run(work_dir: str, code: str, base_image: str) -> Dict[str, str]:
    """Write the script and its static run descriptor into *work_dir*.

    Returns a mapping of descriptor file name → absolute path.
    """
    files = {
        SCRIPT_NAME: code,
        REQUIREMENTS_NAME: render_requirements(),
        DOCKERFILE_NAME: render_dockerfile(base_image),
    }
    written: Dict[str, str] = {}
    for name, content in files.items():
        path = os.path.join(work_dir, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        written[name] = path
    logger.debug("[sandbox_env] Materialized run in %s (%d files)", work_dir, len(written))
    return written
