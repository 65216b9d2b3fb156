"""
Shared route utilities — helpers used across multiple route modules.

Centralises path validation and access to the per-application services
created in the lifespan (``app.state``).
"""

from __future__ import annotations

import os

from fastapi import HTTPException, Request

from datachat.services.agent.workflow import AnalysisWorkflow
from datachat.services.code_execution.sandbox import SandboxExecutor
from datachat.services.session_store import SessionStore
from datachat.services.ws_manager import StatusRegistry


# ── Path Safety ───────────────────────────────────────────────


def safe_path(base_dir: str, *parts: str) -> str:
    """Resolve a path and verify it stays under *base_dir*.

    Prevents directory-traversal attacks (e.g. ``../../etc/passwd``).

    Raises:
        HTTPException(400) on traversal attempt.
    """
    full = os.path.realpath(os.path.join(base_dir, *parts))
    base = os.path.realpath(base_dir)
    if not (full == base or full.startswith(base + os.sep)):
        raise HTTPException(status_code=400, detail="Invalid file path")
    return full


# ── Application Services ──────────────────────────────────────


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_status_registry(request: Request) -> StatusRegistry:
    return request.app.state.status_registry


def get_executor(request: Request) -> SandboxExecutor:
    return request.app.state.executor


def get_workflow(request: Request) -> AnalysisWorkflow:
    return request.app.state.workflow


def require_session_id(session_id: str) -> str:
    """Reject blank session ids with 400."""
    session_id = (session_id or "").strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="Invalid session ID")
    return session_id
