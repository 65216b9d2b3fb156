"""Health check endpoint.

Checks system component availability:
- Container runtime (Docker daemon)
- LLM provider configuration
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from datachat.core.config import settings
from datachat.services.code_execution.sandbox import SandboxExecutor
from datachat.services.session_store import SessionStore
from datachat.services.ws_manager import StatusRegistry
from .utils import get_executor, get_session_store, get_status_registry

logger = logging.getLogger(__name__)
router = APIRouter()


def _llm_status() -> str:
    if settings.LLM_PROVIDER == "GOOGLE":
        return "ok" if settings.GOOGLE_API_KEY else "warning"
    if settings.LLM_PROVIDER == "NVIDIA":
        return "ok" if settings.NVIDIA_API_KEY else "warning"
    # Local providers (Ollama) are assumed reachable
    return "ok"


@router.get("/health")
async def health_check(
    executor: SandboxExecutor = Depends(get_executor),
    store: SessionStore = Depends(get_session_store),
    registry: StatusRegistry = Depends(get_status_registry),
):
    """Health check endpoint - verify system components.

    Returns:
        JSON with status of each component
    """
    health_status = {
        "container_runtime": "unknown",
        "llm": _llm_status(),
        "overall": "unknown",
    }

    try:
        loop = asyncio.get_running_loop()
        reachable = await loop.run_in_executor(None, executor.runtime.ping)
        health_status["container_runtime"] = "ok" if reachable else "error"
    except Exception as e:
        health_status["container_runtime"] = "error"
        logger.error("Container runtime health check failed: %s", e)

    if health_status["container_runtime"] == "error":
        health_status["overall"] = "unhealthy"
        status_code = 503
    elif health_status["llm"] == "ok":
        health_status["overall"] = "healthy"
        status_code = 200
    else:
        health_status["overall"] = "degraded"
        status_code = 200

    health_status["sessions"] = len(store)
    health_status.update(registry.stats())

    return JSONResponse(content=health_status, status_code=status_code)


@router.get("/health/simple")
async def simple_health_check():
    """Simple health check - just returns 200 OK."""
    return {"status": "ok"}
