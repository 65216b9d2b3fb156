"""LLM provider factory with timeout and token limits.

Usage:
    from datachat.services.llm_service.llm import get_llm, generate_text

    # Conversational replies and summaries
    llm = get_llm()

    # Classifier JSON (deterministic) or analysis code
    llm = get_llm(mode="structured")
    llm = get_llm(mode="code")

    text = await generate_text(prompt, mode="chat")
"""

from __future__ import annotations

import logging
import time
import warnings
from typing import Any, Callable, Dict, Optional

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_nvidia_ai_endpoints import ChatNVIDIA
from langchain_ollama import ChatOllama

from datachat.core.config import settings

logger = logging.getLogger(__name__)

# Suppress warnings
warnings.simplefilter("ignore", UserWarning)

# ── Provider registry ─────────────────────────────────────────

_PROVIDERS: Dict[str, Callable[..., Any]] = {}

# ── LLM instance cache (keyed on frozen kwargs) ───────────────
_llm_cache: Dict[tuple, Any] = {}
_LLM_CACHE_MAX = 16


def _register_providers():
    """Build the provider map lazily (called once on first ``get_llm``)."""
    if _PROVIDERS:
        return

    _PROVIDERS["OLLAMA"] = _build_ollama
    _PROVIDERS["GOOGLE"] = _build_google
    _PROVIDERS["NVIDIA"] = _build_nvidia


# ── Builder functions ─────────────────────────────────────────


def _common_kwargs(temperature: float, top_p: Optional[float], max_tokens: Optional[int]) -> dict:
    """Shared kwargs for all providers with explicit generation control."""
    kwargs = {
        "temperature": temperature,
        "timeout": settings.LLM_TIMEOUT,
    }
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    if top_p is not None:
        kwargs["top_p"] = top_p
    return kwargs


def _build_ollama(temperature: float, top_p: Optional[float] = None, max_tokens: Optional[int] = None):
    kw = _common_kwargs(temperature, top_p, max_tokens)
    # ChatOllama names the output cap num_predict
    kw["num_predict"] = kw.pop("max_tokens", None)
    kw.pop("timeout", None)
    kw["model"] = settings.OLLAMA_MODEL
    return ChatOllama(**kw)


def _build_google(temperature: float, top_p: Optional[float] = None, max_tokens: Optional[int] = None):
    kw = _common_kwargs(temperature, top_p, max_tokens)
    kw.update(
        model=settings.GOOGLE_MODEL,
        google_api_key=settings.GOOGLE_API_KEY,
    )
    return ChatGoogleGenerativeAI(**kw)


def _build_nvidia(temperature: float, top_p: Optional[float] = None, max_tokens: Optional[int] = None):
    kw = _common_kwargs(temperature, top_p, max_tokens)
    kw.pop("timeout", None)
    kw.update(
        model=settings.NVIDIA_MODEL,
        api_key=settings.NVIDIA_API_KEY,
        model_kwargs={"chat_template_kwargs": {"thinking": False}},  # disable 'thinking'
    )
    return ChatNVIDIA(**kw)


# ── Public API ────────────────────────────────────────────────


def get_llm(
    mode: str = "chat",
    temperature: Optional[float] = None,
    provider: Optional[str] = None,
):
    """Return a LangChain chat model with tiered temperature.

    Args:
        mode: Temperature tier — "chat" (replies and summaries),
              "structured" (classifier JSON), "code" (analysis code).
              Only used when temperature is not explicitly set.
        temperature: Explicit override for generation temperature.
        provider: Override the configured provider.
    """
    _register_providers()

    _TEMP_MAP = {
        "chat": settings.LLM_TEMPERATURE_CHAT,
        "structured": settings.LLM_TEMPERATURE_STRUCTURED,
        "code": settings.LLM_TEMPERATURE_CODE,
    }

    temp = temperature if temperature is not None else _TEMP_MAP.get(mode, settings.LLM_TEMPERATURE_CHAT)
    active_provider = (provider or settings.LLM_PROVIDER).upper()

    builder = _PROVIDERS.get(active_provider)
    if builder is None:
        logger.warning("Unknown LLM_PROVIDER '%s', falling back to GOOGLE", active_provider)
        active_provider = "GOOGLE"
        builder = _PROVIDERS["GOOGLE"]

    cache_key = (active_provider, temp, settings.LLM_TOP_P, settings.LLM_MAX_TOKENS)
    cached = _llm_cache.get(cache_key)
    if cached is not None:
        return cached

    instance = builder(temperature=temp, top_p=settings.LLM_TOP_P, max_tokens=settings.LLM_MAX_TOKENS)
    if len(_llm_cache) >= _LLM_CACHE_MAX:
        _llm_cache.pop(next(iter(_llm_cache)))
    _llm_cache[cache_key] = instance
    return instance


async def generate_text(prompt: str, mode: str = "chat", llm: Optional[Any] = None) -> str:
    """Send one prompt and return the reply text.

    Errors from the provider propagate unchanged; callers decide whether a
    failure is fatal for the turn or has a local fallback.
    """
    model = llm if llm is not None else get_llm(mode=mode)
    start_time = time.time()
    response = await model.ainvoke(prompt)
    text = getattr(response, "content", str(response))
    if isinstance(text, list):
        # Some providers return content parts
        text = "".join(p.get("text", "") if isinstance(p, dict) else str(p) for p in text)
    logger.debug("LLM %s call took %.2fs (%d chars)", mode, time.time() - start_time, len(text))
    return text.strip()
