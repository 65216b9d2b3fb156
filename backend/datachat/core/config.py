"""
Centralized application configuration.

Uses pydantic BaseSettings for automatic env-var loading and validation.
Import the singleton ``settings`` instance throughout the app.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

# Relative paths resolve from the project root
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))


class Settings(BaseSettings):
    """Application settings — validated from environment variables."""

    # ── Environment ────────────────────────────────────────
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False

    # ── File Storage ──────────────────────────────────────
    UPLOAD_DIR: str = "./data/uploads"
    RESULTS_DIR: str = "./data/results"
    MAX_UPLOAD_SIZE_MB: int = 25
    MAX_DATASET_ROWS: int = 1000

    # ── CORS ──────────────────────────────────────────────
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v):
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    # ── LLM ───────────────────────────────────────────────
    LLM_PROVIDER: str = "GOOGLE"  # GOOGLE, OLLAMA or NVIDIA
    GOOGLE_MODEL: str = "gemini-2.5-flash"
    GOOGLE_API_KEY: str = ""
    OLLAMA_MODEL: str = "llama3"
    NVIDIA_MODEL: str = "meta/llama-3.1-70b-instruct"
    NVIDIA_API_KEY: str = ""
    LLM_TIMEOUT: int = 120

    # ── LLM Generation Control ───────────────────────────
    LLM_TEMPERATURE_STRUCTURED: float = 0.0
    LLM_TEMPERATURE_CHAT: float = 0.4
    LLM_TEMPERATURE_CODE: float = 0.1
    LLM_TOP_P: float = 0.95
    LLM_MAX_TOKENS: int = 4000

    # ── Conversation ──────────────────────────────────────
    CHAT_HISTORY_LIMIT: int = 10
    CLASSIFIER_HISTORY_TURNS: int = 4
    SUMMARY_MAX_ROWS: int = 1000
    MAX_MESSAGE_LENGTH: int = 1000

    # ── Code Execution Sandbox ────────────────────────────
    SANDBOX_BASE_IMAGE: str = "python:3.11-slim"
    SANDBOX_MEMORY_LIMIT: str = "512m"
    SANDBOX_CPU_SHARES: int = 512
    SANDBOX_PIDS_LIMIT: int = 128
    SANDBOX_BUILD_TIMEOUT: int = 300
    SANDBOX_MAX_CONCURRENCY: int = 2
    SANDBOX_MAX_DATASET_MB: int = 20
    CODE_EXECUTION_TIMEOUT: int = 60

    # ── Housekeeping ──────────────────────────────────────
    SESSION_TIMEOUT_MINUTES: int = 30
    SESSION_CLEANUP_INTERVAL_SECONDS: int = 300
    RESULTS_RETENTION_HOURS: int = 24

    @field_validator("LLM_PROVIDER", mode="after")
    @classmethod
    def _uppercase_provider(cls, v: str) -> str:
        v = v.upper()
        valid = {"GOOGLE", "OLLAMA", "NVIDIA"}
        if v not in valid:
            raise ValueError(f"LLM_PROVIDER must be one of {valid}, got {v!r}")
        return v

    @field_validator(
        "CODE_EXECUTION_TIMEOUT",
        "SANDBOX_BUILD_TIMEOUT",
        "SANDBOX_MAX_CONCURRENCY",
        "SANDBOX_CPU_SHARES",
        "CHAT_HISTORY_LIMIT",
        "MAX_UPLOAD_SIZE_MB",
        mode="after",
    )
    @classmethod
    def _positive(cls, v: int, info) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def _resolve_paths_and_cross_validate(self):
        """Resolve relative paths to absolute & cross-validate provider keys."""
        for attr in ("UPLOAD_DIR", "RESULTS_DIR"):
            val = getattr(self, attr)
            if val and not os.path.isabs(val):
                object.__setattr__(self, attr, os.path.join(_PROJECT_ROOT, val))

        _log = logging.getLogger("config")
        if self.LLM_PROVIDER == "GOOGLE" and not self.GOOGLE_API_KEY:
            _log.warning("LLM_PROVIDER is GOOGLE but GOOGLE_API_KEY is empty")
        if self.LLM_PROVIDER == "NVIDIA" and not self.NVIDIA_API_KEY:
            _log.warning("LLM_PROVIDER is NVIDIA but NVIDIA_API_KEY is empty")

        return self

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def max_dataset_bytes(self) -> int:
        return self.SANDBOX_MAX_DATASET_MB * 1024 * 1024

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
