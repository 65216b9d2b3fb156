"""
Unit tests for backend/datachat/core/config.py
Tests: Settings defaults, field validators (CORS parsing, provider, positive
limits), path resolution, derived byte limits
No network or Docker required.
"""

import os

import pytest
from pydantic import ValidationError

from datachat.core.config import settings, Settings


class TestSettingsDefaults:
    """Verify default values in the Settings singleton."""

    def test_settings_is_settings_instance(self):
        assert isinstance(settings, Settings)

    def test_code_execution_timeout_positive(self):
        assert settings.CODE_EXECUTION_TIMEOUT > 0

    def test_sandbox_concurrency_positive(self):
        assert settings.SANDBOX_MAX_CONCURRENCY > 0

    def test_chat_history_limit_default(self):
        assert Settings().CHAT_HISTORY_LIMIT == 10

    def test_message_length_default(self):
        assert Settings().MAX_MESSAGE_LENGTH == 1000

    def test_cors_origins_is_list(self):
        assert isinstance(settings.CORS_ORIGINS, list)


class TestValidators:

    def test_cors_comma_string_is_split(self):
        s = Settings(CORS_ORIGINS="http://a.test, http://b.test,")
        assert s.CORS_ORIGINS == ["http://a.test", "http://b.test"]

    def test_provider_is_uppercased(self):
        assert Settings(LLM_PROVIDER="ollama").LLM_PROVIDER == "OLLAMA"

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            Settings(LLM_PROVIDER="openai")

    @pytest.mark.parametrize("field", ["CODE_EXECUTION_TIMEOUT", "SANDBOX_MAX_CONCURRENCY", "CHAT_HISTORY_LIMIT"])
    def test_non_positive_limits_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})


class TestPaths:

    def test_relative_dirs_become_absolute(self):
        s = Settings(UPLOAD_DIR="./data/uploads", RESULTS_DIR="./data/results")
        assert os.path.isabs(s.UPLOAD_DIR)
        assert os.path.isabs(s.RESULTS_DIR)

    def test_absolute_dirs_untouched(self, tmp_path):
        s = Settings(RESULTS_DIR=str(tmp_path))
        assert s.RESULTS_DIR == str(tmp_path)


def test_byte_limits_derived_from_megabytes():
    s = Settings(MAX_UPLOAD_SIZE_MB=3, SANDBOX_MAX_DATASET_MB=2)
    assert s.max_upload_bytes == 3 * 1024 * 1024
    assert s.max_dataset_bytes == 2 * 1024 * 1024
