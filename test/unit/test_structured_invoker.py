"""
Unit tests for backend/datachat/services/llm_service/structured_invoker.py
Tests: JSON recovery from messy model output, schema validation errors.
"""

import pytest

from datachat.services.llm_service.llm_schemas import IntentDecision
from datachat.services.llm_service.structured_invoker import (
    StructuredOutputError,
    parse_json_robust,
    parse_structured,
)


class TestParseJsonRobust:

    def test_plain(self):
        assert parse_json_robust('{"a": 1}') == {"a": 1}

    def test_think_tags_and_fences(self):
        text = '<think>hmm</think>\n```json\n{"a": 2}\n```'
        assert parse_json_robust(text) == {"a": 2}

    def test_embedded_in_prose(self):
        assert parse_json_robust('The answer is {"a": 3} as requested.') == {"a": 3}

    def test_trailing_comma_and_single_quotes(self):
        assert parse_json_robust("{'a': 'x',}") == {"a": "x"}

    def test_nothing_recoverable(self):
        with pytest.raises(ValueError):
            parse_json_robust("")


class TestParseStructured:

    def test_alias_accepted(self):
        d = parse_structured('{"mode": "analysis", "wantsVisualization": 1}', IntentDecision)
        assert d.wants_visualization is True

    def test_field_name_accepted(self):
        d = parse_structured('{"mode": "analysis", "wants_visualization": true}', IntentDecision)
        assert d.wants_visualization is True

    def test_non_object_rejected(self):
        with pytest.raises(StructuredOutputError):
            parse_structured('"analysis"', IntentDecision)
