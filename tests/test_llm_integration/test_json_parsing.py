"""
JSON extraction tests for engine output.

Tests verify fenced, bare and broken replies are decoded or rejected
consistently, and that Gemini multi-part responses yield the right part.
"""
import json
import pytest
from unittest.mock import MagicMock

from muni_core.analysis.llm import extract_first_text_part, parse_json_object, strip_json_fences
from muni_core.exceptions import AnalysisError


class TestStripJsonFences:
    """Incidental markdown wrappers are removed before decoding."""

    def test_json_fence_removed(self):
        assert strip_json_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence_removed(self):
        assert strip_json_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_json_untouched(self):
        assert strip_json_fences('  {"a": 1} ') == '{"a": 1}'

    def test_none_is_empty(self):
        assert strip_json_fences(None) == ""


class TestParseJsonObject:
    """Decoding into a single JSON object or AnalysisError."""

    def test_fenced_object_decoded(self, valid_analysis_response):
        text = f"```json\n{json.dumps(valid_analysis_response)}\n```"
        assert parse_json_object(text) == valid_analysis_response

    def test_invalid_json_is_malformed(self):
        with pytest.raises(AnalysisError, match="malformed response"):
            parse_json_object("This is not valid JSON {broken")

    def test_preamble_is_malformed(self):
        """Prose before the object is not silently tolerated."""
        with pytest.raises(AnalysisError):
            parse_json_object('Here is the analysis: {"summary": "x"}')

    def test_array_is_malformed(self):
        with pytest.raises(AnalysisError, match="expected JSON object"):
            parse_json_object('[{"summary": "x"}]')

    def test_empty_is_malformed(self):
        with pytest.raises(AnalysisError, match="empty output"):
            parse_json_object("```json\n```")


def _part(text, thought=False):
    part = MagicMock()
    part.text = text
    part.thought = thought
    return part


def _response(parts):
    response = MagicMock()
    response.candidates = [MagicMock()]
    response.candidates[0].content.parts = parts
    return response


class TestExtractFirstTextPart:
    """Gemini responses with thought parts."""

    def test_thought_part_skipped(self):
        response = _response([_part("encrypted_reasoning_trace", thought=True), _part('{"a": 1}')])
        assert extract_first_text_part(response) == '{"a": 1}'

    def test_only_first_text_part_returned(self):
        response = _response([_part('{"a": 1}'), _part('{"b": 2}')])
        assert extract_first_text_part(response) == '{"a": 1}'

    def test_thought_none_treated_as_text(self):
        response = _response([_part('{"a": 1}', thought=None)])
        assert extract_first_text_part(response) == '{"a": 1}'

    def test_whitespace_parts_skipped(self):
        response = _response([_part("   "), _part('{"a": 1}')])
        assert extract_first_text_part(response) == '{"a": 1}'

    def test_no_candidates(self):
        response = MagicMock()
        response.candidates = []
        with pytest.raises(ValueError, match="no candidates"):
            extract_first_text_part(response)

    def test_no_parts(self):
        with pytest.raises(ValueError, match="no parts"):
            extract_first_text_part(_response([]))

    def test_only_thought_parts(self):
        with pytest.raises(ValueError, match="No text part"):
            extract_first_text_part(_response([_part("trace", thought=True)]))
