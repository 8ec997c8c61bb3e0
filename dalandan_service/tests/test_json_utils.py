"""Tests for JSON extraction from model output."""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from dalandan_service.errors import MalformedModelOutput
from dalandan_service.json_utils import (
    _fix_newlines_in_json_strings,
    extract_json_object,
    find_balanced_object,
    strip_code_fences,
)


class TestStripCodeFences:
    """Test strip_code_fences."""

    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestFindBalancedObject:
    """Test find_balanced_object."""

    def test_prose_around_object(self):
        text = 'Here you go: {"a": {"b": 2}} hope it helps {"c": 3}'
        assert find_balanced_object(text) == '{"a": {"b": 2}}'

    def test_brace_inside_string(self):
        text = '{"note": "use } carefully", "x": 1}'
        assert find_balanced_object(text) == text

    def test_escaped_quote_inside_string(self):
        text = '{"note": "say \\"}\\" twice"}'
        assert find_balanced_object(text) == text

    def test_truncated_object(self):
        assert find_balanced_object('{"summary": "cut off') is None

    def test_no_object(self):
        assert find_balanced_object("no json here") is None


class TestFixNewlinesInJsonStrings:
    """Test _fix_newlines_in_json_strings."""

    def test_newline_inside_string(self):
        import json
        result = _fix_newlines_in_json_strings('{"text": "line1\nline2"}')
        assert json.loads(result)["text"] == "line1 line2"

    def test_newline_outside_string_kept(self):
        result = _fix_newlines_in_json_strings('{\n"a": 1\n}')
        assert result == '{\n"a": 1\n}'


class TestExtractJsonObject:
    """Test extract_json_object."""

    def test_plain_object(self):
        assert extract_json_object('{"summary": "ok"}') == {"summary": "ok"}

    def test_fenced_object_with_prose(self):
        text = 'Sure!\n```json\n{"summary": "ok", "symptoms": ["a"]}\n```\nThanks'
        assert extract_json_object(text) == {"summary": "ok", "symptoms": ["a"]}

    def test_trailing_commas(self):
        assert extract_json_object('{"a": [1, 2,], "b": 3,}') == {"a": [1, 2], "b": 3}

    def test_empty_raises(self):
        with pytest.raises(MalformedModelOutput):
            extract_json_object("")

    def test_truncated_raises(self):
        with pytest.raises(MalformedModelOutput):
            extract_json_object('{"summary": "likely black spot", "symptoms": ["dark')

    def test_garbage_inside_braces_raises(self):
        with pytest.raises(MalformedModelOutput):
            extract_json_object("{not json at all}")

    def test_deep_nesting_raises_malformed(self):
        text = '{"summary": ' + "[" * 5000 + "]" * 5000 + "}"
        with pytest.raises(MalformedModelOutput):
            extract_json_object(text)
