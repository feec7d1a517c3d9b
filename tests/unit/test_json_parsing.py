"""Unit tests for JSON recovery from model output."""

import pytest

from freight_intel.llm.json_parsing import extract_json_object, parse_json_response
from freight_intel.pipeline.errors import MalformedOutputError


class TestParseJsonResponse:
    """Tests for parse_json_response."""

    def test_plain_json(self):
        assert parse_json_response('{"status": "agreed"}') == {"status": "agreed"}

    def test_code_fence(self):
        response = 'Sure.\n```json\n{"call_type": "carrier"}\n```'
        assert parse_json_response(response) == {"call_type": "carrier"}

    def test_preamble(self):
        assert parse_json_response('Here is the JSON: {"loads": []}') == {"loads": []}

    def test_trailing_comma(self):
        assert parse_json_response('{"rates": [1, 2,],}') == {"rates": [1, 2]}

    def test_reasoning_before_object(self):
        response = 'The carrier never committed.\n{"status": "pending"}\nHope this helps.'
        assert parse_json_response(response) == {"status": "pending"}

    def test_empty_response(self):
        with pytest.raises(MalformedOutputError):
            parse_json_response("   ", stage="negotiation")

    def test_unrecoverable(self):
        with pytest.raises(MalformedOutputError) as exc_info:
            parse_json_response("I could not find any rates.", stage="rate_extraction")
        assert exc_info.value.stage == "rate_extraction"
        assert exc_info.value.raw_preview.startswith("I could not")

    def test_array_is_not_an_object(self):
        with pytest.raises(MalformedOutputError):
            parse_json_response("[1, 2, 3]")


class TestExtractJsonObject:
    """Tests for brace matching."""

    def test_braces_inside_strings(self):
        text = 'prefix {"note": "use {curly} braces", "n": 1} suffix'
        assert extract_json_object(text) == '{"note": "use {curly} braces", "n": 1}'

    def test_no_object(self):
        assert extract_json_object("nothing here") is None
