"""Unit tests for JSON extraction from model output."""

import pytest

from json_extraction import (
    find_balanced_json,
    parse_json_from_text,
    parse_largest_json_from_text,
    strip_code_fences,
    unnest_json_strings,
)
from plan_errors import ParseError


@pytest.mark.priority_high
@pytest.mark.unit
class TestParseJsonFromText:
    """First-valid extraction mode."""

    def test_fenced_json(self):
        assert parse_json_from_text('```json\n{"a":1}\n```') == {"a": 1}

    def test_json_surrounded_by_prose(self):
        assert parse_json_from_text('text {"a":1} more') == {"a": 1}

    def test_no_json_raises_parse_error(self):
        with pytest.raises(ParseError) as exc_info:
            parse_json_from_text("no json")

        assert exc_info.value.kind == ParseError.NO_VALID_JSON
        assert exc_info.value.raw == "no json"
        assert exc_info.value.code == "AI_PARSE_ERROR"

    @pytest.mark.parametrize("text", ["", "   ", "```json\n```", None])
    def test_empty_response(self, text):
        with pytest.raises(ParseError) as exc_info:
            parse_json_from_text(text)
        assert exc_info.value.kind == ParseError.EMPTY_RESPONSE

    def test_braces_inside_strings_are_ignored(self):
        text = 'Resultado: {"note": "usa {llaves} y ]corchetes[", "ok": true} fin'
        assert parse_json_from_text(text) == {"note": "usa {llaves} y ]corchetes[", "ok": True}

    def test_escaped_quotes_inside_strings(self):
        text = r'{"quote": "dijo \"hola {\" y se fue", "n": 2}'
        assert parse_json_from_text(text) == {"quote": 'dijo "hola {" y se fue', "n": 2}

    def test_unparseable_candidate_falls_through_to_next(self):
        text = "{not: valid} then {\"a\": 1}"
        assert parse_json_from_text(text) == {"a": 1}

    def test_arrays_are_candidates(self):
        assert parse_json_from_text("lista: [1, 2, 3].") == [1, 2, 3]

    def test_first_valid_wins(self):
        assert parse_json_from_text('{"a":1} and {"b":2}') == {"a": 1}


@pytest.mark.priority_high
@pytest.mark.unit
class TestParseLargestJson:
    """Largest-candidate extraction mode."""

    def test_returns_larger_object(self):
        text = '{"a":1} and {"b":{"c":2},"d":[1,2,3]}'
        assert parse_largest_json_from_text(text) == {"b": {"c": 2}, "d": [1, 2, 3]}

    def test_single_object(self):
        assert parse_largest_json_from_text('```json\n{"a":1}\n```') == {"a": 1}

    def test_ties_keep_earliest(self):
        assert parse_largest_json_from_text('{"a":1} {"b":2}') == {"a": 1}

    def test_nested_values_do_not_beat_their_parent(self):
        text = 'x {"plan": {"days": [1, 2]}} y'
        assert parse_largest_json_from_text(text) == {"plan": {"days": [1, 2]}}

    def test_no_json_raises(self):
        with pytest.raises(ParseError) as exc_info:
            parse_largest_json_from_text("sin datos")
        assert exc_info.value.kind == ParseError.NO_VALID_JSON


@pytest.mark.priority_medium
@pytest.mark.unit
class TestHelpers:
    def test_strip_code_fences(self):
        assert strip_code_fences("```JSON\n{}\n```") == "\n{}\n"

    def test_find_balanced_json_mismatched_closer(self):
        assert find_balanced_json("{]", 0) is None

    def test_find_balanced_json_unterminated(self):
        assert find_balanced_json('{"a": [1, 2}', 0) is None

    def test_find_balanced_json_slices_candidate(self):
        assert find_balanced_json('ab{"x": [1]}cd', 2) == '{"x": [1]}'

    def test_unnest_json_strings(self):
        value = {"plan": '{"days": [{"meals": "[]"}]}', "title": "{no json"}
        assert unnest_json_strings(value) == {"plan": {"days": [{"meals": []}]}, "title": "{no json"}
