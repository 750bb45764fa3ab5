"""Robustness tests for JSON parsing edge cases."""
import json

import pytest

from json_extraction import parse_json_from_text, parse_largest_json_from_text
from plan_errors import ParseError
from plan_pipeline import extract_plan_payload
from pipeline_config import PipelineConfig


@pytest.mark.priority_high
@pytest.mark.robustness
class TestJSONParsing:
    """Test robust JSON parsing from LLM responses."""

    def test_preamble_fragment_before_plan(self):
        """A small status object before the real plan must not win."""
        plan = {"title": "Plan", "days": [{"meals": [{"title": "Avena"}]}]}
        text = f'Estado: {{"ok": true}}\n\nPlan:\n```json\n{json.dumps(plan)}\n```'

        assert parse_largest_json_from_text(text) == plan
        assert parse_json_from_text(text) == {"ok": True}

    def test_multiple_fenced_blocks(self):
        text = '```json\n{"a": 1}\n```\nY otro:\n```json\n{"b": [1, 2, 3]}\n```'
        assert parse_largest_json_from_text(text) == {"b": [1, 2, 3]}

    def test_unbalanced_prefix(self):
        """A stray opener earlier in the text does not hide later JSON."""
        assert parse_json_from_text('{ incompleto... {"a": 1}') == {"a": 1}

    def test_trailing_comma_rejected_without_repair(self):
        with pytest.raises(ParseError):
            parse_json_from_text('{"a": 1, "b": 2,}')

    def test_trailing_comma_repaired(self):
        assert parse_json_from_text('{"a": 1, "b": 2,}', repair=True) == {"a": 1, "b": 2}

    def test_single_quotes_repaired_in_largest_mode(self):
        assert parse_largest_json_from_text("{'title': 'Plan', 'kcal': 2000}", repair=True) == {
            "title": "Plan",
            "kcal": 2000,
        }

    def test_repaired_plan_beats_small_valid_fragment(self):
        text = '{"plan": {"title": "x", "days": [],}}'

        assert parse_largest_json_from_text(text) == []
        assert parse_largest_json_from_text(text, repair=True) == {
            "plan": {"title": "x", "days": []}
        }

    def test_repair_flag_from_config(self):
        payload = extract_plan_payload(
            '{"plan": {"title": "x", "days": [],}}', PipelineConfig(repair_json=True)
        )
        assert payload == {"title": "x", "days": []}

    def test_repair_does_not_invent_json(self):
        with pytest.raises(ParseError):
            parse_json_from_text("texto sin llaves", repair=True)

    def test_stringified_plan_is_unnested(self):
        inner = json.dumps({"title": "x", "days": []})
        assert extract_plan_payload(json.dumps({"plan": inner})) == {"title": "x", "days": []}

    def test_unicode_content(self):
        text = '```json\n{"title": "Plan de nutrición", "note": "¡Sábado 🍳!"}\n```'
        assert parse_json_from_text(text)["note"] == "¡Sábado 🍳!"

    @pytest.mark.timeout(10)
    def test_large_nested_payload(self):
        days = [{"meals": [{"title": f"Comida {i}-{j}"} for j in range(5)]} for i in range(200)]
        text = "Aquí va:\n" + json.dumps({"days": days}) + "\nFin."

        assert len(parse_largest_json_from_text(text)["days"]) == 200

    @pytest.mark.timeout(10)
    def test_many_unclosed_openers(self):
        text = "{" * 2000 + ' {"a": 1}'
        assert parse_largest_json_from_text(text) == {"a": 1}
