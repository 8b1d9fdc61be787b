"""Tests for lenient parsing of the final verdict."""

import pytest

from citation_verifier.exceptions import MalformedDecisionError
from citation_verifier.models import VerdictStatus
from citation_verifier.parsing import (
    REPAIRED_MESSAGE,
    UNPARSEABLE_MESSAGE,
    extract_json_object,
    parse_final_verdict,
)

RAW = "Vaswani, A. (2017). Attention is all you need."


class TestExtractJsonObject:
    def test_strips_code_fence_and_prose(self):
        text = 'Here is my answer:\n```json\n{"status": "verified"}\n```\nThanks!'
        assert extract_json_object(text) == '{"status": "verified"}'

    def test_nested_objects(self):
        text = 'x {"a": {"b": 1}, "c": 2} y {"d": 3}'
        assert extract_json_object(text) == '{"a": {"b": 1}, "c": 2}'

    def test_braces_inside_strings(self):
        text = '{"message": "the title has a } brace", "status": "verified"} trailing'
        assert extract_json_object(text) == (
            '{"message": "the title has a } brace", "status": "verified"}'
        )

    def test_escaped_quote_inside_string(self):
        text = '{"message": "he said \\"hi}\\"", "ok": true}'
        assert extract_json_object(text) == text

    def test_no_object(self):
        assert extract_json_object("I think this reference is real.") is None

    def test_unbalanced_returns_remainder(self):
        assert extract_json_object('prefix {"status": "verified"') == '{"status": "verified"'


class TestParseFinalVerdict:
    def test_complete_answer(self):
        content = (
            '{"status": "verified", "message": "Found on arXiv", '
            '"checks_performed": ["DOI Lookup"], '
            '"reference": "Vaswani, A. et al. (2017). Attention is all you need. NeurIPS."}'
        )
        verdict = parse_final_verdict(content, RAW)
        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.message == "Found on arXiv"
        assert verdict.checks_performed == ["DOI Lookup"]
        assert verdict.fixed_reference.endswith("NeurIPS.")
        assert not verdict.repaired

    def test_unchanged_reference_is_not_a_fix(self):
        content = f'{{"status": "unverified", "message": "Nothing found", "reference": "{RAW}"}}'
        verdict = parse_final_verdict(content, RAW)
        assert verdict.status == VerdictStatus.UNVERIFIED
        assert verdict.fixed_reference is None

    def test_missing_fields_are_repaired(self):
        verdict = parse_final_verdict('```json\n{"status": "verified"}\n```', RAW)
        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.message == REPAIRED_MESSAGE
        assert verdict.fixed_reference is None
        assert verdict.repaired

    @pytest.mark.parametrize(
        "content",
        [
            '{"status": "maybe", "message": "m"}',
            '{"status": "error", "message": "m"}',
            '{"status": null, "message": "m"}',
            '{"status": 3, "message": "m"}',
        ],
    )
    def test_unknown_status_becomes_needs_human(self, content):
        verdict = parse_final_verdict(content, RAW)
        assert verdict.status == VerdictStatus.NEEDS_HUMAN
        assert verdict.repaired

    def test_status_spelling_is_normalized(self):
        verdict = parse_final_verdict('{"status": "Needs_Human", "message": "m"}', RAW)
        assert verdict.status == VerdictStatus.NEEDS_HUMAN

    def test_undecodable_block_is_needs_human_with_raw_content(self):
        content = "{status: verified, message: 'looks fine'}"
        verdict = parse_final_verdict(content, RAW)
        assert verdict.status == VerdictStatus.NEEDS_HUMAN
        assert verdict.message == UNPARSEABLE_MESSAGE
        assert verdict.raw_content == content

    def test_prose_only_raises(self):
        with pytest.raises(MalformedDecisionError):
            parse_final_verdict("The reference looks legitimate to me.", RAW)

    def test_empty_content_raises(self):
        with pytest.raises(MalformedDecisionError):
            parse_final_verdict("", RAW)
