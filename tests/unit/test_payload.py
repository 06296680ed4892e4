"""
Unit tests for payload rendering and JSON validation.
"""

import pytest

from homekit_bridge.exceptions import EncodingFailure, InvalidPayloadError
from homekit_bridge.payload import encode_payload, render, validate


class TestRender:
    """Tests for render()"""

    def test_trims_and_replaces_every_placeholder(self):
        result = render("  trim-me {{value}} end {{value}}\n\t", "X")

        assert result == "trim-me X end X"

    def test_template_without_placeholder_is_only_trimmed(self):
        assert render('  {"on": true}  ', "ignored") == '{"on": true}'

    def test_value_is_inserted_without_escaping(self):
        result = render('{"state":"{{value}}"}', 'say "hi"')

        assert result == '{"state":"say "hi""}'

    def test_non_string_value_uses_str(self):
        assert render('{"level": {{value}}}', 42) == '{"level": 42}'

    def test_similar_tokens_left_alone(self):
        assert render("{{ value }} {value} {{value}}", "1") == "{{ value }} {value} 1"


class TestValidate:
    """Tests for validate()"""

    def test_valid_json(self):
        result = validate('{"state": "42"}')

        assert result.ok
        assert result.error is None
        assert result.text == '{"state": "42"}'

    def test_trailing_comma_is_invalid(self):
        result = validate('{"state": 42,}')

        assert not result.ok
        assert result.text == '{"state": 42,}'
        assert result.error is not None

    def test_raise_for_error_carries_raw_text(self):
        with pytest.raises(InvalidPayloadError) as exc_info:
            validate("not json").raise_for_error()

        assert exc_info.value.text == "not json"

    def test_raise_for_error_noop_when_valid(self):
        validate("[1, 2, 3]").raise_for_error()

    def test_bare_json_scalars_are_valid(self):
        assert validate("21.5").ok
        assert validate('"text"').ok


class TestEncodePayload:
    """Tests for encode_payload()"""

    def test_utf8_bytes(self):
        assert encode_payload('{"t": "21.5°C"}') == '{"t": "21.5°C"}'.encode()

    def test_lone_surrogate_raises_encoding_failure(self):
        with pytest.raises(EncodingFailure):
            _ = encode_payload('{"v": "\ud800"}')
