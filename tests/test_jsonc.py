"""Tests for JSONC parsing."""

import json

import pytest

from common.jsonc import loads, strip_jsonc_comments


class TestJsonc:
    """Comment and trailing-comma stripping."""

    def test_line_and_block_comments(self):
        text = '{\n  // line\n  "a": 1, /* block */ "b": 2\n}'
        assert loads(text) == {"a": 1, "b": 2}

    def test_urls_in_strings_survive(self):
        text = '{"imports": {"std/": "https://deno.land/std/"}} // trailing'
        assert loads(text) == {"imports": {"std/": "https://deno.land/std/"}}

    def test_comment_markers_inside_strings(self):
        text = '{"a": "/* not a comment */", "b": "x // y"}'
        assert loads(text) == {"a": "/* not a comment */", "b": "x // y"}

    def test_escaped_quotes(self):
        text = '{"a": "say \\"hi\\" // still string"}'
        assert loads(text) == {"a": 'say "hi" // still string'}

    def test_trailing_commas(self):
        assert loads('{"a": [1, 2,], "b": {"c": 1,},}') == {"a": [1, 2], "b": {"c": 1}}
        assert strip_jsonc_comments('{"a": ",}"}') == '{"a": ",}"}'

    def test_malformed(self):
        with pytest.raises(json.JSONDecodeError):
            loads("{")
