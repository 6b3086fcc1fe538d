"""Tests for rlm_runtime.metadata."""

from rlm_runtime.metadata import (
    context_chunk_lengths,
    context_total_length,
    context_type_label,
    make_metadata,
    render_value,
)


class TestMakeMetadata:
    def test_short_content_returned_in_full(self):
        assert make_metadata("Hello, world!", prefix_chars=1000) == "Hello, world!"

    def test_exact_length_returned_in_full(self):
        content = "x" * 1000
        assert make_metadata(content, prefix_chars=1000) == content

    def test_truncation(self):
        result = make_metadata("a" * 5000, prefix_chars=100)
        assert result.startswith("[Output: 5,000 chars total] First 100 chars:\n")
        assert result.endswith("\n[truncated]")
        assert "a" * 101 not in result

    def test_empty_content(self):
        assert make_metadata("", prefix_chars=100) == ""


class TestRenderValue:
    def test_string_verbatim(self):
        assert render_value("  spaced  ") == "  spaced  "

    def test_none(self):
        assert render_value(None) == "None"

    def test_number(self):
        assert render_value(42) == "42"

    def test_dict_as_indented_json(self):
        assert render_value({"a": [1, 2]}) == '{\n  "a": [\n    1,\n    2\n  ]\n}'

    def test_non_ascii_kept(self):
        assert render_value(["café"]) == '[\n  "café"\n]'

    def test_unserialisable_members_stringified(self):
        assert render_value([{1, 2}]) == '[\n  "{1, 2}"\n]'


class TestContextHelpers:
    def test_context_type_label_string(self):
        assert context_type_label("hello") == "string"

    def test_context_type_label_list(self):
        assert context_type_label(["a", "b"]) == "list of 2 strings"

    def test_context_total_length(self):
        assert context_total_length("hello") == 5
        assert context_total_length(["abc", "de"]) == 5

    def test_context_chunk_lengths(self):
        assert context_chunk_lengths("hello") == [5]
        assert context_chunk_lengths(["abc", "de"]) == [3, 2]

    def test_context_chunk_lengths_limited(self):
        assert context_chunk_lengths(["x"] * 50, limit=3) == [1, 1, 1]
