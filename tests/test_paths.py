"""Tests for field-path get/set."""

import pytest

from provider_bridge.errors import ConfigurationError
from provider_bridge.paths import MISSING, get_path, has_path, parse_path, set_path


class TestParsePath:
    def test_bracket_and_dotted_indices_are_equivalent(self):
        assert parse_path("choices[0].delta.content") == ("choices", 0, "delta", "content")
        assert parse_path("choices.0.delta.content") == ("choices", 0, "delta", "content")

    def test_consecutive_indices(self):
        assert parse_path("grid[1][2]") == ("grid", 1, 2)

    @pytest.mark.parametrize("path", ["", "   ", "a..b", "a[x]", "a]"])
    def test_malformed_paths_raise(self, path):
        with pytest.raises(ConfigurationError):
            parse_path(path)


class TestGetPath:
    def test_reads_nested_value(self):
        data = {"candidates": [{"content": {"parts": [{"text": "hi"}]}}]}
        assert get_path(data, "candidates[0].content.parts[0].text") == "hi"

    def test_missing_segment_returns_sentinel(self):
        assert get_path({"a": {}}, "a.b.c") is MISSING
        assert not get_path({"a": {}}, "a.b.c")

    def test_missing_segment_returns_default(self):
        assert get_path({"a": []}, "a[3]", default="x") == "x"

    def test_index_into_scalar_is_missing(self):
        assert get_path({"a": "text"}, "a[0]") is MISSING

    def test_numeric_key_on_dict(self):
        assert get_path({"results": {"0": "zero"}}, "results.0") == "zero"

    def test_none_value_is_present(self):
        assert get_path({"a": None}, "a") is None
        assert has_path({"a": None}, "a")
        assert not has_path({}, "a")


class TestSetPath:
    def test_creates_intermediate_dicts(self):
        body = {}
        set_path(body, "audio.content", "QUJD")
        assert body == {"audio": {"content": "QUJD"}}

    def test_creates_lists_for_indices(self):
        body = {}
        set_path(body, "systemInstruction.parts[0].text", "be brief")
        assert body == {"systemInstruction": {"parts": [{"text": "be brief"}]}}

    def test_pads_lists_with_none(self):
        body = {"items": ["a"]}
        set_path(body, "items[2]", "c")
        assert body["items"] == ["a", None, "c"]

    def test_replaces_scalar_in_the_way(self):
        body = {"config": "old"}
        set_path(body, "config.model", "nova-2")
        assert body == {"config": {"model": "nova-2"}}

    def test_preserves_siblings(self):
        body = {"config": {"encoding": "LINEAR16"}}
        set_path(body, "config.model", "default")
        assert body == {"config": {"encoding": "LINEAR16", "model": "default"}}

    def test_rejects_non_container_root(self):
        with pytest.raises(ConfigurationError):
            set_path("text", "a", 1)

    def test_round_trips_with_get(self):
        body = {}
        set_path(body, "a.b[1].c", 5)
        assert get_path(body, "a.b[1].c") == 5
