"""Tests for shared helpers."""

from reporting.utils import deep_merge, normalize_filename


class TestDeepMerge:
    def test_later_sources_win(self):
        assert deep_merge({"a": 1, "b": 1}, {"b": 2}, {"c": 3}) == {"a": 1, "b": 2, "c": 3}

    def test_nested_dicts_merged(self):
        merged = deep_merge({"q": {"size": 10, "sort": "asc"}}, {"q": {"size": 5}})
        assert merged == {"q": {"size": 5, "sort": "asc"}}

    def test_lists_replaced(self):
        assert deep_merge({"l": [1, 2]}, {"l": [3]}) == {"l": [3]}

    def test_sources_untouched(self):
        base = {"q": {"size": 10}}
        merged = deep_merge(base, {"q": {"size": 5}})
        merged["q"]["extra"] = True
        assert base == {"q": {"size": 10}}

    def test_none_sources_ignored(self):
        assert deep_merge(None, {"a": 1}) == {"a": 1}


def test_normalize_filename():
    assert normalize_filename("Univ Lorraine/Stats.v2") == "univ-lorraine-stats-v2"
