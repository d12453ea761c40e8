"""Tests for include/exclude key filters."""

from datasync.engine import KeyFilter
from datasync.models import Fingerprint, Item


def items(*keys: str):
    return {key: Item(key=key, fingerprint=Fingerprint(digest=key)) for key in keys}


class TestKeyFilter:

    def test_empty_filter_keeps_everything(self) -> None:
        key_filter = KeyFilter()
        assert key_filter.is_empty()
        assert set(key_filter.apply(items("a", "b/c"))) == {"a", "b/c"}

    def test_include_limits_keys(self) -> None:
        key_filter = KeyFilter(include=("reports/*",))
        assert key_filter.matches("reports/2024/q1.csv")
        assert not key_filter.matches("images/logo.png")

    def test_exclude_wins_over_include(self) -> None:
        key_filter = KeyFilter(include=("*.csv",), exclude=("tmp/*",))
        assert key_filter.matches("data/a.csv")
        assert not key_filter.matches("tmp/a.csv")

    def test_matching_is_case_sensitive(self) -> None:
        assert not KeyFilter(include=("*.CSV",)).matches("a.csv")

    def test_apply_returns_filtered_copy(self) -> None:
        listing = items("keep.txt", "drop.log")
        filtered = KeyFilter(exclude=("*.log",)).apply(listing)
        assert list(filtered) == ["keep.txt"]
        assert len(listing) == 2
