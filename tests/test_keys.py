"""
Tests for query key validation, hashing and matching.
"""

from __future__ import annotations

from datetime import date
from enum import Enum

import pytest

from dashboard_query.core import InvalidQueryKeyError, format_key, hash_key, is_prefix, matches, validate_key


class Color(Enum):
    RED = "red"


class TestValidateKey:
    """Tests for validate_key."""

    def test_list_becomes_tuple(self):
        """Test that a list key is returned as a tuple."""
        assert validate_key(["mlModels", "list"]) == ("mlModels", "list")

    @pytest.mark.parametrize("key", ["mlModels", b"mlModels", {"a": 1}, 42, None])
    def test_non_sequence_rejected(self, key):
        """Test that strings, mappings and scalars are not keys."""
        with pytest.raises(InvalidQueryKeyError):
            validate_key(key)

    def test_empty_key_rejected_by_default(self):
        """Test that the empty key is rejected unless allowed."""
        with pytest.raises(InvalidQueryKeyError, match="must not be empty"):
            validate_key([])
        assert validate_key([], allow_empty=True) == ()


class TestHashKey:
    """Tests for hash_key."""

    def test_one_string_per_part(self):
        """Test that each part is serialized on its own."""
        assert hash_key(["mlModels", "detail", 3]) == ('"mlModels"', '"detail"', "3")

    def test_field_order_normalized(self):
        """Test that mapping field order does not matter when sorting."""
        first = hash_key(["list", {"a": 1, "b": 2}])
        second = hash_key(["list", {"b": 2, "a": 1}])
        assert first == second

    def test_field_order_significant_without_sorting(self):
        """Test that insertion order matters with sort_fields=False."""
        first = hash_key(["list", {"a": 1, "b": 2}], sort_fields=False)
        second = hash_key(["list", {"b": 2, "a": 1}], sort_fields=False)
        assert first != second

    def test_nested_mappings_normalized(self):
        """Test that sorting applies at every nesting level."""
        first = hash_key(["x", {"filters": {"status": "Active", "type": "NLP"}}])
        second = hash_key(["x", {"filters": {"type": "NLP", "status": "Active"}}])
        assert first == second

    def test_number_and_string_parts_differ(self):
        """Test that 3 and "3" address different entries."""
        assert hash_key(["detail", 3]) != hash_key(["detail", "3"])

    def test_enum_and_date_parts(self):
        """Test that enums and dates serialize through their values."""
        assert hash_key([Color.RED]) == hash_key(["red"])
        assert hash_key([date(2024, 1, 15)]) == hash_key(["2024-01-15"])

    def test_unserializable_part(self):
        """Test that an arbitrary object is rejected."""
        with pytest.raises(InvalidQueryKeyError):
            hash_key(["x", object()])


class TestMatching:
    """Tests for prefix and exact matching."""

    def test_prefix_matches_descendants(self):
        """Test that a prefix matches itself and longer keys."""
        prefix = hash_key(["mlModels"])
        assert is_prefix(prefix, hash_key(["mlModels"]))
        assert is_prefix(prefix, hash_key(["mlModels", "list", {"filters": {}}]))

    def test_prefix_matches_whole_parts_only(self):
        """Test that ["mlModels"] does not match ["mlModelsArchive"]."""
        assert not is_prefix(hash_key(["mlModels"]), hash_key(["mlModelsArchive"]))

    def test_longer_filter_does_not_match(self):
        """Test that a filter longer than the key never matches."""
        assert not is_prefix(hash_key(["a", "b"]), hash_key(["a"]))

    def test_empty_filter_matches_everything(self):
        """Test that the empty key is a prefix of every key."""
        assert matches(hash_key([], allow_empty=True), hash_key(["dataSources", "stats"]))

    def test_exact(self):
        """Test exact matching ignores descendants."""
        parent = hash_key(["mlModels", "detail", "1"])
        child = hash_key(["mlModels", "detail", "1", "metrics", 7])
        assert matches(parent, parent, exact=True)
        assert not matches(parent, child, exact=True)
        assert matches(parent, child)

    def test_format_key(self):
        """Test that hashed keys render as compact JSON arrays."""
        assert format_key(hash_key(["mlModels", {"b": 1, "a": 2}])) == '["mlModels",{"a":2,"b":1}]'
