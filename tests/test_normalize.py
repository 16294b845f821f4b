"""
Tests for normalize.py - group keys, text helpers and timestamps.
"""

import pytest
from datetime import datetime, timezone, timedelta
from itertools import permutations

from lessondedupe.errors import ValidationError
from lessondedupe.normalize import (
    compute_group_key,
    has_copy_marker,
    is_empty,
    normalize_title,
    parse_timestamp,
    split_group_key,
)


class TestGroupKey:
    """Test stable group identity."""

    def test_key_is_sorted_and_joined(self):
        assert compute_group_key(["C", "A", "B"]) == "A,B,C"

    def test_key_ignores_member_order(self):
        """Every permutation of the same members yields one key."""
        keys = {compute_group_key(p) for p in permutations(["lesson-9", "lesson-10", "lesson-2"])}
        assert keys == {"lesson-10,lesson-2,lesson-9"}

    def test_key_ignores_repeated_ids(self):
        assert compute_group_key(["B", "A", "B"]) == "A,B"

    def test_empty_member_list_rejected(self):
        with pytest.raises(ValidationError):
            compute_group_key([])

    @pytest.mark.parametrize("bad_id", ["", "   ", None, 42])
    def test_invalid_member_ids_rejected(self, bad_id):
        with pytest.raises(ValidationError):
            compute_group_key(["A", bad_id])

    def test_split_group_key_roundtrip(self):
        assert split_group_key(compute_group_key(["B", "A"])) == ["A", "B"]

    def test_split_ignores_blank_segments(self):
        assert split_group_key("A,,B,") == ["A", "B"]


class TestTextHelpers:
    """Test title and emptiness helpers."""

    def test_normalize_title(self):
        assert normalize_title("  Garden   SALAD ") == "garden salad"

    @pytest.mark.parametrize("title", ["Salad Copy", "salad_v2", "Salad (Updated)"])
    def test_copy_markers(self, title):
        assert has_copy_marker(title)

    def test_plain_title_has_no_copy_marker(self):
        assert not has_copy_marker("Garden Salad")

    @pytest.mark.parametrize("value", [None, "", "  ", [], (), {}])
    def test_empty_values(self, value):
        assert is_empty(value)

    @pytest.mark.parametrize("value", ["x", ["a"], ("a",), 0, False])
    def test_non_empty_values(self, value):
        assert not is_empty(value)


class TestParseTimestamp:
    """Test lenient timestamp parsing."""

    def test_parses_zulu_suffix(self):
        assert parse_timestamp("2024-06-01T10:00:00Z") == datetime(2024, 6, 1, 10, 0, 0)

    def test_converts_offsets_to_naive_utc(self):
        assert parse_timestamp("2024-06-01T12:00:00+02:00") == datetime(2024, 6, 1, 10, 0, 0)

    def test_aware_datetime_is_normalized(self):
        aware = datetime(2024, 6, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert parse_timestamp(aware) == datetime(2024, 6, 1, 10, 0)

    @pytest.mark.parametrize("value", [None, "", "not a date", 12345])
    def test_invalid_values_return_none(self, value):
        assert parse_timestamp(value) is None
