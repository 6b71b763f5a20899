"""
Unit tests for half-open interval arithmetic.
"""

from datetime import datetime, timedelta

from hypothesis import given, strategies as st

from utils.interval_utils import is_covered, max_concurrent_overlap, merge_intervals, subtract_intervals


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 1, 7, hour, minute)


class TestMergeIntervals:
    """Test merging of overlapping and touching intervals."""

    def test_merges_overlapping_and_touching(self):
        merged = merge_intervals([(at(11), at(12)), (at(9), at(10)), (at(10), at(10, 30)), (at(9, 30), at(9, 45))])

        assert merged == [(at(9), at(10, 30)), (at(11), at(12))]

    def test_empty_input(self):
        assert merge_intervals([]) == []


class TestSubtractIntervals:
    """Test cutting blocked pieces out of an interval."""

    def test_hole_in_the_middle(self):
        assert subtract_intervals((at(9), at(17)), [(at(12), at(13))]) == [(at(9), at(12)), (at(13), at(17))]

    def test_removal_covering_everything(self):
        assert subtract_intervals((at(9), at(10)), [(at(8), at(11))]) == []

    def test_removals_outside_base_are_ignored(self):
        assert subtract_intervals((at(9), at(10)), [(at(7), at(8)), (at(10), at(11))]) == [(at(9), at(10))]

    def test_overlapping_removals(self):
        pieces = subtract_intervals((at(9), at(17)), [(at(10), at(12)), (at(11), at(13)), (at(16), at(18))])

        assert pieces == [(at(9), at(10)), (at(13), at(16))]


class TestIsCovered:
    """Test coverage of a span by a union of intervals."""

    def test_covered_by_touching_pieces(self):
        assert is_covered(at(9), at(11), [(at(10), at(12)), (at(8), at(10))])

    def test_gap_is_not_covered(self):
        assert not is_covered(at(9), at(11), [(at(8), at(10)), (at(10, 15), at(12))])

    def test_partial_coverage(self):
        assert not is_covered(at(9), at(11), [(at(9), at(10, 30))])

    def test_no_intervals(self):
        assert not is_covered(at(9), at(10), [])


class TestMaxConcurrentOverlap:
    """Test the peak-overlap sweep used for shared capacity."""

    def test_touching_intervals_do_not_overlap(self):
        assert max_concurrent_overlap(at(9), at(11), [(at(9), at(10)), (at(10), at(11))]) == 1

    def test_peak_is_per_instant(self):
        intervals = [(at(9), at(10)), (at(9, 30), at(10, 30)), (at(10, 15), at(11))]

        # 9:30-10:00 holds two, 10:15-10:30 holds two, never three
        assert max_concurrent_overlap(at(9), at(11), intervals) == 2

    def test_intervals_outside_range_are_ignored(self):
        assert max_concurrent_overlap(at(9), at(10), [(at(10), at(11)), (at(8), at(9))]) == 0

    @given(st.lists(
        st.tuples(st.integers(min_value=0, max_value=20), st.integers(min_value=1, max_value=8)),
        max_size=12,
    ))
    def test_peak_never_exceeds_interval_count(self, raw):
        base = at(0)
        intervals = [
            (base + timedelta(minutes=15 * offset), base + timedelta(minutes=15 * (offset + length)))
            for offset, length in raw
        ]

        peak = max_concurrent_overlap(base, base + timedelta(hours=8), intervals)

        assert 0 <= peak <= len(intervals)
        if intervals:
            assert peak >= 1
