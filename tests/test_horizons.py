"""Tests for horizon scheduling and window calculation."""

from datetime import datetime, timedelta

from changewatch.correlation.horizons import (
    HORIZONS,
    compute_windows,
    days_between,
    eligible_horizons,
)
from conftest import utc


class TestEligibleHorizons:
    """Test which horizons come due."""

    def test_nothing_due_before_seven_days(self):
        assert eligible_horizons(utc("2026-02-10T12:00:00Z"), utc("2026-02-16T12:00:00Z"), []) == []

    def test_exactly_seven_days_is_due(self):
        assert eligible_horizons(utc("2026-02-09T12:00:00Z"), utc("2026-02-16T12:00:00Z"), []) == [7]

    def test_one_second_short_is_not_due(self):
        detected = utc("2026-02-09T12:00:01Z")
        assert eligible_horizons(detected, utc("2026-02-16T12:00:00Z"), []) == []

    def test_catch_up_after_partial_evaluation(self):
        detected = utc("2026-01-17T12:00:00Z")  # 30 days
        assert eligible_horizons(detected, utc("2026-02-16T12:00:00Z"), [7]) == [14, 30]

    def test_skipped_horizons_are_returned_together(self):
        detected = utc("2025-11-08T12:00:00Z")  # 100 days
        assert eligible_horizons(detected, utc("2026-02-16T12:00:00Z"), [7, 30, 60]) == [14, 90]

    def test_all_horizons_when_none_recorded(self):
        detected = utc("2025-10-01T12:00:00Z")
        assert eligible_horizons(detected, utc("2026-02-16T12:00:00Z"), []) == [7, 14, 30, 60, 90]

    def test_nothing_due_when_all_recorded(self):
        detected = utc("2025-10-01T12:00:00Z")
        assert eligible_horizons(detected, utc("2026-02-16T12:00:00Z"), list(HORIZONS)) == []

    def test_boundary_equality_for_every_horizon(self):
        now = utc("2026-06-01T00:00:00Z")
        for h in HORIZONS:
            due = eligible_horizons(now - timedelta(days=h), now, [])
            assert due[-1] == h
            assert eligible_horizons(now - timedelta(days=h) + timedelta(seconds=1), now, [])[-1:] != [h]

    def test_idempotent_for_same_inputs(self):
        detected = utc("2026-01-01T08:00:00Z")
        now = utc("2026-02-16T12:00:00Z")
        assert eligible_horizons(detected, now, [7]) == eligible_horizons(detected, now, [7])

    def test_future_detection_has_nothing_due(self):
        assert eligible_horizons(utc("2026-03-01T00:00:00Z"), utc("2026-02-16T12:00:00Z"), []) == []

    def test_naive_datetimes_are_treated_as_utc(self):
        assert eligible_horizons(datetime(2026, 2, 9, 12), utc("2026-02-16T12:00:00Z"), []) == [7]

    def test_days_between_floors(self):
        assert days_between(utc("2026-02-09T12:00:00Z"), utc("2026-02-16T11:59:59Z")) == 6


class TestComputeWindows:
    """Test before/after window calculation."""

    def setup_method(self):
        self.change_date = utc("2026-02-10T14:30:00Z")

    def test_before_window_is_truncated_to_utc_midnight(self):
        windows = compute_windows(self.change_date, 7)
        assert windows.before_end == utc("2026-02-10T00:00:00Z")
        assert windows.before_start == utc("2026-02-03T00:00:00Z")

    def test_after_window_starts_at_detection_instant(self):
        windows = compute_windows(self.change_date, 7)
        assert windows.after_start == self.change_date

    def test_after_window_spans_horizon_from_detection(self):
        windows = compute_windows(self.change_date, 30)
        assert windows.after_end == utc("2026-03-12T14:30:00Z")

    def test_both_windows_match_horizon_duration(self):
        for h in HORIZONS:
            windows = compute_windows(self.change_date, h)
            assert windows.before_end - windows.before_start == timedelta(days=h)
            assert windows.after_end - windows.after_start == timedelta(days=h)

    def test_results_are_utc_aware(self):
        windows = compute_windows(datetime(2026, 2, 10, 14, 30), 14)
        assert windows.before_end == utc("2026-02-10T00:00:00Z")
        assert windows.after_start.utcoffset() == timedelta(0)
