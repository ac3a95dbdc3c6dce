"""Streak transitions on UTC calendar days."""

from datetime import date, timedelta

from academy.gamification.streak_service import next_streak

TODAY = date(2026, 3, 15)


class TestNextStreak:
    def test_first_activity_starts_at_one(self):
        assert next_streak(None, TODAY, 0) == 1

    def test_same_day_keeps_streak(self):
        assert next_streak(TODAY, TODAY, 4) == 4

    def test_consecutive_day_extends(self):
        assert next_streak(TODAY - timedelta(days=1), TODAY, 4) == 5

    def test_gap_resets_to_one(self):
        assert next_streak(TODAY - timedelta(days=2), TODAY, 9) == 1

    def test_long_gap_resets_to_one(self):
        assert next_streak(TODAY - timedelta(days=40), TODAY, 30) == 1

    def test_month_boundary_is_consecutive(self):
        assert next_streak(date(2026, 2, 28), date(2026, 3, 1), 2) == 3

    def test_year_boundary_is_consecutive(self):
        assert next_streak(date(2025, 12, 31), date(2026, 1, 1), 7) == 8

    def test_activity_dated_after_today_resets(self):
        assert next_streak(TODAY + timedelta(days=1), TODAY, 3) == 1
