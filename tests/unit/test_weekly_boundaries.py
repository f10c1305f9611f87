"""Period boundaries used by leaderboards, challenges and job keys."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from edugame.leaderboards.periods import (
    MONTHLY,
    WEEKLY,
    get_month_boundaries,
    get_month_key,
    get_monday,
    get_week_boundaries,
    get_week_iso,
    period_boundaries,
)


class TestWeeks:
    def test_week_iso_uses_iso_year(self):
        # Jan 1 2027 is a Friday and belongs to ISO week 53 of 2026.
        assert get_week_iso(date(2027, 1, 1)) == "2026-W53"
        assert get_week_iso(datetime(2026, 10, 19, tzinfo=timezone.utc)) == "2026-W43"

    def test_monday(self):
        assert get_monday(date(2026, 10, 25)) == date(2026, 10, 19)
        assert get_monday(date(2026, 10, 19)) == date(2026, 10, 19)

    def test_week_is_half_open(self):
        start, end = get_week_boundaries(datetime(2026, 10, 21, 15, 30, tzinfo=timezone.utc))
        assert start == datetime(2026, 10, 19, tzinfo=timezone.utc)
        assert end == datetime(2026, 10, 26, tzinfo=timezone.utc)
        # Monday midnight starts the next week.
        assert get_week_boundaries(end)[0] == end


class TestMonths:
    def test_month_boundaries(self):
        start, end = get_month_boundaries(datetime(2026, 2, 14, tzinfo=timezone.utc))
        assert start == datetime(2026, 2, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_december_rolls_year(self):
        _, end = get_month_boundaries(datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc))
        assert end == datetime(2027, 1, 1, tzinfo=timezone.utc)

    def test_month_key(self):
        assert get_month_key(date(2026, 3, 9)) == "2026-03"


class TestPeriodBoundaries:
    def test_dispatch(self):
        dt = datetime(2026, 10, 21, tzinfo=timezone.utc)
        assert period_boundaries(WEEKLY, dt) == get_week_boundaries(dt)
        assert period_boundaries(MONTHLY, dt) == get_month_boundaries(dt)

    def test_unknown(self):
        with pytest.raises(ValueError):
            period_boundaries("yearly")
