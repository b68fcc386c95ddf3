"""Tests for time utilities."""

from datetime import datetime, timedelta, timezone

from yardly.infra.time import as_utc, utc_now


class TestUtcNow:
    def test_returns_utc_datetime(self):
        assert utc_now().tzinfo == timezone.utc

    def test_returns_current_time(self):
        before = datetime.now(timezone.utc)
        now = utc_now()
        after = datetime.now(timezone.utc)

        assert before <= now <= after


class TestAsUtc:
    def test_naive_is_assumed_utc(self):
        result = as_utc(datetime(2024, 1, 1, 10, 0))
        assert result == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_offset_converted(self):
        sao_paulo = timezone(timedelta(hours=-3))
        result = as_utc(datetime(2024, 1, 1, 7, 0, tzinfo=sao_paulo))
        assert result == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert result.tzinfo == timezone.utc
