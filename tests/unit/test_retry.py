"""Tests for retry backoff helpers."""

from datetime import timedelta

from durastep.utils.retry import compute_backoff, retry_delay, should_retry


def test_backoff_grows_exponentially_within_jitter():
    for attempt in range(1, 5):
        delay = compute_backoff(attempt, base=2, jitter=0.5)
        assert 2**attempt <= delay <= 2**attempt + 0.5


def test_retry_delay_is_timedelta():
    delay = retry_delay(1, base=2, jitter=0)
    assert delay == timedelta(seconds=2)


def test_should_retry_until_max_attempts():
    assert should_retry(1, 3)
    assert should_retry(2, 3)
    assert not should_retry(3, 3)
