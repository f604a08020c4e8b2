"""Unit tests for the retry policy."""

import pytest

from mantra_pair.utils.resilience import TRANSIENT_REASONS, DisconnectReason, RetryPolicy


class TestShouldRetry:
    """Test RetryPolicy.should_retry decisions."""

    def test_unknown_reason_is_transient(self):
        policy = RetryPolicy(max_retries=3)
        assert policy.should_retry(1, None) is True

    @pytest.mark.parametrize("reason", sorted(TRANSIENT_REASONS))
    def test_known_transient_reasons_retry(self, reason):
        policy = RetryPolicy(max_retries=3)
        assert policy.should_retry(1, reason) is True

    def test_transient_set_matches_protocol_codes(self):
        assert {428, 408, 515, 503} == set(TRANSIENT_REASONS)
        assert DisconnectReason.TIMED_OUT == DisconnectReason.CONNECTION_LOST

    def test_logged_out_never_retries(self):
        policy = RetryPolicy(max_retries=10)
        assert policy.should_retry(1, DisconnectReason.LOGGED_OUT) is False

    @pytest.mark.parametrize(
        "reason",
        [DisconnectReason.FORBIDDEN, DisconnectReason.BAD_SESSION, DisconnectReason.CONNECTION_REPLACED, 499],
    )
    def test_unlisted_reasons_are_terminal(self, reason):
        policy = RetryPolicy(max_retries=3)
        assert policy.should_retry(1, reason) is False

    @pytest.mark.parametrize("reason", [None, 408, 428, 503, 515])
    def test_attempt_cap_wins_over_reason(self, reason):
        policy = RetryPolicy(max_retries=3)
        assert policy.should_retry(2, reason) is True
        assert policy.should_retry(3, reason) is False
        assert policy.should_retry(7, reason) is False

    def test_zero_retries_disables_retrying(self):
        policy = RetryPolicy(max_retries=0)
        assert policy.should_retry(0, None) is False


class TestBackoffDelay:
    """Test linear-with-cap backoff."""

    def test_linear_growth(self):
        policy = RetryPolicy(base_delay_seconds=5.0, max_delay_seconds=30.0)
        assert [policy.backoff_delay(n) for n in (1, 2, 3)] == [5.0, 10.0, 15.0]

    def test_capped(self):
        policy = RetryPolicy(base_delay_seconds=5.0, max_delay_seconds=12.0)
        assert policy.backoff_delay(3) == 12.0
        assert policy.backoff_delay(50) == 12.0

    def test_each_retry_waits_at_least_as_long(self):
        policy = RetryPolicy(base_delay_seconds=0.7, max_delay_seconds=4.0)
        delays = [policy.backoff_delay(n) for n in range(1, 12)]
        assert delays == sorted(delays)
        assert max(delays) == 4.0
