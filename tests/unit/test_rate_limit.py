"""Tests for rate limiting utilities."""

from __future__ import annotations

import time
from unittest.mock import Mock, patch

import pytest
from kubernetes.client.exceptions import ApiException

from machine_provision_operator.utils.rate_limit import (
    call_with_rate_limit_retry,
    is_rate_limit_error,
    rate_limit_k8s,
)


class TestRateLimitK8s:
    """Test cases for Kubernetes API rate limiting."""

    def test_rate_limit_k8s_with_args(self):
        """Test that arguments pass through the decorator."""
        @rate_limit_k8s
        def test_func(a, b, c=None):
            return f"{a}-{b}-{c}"

        assert test_func("x", "y", c="z") == "x-y-z"

    @patch("machine_provision_operator.utils.rate_limit._K8S_RATE_LIMIT_PER_SECOND", 20.0)
    def test_rate_limit_k8s_enforces_rate(self):
        """Test that rate limiting enforces minimum interval."""
        call_times = []

        @rate_limit_k8s
        def test_func():
            call_times.append(time.time())

        test_func()
        test_func()

        assert call_times[1] - call_times[0] >= 0.045


class TestIsRateLimitError:
    def test_429(self):
        """Test that 429 is a rate limit error."""
        assert is_rate_limit_error(ApiException(status=429))

    def test_503_with_rate_limit_reason(self):
        """Test that a 503 with a rate limit reason is a rate limit error."""
        assert is_rate_limit_error(ApiException(status=503, reason="rate limit exceeded"))

    def test_other_errors(self):
        """Test that other errors are not rate limit errors."""
        assert not is_rate_limit_error(ApiException(status=503, reason="unavailable"))
        assert not is_rate_limit_error(ApiException(status=500))
        assert not is_rate_limit_error(ValueError("429"))


class TestCallWithRateLimitRetry:
    @patch("machine_provision_operator.utils.rate_limit.time.sleep")
    def test_retries_throttled_call(self, mock_sleep):
        """Test that a throttled call is retried."""
        func = Mock(side_effect=[ApiException(status=429), "ok"])

        assert call_with_rate_limit_retry(func, name="x") == "ok"
        assert func.call_count == 2
        func.assert_called_with(name="x")
        mock_sleep.assert_any_call(1)

    @patch("machine_provision_operator.utils.rate_limit.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        """Test that retries stop after the limit."""
        func = Mock(side_effect=ApiException(status=429))

        with patch("machine_provision_operator.utils.rate_limit._MAX_RATE_LIMIT_RETRIES", 2):
            with pytest.raises(ApiException):
                call_with_rate_limit_retry(func)

        assert func.call_count == 3

    def test_other_errors_not_retried(self):
        """Test that non rate limit errors are raised at once."""
        func = Mock(side_effect=ApiException(status=404))

        with pytest.raises(ApiException):
            call_with_rate_limit_retry(func)

        func.assert_called_once()
