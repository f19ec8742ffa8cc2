"""Tests for health check endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from machine_provision_operator import metrics  # noqa: F401
from machine_provision_operator.health import (
    create_combined_wsgi_app,
    is_ready,
    mark_not_ready,
    mark_ready,
)


def environ(path: str) -> dict:
    return {
        "REQUEST_METHOD": "GET",
        "PATH_INFO": path,
        "SCRIPT_NAME": "",
        "SERVER_NAME": "localhost",
        "SERVER_PORT": "8080",
        "wsgi.url_scheme": "http",
    }


@pytest.fixture(autouse=True)
def reset_readiness():
    mark_not_ready()
    yield
    mark_not_ready()


class TestCombinedApp:
    """Test cases for the combined metrics and health WSGI app."""

    def test_healthz(self):
        """Test the liveness endpoint."""
        start_response = MagicMock()

        result = create_combined_wsgi_app()(environ("/healthz"), start_response)

        assert b'"status":"ok"' in b"".join(result)
        assert "200" in start_response.call_args[0][0]

    def test_readyz_before_startup(self):
        """Test that readiness fails until startup completes."""
        start_response = MagicMock()

        result = create_combined_wsgi_app()(environ("/readyz"), start_response)

        assert b'"status":"starting"' in b"".join(result)
        assert "503" in start_response.call_args[0][0]

    def test_readyz_after_startup(self):
        """Test readiness after startup."""
        mark_ready()
        start_response = MagicMock()

        result = create_combined_wsgi_app()(environ("/readyz"), start_response)

        assert is_ready()
        assert b'"status":"ready"' in b"".join(result)
        assert "200" in start_response.call_args[0][0]

    def test_metrics_delegated(self):
        """Test that other paths are served by the metrics app."""
        start_response = MagicMock()

        result = create_combined_wsgi_app()(environ("/metrics"), start_response)

        assert b"machine_provision_operator_reconcile_total" in b"".join(result)
