"""Tests for base handler functionality."""

from __future__ import annotations

from unittest.mock import Mock, patch

import kopf
import pytest

from machine_provision_operator.constants import FINALIZER
from machine_provision_operator.handlers.base import BaseHandler

from .conftest import machine_body


class TestBaseHandler:
    """Test cases for BaseHandler class."""

    def test_init(self):
        """Test handler initialization."""
        handler = BaseHandler(kind="InfraMachine")
        assert handler.kind == "InfraMachine"
        assert handler.logger is not None

    def test_resource_context(self):
        """Test resource context extraction from a machine body."""
        handler = BaseHandler(kind="InfraMachine")

        ctx = handler._get_resource_context(machine_body())

        assert ctx == {"kind": "Amazonec2Machine", "name": "m1", "namespace": "fleet-default", "uid": "uid-m1"}

    def test_ensure_finalizer_adds_when_missing(self):
        """Test that finalizer is added when not present."""
        handler = BaseHandler(kind="InfraMachine")
        meta = {"finalizers": []}
        patch = kopf.Patch()

        added = handler.ensure_finalizer(meta, patch)

        assert added
        assert FINALIZER in patch.metadata["finalizers"]

    def test_ensure_finalizer_no_duplicate(self):
        """Test that no patch is made when the finalizer is already present."""
        handler = BaseHandler(kind="InfraMachine")
        meta = {"finalizers": [FINALIZER, "other-finalizer"]}
        patch = kopf.Patch()

        added = handler.ensure_finalizer(meta, patch)

        assert not added
        assert "finalizers" not in patch.metadata

    def test_ensure_finalizer_creates_list_when_absent(self):
        """Test that finalizers list is created when absent."""
        handler = BaseHandler(kind="InfraMachine")
        patch = kopf.Patch()

        handler.ensure_finalizer({}, patch)

        assert patch.metadata["finalizers"] == [FINALIZER]

    def test_remove_finalizer(self):
        """Test that only our finalizer is removed."""
        handler = BaseHandler(kind="InfraMachine")
        meta = {"finalizers": [FINALIZER, "other-finalizer"]}
        patch = kopf.Patch()

        handler.remove_finalizer(meta, patch)

        assert patch.metadata["finalizers"] == ["other-finalizer"]

    def test_remove_finalizer_sets_none_when_empty(self):
        """Test that finalizers is set to None when last finalizer is removed."""
        handler = BaseHandler(kind="InfraMachine")
        patch = kopf.Patch()

        handler.remove_finalizer({"finalizers": [FINALIZER]}, patch)

        assert "finalizers" in patch.metadata
        assert patch.metadata["finalizers"] is None

    def test_remove_finalizer_no_patch_when_absent(self):
        """Test that removing an absent finalizer makes no patch."""
        handler = BaseHandler(kind="InfraMachine")
        patch = kopf.Patch()

        handler.remove_finalizer({"finalizers": ["other-finalizer"]}, patch)

        assert "finalizers" not in patch.metadata


class TestReconcileWithMetrics:
    @patch("machine_provision_operator.handlers.base.emit_reconcile_failed")
    @patch("machine_provision_operator.handlers.base.metrics")
    def test_success_returns_result(self, mock_metrics, mock_emit_failed):
        """Test successful reconciliation with metrics."""
        handler = BaseHandler(kind="InfraMachine")
        body = machine_body()

        result = handler.reconcile_with_metrics(body, lambda: "done")

        assert result == "done"
        mock_emit_failed.assert_not_called()
        mock_metrics.reconcile_total.labels.assert_any_call(kind="InfraMachine", result="started")
        mock_metrics.reconcile_total.labels.assert_any_call(kind="InfraMachine", result="success")
        assert mock_metrics.reconcile_duration_seconds.labels.called

    @patch("machine_provision_operator.handlers.base.emit_reconcile_failed")
    @patch("machine_provision_operator.handlers.base.metrics")
    @patch("machine_provision_operator.handlers.base.sanitize_exception")
    def test_failure_reports_and_reraises(self, mock_sanitize, mock_metrics, mock_emit_failed):
        """Test failed reconciliation with metrics, events and the failure hook."""
        handler = BaseHandler(kind="InfraMachine")
        handler.on_failure = Mock()
        body = machine_body()
        test_error = ValueError("Test error")
        mock_sanitize.return_value = "Sanitized error"

        def failing_fn():
            raise test_error

        with pytest.raises(ValueError):
            handler.reconcile_with_metrics(body, failing_fn)

        mock_sanitize.assert_any_call(test_error)
        mock_emit_failed.assert_called_once_with(body, "Reconciliation failed: Sanitized error")
        mock_metrics.error_total.labels.assert_called_with(kind="InfraMachine", error_type="ValueError")
        mock_metrics.reconcile_total.labels.assert_any_call(kind="InfraMachine", result="error")
        handler.on_failure.assert_called_once_with(body, test_error)
        assert mock_metrics.reconcile_duration_seconds.labels.called
