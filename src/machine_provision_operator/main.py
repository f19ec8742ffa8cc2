"""Main entry point for the Machine Provision Operator."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any

import kopf
from werkzeug.serving import BaseWSGIServer, make_server

from . import handlers  # noqa: F401
from . import health
from . import logging as structured_logging
from .handlers.shared import get_provisioner
from .tracing import initialize_tracing, shutdown_tracing

logger = logging.getLogger(__name__)

_server: BaseWSGIServer | None = None


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure the operator."""
    global _server

    structured_logging.setup_structured_logging(logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper()))
    initialize_tracing()

    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = int(os.getenv("OPERATOR_MAX_WORKERS", "4"))

    # Start metrics HTTP server with health check endpoints
    metrics_port = int(os.getenv("METRICS_PORT", "8080"))
    _server = make_server("", metrics_port, health.create_combined_wsgi_app(), threaded=True)
    threading.Thread(target=_server.serve_forever, daemon=True).start()

    # Wire the Kubernetes clients before the first event arrives
    get_provisioner()
    health.mark_ready()
    logger.info("Machine provision operator started, metrics on port %d", metrics_port)


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    """Stop pending delayed re-evaluations, the metrics server and tracing."""
    global _server

    health.mark_not_ready()
    get_provisioner().enqueuer.cancel_all()
    if _server is not None:
        _server.shutdown()
        _server = None
    shutdown_tracing()
