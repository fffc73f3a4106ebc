"""Health check and metrics HTTP endpoint.

Serves ``/healthz`` and ``/metrics`` from one WSGI app on the configured
bind address, in a daemon thread next to the reconciliation loop.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app

logger = logging.getLogger(__name__)

HEALTH_PATH = "/healthz"

StartResponse = Callable[..., Any]


class _QuietHandler(WSGIRequestHandler):
    """Request handler that does not write probe traffic to stderr."""

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        pass


def create_app(registry: CollectorRegistry) -> Callable[[dict[str, Any], StartResponse], Iterable[bytes]]:
    """Build a WSGI app answering health probes and serving ``registry``."""
    metrics_app = make_wsgi_app(registry)

    def app(environ: dict[str, Any], start_response: StartResponse) -> Iterable[bytes]:
        if environ.get("PATH_INFO") == HEALTH_PATH:
            start_response("200 OK", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"OK"]
        return metrics_app(environ, start_response)

    return app


def serve(registry: CollectorRegistry, host: str, port: int) -> WSGIServer:
    """Start the endpoint in a daemon thread and return the server."""
    server = make_server(host, port, create_app(registry), handler_class=_QuietHandler)
    thread = threading.Thread(target=server.serve_forever, name="health-server", daemon=True)
    thread.start()
    logger.info("Server started", extra={"host": host or "0.0.0.0", "port": port})
    return server
