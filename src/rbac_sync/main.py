"""Operator bootstrap: logging, collaborators, signals, and the loop.

The reconciliation engine itself lives in reconciler.py. This module wires
it to the real cluster, the configured directory backend, the Prometheus
registry, and the health endpoint.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from .cluster import ClusterStore
from .config import Config, DirectoryBackend
from .credentials import CredentialsError, load_directory_credentials
from .directory import GoogleDirectoryResolver, MemberResolver, ResolutionError, StaticMemberResolver
from .health import serve
from .metrics import PrometheusMetrics
from .reconciler import Reconciler

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from client libraries
    for noisy in ("kubernetes", "urllib3", "googleapiclient", "google.auth"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_resolver(config: Config) -> MemberResolver:
    """Create the member resolver for the configured backend.

    Raises:
        CredentialsError: If the Google credentials cannot be loaded.
        ResolutionError: If the static members file cannot be loaded.
    """
    if config.directory_backend == DirectoryBackend.STATIC:
        # SAFETY: members_file is validated non-None in Config.__post_init__()
        assert config.members_file is not None
        return StaticMemberResolver.from_yaml(config.members_file)

    assert config.service_account_keyfile is not None and config.gcp_admin_user
    credentials = load_directory_credentials(config.service_account_keyfile, config.gcp_admin_user)
    return GoogleDirectoryResolver.from_credentials(credentials)


def build_reconciler(config: Config, metrics: PrometheusMetrics) -> Reconciler:
    """Wire a reconciler to the live cluster and directory."""
    store = ClusterStore.from_kubeconfig(config.kubeconfig)
    return Reconciler(config, store, build_resolver(config), metrics)


async def run_operator(config: Config) -> int:
    """Run the operator until SIGTERM or SIGINT.

    Returns:
        Exit code (0 for clean shutdown, non-zero for startup failure).
    """
    logger = logging.getLogger(__name__)
    metrics = PrometheusMetrics()

    try:
        reconciler = build_reconciler(config, metrics)
    except (CredentialsError, ResolutionError) as e:
        logger.error("Unable to initialize directory access", extra={"error": str(e)})
        return 1
    except Exception as e:
        # Unexpected initialization error (kubeconfig, client construction)
        logger.error(
            "Failed to initialize reconciler",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    server = serve(metrics.registry, config.bind_host, config.bind_port)

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal, terminating", extra={"signal": sig.name})
        reconciler.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await reconciler.run()
    finally:
        server.shutdown()

    logger.info("Operator stopped")
    return 0

