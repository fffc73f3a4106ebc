"""Success and failure counters for reconciliation operations.

The reconciler never touches a process-wide metric. It reports into a
MetricsSink handed to it at construction, so each instance (and each test)
gets its own counters.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from prometheus_client import CollectorRegistry, Counter

METRICS_NAMESPACE = "rbac_sync"


class Operation(str, Enum):
    """Operation categories used as the counter label."""

    DELETE_ORPHAN = "delete-orphan"
    CREATE_ROLEBINDING = "create-rolebinding"
    UPDATE_ROLEBINDING = "updated-rolebinding"
    NO_MATCHING_ROLEBINDING = "no-matching-rolebinding"
    GET_MEMBERS = "get-members"
    GET_NAMESPACES = "get-namespaces"
    GET_CURRENT_ROLEBINDINGS = "get-current-rolebindings"


class MetricsSink(Protocol):
    """Anything the reconciler can report outcomes into."""

    def success(self, operation: Operation, amount: int = 1) -> None: ...

    def failure(self, operation: Operation, amount: int = 1) -> None: ...


class PrometheusMetrics:
    """MetricsSink backed by prometheus_client counters.

    Each instance registers its counters in its own CollectorRegistry
    unless one is supplied, which keeps instances independent.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._success = Counter(
            "success",
            "Cumulative number of successful rbac-sync operations",
            ["operation"],
            namespace=METRICS_NAMESPACE,
            registry=self.registry,
        )
        self._errors = Counter(
            "errors",
            "Cumulative number of failed rbac-sync operations",
            ["operation"],
            namespace=METRICS_NAMESPACE,
            registry=self.registry,
        )
        # Expose every label at zero so dashboards see the series before the first event
        for operation in Operation:
            self._success.labels(operation=operation.value)
            self._errors.labels(operation=operation.value)

    def success(self, operation: Operation, amount: int = 1) -> None:
        if amount:
            self._success.labels(operation=operation.value).inc(amount)

    def failure(self, operation: Operation, amount: int = 1) -> None:
        if amount:
            self._errors.labels(operation=operation.value).inc(amount)

    def success_count(self, operation: Operation) -> float:
        """Current value of the success counter for ``operation``."""
        value = self.registry.get_sample_value(
            f"{METRICS_NAMESPACE}_success_total", {"operation": operation.value}
        )
        return value or 0.0

    def failure_count(self, operation: Operation) -> float:
        """Current value of the failure counter for ``operation``."""
        value = self.registry.get_sample_value(
            f"{METRICS_NAMESPACE}_errors_total", {"operation": operation.value}
        )
        return value or 0.0
