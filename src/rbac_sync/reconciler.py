"""Core reconciliation loop.

This module implements the Kubernetes-style reconciliation pattern:
1. Read managed RoleBindings and namespace declarations from the cluster
2. Resolve declared groups to members and build the desired bindings
3. Diff desired against observed (orphans, additions, updates)
4. Apply deletes, then creates, then updates (delete + recreate)
5. Repeat on interval

The engine keeps no state between cycles: every cycle starts from a fresh
read of the cluster. If that read fails, the cycle mutates nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .cluster import ClusterReadError, ClusterStore, ClusterWriteError
from .config import Config
from .desired import build_desired
from .diff import ReconcilePlan, plan
from .directory import MemberResolver
from .metrics import MetricsSink, Operation
from .models import RoleBinding

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of a single reconciliation cycle."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    dry_run: bool = False
    plan: ReconcilePlan | None = None
    deleted: int = 0
    created: int = 0
    updated: int = 0
    failures: int = 0
    failed_namespaces: dict[str, str] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the cycle read the cluster and applied without failures."""
        return self.error is None and self.failures == 0


class Reconciler:
    """Drives desired bindings onto the cluster.

    Collaborators are injected: the cluster store, the member resolver, and
    the metrics sink. The reconciler never re-reads the cluster within a
    cycle; orphan removal and additions are simulated locally before the
    update diff.
    """

    def __init__(
        self,
        config: Config,
        store: ClusterStore,
        resolver: MemberResolver,
        metrics: MetricsSink,
    ) -> None:
        self._config = config
        self._store = store
        self._resolver = resolver
        self._metrics = metrics
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    async def run(self) -> None:
        """Run reconciliation cycles at the configured interval until shutdown.

        A failed or crashed cycle is logged and the loop proceeds to the next
        one; nothing short of shutdown ends the loop.
        """
        logger.info(
            "Starting reconciler",
            extra={
                "interval_seconds": self._config.reconcile_interval_seconds,
                "default_roles": list(self._config.default_roles),
                "default_rolebinding_prefix": self._config.default_rolebinding_prefix,
                "dry_run": self._config.dry_run,
            },
        )

        loop = asyncio.get_running_loop()
        while not self._shutdown_event.is_set():
            try:
                # Blocking client calls run off the event loop so signals are still handled
                result = await loop.run_in_executor(None, self.reconcile_once)
            except Exception as e:
                logger.exception("Unexpected error during reconciliation")
                result = ReconcileResult(end_time=datetime.now(UTC), error=e)
            self.log_result(result)

            logger.debug(
                "Sleeping", extra={"interval_seconds": self._config.reconcile_interval_seconds}
            )
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._config.reconcile_interval_seconds,
                )
            except TimeoutError:
                # Normal timeout, continue to next cycle
                pass

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop after the current cycle."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def compute_plan(self) -> tuple[ReconcilePlan, dict[str, str]]:
        """Read the cluster, build desired state, and diff.

        Returns:
            The plan and the namespaces whose group failed to resolve.

        Raises:
            ClusterReadError: If namespaces or managed bindings cannot be listed.
        """
        try:
            current = self._store.list_managed_role_bindings()
        except ClusterReadError:
            self._metrics.failure(Operation.GET_CURRENT_ROLEBINDINGS)
            raise

        try:
            declarations = self._store.list_tenant_declarations(
                default_roles=self._config.default_roles,
                default_prefix=self._config.default_rolebinding_prefix,
            )
        except ClusterReadError:
            self._metrics.failure(Operation.GET_NAMESPACES)
            raise

        desired = build_desired(
            declarations,
            self._resolver,
            self._metrics,
            role_ref_kind=self._config.role_ref_kind,
        )
        return plan(desired.bindings, current, desired.failed_namespaces), desired.failed

    def reconcile_once(self) -> ReconcileResult:
        """Run one full read-diff-apply cycle."""
        result = ReconcileResult(dry_run=self._config.dry_run)

        try:
            result.plan, result.failed_namespaces = self.compute_plan()
        except ClusterReadError as e:
            logger.error("Unable to read cluster state, skipping cycle", extra={"error": str(e)})
            result.error = e
            result.end_time = datetime.now(UTC)
            return result

        self._report_unmatched(result.plan)

        if self._config.dry_run:
            self._log_plan(result.plan)
        else:
            self.apply(result.plan, result)

        result.end_time = datetime.now(UTC)
        return result

    def apply(self, reconcile_plan: ReconcilePlan, result: ReconcileResult) -> None:
        """Apply a plan: delete orphans, create additions, then recreate updates."""
        for binding in reconcile_plan.orphans:
            if self._delete(binding, Operation.DELETE_ORPHAN):
                result.deleted += 1
            else:
                result.failures += 1

        for binding in reconcile_plan.additions:
            if self._create(binding, Operation.CREATE_ROLEBINDING):
                result.created += 1
            else:
                result.failures += 1

        # roleRef is immutable on RoleBindings, so an update is delete + create
        for binding in reconcile_plan.updates:
            if not self._delete(binding, Operation.UPDATE_ROLEBINDING):
                result.failures += 1
                continue
            if not self._create(binding, Operation.UPDATE_ROLEBINDING):
                result.failures += 1
                continue
            self._metrics.success(Operation.UPDATE_ROLEBINDING)
            result.updated += 1

    def _delete(self, binding: RoleBinding, operation: Operation) -> bool:
        try:
            self._store.delete_role_binding(binding)
        except ClusterWriteError as e:
            self._metrics.failure(operation)
            logger.error(
                "Unable to delete rolebinding",
                extra={
                    "rolebinding": binding.name,
                    "namespace": binding.namespace,
                    "operation": operation.value,
                    "error": str(e),
                },
            )
            return False

        if operation is Operation.DELETE_ORPHAN:
            self._metrics.success(operation)
            logger.info(
                "Deleted orphaned rolebinding",
                extra={"rolebinding": binding.name, "namespace": binding.namespace},
            )
        return True

    def _create(self, binding: RoleBinding, operation: Operation) -> bool:
        try:
            self._store.create_role_binding(binding)
        except ClusterWriteError as e:
            self._metrics.failure(operation)
            logger.error(
                "Unable to create rolebinding",
                extra={
                    "rolebinding": binding.name,
                    "namespace": binding.namespace,
                    "operation": operation.value,
                    "error": str(e),
                },
            )
            return False

        if operation is Operation.CREATE_ROLEBINDING:
            self._metrics.success(operation)
        logger.info(
            "Created rolebinding" if operation is Operation.CREATE_ROLEBINDING
            else "Updated rolebinding",
            extra={
                "rolebinding": binding.name,
                "namespace": binding.namespace,
                "role": binding.role_ref.name,
                "subjects": len(binding.subjects),
            },
        )
        return True

    def _report_unmatched(self, reconcile_plan: ReconcilePlan) -> None:
        for error in reconcile_plan.unmatched:
            self._metrics.failure(Operation.NO_MATCHING_ROLEBINDING)
            logger.error(
                "No matching rolebinding for update check",
                extra={
                    "rolebinding": error.binding.name,
                    "namespace": error.binding.namespace,
                    "error": str(error),
                },
            )

    def _log_plan(self, reconcile_plan: ReconcilePlan) -> None:
        """Log what a cycle would change (dry run)."""
        for action, bindings in (
            ("delete", reconcile_plan.orphans),
            ("create", reconcile_plan.additions),
            ("update", reconcile_plan.updates),
        ):
            for binding in bindings:
                logger.info(
                    "Dry run: would %s rolebinding",
                    action,
                    extra={"rolebinding": binding.name, "namespace": binding.namespace},
                )

    def log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "duration_seconds": result.duration_seconds,
            "dry_run": result.dry_run,
            "deleted": result.deleted,
            "created": result.created,
            "updated": result.updated,
            "failures": result.failures,
        }
        if result.plan is not None:
            extra.update({f"planned_{k}": v for k, v in result.plan.summary().items()})
        if result.failed_namespaces:
            extra["failed_namespaces"] = sorted(result.failed_namespaces)

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        elif result.failures or result.failed_namespaces:
            logger.warning("Reconciliation completed with errors", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
