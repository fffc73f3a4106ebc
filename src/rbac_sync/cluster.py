"""Kubernetes access for namespaces and managed RoleBindings.

The ClusterStore is the only component that talks to the API server. Reads
raise ClusterReadError and writes raise ClusterWriteError, both wrapping
the client's ApiException, so callers can tell a cycle-fatal read failure
from a per-binding write failure.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .models import MANAGED_SELECTOR, RoleBinding, TenantDeclaration

logger = logging.getLogger(__name__)

# Page size for list calls; keeps API server responses bounded on large clusters
LIST_PAGE_SIZE = 500

# Timeout in seconds for a single API request
REQUEST_TIMEOUT_SECONDS = 30


class ClusterReadError(Exception):
    """Raised when namespaces or managed bindings cannot be listed."""

    pass


class ClusterWriteError(Exception):
    """Raised when a single binding cannot be created or deleted."""

    def __init__(self, action: str, binding: RoleBinding, reason: str) -> None:
        super().__init__(f"unable to {action} rolebinding {binding}: {reason}")
        self.action = action
        self.binding = binding


def load_kube_config(kubeconfig: Path | None = None) -> None:
    """Load cluster credentials into the kubernetes client.

    An explicit kubeconfig wins. Otherwise the in-cluster service account
    is used, falling back to the default local kubeconfig.
    """
    if kubeconfig is not None:
        logger.info("Using configuration from kubeconfig", extra={"kubeconfig": str(kubeconfig)})
        config.load_kube_config(config_file=str(kubeconfig))
        return

    try:
        config.load_incluster_config()
        logger.info("Using in-cluster configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Using local kubeconfig")


def _describe(error: Exception) -> str:
    if isinstance(error, ApiException):
        return f"{error.status} {error.reason}"
    return str(error)


class ClusterStore:
    """List and mutate RoleBindings through the Kubernetes API."""

    def __init__(self, core_api: Any, rbac_api: Any) -> None:
        """Initialize with CoreV1Api and RbacAuthorizationV1Api instances."""
        self._core = core_api
        self._rbac = rbac_api

    @classmethod
    def from_kubeconfig(cls, kubeconfig: Path | None = None) -> ClusterStore:
        load_kube_config(kubeconfig)
        return cls(client.CoreV1Api(), client.RbacAuthorizationV1Api())

    def list_tenant_declarations(
        self,
        default_roles: tuple[str, ...],
        default_prefix: str,
    ) -> list[TenantDeclaration]:
        """Read every namespace and turn its annotations into a declaration.

        Raises:
            ClusterReadError: If namespaces cannot be listed.
        """
        try:
            namespaces = list(self._paginate(self._core.list_namespace))
        except (ApiException, HTTPError) as e:
            raise ClusterReadError(f"unable to get all namespaces: {_describe(e)}") from e

        return [
            TenantDeclaration.from_namespace(
                ns.metadata.name,
                ns.metadata.annotations,
                default_roles=default_roles,
                default_prefix=default_prefix,
            )
            for ns in namespaces
        ]

    def list_managed_role_bindings(self) -> list[RoleBinding]:
        """List bindings carrying the ownership label, across all namespaces.

        Raises:
            ClusterReadError: If the bindings cannot be listed.
        """
        try:
            items = list(
                self._paginate(
                    self._rbac.list_role_binding_for_all_namespaces,
                    label_selector=MANAGED_SELECTOR,
                )
            )
        except (ApiException, HTTPError) as e:
            raise ClusterReadError(
                f"unable to get current managed rolebindings: {_describe(e)}"
            ) from e

        return [RoleBinding.from_k8s(item) for item in items]

    def create_role_binding(self, binding: RoleBinding) -> None:
        """Create ``binding`` in its namespace.

        Raises:
            ClusterWriteError: If the API server rejects the request.
        """
        try:
            self._rbac.create_namespaced_role_binding(
                namespace=binding.namespace,
                body=binding.to_k8s(),
                _request_timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except (ApiException, HTTPError) as e:
            raise ClusterWriteError("create", binding, _describe(e)) from e
        logger.debug(
            "Created rolebinding",
            extra={"rolebinding": binding.name, "namespace": binding.namespace},
        )

    def delete_role_binding(self, binding: RoleBinding) -> None:
        """Delete ``binding`` by name and namespace.

        Raises:
            ClusterWriteError: If the API server rejects the request.
        """
        try:
            self._rbac.delete_namespaced_role_binding(
                name=binding.name,
                namespace=binding.namespace,
                _request_timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except (ApiException, HTTPError) as e:
            raise ClusterWriteError("delete", binding, _describe(e)) from e
        logger.debug(
            "Deleted rolebinding",
            extra={"rolebinding": binding.name, "namespace": binding.namespace},
        )

    @staticmethod
    def _paginate(list_call: Callable[..., Any], **kwargs: Any) -> Iterator[Any]:
        """Yield items from a list call, following continue tokens."""
        token: str | None = None
        while True:
            page = list_call(
                limit=LIST_PAGE_SIZE,
                _continue=token,
                _request_timeout=REQUEST_TIMEOUT_SECONDS,
                **kwargs,
            )
            yield from page.items or []
            token = page.metadata._continue if page.metadata else None
            if not token:
                return
