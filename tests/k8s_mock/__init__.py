"""Kubernetes and directory API mocks for integration testing.

This module provides in-memory stand-ins for the client APIs the operator
talks to, so the full reconciliation cycle can be exercised without a
cluster or a Google Workspace tenant.

Key Features:
- Namespaces with annotations and RoleBindings with labels
- Label selector filtering and paginated list responses
- Error injection raising the client's own exception types
- Call recording to assert on mutation order

Usage:
    from k8s_mock import MockCluster

    cluster = MockCluster()
    cluster.add_namespace("ns1", {"rbac-sync.nais.io/group-name": "eng@example.com"})
    store = cluster.store()

    reconciler = Reconciler(config, store, resolver, metrics)
    reconciler.reconcile_once()

    assert cluster.binding_names("ns1") == ["team-admin"]
"""

from .cluster import MockCluster, MockCoreV1Api, MockRbacV1Api
from .directory import MockDirectoryService, directory_member

__all__ = [
    "MockCluster",
    "MockCoreV1Api",
    "MockDirectoryService",
    "MockRbacV1Api",
    "directory_member",
]
