"""Desired-state construction from tenant declarations."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from pydantic import ValidationError

from .config import RoleRefKind
from .directory import MemberResolver, ResolutionError
from .metrics import MetricsSink, Operation
from .models import RoleBinding, TenantDeclaration

logger = logging.getLogger(__name__)


@dataclass
class DesiredState:
    """Bindings the cluster should hold, plus the tenants skipped this cycle."""

    bindings: list[RoleBinding] = field(default_factory=list)
    # Namespaces whose group could not be resolved, with the reason
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def failed_namespaces(self) -> frozenset[str]:
        return frozenset(self.failed)


def active_declarations(declarations: Iterable[TenantDeclaration]) -> list[TenantDeclaration]:
    """Drop namespaces that do not declare a group."""
    return [declaration for declaration in declarations if declaration.active]


def build_desired(
    declarations: Iterable[TenantDeclaration],
    resolver: MemberResolver,
    metrics: MetricsSink,
    role_ref_kind: RoleRefKind = RoleRefKind.CLUSTER_ROLE,
) -> DesiredState:
    """Resolve each active declaration and emit one binding per role.

    A declaration whose group cannot be resolved contributes no bindings;
    the failure is recorded on the result and the remaining declarations
    are still processed.
    """
    state = DesiredState()

    for declaration in active_declarations(declarations):
        try:
            members = resolver.resolve_members(declaration.group)
        except ResolutionError as e:
            metrics.failure(Operation.GET_MEMBERS)
            logger.error(
                "Unable to get members for group",
                extra={
                    "group": declaration.group,
                    "namespace": declaration.namespace,
                    "error": str(e),
                },
            )
            state.failed[declaration.namespace] = str(e)
            continue

        try:
            bindings = [
                RoleBinding.for_role(
                    declaration.binding_prefix,
                    declaration.namespace,
                    role,
                    members,
                    role_ref_kind=role_ref_kind,
                )
                for role in declaration.roles
            ]
        except ValidationError as e:
            # Resolver returned an identity that cannot be a binding subject
            metrics.failure(Operation.GET_MEMBERS)
            logger.error(
                "Invalid members for group",
                extra={
                    "group": declaration.group,
                    "namespace": declaration.namespace,
                    "error": str(e),
                },
            )
            state.failed[declaration.namespace] = f"invalid members of {declaration.group}"
            continue

        metrics.success(Operation.GET_MEMBERS)
        state.bindings.extend(bindings)

    return state
