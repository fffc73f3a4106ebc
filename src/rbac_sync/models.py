"""Pydantic models for tenant declarations and role bindings.

These models provide:
1. Parsing of namespace annotations into tenant declarations
2. A cluster-independent view of RoleBindings used by the diff
3. Conversion to and from the Kubernetes client objects
"""

from __future__ import annotations

from typing import Annotated, Any

from kubernetes.client import RbacV1Subject, V1ObjectMeta, V1RoleBinding, V1RoleRef
from pydantic import BaseModel, Field, field_validator

from .config import RoleRefKind, split_roles

# =============================================================================
# Annotations and labels
# =============================================================================

ANNOTATION_NS = "rbac-sync.nais.io"
MANAGED_LABEL = f"{ANNOTATION_NS}/managed"
GROUP_NAME_ANNOTATION = f"{ANNOTATION_NS}/group-name"
ROLES_ANNOTATION = f"{ANNOTATION_NS}/roles"
ROLEBINDING_PREFIX_ANNOTATION = f"{ANNOTATION_NS}/rolebinding-prefix"

RBAC_API_GROUP = "rbac.authorization.k8s.io"
USER_KIND = "User"

# Label selector matching every binding owned by this operator
MANAGED_SELECTOR = f"{MANAGED_LABEL}=true"


# =============================================================================
# Tenant declarations
# =============================================================================


class TenantDeclaration(BaseModel):
    """Access intent declared on a namespace through annotations."""

    model_config = {"frozen": True}

    namespace: Annotated[str, Field(min_length=1)]
    group: str = ""
    roles: tuple[str, ...] = ()
    binding_prefix: str = ""

    @field_validator("group", "binding_prefix")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()

    @property
    def active(self) -> bool:
        """A declaration without a group does not participate."""
        return bool(self.group) and bool(self.roles)

    @classmethod
    def from_namespace(
        cls,
        name: str,
        annotations: dict[str, str] | None,
        default_roles: tuple[str, ...],
        default_prefix: str,
    ) -> TenantDeclaration:
        """Build a declaration from namespace metadata, applying defaults."""
        annotations = annotations or {}

        roles = split_roles(annotations.get(ROLES_ANNOTATION, ""))
        prefix = annotations.get(ROLEBINDING_PREFIX_ANNOTATION, "").strip()

        return cls(
            namespace=name,
            group=annotations.get(GROUP_NAME_ANNOTATION, ""),
            roles=roles or default_roles,
            binding_prefix=prefix or default_prefix,
        )


# =============================================================================
# Role bindings
# =============================================================================


class Subject(BaseModel):
    """A member granted a role."""

    model_config = {"frozen": True}

    kind: str = USER_KIND
    api_group: str = RBAC_API_GROUP
    name: Annotated[str, Field(min_length=1)]
    namespace: str | None = None


class RoleRef(BaseModel):
    """The role a binding grants. Immutable on the cluster."""

    model_config = {"frozen": True}

    kind: str = RoleRefKind.CLUSTER_ROLE.value
    api_group: str = RBAC_API_GROUP
    name: Annotated[str, Field(min_length=1)]


class RoleBinding(BaseModel):
    """A RoleBinding, either computed from declarations or read from the cluster."""

    name: Annotated[str, Field(min_length=1)]
    namespace: Annotated[str, Field(min_length=1)]
    role_ref: RoleRef
    subjects: list[Subject] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        """Identity key used to match desired and observed bindings."""
        return (self.name, self.namespace)

    @property
    def subject_names(self) -> set[str]:
        return {subject.name for subject in self.subjects}

    @property
    def managed(self) -> bool:
        return self.labels.get(MANAGED_LABEL) == "true"

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def for_role(
        cls,
        prefix: str,
        namespace: str,
        role: str,
        members: list[str],
        role_ref_kind: RoleRefKind = RoleRefKind.CLUSTER_ROLE,
    ) -> RoleBinding:
        """Build the desired binding granting ``role`` to ``members``."""
        return cls(
            name=f"{prefix}-{role}",
            namespace=namespace,
            role_ref=RoleRef(kind=role_ref_kind.value, name=role),
            subjects=[Subject(name=member) for member in sorted(set(members))],
            labels={MANAGED_LABEL: "true"},
        )

    def to_k8s(self) -> V1RoleBinding:
        """Convert to the Kubernetes client object used for create calls."""
        return V1RoleBinding(
            api_version=f"{RBAC_API_GROUP}/v1",
            kind="RoleBinding",
            metadata=V1ObjectMeta(
                name=self.name,
                namespace=self.namespace,
                labels=dict(self.labels),
            ),
            role_ref=V1RoleRef(
                api_group=self.role_ref.api_group,
                kind=self.role_ref.kind,
                name=self.role_ref.name,
            ),
            subjects=[
                RbacV1Subject(
                    api_group=subject.api_group,
                    kind=subject.kind,
                    name=subject.name,
                    namespace=subject.namespace,
                )
                for subject in self.subjects
            ],
        )

    @classmethod
    def from_k8s(cls, obj: Any) -> RoleBinding:
        """Convert a Kubernetes client RoleBinding (as returned by list calls)."""
        metadata = obj.metadata
        role_ref = obj.role_ref
        return cls(
            name=metadata.name,
            namespace=metadata.namespace,
            role_ref=RoleRef(
                kind=role_ref.kind,
                api_group=role_ref.api_group or RBAC_API_GROUP,
                name=role_ref.name,
            ),
            subjects=[
                Subject(
                    kind=subject.kind,
                    api_group=subject.api_group or "",
                    name=subject.name,
                    namespace=subject.namespace,
                )
                for subject in obj.subjects or []
            ],
            labels=dict(metadata.labels or {}),
        )
