"""Configuration management with validation.

Configuration is read once at startup and never re-read during a
reconciliation cycle. All constraints are checked at construction time so
the operator fails fast on a bad deployment instead of mid-cycle.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class DirectoryBackend(str, Enum):
    """Supported group-membership backends."""

    GOOGLE = "google"
    STATIC = "static"


class RoleRefKind(str, Enum):
    """Kinds a RoleBinding may reference."""

    CLUSTER_ROLE = "ClusterRole"
    ROLE = "Role"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 10
MAX_RECONCILE_INTERVAL_SECONDS = 86400

DEFAULT_ROLES = "rbacsync-default"
DEFAULT_ROLEBINDING_PREFIX = "rbacsync-default"
DEFAULT_BIND_ADDRESS = ":8080"
DEFAULT_LOG_LEVEL = "INFO"

# Kubernetes object names are DNS subdomains (253 chars); keep room for "-<role>"
MAX_ROLEBINDING_PREFIX_LENGTH = 200

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_BIND_ADDRESS_PATTERN = r"^(?P<host>[A-Za-z0-9.\-]*|\[[0-9a-fA-F:]+\]):(?P<port>\d{1,5})$"


def split_roles(value: str) -> tuple[str, ...]:
    """Split a comma-separated role list into an ordered, duplicate-free tuple."""
    roles: list[str] = []
    for role in value.split(","):
        role = role.strip()
        if role and role not in roles:
            roles.append(role)
    return tuple(roles)


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS

    # Defaults applied to namespaces that only declare a group
    default_roles: tuple[str, ...] = field(default_factory=lambda: (DEFAULT_ROLES,))
    default_rolebinding_prefix: str = DEFAULT_ROLEBINDING_PREFIX
    role_ref_kind: RoleRefKind = RoleRefKind.CLUSTER_ROLE

    # Cluster access
    kubeconfig: Path | None = None

    # Directory access
    directory_backend: DirectoryBackend = DirectoryBackend.GOOGLE
    service_account_keyfile: Path | None = None
    gcp_admin_user: str | None = None
    members_file: Path | None = None

    # Health and metrics endpoint
    bind_address: str = DEFAULT_BIND_ADDRESS

    # Behavior
    dry_run: bool = False
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"UPDATE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not self.default_roles:
            errors.append("DEFAULT_ROLES must name at least one role")

        if not self.default_rolebinding_prefix.strip():
            errors.append("DEFAULT_ROLEBINDING_PREFIX is required")
        elif len(self.default_rolebinding_prefix) > MAX_ROLEBINDING_PREFIX_LENGTH:
            errors.append(
                f"DEFAULT_ROLEBINDING_PREFIX exceeds maximum length of "
                f"{MAX_ROLEBINDING_PREFIX_LENGTH}"
            )

        # Backend-specific validation
        if self.directory_backend == DirectoryBackend.GOOGLE:
            if self.service_account_keyfile is None:
                errors.append("SERVICEACCOUNT_KEYFILE is required when directory backend is google")
            elif not self.service_account_keyfile.is_file():
                errors.append(
                    f"SERVICEACCOUNT_KEYFILE does not exist: {self.service_account_keyfile}"
                )
            if not self.gcp_admin_user:
                errors.append("GCP_ADMIN_USER is required when directory backend is google")
            elif "@" not in self.gcp_admin_user:
                errors.append(f"GCP_ADMIN_USER must be an e-mail address: {self.gcp_admin_user}")

        if self.directory_backend == DirectoryBackend.STATIC:
            if self.members_file is None:
                errors.append("MEMBERS_FILE is required when directory backend is static")
            elif not self.members_file.is_file():
                errors.append(f"MEMBERS_FILE does not exist: {self.members_file}")

        if self.kubeconfig is not None and not self.kubeconfig.is_file():
            errors.append(f"KUBECONFIG does not exist: {self.kubeconfig}")

        if not re.match(VALID_BIND_ADDRESS_PATTERN, self.bind_address):
            errors.append(f"BIND_ADDRESS must look like host:port or :port: {self.bind_address}")
        elif not 0 < self.bind_port <= 65535:
            errors.append(f"BIND_ADDRESS port out of range: {self.bind_address}")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def bind_host(self) -> str:
        """Host part of the bind address; empty means all interfaces."""
        host = self.bind_address.rsplit(":", 1)[0]
        return host.strip("[]")

    @property
    def bind_port(self) -> int:
        """Port part of the bind address."""
        return int(self.bind_address.rsplit(":", 1)[1])

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            UPDATE_INTERVAL: Seconds between reconciliation cycles (default: 300)
            DEFAULT_ROLES: Comma-separated roles for namespaces without a roles
                annotation (default: rbacsync-default)
            DEFAULT_ROLEBINDING_PREFIX: Binding name prefix for namespaces without
                a prefix annotation (default: rbacsync-default)
            ROLE_REF_KIND: ClusterRole or Role (default: ClusterRole)
            KUBECONFIG: Path to a kubeconfig; in-cluster config is used if unset
            DIRECTORY_BACKEND: google or static (default: google)
            SERVICEACCOUNT_KEYFILE: Google service account key file (google backend)
            GCP_ADMIN_USER: Workspace admin to impersonate (google backend)
            MEMBERS_FILE: YAML group membership file (static backend)
            BIND_ADDRESS: Health and metrics listen address (default: :8080)
            DRY_RUN: If "true", compute the plan without mutating (default: false)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        def get_enum(key: str, enum_cls: type[Enum], default: Enum) -> Enum:
            value = os.environ.get(key)
            if not value:
                return default
            try:
                return enum_cls(value)
            except ValueError as e:
                valid = [m.value for m in enum_cls]
                raise ConfigurationError(f"{key} must be one of {valid}: {value}") from e

        return cls(
            reconcile_interval_seconds=get_int(
                "UPDATE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            default_roles=split_roles(os.environ.get("DEFAULT_ROLES", DEFAULT_ROLES)),
            default_rolebinding_prefix=os.environ.get(
                "DEFAULT_ROLEBINDING_PREFIX", DEFAULT_ROLEBINDING_PREFIX
            ),
            role_ref_kind=get_enum("ROLE_REF_KIND", RoleRefKind, RoleRefKind.CLUSTER_ROLE),
            kubeconfig=get_path("KUBECONFIG"),
            directory_backend=get_enum(
                "DIRECTORY_BACKEND", DirectoryBackend, DirectoryBackend.GOOGLE
            ),
            service_account_keyfile=get_path("SERVICEACCOUNT_KEYFILE"),
            gcp_admin_user=os.environ.get("GCP_ADMIN_USER"),
            members_file=get_path("MEMBERS_FILE"),
            bind_address=os.environ.get("BIND_ADDRESS", DEFAULT_BIND_ADDRESS),
            dry_run=get_bool("DRY_RUN", False),
            log_level=os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL),
        )
