"""Group membership resolution.

Resolvers turn a group identifier into the flat, deduplicated list of
member identities, expanding nested groups. Two backends are provided:

- GoogleDirectoryResolver: Google Workspace Admin SDK Directory API
- StaticMemberResolver: fixed membership, optionally loaded from YAML

Nested groups are expanded without a depth limit. Each resolution call
tracks the groups it has already expanded, so a membership cycle
terminates instead of recursing forever.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import httplib2
import yaml
from google.auth.exceptions import GoogleAuthError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

GROUP_MEMBER_TYPE = "GROUP"

# Largest page the members.list endpoint accepts
MEMBERS_PAGE_SIZE = 200

MAX_MEMBERS_FILE_SIZE_BYTES = 1024 * 1024


class ResolutionError(Exception):
    """Raised when a group cannot be resolved to its members."""

    def __init__(self, group: str, message: str) -> None:
        super().__init__(f"unable to get members of {group}: {message}")
        self.group = group


class MemberResolver(Protocol):
    """Capability used by the desired-state builder."""

    def resolve_members(self, group_id: str) -> list[str]: ...


class GoogleDirectoryResolver:
    """Resolve members through the Admin SDK Directory API."""

    def __init__(self, service: Any) -> None:
        """Initialize with a built ``admin`` ``directory_v1`` service."""
        self._service = service

    @classmethod
    def from_credentials(cls, credentials: Any) -> GoogleDirectoryResolver:
        """Build the directory service from delegated credentials."""
        service = build(
            "admin",
            "directory_v1",
            credentials=credentials,
            cache_discovery=False,
        )
        return cls(service)

    def resolve_members(self, group_id: str) -> list[str]:
        members: set[str] = set()
        self._expand(group_id, members, visited=set())
        return sorted(members)

    def _expand(self, group_id: str, members: set[str], visited: set[str]) -> None:
        key = group_id.lower()
        if key in visited:
            # Reached through a cycle or a second path; members are already collected
            logger.debug("Group already expanded", extra={"group": group_id})
            return
        visited.add(key)

        for member in self._list_members(group_id):
            email = member.get("email")
            if not email:
                # Members without an address (e.g. whole-customer) cannot be bound
                continue
            if member.get("type") == GROUP_MEMBER_TYPE:
                self._expand(email, members, visited)
            else:
                members.add(email)

    def _list_members(self, group_id: str) -> list[dict[str, Any]]:
        """Fetch every page of direct members of ``group_id``."""
        results: list[dict[str, Any]] = []
        members_api = self._service.members()
        request = members_api.list(groupKey=group_id, maxResults=MEMBERS_PAGE_SIZE)
        try:
            while request is not None:
                response = request.execute()
                results.extend(response.get("members", []))
                request = members_api.list_next(request, response)
        except HttpError as e:
            raise ResolutionError(group_id, f"directory API returned {e.resp.status}") from e
        except TransportError as e:
            raise ResolutionError(group_id, f"connection failed: {e}") from e
        except GoogleAuthError as e:
            raise ResolutionError(group_id, f"authentication failed: {e}") from e
        except (httplib2.HttpLib2Error, OSError) as e:
            raise ResolutionError(group_id, f"connection failed: {e}") from e
        return results


class StaticMemberResolver:
    """Fixed group membership, for local runs and tests.

    Nested groups are supported: a member that is itself a key of the
    mapping is expanded. Unknown groups raise ResolutionError.
    """

    def __init__(self, groups: dict[str, list[str]]) -> None:
        self._groups = {name: list(members) for name, members in groups.items()}

    @classmethod
    def from_yaml(cls, path: Path) -> StaticMemberResolver:
        """Load a ``groups: {group: [member, ...]}`` mapping from YAML.

        Raises:
            ResolutionError: If the file cannot be read or has the wrong shape.
        """
        try:
            if path.stat().st_size > MAX_MEMBERS_FILE_SIZE_BYTES:
                raise ResolutionError(str(path), "members file too large")
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ResolutionError(str(path), f"unable to load members file: {e}") from e

        groups = data.get("groups") if isinstance(data, dict) else None
        if not isinstance(groups, dict):
            raise ResolutionError(str(path), "members file must contain a 'groups' mapping")

        parsed: dict[str, list[str]] = {}
        for name, members in groups.items():
            if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
                raise ResolutionError(str(name), "members must be a list of strings")
            if not all(m.strip() for m in members):
                raise ResolutionError(str(name), "members must not be blank")
            parsed[str(name)] = members
        return cls(parsed)

    def resolve_members(self, group_id: str) -> list[str]:
        if group_id not in self._groups:
            raise ResolutionError(group_id, "group not found")

        members: set[str] = set()
        visited: set[str] = set()
        pending = [group_id]
        while pending:
            group = pending.pop()
            if group in visited:
                continue
            visited.add(group)
            for member in self._groups[group]:
                member = member.strip()
                if not member:
                    continue
                if member in self._groups:
                    pending.append(member)
                else:
                    members.add(member)
        return sorted(members)
