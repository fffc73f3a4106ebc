"""Mock Admin SDK Directory service.

Mimics the ``service.members().list(...).execute()`` /
``list_next(request, response)`` call shape of googleapiclient, with
paging and HttpError injection.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

from googleapiclient.errors import HttpError


def directory_member(email: str, member_type: str = "USER") -> dict[str, str]:
    """Build a member resource as returned by members.list."""
    return {"kind": "admin#directory#member", "email": email, "type": member_type}


class MockMembersRequest:
    """One pending members.list request."""

    def __init__(self, service: MockDirectoryService, group_key: str, page: int) -> None:
        self._service = service
        self.group_key = group_key
        self.page = page

    def execute(self) -> dict[str, Any]:
        return self._service._execute(self)


class MockMembersResource:
    def __init__(self, service: MockDirectoryService) -> None:
        self._service = service

    def list(self, groupKey: str, **kwargs: Any) -> MockMembersRequest:  # noqa: N803
        self._service.list_calls.append(groupKey)
        return MockMembersRequest(self._service, groupKey, page=0)

    def list_next(
        self, previous_request: MockMembersRequest, previous_response: dict[str, Any]
    ) -> MockMembersRequest | None:
        if not previous_response.get("nextPageToken"):
            return None
        return MockMembersRequest(
            self._service, previous_request.group_key, page=previous_request.page + 1
        )


class MockDirectoryService:
    """Directory service double holding group membership in memory."""

    def __init__(self, page_size: int = 2) -> None:
        self._groups: dict[str, list[dict[str, str]]] = {}
        self._failing: dict[str, int | Exception] = {}
        self._page_size = page_size
        self.list_calls: list[str] = []
        self.execute_calls = 0

    def add_group(self, group: str, members: list[dict[str, str]]) -> None:
        self._groups[group] = members

    def fail_group(self, group: str, status: int = 403, error: Exception | None = None) -> None:
        """Make listing ``group`` fail with an HTTP status, or raise ``error`` as-is."""
        self._failing[group] = error if error is not None else status

    def members(self) -> MockMembersResource:
        return MockMembersResource(self)

    def _execute(self, request: MockMembersRequest) -> dict[str, Any]:
        self.execute_calls += 1
        if request.group_key in self._failing:
            failure = self._failing[request.group_key]
            if isinstance(failure, Exception):
                raise failure
            raise HttpError(
                SimpleNamespace(status=failure, reason="Forbidden"),
                b'{"error": {"message": "Not Authorized to access this resource/api"}}',
            )
        if request.group_key not in self._groups:
            raise HttpError(
                SimpleNamespace(status=404, reason="Not Found"),
                b'{"error": {"message": "Resource Not Found: groupKey"}}',
            )

        members = self._groups[request.group_key]
        start = request.page * self._page_size
        page = members[start : start + self._page_size]
        response: dict[str, Any] = {"kind": "admin#directory#members"}
        if page:
            response["members"] = page
        if start + self._page_size < len(members):
            response["nextPageToken"] = f"page-{request.page + 1}"
        return response
