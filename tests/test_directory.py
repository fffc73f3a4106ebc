"""Tests for group membership resolution."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from google.auth.exceptions import RefreshError, TransportError

from k8s_mock import MockDirectoryService, directory_member
from rbac_sync.directory import (
    MEMBERS_PAGE_SIZE,
    GoogleDirectoryResolver,
    ResolutionError,
    StaticMemberResolver,
)


@pytest.fixture
def service() -> MockDirectoryService:
    return MockDirectoryService(page_size=2)


class TestGoogleDirectoryResolver:
    """Tests for the Admin SDK backed resolver."""

    def test_flat_group(self, service: MockDirectoryService) -> None:
        service.add_group(
            "eng@example.com",
            [directory_member("bob@example.com"), directory_member("alice@example.com")],
        )

        resolver = GoogleDirectoryResolver(service)

        assert resolver.resolve_members("eng@example.com") == [
            "alice@example.com",
            "bob@example.com",
        ]

    def test_follows_pagination(self, service: MockDirectoryService) -> None:
        """Test that every page is read, not just the first."""
        users = [directory_member(f"user{i}@example.com") for i in range(5)]
        service.add_group("big@example.com", users)

        members = GoogleDirectoryResolver(service).resolve_members("big@example.com")

        assert len(members) == 5
        assert service.execute_calls == 3

    def test_nested_groups_expanded(self, service: MockDirectoryService) -> None:
        service.add_group(
            "eng@example.com",
            [
                directory_member("alice@example.com"),
                directory_member("platform@example.com", "GROUP"),
            ],
        )
        service.add_group(
            "platform@example.com",
            [
                directory_member("bob@example.com"),
                directory_member("sre@example.com", "GROUP"),
            ],
        )
        service.add_group("sre@example.com", [directory_member("carol@example.com")])

        members = GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        assert members == ["alice@example.com", "bob@example.com", "carol@example.com"]

    def test_members_deduplicated(self, service: MockDirectoryService) -> None:
        """Test that a user reachable through two paths appears once."""
        service.add_group(
            "eng@example.com",
            [
                directory_member("alice@example.com"),
                directory_member("a@example.com", "GROUP"),
                directory_member("b@example.com", "GROUP"),
            ],
        )
        service.add_group("a@example.com", [directory_member("alice@example.com")])
        service.add_group(
            "b@example.com",
            [directory_member("alice@example.com"), directory_member("a@example.com", "GROUP")],
        )

        resolver = GoogleDirectoryResolver(service)

        assert resolver.resolve_members("eng@example.com") == ["alice@example.com"]
        # a@example.com is listed once even though it is reached twice
        assert service.list_calls.count("a@example.com") == 1

    def test_cycle_terminates(self, service: MockDirectoryService) -> None:
        service.add_group(
            "a@example.com",
            [directory_member("alice@example.com"), directory_member("b@example.com", "GROUP")],
        )
        service.add_group(
            "b@example.com",
            [directory_member("bob@example.com"), directory_member("A@example.com", "GROUP")],
        )

        members = GoogleDirectoryResolver(service).resolve_members("a@example.com")

        assert members == ["alice@example.com", "bob@example.com"]

    def test_member_without_email_skipped(self, service: MockDirectoryService) -> None:
        service.add_group(
            "eng@example.com",
            [{"type": "CUSTOMER", "id": "C01"}, directory_member("alice@example.com")],
        )

        members = GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        assert members == ["alice@example.com"]

    def test_empty_group(self, service: MockDirectoryService) -> None:
        service.add_group("empty@example.com", [])

        assert GoogleDirectoryResolver(service).resolve_members("empty@example.com") == []

    def test_http_error_wrapped(self, service: MockDirectoryService) -> None:
        service.fail_group("eng@example.com", status=403)

        with pytest.raises(ResolutionError) as exc_info:
            GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        assert exc_info.value.group == "eng@example.com"
        assert "403" in str(exc_info.value)
        assert "unable to get members of eng@example.com" in str(exc_info.value)

    def test_nested_group_failure_fails_whole_group(self, service: MockDirectoryService) -> None:
        """Test that a partial member list is never returned."""
        service.add_group(
            "eng@example.com",
            [
                directory_member("alice@example.com"),
                directory_member("missing@example.com", "GROUP"),
            ],
        )

        with pytest.raises(ResolutionError) as exc_info:
            GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        assert exc_info.value.group == "missing@example.com"
        assert "404" in str(exc_info.value)

    def test_transport_error_wrapped(self) -> None:
        service = MagicMock()
        service.members.return_value.list.return_value.execute.side_effect = TransportError(
            "connection reset"
        )

        with pytest.raises(ResolutionError) as exc_info:
            GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        assert "connection failed" in str(exc_info.value)

    def test_auth_error_wrapped(self) -> None:
        service = MagicMock()
        service.members.return_value.list.return_value.execute.side_effect = RefreshError(
            "unauthorized_client"
        )

        with pytest.raises(ResolutionError) as exc_info:
            GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        assert "authentication failed" in str(exc_info.value)

    def test_httplib2_error_wrapped(self, service: MockDirectoryService) -> None:
        service.fail_group(
            "eng@example.com", error=httplib2.RedirectLimit("too many redirects", {}, b"")
        )

        with pytest.raises(ResolutionError) as exc_info:
            GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        assert "connection failed" in str(exc_info.value)

    def test_requests_largest_page(self) -> None:
        service = MagicMock()
        service.members.return_value.list.return_value.execute.return_value = {}
        service.members.return_value.list_next.return_value = None

        GoogleDirectoryResolver(service).resolve_members("eng@example.com")

        service.members.return_value.list.assert_called_once_with(
            groupKey="eng@example.com", maxResults=MEMBERS_PAGE_SIZE
        )

    def test_from_credentials_builds_directory_service(self) -> None:
        credentials = MagicMock()

        with patch("rbac_sync.directory.build") as mock_build:
            GoogleDirectoryResolver.from_credentials(credentials)

        mock_build.assert_called_once_with(
            "admin", "directory_v1", credentials=credentials, cache_discovery=False
        )


class TestStaticMemberResolver:
    """Tests for the fixed-membership resolver."""

    def test_resolve(self) -> None:
        resolver = StaticMemberResolver({"eng": ["bob", "alice", "bob"]})

        assert resolver.resolve_members("eng") == ["alice", "bob"]

    def test_nested_and_cyclic(self) -> None:
        resolver = StaticMemberResolver(
            {
                "eng": ["alice", "platform"],
                "platform": ["bob", "eng"],
            }
        )

        assert resolver.resolve_members("eng") == ["alice", "bob"]
        assert resolver.resolve_members("platform") == ["alice", "bob"]

    def test_unknown_group(self) -> None:
        with pytest.raises(ResolutionError) as exc_info:
            StaticMemberResolver({}).resolve_members("nobody")

        assert exc_info.value.group == "nobody"

    def test_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "members.yaml"
        path.write_text(
            "groups:\n"
            "  eng@example.com:\n"
            "    - alice@example.com\n"
            "    - sre@example.com\n"
            "  sre@example.com:\n"
            "    - carol@example.com\n"
        )

        resolver = StaticMemberResolver.from_yaml(path)

        assert resolver.resolve_members("eng@example.com") == [
            "alice@example.com",
            "carol@example.com",
        ]

    @pytest.mark.parametrize(
        "content",
        [
            "- just\n- a\n- list\n",
            "groups: [a, b]\n",
            "groups:\n  eng: alice\n",
            "groups:\n  eng:\n    - 1\n",
            "groups: {unclosed\n",
            "groups:\n  eng:\n    - \"\"\n",
        ],
    )
    def test_from_yaml_invalid(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "members.yaml"
        path.write_text(content)

        with pytest.raises(ResolutionError):
            StaticMemberResolver.from_yaml(path)

    def test_from_yaml_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ResolutionError) as exc_info:
            StaticMemberResolver.from_yaml(tmp_path / "missing.yaml")

        assert "unable to load members file" in str(exc_info.value)
