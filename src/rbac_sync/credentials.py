"""Credential loading for the Google Workspace directory.

The directory is read with a service account that has domain-wide
delegation, impersonating a Workspace admin. Only read-only group scopes
are ever requested.

SECURITY INVARIANTS:
1. The key file is validated before it is handed to google-auth
2. Only the read-only directory scopes below are requested
3. Key material is never logged
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

DIRECTORY_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/admin.directory.group.member.readonly",
    "https://www.googleapis.com/auth/admin.directory.group.readonly",
)

# A service account key is a few KB; anything larger is not a key file
MAX_KEYFILE_SIZE_BYTES = 64 * 1024

REQUIRED_KEY_FIELDS: tuple[str, ...] = ("type", "client_email", "private_key")


class CredentialsError(Exception):
    """Raised when directory credentials cannot be loaded."""

    pass


def validate_keyfile(keyfile: Path) -> dict[str, str]:
    """Check that ``keyfile`` is a plausible service account key.

    Returns:
        The parsed key file content.

    Raises:
        CredentialsError: If the file is missing, too large, or malformed.
    """
    try:
        file_size = keyfile.stat().st_size
    except OSError as e:
        raise CredentialsError(f"Unable to read service account key file {keyfile}: {e}") from e

    if file_size > MAX_KEYFILE_SIZE_BYTES:
        raise CredentialsError(
            f"Service account key file too large: {file_size} bytes "
            f"(max {MAX_KEYFILE_SIZE_BYTES})"
        )

    try:
        content = json.loads(keyfile.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CredentialsError(f"Service account key file is not valid JSON: {keyfile}") from e

    if not isinstance(content, dict):
        raise CredentialsError(f"Service account key file must contain a JSON object: {keyfile}")

    missing = [key for key in REQUIRED_KEY_FIELDS if not content.get(key)]
    if missing:
        raise CredentialsError(f"Service account key file is missing fields: {missing}")

    if content["type"] != "service_account":
        raise CredentialsError(
            f"Expected a service_account key, got type '{content['type']}'"
        )

    return content


def load_directory_credentials(keyfile: Path, admin_user: str) -> service_account.Credentials:
    """Load delegated credentials for the directory API.

    Args:
        keyfile: Path to the service account JSON key.
        admin_user: Workspace admin e-mail to impersonate.

    Returns:
        Credentials scoped to read-only group access, acting as ``admin_user``.

    Raises:
        CredentialsError: If the key file is invalid or rejected by google-auth.
    """
    info = validate_keyfile(keyfile)

    try:
        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=list(DIRECTORY_SCOPES)
        )
    except (ValueError, GoogleAuthError) as e:
        raise CredentialsError(f"Unable to parse service account key file to config: {e}") from e

    logger.info(
        "Loaded directory credentials",
        extra={
            "service_account": info["client_email"],
            "admin_user": admin_user,
        },
    )
    return credentials.with_subject(admin_user)
