"""Credentials parser for reading credentials from a credentials.md file."""

import os
import re
from typing import Dict, Iterable, Mapping

from history_sync.errors import SyncError


class CredentialsError(SyncError):
    """Exception raised when credentials cannot be parsed or are missing."""
    pass


SPOTIFY_KEYS = [
    'SPOTIFY_CLIENT_ID',
    'SPOTIFY_CLIENT_SECRET',
    'SPOTIFY_REFRESH_TOKEN',
]

GITHUB_KEYS = [
    'GH_TOKEN',
    'GH_REPO',
]


def parse_credentials(credentials_path: str = "credentials.md") -> Dict[str, str]:
    """
    Parse credentials from a credentials.md file.

    Lines of the form ``KEY=value`` are collected; anything else in the file
    (headings, notes) is ignored.

    Args:
        credentials_path: Path to the credentials file (default: credentials.md)

    Returns:
        Dictionary of every KEY=value pair found in the file

    Raises:
        CredentialsError: If the file is not found
    """
    if not os.path.exists(credentials_path):
        raise CredentialsError(f"Credentials file not found: {credentials_path}")

    with open(credentials_path, 'r', encoding='utf-8') as f:
        content = f.read()

    credentials = {}

    # Parse key=value pairs
    pattern = r'^\s*([A-Z_]+)=(.+)$'
    for key, value in re.findall(pattern, content, flags=re.MULTILINE):
        credentials[key] = value.strip()

    return credentials


def require_keys(values: Mapping[str, str], required_keys: Iterable[str]) -> None:
    """
    Check that every required key is present and non-empty.

    Raises:
        CredentialsError: Listing all missing keys at once
    """
    missing_keys = [key for key in required_keys if not values.get(key)]
    if missing_keys:
        raise CredentialsError(
            f"Missing required credentials: {', '.join(missing_keys)}"
        )
