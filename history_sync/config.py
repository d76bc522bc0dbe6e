"""Runtime configuration for the listening history sync."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from history_sync.storage import DocumentStore, GitHubDocumentStore, LocalDocumentStore
from history_sync.utils.credentials import (
    GITHUB_KEYS,
    SPOTIFY_KEYS,
    CredentialsError,
    parse_credentials,
    require_keys,
)


DEFAULT_TIMEZONE = "Europe/Budapest"
DEFAULT_HISTORY_DIR = "spotify-history"


@dataclass(frozen=True)
class SyncConfig:
    """Explicit configuration passed into the sync pipeline."""

    spotify_client_id: str
    spotify_client_secret: str
    spotify_refresh_token: str
    github_token: Optional[str] = None
    github_repo: Optional[str] = None
    github_branch: str = "main"
    local_history_dir: Optional[str] = None
    timezone: str = DEFAULT_TIMEZONE
    history_dir: str = DEFAULT_HISTORY_DIR
    fetch_limit: int = 50
    request_timeout: float = 10.0
    conflict_retries: int = 1
    retry_backoff: float = 1.0

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def uses_local_store(self) -> bool:
        return bool(self.local_history_dir)

    def build_store(self) -> DocumentStore:
        """Create the Document Store selected by this configuration."""
        if self.uses_local_store:
            return LocalDocumentStore(self.local_history_dir)
        return GitHubDocumentStore(
            token=self.github_token,
            repo=self.github_repo,
            branch=self.github_branch,
            timeout=self.request_timeout,
        )


def load_config(
    credentials_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> SyncConfig:
    """
    Build a SyncConfig from the environment and an optional credentials file.

    Values from the credentials file take precedence over the environment.

    Args:
        credentials_path: Optional path to a KEY=value credentials file
        environ: Mapping to read instead of os.environ

    Returns:
        Validated SyncConfig

    Raises:
        CredentialsError: If required keys are missing or a value is invalid
    """
    values = dict(os.environ if environ is None else environ)
    if credentials_path:
        values.update(parse_credentials(credentials_path))

    required = list(SPOTIFY_KEYS)
    if not values.get('LOCAL_HISTORY_DIR'):
        required += GITHUB_KEYS
    require_keys(values, required)

    timezone = values.get('TIMEZONE') or DEFAULT_TIMEZONE
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise CredentialsError(f"Unknown timezone: {timezone}") from e

    repo = values.get('GH_REPO')
    if repo and repo.count('/') != 1:
        raise CredentialsError(f"GH_REPO must look like 'owner/name', got: {repo}")

    try:
        return SyncConfig(
            spotify_client_id=values['SPOTIFY_CLIENT_ID'],
            spotify_client_secret=values['SPOTIFY_CLIENT_SECRET'],
            spotify_refresh_token=values['SPOTIFY_REFRESH_TOKEN'],
            github_token=values.get('GH_TOKEN'),
            github_repo=repo,
            github_branch=values.get('GH_BRANCH') or "main",
            local_history_dir=values.get('LOCAL_HISTORY_DIR') or None,
            timezone=timezone,
            history_dir=(values.get('HISTORY_DIR') or DEFAULT_HISTORY_DIR).strip('/'),
            fetch_limit=int(values.get('FETCH_LIMIT') or 50),
            request_timeout=float(values.get('REQUEST_TIMEOUT') or 10.0),
            conflict_retries=int(values.get('CONFLICT_RETRIES') or 1),
            retry_backoff=float(values.get('RETRY_BACKOFF') or 1.0),
        )
    except ValueError as e:
        raise CredentialsError(f"Invalid numeric setting: {e}") from e
