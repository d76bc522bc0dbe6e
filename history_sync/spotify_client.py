"""Spotify API client for refreshing tokens and fetching listening history."""

from typing import Dict, List, Optional

import httpx
import requests
import spotipy

from history_sync.errors import AuthError, FetchError
from history_sync.utils.logger import get_logger


logger = get_logger()


class SpotifyClient:
    """Client for the Spotify accounts service and Web API."""

    TOKEN_URL = "https://accounts.spotify.com/api/token"
    MAX_RECENTLY_PLAYED = 50

    def __init__(self, client_id: str, client_secret: str, refresh_token: str = None, timeout: float = 10.0):
        """
        Initialize Spotify client.

        Args:
            client_id: Spotify application client ID
            client_secret: Spotify application client secret
            refresh_token: Long-lived refresh token of the user
            timeout: Timeout in seconds for each request
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.sp: Optional[spotipy.Spotify] = None

    def _request_token(self, data: Dict) -> Dict:
        try:
            response = httpx.post(
                self.TOKEN_URL,
                data=data,
                auth=(self.client_id, self.client_secret),
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.error(f"Spotify token request failed: {e}")
            raise FetchError(f"Spotify token request failed: {e}", context={'operation': data['grant_type']}) from e

        if response.status_code in (400, 401):
            logger.error(f"Spotify rejected the credentials with status {response.status_code}")
            raise AuthError(
                f"Invalid or expired Spotify credentials (status {response.status_code})",
                context={'operation': data['grant_type'], 'status': response.status_code}
            )
        if response.status_code != 200:
            raise FetchError(
                f"Spotify token request failed with status {response.status_code}",
                context={'operation': data['grant_type'], 'status': response.status_code}
            )

        return response.json()

    def refresh_access_token(self) -> str:
        """
        Exchange the refresh token for a short-lived access token.

        Returns:
            The access token

        Raises:
            AuthError: If the refresh token or client credentials are rejected
            FetchError: On network failures or unexpected responses
        """
        if not self.refresh_token:
            raise AuthError("No Spotify refresh token configured", context={'operation': 'refresh_token'})

        token_data = self._request_token({
            'grant_type': 'refresh_token',
            'refresh_token': self.refresh_token,
        })

        access_token = token_data.get('access_token')
        if not access_token:
            raise AuthError("Spotify returned no access token", context={'operation': 'refresh_token'})

        # Spotify may rotate the refresh token
        if token_data.get('refresh_token'):
            self.refresh_token = token_data['refresh_token']

        self.sp = spotipy.Spotify(auth=access_token, requests_timeout=self.timeout)
        logger.info("Refreshed Spotify access token")
        return access_token

    def exchange_authorization_code(self, code: str, redirect_uri: str) -> Dict:
        """
        Trade an OAuth authorization code for access and refresh tokens.

        Only needed once, to obtain the refresh token used by every sync.

        Returns:
            Token response with keys access_token, refresh_token, expires_in
        """
        token_data = self._request_token({
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': redirect_uri,
        })
        if token_data.get('refresh_token'):
            self.refresh_token = token_data['refresh_token']
        return token_data

    def get_recently_played(self, limit: int = MAX_RECENTLY_PLAYED) -> List[Dict]:
        """
        Fetch the most recently played tracks.

        Args:
            limit: Number of items to request (1-50)

        Returns:
            Raw items with keys played_at and track

        Raises:
            AuthError: If not authenticated or the access token is rejected
            FetchError: On network failures, timeouts or rate limiting
        """
        if not self.sp:
            raise AuthError("Not authenticated. Call refresh_access_token() first.")

        limit = max(1, min(limit, self.MAX_RECENTLY_PLAYED))

        try:
            results = self.sp.current_user_recently_played(limit=limit)
        except spotipy.SpotifyException as e:
            context = {'operation': 'recently_played', 'status': e.http_status}
            if e.http_status == 401:
                raise AuthError(f"Spotify rejected the access token: {e.msg}", context=context) from e
            raise FetchError(f"Failed to fetch recently played tracks: {e.msg}", context=context) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(
                f"Failed to fetch recently played tracks: {e}",
                context={'operation': 'recently_played'}
            ) from e

        items = (results or {}).get('items', [])
        logger.info(f"Retrieved {len(items)} recently played tracks from Spotify")
        return items
