#!/usr/bin/env python3
"""
Exchange a Spotify authorization code for a refresh token.

Authorize the app once in the browser (scope user-read-recently-played),
copy the code shown by the /callback endpoint, then run:

    python exchange_code.py <code> --redirect-uri https://example.com/callback
"""

import argparse
import os
import sys

from dotenv import load_dotenv

from history_sync.errors import SyncError
from history_sync.spotify_client import SpotifyClient


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Exchange a Spotify authorization code for tokens")
    parser.add_argument('code', help='Authorization code from the /callback endpoint')
    parser.add_argument(
        '--redirect-uri',
        default=os.environ.get('SPOTIFY_REDIRECT_URI', 'http://127.0.0.1:3000/callback'),
        help='Redirect URI registered for the Spotify app'
    )
    args = parser.parse_args()

    client_id = os.environ.get('SPOTIFY_CLIENT_ID')
    client_secret = os.environ.get('SPOTIFY_CLIENT_SECRET')
    if not client_id or not client_secret:
        print("❌ SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET must be set")
        sys.exit(1)

    client = SpotifyClient(client_id, client_secret)
    try:
        tokens = client.exchange_authorization_code(args.code, args.redirect_uri)
    except SyncError as e:
        print(f"❌ Token exchange failed: {e}")
        sys.exit(1)

    print("✅ Token exchange succeeded")
    print()
    print(f"Access Token:  {tokens.get('access_token')}")
    print(f"Refresh Token: {tokens.get('refresh_token')}")
    print()
    print("Set SPOTIFY_REFRESH_TOKEN to the refresh token above.")


if __name__ == '__main__':
    main()
