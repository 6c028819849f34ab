"""Obtain a Spotify refresh token with the authorization-code flow.

Usage:
    SPOTIFY_CLIENT_ID=... SPOTIFY_CLIENT_SECRET=... python -m trackdrop.tools.refresh_token
"""

import argparse
import logging
import sys
import webbrowser
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import requests

from trackdrop.api.auth import TOKEN_URL
from trackdrop.errors import ConfigError, InvalidInputError, TokenRefreshError
from trackdrop.utils.secrets import load_secret


logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
REDIRECT_URI = "http://localhost:8888/callback"
SCOPES = (
    "playlist-modify-public",
    "playlist-modify-private",
    "playlist-read-private",
    "playlist-read-collaborative",
)


def build_authorize_url(client_id: str, redirect_uri: str = REDIRECT_URI) -> str:
    query = urlencode({
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": " ".join(SCOPES),
    })
    return f"{AUTHORIZE_URL}?{query}"


def extract_code(redirect_url: str) -> str:
    """Pull the ``code`` parameter out of the pasted redirect URL.

    Raises:
        InvalidInputError: If the URL carries an error or no code
    """
    params = parse_qs(urlsplit(redirect_url.strip()).query)
    if "error" in params:
        raise InvalidInputError(f"Authorization was denied: {params['error'][0]}")
    codes = params.get("code")
    if not codes or not codes[0]:
        raise InvalidInputError("Could not find authorization code in URL")
    return codes[0]


def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str = REDIRECT_URI,
    session: Optional[requests.Session] = None,
) -> Dict:
    """Exchange an authorization code for access and refresh tokens.

    Returns:
        Token response JSON

    Raises:
        TokenRefreshError: If the exchange fails
    """
    session = session or requests.Session()
    try:
        r = session.post(
            TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            auth=(client_id, client_secret),
            timeout=30,
        )
    except requests.exceptions.RequestException as e:
        raise TokenRefreshError(None, str(e)[:200], cause=e) from e

    if not r.ok:
        raise TokenRefreshError(r.status_code, r.text[:500])
    try:
        payload = r.json()
    except ValueError as e:
        raise TokenRefreshError(r.status_code, "Token response was not valid JSON", cause=e) from e
    if not payload.get("refresh_token"):
        raise TokenRefreshError(r.status_code, "No refresh token in response")
    return payload


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate a Spotify refresh token for TrackDrop")
    parser.add_argument("--redirect-uri", default=REDIRECT_URI,
                        help="Redirect URI registered for the Spotify application")
    parser.add_argument("--no-browser", action="store_true", help="Do not open a browser")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        client_id = load_secret("SPOTIFY_CLIENT_ID")
        client_secret = load_secret("SPOTIFY_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET must be set",
                              missing=["SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET"])

        auth_url = build_authorize_url(client_id, args.redirect_uri)
        print("Step 1: open this URL and authorize the application:\n")
        print(f"  {auth_url}\n")
        if not args.no_browser and not webbrowser.open(auth_url):
            print("(Could not open a browser - copy the URL above)")

        redirect_url = input("Step 2: paste the FULL redirect URL here: ")
        code = extract_code(redirect_url)

        print("Step 3: exchanging code for tokens...")
        tokens = exchange_code(client_id, client_secret, code, args.redirect_uri)
    except (ConfigError, InvalidInputError, TokenRefreshError) as e:
        logger.error("❌ %s", e)
        return 1

    print("\n✅ Success! Add this to your environment:\n")
    print(f"SPOTIFY_REFRESH_TOKEN={tokens['refresh_token']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
