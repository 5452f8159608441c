"""
QuickBase OAuth 2.0 (authorization code + PKCE)

Provides:
- generate_oauth_url: authorize URL with state and S256 code challenge
- exchange_code: trade an authorization code for tokens
"""
import base64
import hashlib
import logging
import secrets
import time
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from qbcore.quickbase.errors import QuickBaseAuthError

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "https://api.quickbase.com/oauth2/token"
AUTHORIZE_PATH = "/oauth2/authorize"
DEFAULT_SCOPES = ["read:table", "write:table"]


@dataclass
class OAuthRequest:
    """Everything the caller must keep between redirect and callback."""
    url: str
    state: str
    code_verifier: str
    code_challenge: str
    scopes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authUrl": self.url,
            "state": self.state,
            "codeVerifier": self.code_verifier,
            "codeChallenge": self.code_challenge,
            "scopes": self.scopes,
        }


def _random_hex(num_bytes: int) -> str:
    return secrets.token_hex(num_bytes)


def code_challenge_for(verifier: str) -> str:
    """S256: base64url(sha256(verifier)) without padding"""
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def generate_oauth_url(
    realm: str,
    client_id: str,
    redirect_uri: str,
    scopes: Optional[List[str]] = None,
    prompt: str = "consent",
) -> OAuthRequest:
    if not realm or not client_id or not redirect_uri:
        raise ValueError("OAuth requires realm, client_id and redirect_uri")
    scopes = scopes or list(DEFAULT_SCOPES)

    state = _random_hex(24)
    verifier = _random_hex(48)
    challenge = code_challenge_for(verifier)

    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "prompt": prompt,
    }
    host = realm.replace("https://", "").replace("http://", "").rstrip("/")
    url = f"https://{host}{AUTHORIZE_PATH}?{urllib.parse.urlencode(params)}"
    return OAuthRequest(url=url, state=state, code_verifier=verifier, code_challenge=challenge, scopes=scopes)


async def exchange_code(
    code: str,
    code_verifier: str,
    client_id: str,
    redirect_uri: str,
    state: Optional[str] = None,
    expected_state: Optional[str] = None,
    token_endpoint: str = TOKEN_ENDPOINT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Exchange an authorization code; returns the token response plus expires_at (epoch ms)."""
    if expected_state is not None and state != expected_state:
        raise QuickBaseAuthError("OAuth state mismatch")
    if not code_verifier:
        raise QuickBaseAuthError("Missing PKCE code_verifier")

    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
        "client_id": client_id,
    }
    async with httpx.AsyncClient(transport=transport) as client:
        resp = await client.post(token_endpoint, data=form, headers={"Accept": "application/json"})

    if resp.status_code != 200:
        logger.error(f"OAuth token exchange failed: {resp.status_code}")
        raise QuickBaseAuthError("Token exchange failed", status_code=resp.status_code, description=resp.text)

    token = resp.json()
    if token.get("expires_in"):
        token["expires_at"] = int(time.time() * 1000) + int(token["expires_in"]) * 1000
    return token
