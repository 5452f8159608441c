"""
Tests for the OAuth PKCE helpers.
"""
import base64
import hashlib
import json
import urllib.parse

import httpx
import pytest

from qbcore.quickbase.errors import QuickBaseAuthError
from qbcore.quickbase.oauth import code_challenge_for, exchange_code, generate_oauth_url


class TestAuthorizeUrl:
    """Authorization URL generation."""

    def test_url_parameters(self) -> None:
        request = generate_oauth_url("acme.quickbase.com", "client-1", "https://app.example/cb")
        parsed = urllib.parse.urlparse(request.url)
        params = urllib.parse.parse_qs(parsed.query)

        assert parsed.netloc == "acme.quickbase.com"
        assert parsed.path == "/oauth2/authorize"
        assert params["client_id"] == ["client-1"]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["read:table write:table"]
        assert params["state"] == [request.state]
        assert params["code_challenge"] == [request.code_challenge]
        assert params["code_challenge_method"] == ["S256"]

    def test_challenge_matches_verifier(self) -> None:
        request = generate_oauth_url("https://acme.quickbase.com/", "c", "https://x/cb", scopes=["read:table"])
        digest = hashlib.sha256(request.code_verifier.encode()).digest()
        expected = base64.urlsafe_b64encode(digest).decode().rstrip("=")
        assert request.code_challenge == expected
        assert request.url.startswith("https://acme.quickbase.com/oauth2/authorize?")
        assert "=" not in code_challenge_for("abc")

    def test_fresh_state_each_call(self) -> None:
        first = generate_oauth_url("acme", "c", "https://x/cb")
        second = generate_oauth_url("acme", "c", "https://x/cb")
        assert first.state != second.state
        assert len(first.state) == 48

    def test_required_arguments(self) -> None:
        with pytest.raises(ValueError):
            generate_oauth_url("acme", "", "https://x/cb")

    def test_to_dict_keys(self) -> None:
        data = generate_oauth_url("acme", "c", "https://x/cb").to_dict()
        assert set(data) == {"authUrl", "state", "codeVerifier", "codeChallenge", "scopes"}


class TestExchange:
    """Token exchange."""

    async def test_successful_exchange(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["form"] = urllib.parse.parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "at", "expires_in": 3600})

        token = await exchange_code(
            "code-1", "verifier-1", "client-1", "https://x/cb", transport=httpx.MockTransport(handler)
        )

        assert token["access_token"] == "at"
        assert token["expires_at"] > 0
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code_verifier"] == ["verifier-1"]

    async def test_state_mismatch(self) -> None:
        with pytest.raises(QuickBaseAuthError, match="state mismatch"):
            await exchange_code("c", "v", "id", "https://x/cb", state="a", expected_state="b")

    async def test_missing_verifier(self) -> None:
        with pytest.raises(QuickBaseAuthError):
            await exchange_code("c", "", "id", "https://x/cb")

    async def test_rejected_code(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text=json.dumps({"error": "invalid_grant"}))

        with pytest.raises(QuickBaseAuthError) as exc:
            await exchange_code("c", "v", "id", "https://x/cb", transport=httpx.MockTransport(handler))
        assert exc.value.status_code == 400
        assert "invalid_grant" in exc.value.description
