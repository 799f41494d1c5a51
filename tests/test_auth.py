"""Tests for PKCE helpers, TokenManager and the auth callback app."""

from __future__ import annotations

import asyncio
import json
import stat
import time
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from sporl.config import SpotifyConfig
from sporl.spotify.auth import (
    CallbackHandoff,
    SpotifyAuthError,
    TokenManager,
    build_authorize_url,
    create_callback_app,
    exchange_code,
    generate_code_challenge,
    generate_code_verifier,
)
from sporl.storage.models import Token

# ---------------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------------


def test_code_verifier_shape():
    verifier = generate_code_verifier()
    assert len(verifier) == 128
    assert verifier.isalnum()
    assert generate_code_verifier() != verifier


def test_code_challenge_matches_rfc7636_example():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_authorize_url_params():
    cfg = SpotifyConfig(client_id="cid")
    url = build_authorize_url(cfg, "challenge")
    parts = urlsplit(url)
    params = parse_qs(parts.query)

    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://accounts.spotify.com/authorize"
    assert params["client_id"] == ["cid"]
    assert params["response_type"] == ["code"]
    assert params["code_challenge"] == ["challenge"]
    assert params["code_challenge_method"] == ["S256"]
    assert params["redirect_uri"] == ["http://127.0.0.1:8888/callback"]
    assert "user-follow-read" in params["scope"][0]


# ---------------------------------------------------------------------------
# Token exchange / TokenManager
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_exchange_code_sends_verifier():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(parse_qs(request.content.decode()))
        return httpx.Response(
            200,
            json={"access_token": "acc", "refresh_token": "ref", "expires_in": 3600, "scope": "s"},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        token = await exchange_code(http, SpotifyConfig(client_id="cid"), "the-code", "the-verifier")

    assert token.access_token == "acc"
    assert token.refresh_token == "ref"
    assert bodies[0]["grant_type"] == ["authorization_code"]
    assert bodies[0]["code"] == ["the-code"]
    assert bodies[0]["code_verifier"] == ["the-verifier"]
    assert bodies[0]["client_id"] == ["cid"]


@pytest.mark.asyncio
async def test_exchange_code_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(SpotifyAuthError, match="Code exchange failed"):
            await exchange_code(http, SpotifyConfig(client_id="cid"), "code", "verifier")


def test_token_manager_load_missing(tmp_path: Path):
    with pytest.raises(SpotifyAuthError, match="sporl auth"):
        TokenManager.load(SpotifyConfig(), tmp_path / "token.json")


def test_token_manager_persist_is_owner_only(tmp_path: Path):
    path = tmp_path / "cache" / "token.json"
    manager = TokenManager(SpotifyConfig(), path)
    manager.set_token(Token(access_token="a", refresh_token="r", obtained_at=123))

    assert json.loads(path.read_text())["obtained_at"] == 123
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert TokenManager.load(SpotifyConfig(), path).token.access_token == "a"


def test_token_expiry_margin(tmp_path: Path):
    token = Token(access_token="a", refresh_token="r", expires_in=3600, obtained_at=1000)
    manager = TokenManager(SpotifyConfig(), tmp_path / "t.json", token)

    assert not manager.is_expired(now=1000 + 3600 - 241)
    assert manager.is_expired(now=1000 + 3600 - 240)


@pytest.mark.asyncio
async def test_refresh_failure_is_auth_error(tmp_path: Path):
    token = Token(access_token="a", refresh_token="r", obtained_at=0)
    manager = TokenManager(SpotifyConfig(client_id="cid"), tmp_path / "t.json", token)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(SpotifyAuthError, match="refresh failed"):
            await manager.get_valid_token(http)


@pytest.mark.asyncio
async def test_valid_token_is_not_refreshed(tmp_path: Path):
    token = Token(access_token="still-good", refresh_token="r", obtained_at=int(time.time()))
    manager = TokenManager(SpotifyConfig(), tmp_path / "t.json", token)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no refresh expected")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        assert await manager.get_valid_token(http) == "still-good"


@pytest.mark.asyncio
async def test_no_token_is_auth_error(tmp_path: Path):
    manager = TokenManager(SpotifyConfig(), tmp_path / "t.json")
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200))) as http:
        with pytest.raises(SpotifyAuthError):
            await manager.get_valid_token(http)


# ---------------------------------------------------------------------------
# Callback handoff
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_handoff_first_delivery_wins():
    handoff = CallbackHandoff()
    assert handoff.deliver("first")
    assert not handoff.deliver("second")
    assert not handoff.fail("late error")
    assert handoff.done
    assert await handoff.wait(1) == "first"


@pytest.mark.asyncio
async def test_handoff_failure_raises():
    handoff = CallbackHandoff()
    handoff.fail("Authorization denied: access_denied")
    with pytest.raises(SpotifyAuthError, match="access_denied"):
        await handoff.wait(1)


@pytest.mark.asyncio
async def test_handoff_timeout():
    handoff = CallbackHandoff()
    with pytest.raises(SpotifyAuthError, match="No authorization callback"):
        await handoff.wait(0.01)


@pytest.mark.asyncio
async def test_handoff_from_another_thread():
    handoff = CallbackHandoff()
    await asyncio.to_thread(handoff.deliver, "threaded")
    assert await handoff.wait(1) == "threaded"


# ---------------------------------------------------------------------------
# Callback app
# ---------------------------------------------------------------------------


def _asgi_client(handoff: CallbackHandoff) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=create_callback_app(handoff))
    return httpx.AsyncClient(transport=transport, base_url="http://127.0.0.1:8888")


@pytest.mark.asyncio
async def test_health_endpoint():
    async with _asgi_client(CallbackHandoff()) as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_callback_delivers_code_once():
    handoff = CallbackHandoff()
    async with _asgi_client(handoff) as client:
        first = await client.get("/callback", params={"code": "abc"})
        second = await client.get("/callback", params={"code": "def"})

    assert "successful" in first.text
    assert "already completed" in second.text
    assert await handoff.wait(1) == "abc"


@pytest.mark.asyncio
async def test_callback_error_fails_handoff():
    handoff = CallbackHandoff()
    async with _asgi_client(handoff) as client:
        resp = await client.get("/callback", params={"error": "access_denied"})

    assert "failed" in resp.text
    with pytest.raises(SpotifyAuthError, match="access_denied"):
        await handoff.wait(1)


@pytest.mark.asyncio
async def test_callback_without_code():
    handoff = CallbackHandoff()
    async with _asgi_client(handoff) as client:
        resp = await client.get("/callback")

    assert "Missing" in resp.text
    assert not handoff.done


@pytest.mark.asyncio
async def test_callback_served_at_custom_path():
    handoff = CallbackHandoff()
    transport = httpx.ASGITransport(app=create_callback_app(handoff, "/spotify/return"))
    async with httpx.AsyncClient(transport=transport, base_url="http://127.0.0.1:8888") as client:
        default = await client.get("/callback", params={"code": "ignored"})
        resp = await client.get("/spotify/return", params={"code": "xyz"})

    assert default.status_code == 404
    assert "successful" in resp.text
    assert await handoff.wait(1) == "xyz"
