"""Spotify authorization: PKCE helpers, token persistence and the login flow.

``sporl auth`` runs the Authorization Code flow with PKCE:

1. generate a code verifier and its S256 challenge,
2. start a local callback server on the redirect URI's host/port,
3. open the browser on the authorize URL,
4. wait (at most 60 s) for the callback to hand over the authorization code,
5. exchange the code for a token and store it in ``cache/token.json``.

The callback handler and the waiting flow share a single-slot
:class:`CallbackHandoff` instead of polling shared state.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import secrets
import string
import time
import webbrowser
from collections.abc import Callable
from pathlib import Path
from urllib.parse import urlencode, urlsplit

import httpx
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from pydantic import ValidationError

from sporl.config import SpotifyConfig
from sporl.storage.files import StoreError, read_json, write_json
from sporl.storage.models import Token

log = structlog.get_logger(__name__)

_VERIFIER_ALPHABET = string.ascii_letters + string.digits
_VERIFIER_LENGTH = 128
_EXPIRY_MARGIN = 240  # seconds before expiry at which we refresh
CALLBACK_TIMEOUT = 60.0


class SpotifyError(Exception):
    """Base class for Spotify failures."""


class SpotifyAuthError(SpotifyError):
    """Raised when no usable Spotify access token can be produced."""


# ---------------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------------


def generate_code_verifier() -> str:
    """Return a random 128-character alphanumeric PKCE code verifier."""
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(_VERIFIER_LENGTH))


def generate_code_challenge(verifier: str) -> str:
    """Return the S256 challenge (base64url, no padding) for *verifier*."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorize_url(config: SpotifyConfig, code_challenge: str) -> str:
    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": config.redirect_uri,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "scope": config.scope,
    }
    return f"{config.auth_url}?{urlencode(params)}"


def _token_from_response(data: dict, *, previous_refresh_token: str = "") -> Token:
    try:
        return Token(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            scope=data.get("scope", ""),
            expires_in=int(data.get("expires_in", 3600)),
            obtained_at=int(time.time()),
        )
    except (KeyError, ValueError, ValidationError) as exc:
        raise SpotifyAuthError(f"Unexpected token response: {exc}") from exc


async def exchange_code(http: httpx.AsyncClient, config: SpotifyConfig, code: str, verifier: str) -> Token:
    """Trade an authorization code for a token."""
    resp = await http.post(
        config.token_url,
        data={
            "grant_type": "authorization_code",
            "client_id": config.client_id,
            "code": code,
            "code_verifier": verifier,
            "redirect_uri": config.redirect_uri,
        },
    )
    if resp.status_code != 200:
        raise SpotifyAuthError(f"Code exchange failed: {resp.status_code} {resp.text}")
    return _token_from_response(resp.json())


async def refresh_token(http: httpx.AsyncClient, config: SpotifyConfig, token: Token) -> Token:
    """Refresh *token*; Spotify may omit a new refresh token, in which case the old one is kept."""
    resp = await http.post(
        config.token_url,
        data={
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": config.client_id,
        },
    )
    if resp.status_code != 200:
        raise SpotifyAuthError(
            f"Token refresh failed: {resp.status_code} {resp.text}. Run: sporl auth",
        )
    return _token_from_response(resp.json(), previous_refresh_token=token.refresh_token)


# ---------------------------------------------------------------------------
# Token persistence
# ---------------------------------------------------------------------------


class TokenManager:
    """Keeps the stored token fresh and persists every refresh."""

    def __init__(self, config: SpotifyConfig, path: Path, token: Token | None = None) -> None:
        self._config = config
        self._path = path
        self._token = token
        self._lock = asyncio.Lock()

    @classmethod
    def load(cls, config: SpotifyConfig, path: Path) -> TokenManager:
        """Load ``token.json``; raises :class:`SpotifyAuthError` when it is missing or invalid."""
        try:
            raw = read_json(path)
            token = Token.model_validate(raw)
        except (StoreError, ValidationError) as exc:
            raise SpotifyAuthError(f"No stored token ({exc}). Run: sporl auth") from exc
        return cls(config, path, token)

    @property
    def token(self) -> Token | None:
        return self._token

    def persist(self) -> None:
        if self._token is None:
            return
        write_json(self._path, self._token.model_dump(mode="json"))
        self._path.chmod(0o600)

    def set_token(self, token: Token) -> None:
        self._token = token
        self.persist()

    def is_expired(self, now: float | None = None) -> bool:
        if self._token is None:
            return True
        now = time.time() if now is None else now
        return now >= self._token.obtained_at + self._token.expires_in - _EXPIRY_MARGIN

    async def get_valid_token(self, http: httpx.AsyncClient, *, force_refresh: bool = False) -> str:
        """Return an access token, refreshing it first when it is about to expire."""
        async with self._lock:
            if self._token is None:
                raise SpotifyAuthError("Not authenticated. Run: sporl auth")
            if force_refresh or self.is_expired():
                log.info("token_refresh", forced=force_refresh)
                self.set_token(await refresh_token(http, self._config, self._token))
            return self._token.access_token


# ---------------------------------------------------------------------------
# Callback server
# ---------------------------------------------------------------------------


class CallbackHandoff:
    """Single-slot channel between the callback route and the waiting login flow."""

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[str] = self._loop.create_future()
        self._claimed = False

    @property
    def done(self) -> bool:
        return self._claimed

    def deliver(self, code: str) -> bool:
        """Hand over the authorization code; only the first delivery counts."""
        if self._claimed:
            return False
        self._claimed = True
        self._loop.call_soon_threadsafe(self._set, code, None)
        return True

    def fail(self, error: str) -> bool:
        if self._claimed:
            return False
        self._claimed = True
        self._loop.call_soon_threadsafe(self._set, None, SpotifyAuthError(error))
        return True

    def _set(self, code: str | None, error: Exception | None) -> None:
        if self._future.done():
            return
        if error is not None:
            self._future.set_exception(error)
        else:
            self._future.set_result(code)

    async def wait(self, timeout: float = CALLBACK_TIMEOUT) -> str:
        """Return the code, or raise :class:`SpotifyAuthError` on error or timeout."""
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except TimeoutError:
            raise SpotifyAuthError(f"No authorization callback within {timeout:.0f}s") from None


def create_callback_app(handoff: CallbackHandoff, callback_path: str = "/callback") -> FastAPI:
    """Build the FastAPI app serving ``/health`` and the redirect URI's path."""
    app = FastAPI(title="sporl auth callback", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get(callback_path, response_class=HTMLResponse)
    async def callback(code: str | None = None, error: str | None = None) -> str:
        if error:
            handoff.fail(f"Authorization denied: {error}")
            return "<h4>Login failed.</h4>"
        if not code:
            return "<h4>Missing authorization code.</h4>"
        if not handoff.deliver(code):
            return "<h4>Login already completed.</h4>"
        return "<h2>Authentication successful.</h2><p>You can close this window.</p>"

    return app


async def authorize(
    config: SpotifyConfig,
    token_path: Path,
    *,
    timeout: float = CALLBACK_TIMEOUT,
    open_browser: bool = True,
    on_url: Callable[[str], None] | None = None,
) -> Token:
    """Run the full PKCE login and persist the resulting token.

    *on_url* receives the authorize URL so the caller can show it in case the
    browser does not open.
    """
    verifier = generate_code_verifier()
    auth_url = build_authorize_url(config, generate_code_challenge(verifier))

    redirect = urlsplit(config.redirect_uri)
    handoff = CallbackHandoff()
    server = uvicorn.Server(
        uvicorn.Config(
            create_callback_app(handoff, redirect.path or "/callback"),
            host=redirect.hostname or "127.0.0.1",
            port=redirect.port or 8888,
            log_level="warning",
            lifespan="off",
        )
    )
    server_task = asyncio.create_task(server.serve())

    try:
        log.info("auth_started", redirect_uri=config.redirect_uri)
        if on_url is not None:
            on_url(auth_url)
        if not open_browser or not webbrowser.open(auth_url):
            log.warning("auth_browser_not_opened", url=auth_url)
        code = await handoff.wait(timeout)
    finally:
        server.should_exit = True
        await server_task

    async with httpx.AsyncClient(timeout=30.0) as http:
        token = await exchange_code(http, config, code, verifier)

    TokenManager(config, token_path).set_token(token)
    log.info("auth_completed", scope=token.scope)
    return token
