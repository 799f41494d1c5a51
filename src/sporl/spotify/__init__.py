"""Spotify Web API client and PKCE authorization."""

from sporl.spotify.auth import SpotifyAuthError, SpotifyError, TokenManager
from sporl.spotify.client import SpotifyAPIError, SpotifyClient, SpotifyRateLimitError

__all__ = [
    "SpotifyAPIError",
    "SpotifyAuthError",
    "SpotifyClient",
    "SpotifyError",
    "SpotifyRateLimitError",
    "TokenManager",
]
