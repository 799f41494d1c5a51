"""sporl: track new releases of followed Spotify artists by release week."""

__version__ = "0.3.0"
