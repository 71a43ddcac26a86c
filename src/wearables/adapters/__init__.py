"""Wearable API clients.

Each client handles:
- OAuth2 authentication and token refresh
- Fetching every data category for a trailing window

Available clients:
    WhoopClient — Whoop API v1 (OAuth2, rotating refresh tokens)
"""

from src.wearables.adapters.whoop import WhoopClient

__all__ = ["WhoopClient"]
