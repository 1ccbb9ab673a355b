"""I/O helpers for provider HTTP calls and run asset storage."""

from .http_client import ProviderHTTPClient
from .storage import AssetStore

__all__ = ["AssetStore", "ProviderHTTPClient"]
