"""Secure credential storage helpers for Reelvoice CLI.

Responsibilities:
- Persist provider API keys in an OS-backed secure credential store.
- Provide deterministic read/write/delete operations per provider account.
- Avoid logging or exposing secret values in diagnostics.

Key types:
- `CredentialStore`: interface for provider credential persistence.
- `KeyringCredentialStore`: keyring-backed secure credential storage.
"""

from __future__ import annotations

from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError, PasswordDeleteError


_DEFAULT_SERVICE_NAME = "reelvoice"

PROVIDER_ACCOUNTS = {
    "openai": "openai_api_key",
    "elevenlabs": "elevenlabs_api_key",
}


def account_for_provider(provider: str) -> str:
    """Return the credential account name of a provider."""

    normalized = provider.strip().lower()
    if normalized not in PROVIDER_ACCOUNTS:
        supported = ", ".join(sorted(PROVIDER_ACCOUNTS))
        raise ValueError(f"Unsupported provider `{provider}`; supported: {supported}.")
    return PROVIDER_ACCOUNTS[normalized]


class CredentialStore:
    """Interface for secure provider credential operations."""

    def is_available(self) -> bool:
        """Return whether secure credential operations are available."""

        raise NotImplementedError

    def get_api_key(self, provider: str) -> str | None:
        """Load the stored API key of a provider, when available."""

        raise NotImplementedError

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist an API key of a provider."""

        raise NotImplementedError

    def clear_api_key(self, provider: str) -> bool:
        """Delete a stored API key and return whether one existed."""

        raise NotImplementedError

    def secure_values(self) -> dict[str, str]:
        """Return stored keys as runtime `secure` source values."""

        values: dict[str, str] = {}
        for provider, account in PROVIDER_ACCOUNTS.items():
            stored = self.get_api_key(provider)
            if stored is not None:
                values[account] = stored
        return values


@dataclass(slots=True)
class KeyringCredentialStore(CredentialStore):
    """Secure credential store backed by the `keyring` package."""

    service_name: str = _DEFAULT_SERVICE_NAME

    def is_available(self) -> bool:
        """Return `True` when a usable keyring backend is configured."""

        backend = keyring.get_keyring()
        return getattr(backend, "priority", 0) > 0

    def get_api_key(self, provider: str) -> str | None:
        """Get a normalized API key from keyring, returning `None` when missing."""

        try:
            value = keyring.get_password(self.service_name, account_for_provider(provider))
        except KeyringError:
            return None
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist a normalized API key in keyring."""

        normalized = api_key.strip()
        if not normalized:
            raise ValueError("API key must be a non-empty string.")
        keyring.set_password(self.service_name, account_for_provider(provider), normalized)

    def clear_api_key(self, provider: str) -> bool:
        """Remove the stored API key from keyring and report if one was present."""

        if self.get_api_key(provider) is None:
            return False
        try:
            keyring.delete_password(self.service_name, account_for_provider(provider))
        except PasswordDeleteError:
            return False
        return True


def create_credential_store() -> CredentialStore:
    """Create the default secure credential store implementation."""

    return KeyringCredentialStore()
