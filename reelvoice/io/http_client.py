"""Shared `requests`-based HTTP plumbing for provider clients.

Responsibilities:
- Issue JSON requests with provider-specific auth headers and timeouts.
- Classify HTTP and transport failures into deterministic failure kinds.
- Redact secrets and cap provider messages used in diagnostics.
"""

from __future__ import annotations

import json
import re
import socket
from typing import Any

import requests

from ..errors import ProviderError


class ProviderHTTPClient:
    """Base class holding HTTP settings and error mapping for one provider."""

    provider_label = "Provider"
    error_class: type[ProviderError] = ProviderError
    missing_key_message = "Missing provider API key."
    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize HTTP client settings."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _auth_headers(self) -> dict[str, str]:
        """Return authentication headers for one request."""

        raise NotImplementedError

    def _require_api_key(self) -> None:
        """Require API key presence before issuing requests."""

        if not self.api_key:
            raise self.error_class(self.missing_key_message, failure_kind="invalid_api_key")

    def _request_bytes(
        self,
        method: str,
        endpoint_path: str,
        *,
        payload: dict[str, Any] | None = None,
        accept: str | None = None,
        require_non_empty_response: bool = False,
    ) -> bytes:
        """Execute one request and map failures to the provider error class."""

        self._require_api_key()
        endpoint = f"{self.base_url}{endpoint_path}"
        headers = self._auth_headers()
        if payload is not None:
            headers["Content-Type"] = "application/json"
        if accept is not None:
            headers["Accept"] = accept
        try:
            if method == "GET":
                response = requests.get(endpoint, headers=headers, timeout=self.timeout_seconds)
            else:
                response = requests.post(
                    endpoint,
                    headers=headers,
                    json=payload,
                    timeout=self.timeout_seconds,
                )
            response.raise_for_status()
            response_bytes = bytes(response.content)
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            failure_kind = self._classify_transport_failure(exc)
            if failure_kind == "timeout":
                detail = f"{self.provider_label} request timed out."
            else:
                detail = (
                    f"{self.provider_label} request transport error: "
                    f"{self._short_message(str(exc))}"
                )
            raise self.error_class(detail, failure_kind=failure_kind) from exc
        except TimeoutError as exc:
            raise self.error_class(
                f"{self.provider_label} request timed out.",
                failure_kind="timeout",
            ) from exc

        if require_non_empty_response and not response_bytes:
            raise self.error_class(f"{self.provider_label} response is empty.")
        return response_bytes

    def _request_json(
        self, method: str, endpoint_path: str, payload: dict[str, Any] | None = None
    ) -> Any:
        """Execute one request and decode its JSON body."""

        raw = self._request_bytes(method, endpoint_path, payload=payload)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise self.error_class(
                f"{self.provider_label} returned invalid JSON payload."
            ) from exc

    @staticmethod
    def _decode_error_body(exc: requests.HTTPError) -> str:
        """Decode an HTTP error body into a best-effort UTF-8 payload string."""

        response = exc.response
        if response is None:
            return ""
        return bytes(response.content or b"").decode("utf-8", errors="replace").strip()

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(r"\bsk_[A-Za-z0-9]{16,}\b", "[redacted-key]", redacted)
        redacted = re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )
        return redacted

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise provider message and optional provider error code.

        Understands both `{"error": {"code", "message"}}` and
        `{"detail": {"status", "message"}}` error envelopes.
        """

        if not body:
            return "", None

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(cls._redact_sensitive_tokens(body)), None

        provider_code: str | None = None
        message: str | None = None
        if isinstance(payload, dict):
            error_payload = payload.get("error")
            if not isinstance(error_payload, dict):
                error_payload = payload.get("detail")
            if isinstance(error_payload, dict):
                for code_key in ("code", "status"):
                    code_value = error_payload.get(code_key)
                    if isinstance(code_value, str) and code_value.strip():
                        provider_code = code_value.strip()
                        break
                message_value = error_payload.get("message")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()
            elif isinstance(error_payload, str) and error_payload.strip():
                message = error_payload.strip()

        if message is None:
            message = body

        return cls._short_message(cls._redact_sensitive_tokens(message)), provider_code

    @staticmethod
    def _classify_http_failure(
        status_code: int,
        provider_message: str,
        provider_code: str | None,
    ) -> str:
        """Classify HTTP errors into deterministic diagnostic kinds."""

        message_lower = provider_message.lower()
        normalized_code = provider_code.lower() if provider_code is not None else ""

        if status_code == 401 or "api key" in message_lower or "api_key" in normalized_code:
            return "invalid_api_key"
        if normalized_code in {"insufficient_quota", "quota_exceeded"} or (
            status_code == 429 and "quota" in message_lower
        ):
            return "insufficient_quota"
        if normalized_code in {"model_not_found", "voice_not_found"} or (
            any(token in message_lower for token in ("model", "voice"))
            and any(
                phrase in message_lower for phrase in ("not found", "does not exist", "invalid")
            )
        ):
            return "invalid_model"
        if status_code in {408, 504} or "timeout" in message_lower or "timed out" in message_lower:
            return "timeout"
        return "http_error"

    @staticmethod
    def _classify_transport_failure(reason: object) -> str:
        """Classify network-layer failures into deterministic diagnostic kinds."""

        if isinstance(reason, TimeoutError | socket.timeout | requests.Timeout):
            return "timeout"
        return "transport"

    def _http_error_to_provider_error(self, exc: requests.HTTPError) -> ProviderError:
        """Convert HTTP errors into normalized provider exceptions with metadata."""

        status_code = exc.response.status_code if exc.response is not None else 0
        body = self._decode_error_body(exc)
        provider_message, provider_code = self._extract_provider_message(body)
        failure_kind = self._classify_http_failure(status_code, provider_message, provider_code)

        label = self.provider_label
        headline = {
            "invalid_api_key": f"{label} authentication failed",
            "insufficient_quota": f"{label} quota is insufficient for this request",
            "invalid_model": f"{label} rejected the selected model or voice",
            "timeout": f"{label} request timed out",
        }.get(failure_kind, f"{label} request failed")

        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."

        return self.error_class(
            detail,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )
