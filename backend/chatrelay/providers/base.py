from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

import httpx


@dataclass
class ProviderRuntimeConfig:
    """Runtime configuration needed by a chat adapter."""

    provider: str
    model_name: str
    base_url: str | None = None


@dataclass
class ChatOptions:
    """Fixed sampling parameters forwarded with every chat request."""

    temperature: float
    num_predict: int

    def as_payload(self) -> dict[str, Any]:
        return {"temperature": self.temperature, "num_predict": self.num_predict}


class ChatStreamAdapter(Protocol):
    """Adapter interface for providers that stream chat completions."""

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        """List available models for the provider."""

    def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict[str, Any]],
        options: ChatOptions,
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]:
        """Open a streaming chat request.

        Entering the context waits for the response headers; the yielded
        iterator produces raw body chunks. Leaving the context closes the
        upstream response.
        """


class ProviderError(RuntimeError):
    """Raised when a provider operation fails."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


class UpstreamUnreachable(ProviderError):
    """Connection-level failure before any response arrived."""


class UpstreamRejected(ProviderError):
    """Upstream answered with a non-success status."""


class UpstreamStreamError(ProviderError):
    """Upstream body failed after a successful start."""


def build_status_error(response: httpx.Response) -> UpstreamRejected:
    """Build a normalized provider error from an HTTP response."""

    status = response.status_code
    message = f"HTTP {status}: {_extract_response_message(response)}"
    if status in {408, 429}:
        code = "UPSTREAM_TIMEOUT" if status == 408 else "UPSTREAM_RATE_LIMIT"
        return UpstreamRejected(code, message, retryable=True, status_code=status)
    if status >= 500:
        return UpstreamRejected(
            "UPSTREAM_SERVER_ERROR",
            message,
            retryable=True,
            status_code=status,
        )
    return UpstreamRejected("UPSTREAM_BAD_STATUS", message, status_code=status)


def _extract_response_message(response: httpx.Response) -> str:
    """Extract a concise error message from provider JSON/text payloads."""

    try:
        payload: Any = response.json()
    except ValueError:
        return (response.text or "").strip()

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            detail = error.get("message") or error.get("code")
            if isinstance(detail, str) and detail.strip():
                return detail.strip()
        if isinstance(error, str) and error.strip():
            return error.strip()
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return (response.text or "").strip()
