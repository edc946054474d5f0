from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from chatrelay.providers.base import (
    ChatOptions,
    ChatStreamAdapter,
    ProviderError,
    ProviderRuntimeConfig,
    UpstreamStreamError,
    UpstreamUnreachable,
    build_status_error,
)

logger = logging.getLogger(__name__)


class OllamaAdapter(ChatStreamAdapter):
    """Adapter for the Ollama chat API."""

    def __init__(
        self,
        timeout_sec: float = 300,
        connect_timeout_sec: float = 10,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_sec, connect=connect_timeout_sec)
        self._client = http_client

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        url = self._join_url(cfg.base_url, "/api/tags")
        data = await self._request_json("GET", url)
        models = data.get("models")
        if not isinstance(models, list):
            return []
        return [
            item["name"]
            for item in models
            if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"]
        ]

    @asynccontextmanager
    async def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict[str, Any]],
        options: ChatOptions,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        url = self._join_url(cfg.base_url, "/api/chat")
        payload = {
            "model": cfg.model_name,
            "stream": True,
            "messages": messages,
            "options": options.as_payload(),
        }
        async with AsyncExitStack() as stack:
            if self._client:
                client = self._client
            else:
                client = await stack.enter_async_context(httpx.AsyncClient(timeout=self._timeout))
            request = client.build_request("POST", url, json=payload, timeout=self._timeout)
            logger.info("Connecting to upstream %s with model %s", url, cfg.model_name)
            response = await self._send(client, request)
            stack.push_async_callback(response.aclose)
            if response.status_code >= 300:
                await self._drain(response)
                raise build_status_error(response)
            body = self._iter_body(response)
            stack.push_async_callback(body.aclose)
            yield body

    async def _send(self, client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
        try:
            return await client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            raise UpstreamUnreachable(
                "UPSTREAM_TIMEOUT", f"Network error: {str(exc) or 'timed out'}", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamUnreachable(
                "UPSTREAM_UNREACHABLE", f"Network error: {exc}", retryable=True
            ) from exc

    @staticmethod
    async def _drain(response: httpx.Response) -> None:
        try:
            await response.aread()
        except httpx.HTTPError:
            logger.debug("Failed to read error body from upstream", exc_info=True)

    @staticmethod
    async def _iter_body(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.TimeoutException as exc:
            raise UpstreamStreamError(
                "UPSTREAM_STREAM_ERROR", "Upstream stream timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamStreamError(
                "UPSTREAM_STREAM_ERROR", f"Upstream stream failed: {exc}", retryable=True
            ) from exc

    async def _request_json(self, method: str, url: str) -> dict[str, Any]:
        try:
            if self._client:
                response = await self._client.request(method, url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url)
        except httpx.RequestError as exc:
            raise UpstreamUnreachable(
                "UPSTREAM_UNREACHABLE", f"Network error: {exc}", retryable=True
            ) from exc
        if response.status_code >= 300:
            raise build_status_error(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("UPSTREAM_PARSE_ERROR", "Invalid JSON from upstream.") from exc
        if not isinstance(data, dict):
            raise ProviderError("UPSTREAM_PARSE_ERROR", "Upstream returned invalid JSON payload.")
        return data

    @staticmethod
    def _join_url(base_url: Optional[str], path: str) -> str:
        if not base_url:
            raise ProviderError("UPSTREAM_BASE_URL_MISSING", "Base URL is required for Ollama.")
        base = base_url.rstrip("/")
        if base.endswith("/api") and path.startswith("/api/"):
            return base + path[4:]
        return base + path
