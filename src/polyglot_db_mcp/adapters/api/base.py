"""
Shared HTTP plumbing for backends that speak a REST API.

One :class:`httpx.AsyncClient` is the adapter's connection handle. Transport
failures are retried with exponential back-off via tenacity; HTTP error
statuses are not retried and surface as :class:`APIError` with the backend's
response body, which usually carries the useful diagnostic.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, MutableMapping, Optional
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from ...core.errors import BackendExecutionError, ConnectivityError
from ..base import BackendAdapter

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_ATTEMPTS = 3


class APIError(BackendExecutionError):
    """Raised when an HTTP backend answers with an error status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class HTTPBackendAdapter(BackendAdapter[httpx.AsyncClient]):
    """
    Base class for HTTP-backed adapters.

    Parameters
    ----------
    env:
        Environment mapping for configuration lookups.
    transport:
        Optional :class:`httpx.AsyncBaseTransport`; tests pass an
        :class:`httpx.MockTransport`.
    timeout:
        Request timeout in seconds.
    retry_attempts:
        Attempts per request for transport-level failures.
    """

    # Path used by the liveness probe.
    health_path = "/"

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    ) -> None:
        super().__init__(env)
        self.transport = transport
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)

    def base_url(self) -> str:
        raise NotImplementedError

    def default_headers(self) -> Dict[str, str]:
        return {}

    def auth(self) -> Optional[httpx.Auth]:
        return None

    async def _open(self) -> httpx.AsyncClient:
        headers: MutableMapping[str, str] = {"Accept": "application/json"}
        headers.update(self.default_headers())
        return httpx.AsyncClient(
            base_url=self.base_url().rstrip("/"),
            timeout=self.timeout,
            headers=dict(headers),
            auth=self.auth(),
            transport=self.transport,
            follow_redirects=True,
        )

    async def _close(self, handle: httpx.AsyncClient) -> None:
        await handle.aclose()

    async def _ping(self, handle: httpx.AsyncClient) -> None:
        await self.request("GET", self.health_path)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        content: Optional[str | bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """
        Send one request and return the decoded body.

        JSON responses are decoded; other bodies are returned as text, and an
        empty body yields ``None``.
        """

        client = await self.acquire()
        self.logger.debug("HTTP request", extra={"method": method, "url": path, "params": dict(params) if params else None})
        kwargs: Dict[str, Any] = {"params": params, "headers": headers}
        if json_body is not None:
            kwargs["json"] = json_body
        if content is not None:
            kwargs["content"] = content

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                stop=stop_after_attempt(self.retry_attempts),
                reraise=True,
            ):
                with attempt:
                    response = await client.request(method, path, **kwargs)
        except RetryError as exc:  # pragma: no cover - reraise=True surfaces the last error
            raise ConnectivityError(f"{method} {path} failed after {self.retry_attempts} attempts: {exc}") from exc
        except httpx.TransportError as exc:
            self.logger.warning("HTTP transport error", extra={"method": method, "url": path, "error": str(exc)})
            raise ConnectivityError(f"{self.name} is unreachable ({method} {path}): {exc}") from exc

        self.logger.debug("HTTP response", extra={"method": method, "url": path, "status_code": response.status_code})
        if response.status_code >= 400:
            body = self._decode(response)
            detail = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False, default=str)
            raise APIError(
                f"HTTP {response.status_code} from {self.name} for {method} {path}: {detail}",
                status_code=response.status_code,
                body=body,
            )
        return self._decode(response)

    @staticmethod
    def segment(args: Mapping[str, Any], key: str) -> str:
        """Read a required argument and escape it for use as one URL path segment."""

        return quote(BackendAdapter.require_str(args, key), safe="")

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text
