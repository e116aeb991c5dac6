"""Base HTTP client for the sniper's API layer.

Provides:
- Shared per-resource rate limiting (sniper.utils.rate_limiter)
- Timeout handling
- RPC fallback chain rotation
- Structured error handling

Clients never retry on their own. The one retried failure (Jupiter's
"token not tradable") is handled by the swap executor.
"""

from __future__ import annotations

from typing import Any

import httpx

from sniper.utils.rate_limiter import RateLimiter


class APIError(Exception):
    """Structured API error."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        provider: str = "",
        retryable: bool = False,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider
        self.retryable = retryable
        self.body = body


class BaseClient:
    """Base HTTP client with shared rate limiting and error mapping.

    Usage:
        client = BaseClient(
            base_url="https://api.example.com",
            limiter=limiter,
            resource="quote-api",
            timeout=10.0,
        )
        data = await client.get("/endpoint", params={"q": "test"})
    """

    def __init__(
        self,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        provider_name: str = "",
        limiter: RateLimiter | None = None,
        resource: str = "",
        params: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.provider_name = provider_name
        self.timeout = timeout
        self.resource = resource
        self._limiter = limiter
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers or {},
            params=params,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        resource: str | None = None,
    ) -> Any:
        return await self._request("GET", path, params=params, headers=headers, resource=resource)

    async def post(
        self,
        path: str,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        resource: str | None = None,
    ) -> Any:
        return await self._request(
            "POST", path, params=params, json_data=json_data, headers=headers, resource=resource
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
        resource: str | None = None,
    ) -> Any:
        """Execute one request. Every failure surfaces as APIError."""
        resource = resource or self.resource
        if self._limiter is not None and resource:
            await self._limiter.acquire(resource)

        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json_data,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise APIError(
                f"Timeout calling {self.provider_name}: {e}",
                provider=self.provider_name,
                retryable=True,
            ) from e
        except httpx.TransportError as e:
            raise APIError(
                f"Connection error to {self.provider_name}: {e}",
                provider=self.provider_name,
                retryable=True,
            ) from e

        if response.status_code == 429:
            raise APIError(
                f"Rate limited by {self.provider_name}",
                status_code=429,
                provider=self.provider_name,
                retryable=True,
            )

        if response.status_code >= 500:
            raise APIError(
                f"Server error from {self.provider_name}: {response.status_code}",
                status_code=response.status_code,
                provider=self.provider_name,
                retryable=True,
            )

        if response.status_code >= 400:
            raise APIError(
                f"Client error from {self.provider_name}: {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                provider=self.provider_name,
                retryable=False,
                body=_safe_json(response),
            )

        try:
            return response.json()
        except ValueError as e:
            raise APIError(
                f"Invalid JSON from {self.provider_name}",
                status_code=response.status_code,
                provider=self.provider_name,
            ) from e


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


class RPCFallbackClient:
    """JSON-RPC client with automatic fallback chain rotation.

    Tries the primary RPC first and falls back to the next endpoint on any
    APIError. Each endpoint gets exactly one try per call.
    """

    def __init__(
        self,
        endpoints: list[dict[str, Any]],
        limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._endpoints = endpoints
        self._clients: list[BaseClient] = []
        for ep in endpoints:
            self._clients.append(
                BaseClient(
                    base_url=ep["url"],
                    timeout=ep.get("timeout_seconds", 10.0),
                    provider_name=ep.get("provider", "unknown"),
                    limiter=limiter,
                    resource=ep.get("resource", ""),
                    params=ep.get("params"),
                    transport=transport,
                )
            )

    async def call(self, method: str, params: list[Any]) -> Any:
        """Invoke an RPC method; return its ``result`` from the first endpoint that answers."""
        errors: list[str] = []
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        for client in self._clients:
            try:
                data = await client.post("", json_data=payload)
            except APIError as e:
                errors.append(f"{client.provider_name}: {e}")
                continue
            if isinstance(data, dict) and data.get("error"):
                errors.append(f"{client.provider_name}: {str(data['error'])[:200]}")
                continue
            return data.get("result") if isinstance(data, dict) else None

        raise APIError(
            f"All RPC endpoints failed for {method}: {'; '.join(errors)}",
            provider="rpc_fallback",
            retryable=True,
        )

    async def close(self) -> None:
        for client in self._clients:
            await client.close()
