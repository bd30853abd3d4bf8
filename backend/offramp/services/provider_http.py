"""Shared httpx plumbing for provider REST APIs."""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from offramp.core.errors import ProviderError

logger = logging.getLogger(__name__)


class ProviderHttpClient:
    """
    Thin JSON client for one provider.

    Every non-2xx response and every transport failure becomes a
    ``ProviderError`` carrying the provider name and HTTP status (``None`` for
    transport failures), so callers only ever see the error taxonomy.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.provider = provider
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Content-Type": "application/json", **(headers or {})},
            timeout=timeout,
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=json_body)
        except httpx.RequestError as exc:
            logger.warning(f"{self.provider} {method} {path} transport error: {exc!r}")
            raise ProviderError(self.provider, None, detail=str(exc)) from exc

        if response.status_code >= 400:
            logger.warning(
                f"{self.provider} {method} {path} returned {response.status_code}: "
                f"{response.text[:300]}"
            )
            raise ProviderError(
                self.provider,
                response.status_code,
                detail=response.text[:1000],
            )

        try:
            return response.json()
        except json.JSONDecodeError as exc:
            logger.error(f"{self.provider} {method} {path} returned non-JSON body")
            raise ProviderError(
                self.provider,
                502,
                "Provider returned an unreadable response",
                detail=response.text[:1000],
            ) from exc

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()


def unwrap_data(payload: Any) -> Any:
    """Return ``payload['data']`` for ``{status, message, data}`` envelopes."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def boundary_error(provider: str, what: str, exc: Exception) -> ProviderError:
    """A 2xx response whose body does not match the expected shape."""
    logger.error(f"{provider} returned a malformed {what}: {exc}")
    return ProviderError(provider, 502, f"Provider returned a malformed {what}", detail=str(exc))
