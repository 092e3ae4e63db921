"""Timeout-bounded HTTP calls to the upstream API."""

import asyncio

import httpx

from core.exceptions import UpstreamConnectionError, UpstreamTimeoutError
from core.request_types import PreparedRequest


class UpstreamClient:
    """Issue one upstream call, cancelling it if headers are too slow."""

    def __init__(self, client: httpx.AsyncClient, timeout_ms: int = 20000) -> None:
        self._client = client
        self._timeout_ms = timeout_ms

    async def send(self, prepared: PreparedRequest) -> httpx.Response:
        """Send the request and return the response with its body unread.

        The caller owns the returned response and must close it. Every failure
        surfaces as an ``UpstreamError`` so the caller can always answer 502.
        """
        provider = httpx.URL(prepared.url).host
        try:
            return await asyncio.wait_for(
                self._send(prepared),
                timeout=self._timeout_ms / 1000,
            )
        except TimeoutError:
            raise UpstreamTimeoutError(
                f"Upstream request timed out after {self._timeout_ms} ms",
                provider=provider,
            ) from None
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(str(e), provider=provider) from e
        except httpx.RequestError as e:
            raise UpstreamConnectionError(str(e), provider=provider) from e
        except Exception as e:
            # e.g. header values httpx cannot encode; cancellation is not an Exception
            raise UpstreamConnectionError(str(e), provider=provider) from e

    async def _send(self, prepared: PreparedRequest) -> httpx.Response:
        request = self._client.build_request(
            prepared.method,
            prepared.url,
            headers=prepared.headers,
            content=prepared.body,
        )
        return await self._client.send(request, stream=True)
