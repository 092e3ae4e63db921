"""Forward inbound requests to the fixed upstream and relay the response."""

from collections.abc import AsyncIterator
from dataclasses import replace

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from core.config import Config
from core.exceptions import UpstreamError
from core.headers import HeaderPolicy, cors_headers, strip_hop_by_hop
from core.protocols import RequestLogger
from core.request_types import InboundRequest, PreparedRequest, RequestBody, RetryState
from core.target import build_upstream_url
from services.retry import RetryPolicy
from services.upstream import UpstreamClient

PREFLIGHT_METHOD = "OPTIONS"


class Forwarder:
    """Turn one inbound request into a preflight, relayed, or 502 response."""

    def __init__(
        self,
        config: Config,
        upstream: UpstreamClient,
        header_policy: HeaderPolicy,
        retry_policy: RetryPolicy,
        logger: RequestLogger,
    ) -> None:
        self._config = config
        self._upstream = upstream
        self._header_policy = header_policy
        self._retry = retry_policy
        self._logger = logger
        self._cors = cors_headers(config.cors)

    async def forward(self, inbound: InboundRequest) -> Response:
        if inbound.method.upper() == PREFLIGHT_METHOD:
            return Response(headers=self._cors)

        prepared = self.prepare(inbound)
        if self._config.upstream.body_mode == "buffer":
            prepared = await self._buffer_body(prepared)
        path = httpx.URL(inbound.url).path
        self._logger.log_request(inbound.method, path, prepared.url)

        state = RetryState()
        try:
            response = await self._retry.run(
                lambda: self._upstream.send(prepared),
                state=state,
                can_retry=lambda _error: self._body_replayable(prepared),
            )
        except UpstreamError as e:
            return self._error_response(e)

        self._logger.log_response(
            inbound.method,
            path,
            response.status_code,
            attempts=state.attempt + 1,
        )
        return self._relay_response(response)

    def prepare(self, inbound: InboundRequest) -> PreparedRequest:
        """Rewrite the target and filter headers, once per inbound request."""
        url = build_upstream_url(
            self._config.upstream.base_url,
            inbound.url,
            self._config.upstream.reserved_query_param,
        )
        headers = strip_hop_by_hop(self._header_policy.apply(inbound.headers).items())
        return PreparedRequest(
            method=inbound.method,
            url=url,
            headers=headers,
            body=inbound.body,
        )

    @staticmethod
    async def _buffer_body(prepared: PreparedRequest) -> PreparedRequest:
        """Read a streamed body once so every attempt sends the same bytes."""
        if not isinstance(prepared.body, RequestBody):
            return prepared
        return replace(prepared, body=await prepared.body.read())

    @staticmethod
    def _body_replayable(prepared: PreparedRequest) -> bool:
        # A streamed body that was partly sent cannot be sent again
        if isinstance(prepared.body, RequestBody):
            return not prepared.body.consumed
        return True

    def _relay_response(self, response: httpx.Response) -> StreamingResponse:
        headers = {
            **self._cors,
            **strip_hop_by_hop(response.headers.items()),
        }
        return StreamingResponse(
            self._relay_body(response),
            status_code=response.status_code,
            headers=headers,
            background=BackgroundTask(self._cleanup_streaming, response),
        )

    async def _relay_body(self, response: httpx.Response) -> AsyncIterator[bytes]:
        """Yield upstream bytes untouched; content-encoding stays intact.

        Headers are already committed when the upstream stream breaks, so the
        error is logged and re-raised and the client sees a truncated body.
        """
        try:
            async for chunk in response.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            self._logger.log_error(response.status_code, f"Upstream stream interrupted: {e}")
            raise
        finally:
            await response.aclose()

    async def _cleanup_streaming(self, response: httpx.Response) -> None:
        """Clean up streaming resources."""
        await response.aclose()

    def _error_response(self, error: UpstreamError) -> JSONResponse:
        message = str(error) or "Unknown error"
        self._logger.log_error(502, message)
        return JSONResponse(
            {"error": "Proxy request failed", "message": message},
            status_code=502,
            headers={**self._cors, "content-type": "application/json"},
        )
