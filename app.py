"""FastAPI application factory."""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request

from api.handlers import handle_proxy
from core.config import Config
from core.headers import build_header_policy
from core.protocols import RequestLogger
from services.forwarder import Forwarder
from services.retry import RetryPolicy
from services.upstream import UpstreamClient

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_app(
    config: Config,
    logger: RequestLogger,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    header_policy = build_header_policy(config.headers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        limits = httpx.Limits(
            max_connections=config.upstream.max_connections,
            max_keepalive_connections=config.upstream.max_keepalive_connections,
        )
        # Per-attempt timeout is enforced by UpstreamClient; streams may idle
        client = httpx.AsyncClient(
            timeout=None,
            limits=limits,
            follow_redirects=False,
            transport=transport,
        )
        app.state.forwarder = Forwarder(
            config=config,
            upstream=UpstreamClient(client, timeout_ms=config.retry.timeout_ms),
            header_policy=header_policy,
            retry_policy=RetryPolicy(
                max_retries=config.retry.max_retries,
                retry_delay_ms=config.retry.retry_delay_ms,
                logger=logger,
            ),
            logger=logger,
        )
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(
        title="Gemini Edge Proxy",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def proxy_all(request: Request, path: str):
        return await handle_proxy(request, config)

    return app
