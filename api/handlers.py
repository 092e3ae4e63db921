"""FastAPI route handlers."""

from fastapi import Request, Response

from core.config import Config
from core.request_types import InboundRequest
from ui.log_utils import write_incoming_log


async def handle_proxy(request: Request, config: Config) -> Response:
    """Forward any request on any path to the upstream."""
    inbound = InboundRequest.from_request(request)
    if config.proxy.debug:
        write_incoming_log(request.method, request.url.path, dict(request.headers))

    forwarder = request.app.state.forwarder
    return await forwarder.forward(inbound)
