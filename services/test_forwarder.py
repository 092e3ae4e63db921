import asyncio
import gzip
import json

import httpx
import pytest

from core.config import HeaderSettings, RetrySettings, UpstreamSettings
from core.headers import build_header_policy
from core.request_types import InboundRequest, RequestBody
from services.forwarder import Forwarder
from services.retry import RetryPolicy
from services.upstream import UpstreamClient

CORS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "*",
    "access-control-allow-headers": "*",
}


async def _stream(*parts):
    for part in parts:
        yield part


async def _read(response):
    return b"".join([chunk async for chunk in response.body_iterator])


@pytest.fixture
def make_forwarder(config, recording_logger, mock_transport, sleep):
    def _create(handler, cfg=None):
        cfg = cfg or config
        client = httpx.AsyncClient(transport=mock_transport(handler))
        return Forwarder(
            config=cfg,
            upstream=UpstreamClient(client, timeout_ms=cfg.retry.timeout_ms),
            header_policy=build_header_policy(cfg.headers),
            retry_policy=RetryPolicy(
                cfg.retry.max_retries,
                cfg.retry.retry_delay_ms,
                logger=recording_logger,
                sleep=sleep,
            ),
            logger=recording_logger,
        )

    return _create


def _inbound(method="GET", url="https://edge.example.com/v1/models?_path=ignored&key=abc", headers=(), body=None):
    return InboundRequest(method=method, url=url, headers=tuple(headers), body=body)


@pytest.mark.asyncio
async def test_preflight_short_circuits(make_forwarder, upstream_calls):
    forwarder = make_forwarder(lambda request: httpx.Response(500))

    response = await forwarder.forward(_inbound(method="OPTIONS"))

    assert response.status_code == 200
    assert response.body == b""
    for name, value in CORS.items():
        assert response.headers[name] == value
    # Starlette always frames the empty body with content-length
    assert set(response.headers) == set(CORS) | {"content-length"}
    assert response.headers["content-length"] == "0"
    assert upstream_calls == []


@pytest.mark.asyncio
async def test_forwards_to_fixed_upstream_without_reserved_param(make_forwarder, upstream_calls, recording_logger):
    forwarder = make_forwarder(
        lambda request: httpx.Response(
            200,
            headers={"content-type": "application/json"},
            content=_stream(b'{"models":[]}'),
        )
    )

    response = await forwarder.forward(
        _inbound(headers=[("x-goog-api-key", "k"), ("cookie", "c=1"), ("host", "edge.example.com")])
    )

    assert await _read(response) == b'{"models":[]}'
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    assert response.headers["access-control-allow-origin"] == "*"

    sent = upstream_calls[0]
    assert sent.method == "GET"
    assert str(sent.url) == "https://generativelanguage.googleapis.com/v1/models?key=abc"
    assert sent.headers["x-goog-api-key"] == "k"
    assert "cookie" not in sent.headers
    assert sent.headers["host"] == "generativelanguage.googleapis.com"
    assert recording_logger.responses == [("GET", "/v1/models", 200, 1)]


@pytest.mark.asyncio
async def test_upstream_error_status_is_relayed(make_forwarder, upstream_calls):
    forwarder = make_forwarder(
        lambda request: httpx.Response(
            429,
            headers={"content-type": "application/json"},
            content=_stream(b'{"error":"rate limited"}'),
        )
    )

    response = await forwarder.forward(_inbound())

    assert response.status_code == 429
    assert await _read(response) == b'{"error":"rate limited"}'
    assert len(upstream_calls) == 1


@pytest.mark.asyncio
async def test_upstream_headers_win_over_cors(make_forwarder):
    forwarder = make_forwarder(
        lambda request: httpx.Response(
            200,
            headers={
                "access-control-allow-origin": "https://app.example.com",
                "x-upstream": "1",
                "connection": "close",
            },
            content=_stream(b""),
        )
    )

    response = await forwarder.forward(_inbound())
    await _read(response)

    assert response.headers["access-control-allow-origin"] == "https://app.example.com"
    assert response.headers["access-control-allow-methods"] == "*"
    assert response.headers["x-upstream"] == "1"
    assert "connection" not in response.headers


@pytest.mark.asyncio
async def test_event_stream_is_relayed_chunk_by_chunk(make_forwarder):
    events = [b"data: {\"n\":1}\n\n", b"data: {\"n\":2}\n\n", b"data: {\"n\":3}\n\n"]
    forwarder = make_forwarder(
        lambda request: httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=_stream(*events),
        )
    )

    response = await forwarder.forward(
        _inbound(url="https://edge.example.com/v1beta/models/gemini-pro:streamGenerateContent?alt=sse")
    )

    assert [chunk async for chunk in response.body_iterator] == events
    assert response.headers["content-type"] == "text/event-stream"


@pytest.mark.asyncio
async def test_encoded_body_is_not_decoded(make_forwarder):
    compressed = gzip.compress(b'{"ok":true}')
    forwarder = make_forwarder(
        lambda request: httpx.Response(
            200,
            headers={"content-encoding": "gzip", "content-length": str(len(compressed))},
            content=_stream(compressed),
        )
    )

    response = await forwarder.forward(_inbound())

    assert await _read(response) == compressed
    assert response.headers["content-encoding"] == "gzip"


@pytest.mark.asyncio
async def test_request_body_is_streamed_upstream(make_forwarder, upstream_calls):
    async def handler(request):
        return httpx.Response(200, content=_stream(await request.aread()))

    forwarder = make_forwarder(handler)
    body = RequestBody(_stream(b'{"contents":', b"[]}"))

    response = await forwarder.forward(
        _inbound(method="POST", headers=[("content-type", "application/json")], body=body)
    )

    assert await _read(response) == b'{"contents":[]}'
    assert upstream_calls[0].headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_three_failed_attempts_produce_502(make_forwarder, upstream_calls, sleep, recording_logger):
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectError(f"connection refused #{len(attempts)}")

    forwarder = make_forwarder(handler)

    response = await forwarder.forward(_inbound())

    assert len(upstream_calls) == 3
    assert sleep.delays == [1.0, 2.0]
    assert response.status_code == 502
    assert response.headers["content-type"] == "application/json"
    assert response.headers["access-control-allow-origin"] == "*"
    assert json.loads(response.body) == {
        "error": "Proxy request failed",
        "message": "connection refused #3",
    }
    assert recording_logger.errors == [(502, "connection refused #3")]


@pytest.mark.asyncio
async def test_error_without_message_reports_unknown(make_forwarder):
    def handler(request):
        raise httpx.ConnectError("")

    forwarder = make_forwarder(handler)

    response = await forwarder.forward(_inbound())

    assert response.status_code == 502
    assert json.loads(response.body)["message"] == "Unknown error"


@pytest.mark.asyncio
async def test_retry_succeeds_on_later_attempt(make_forwarder, upstream_calls, sleep):
    def handler(request):
        if len(upstream_calls) == 1:
            raise httpx.ConnectError("reset")
        return httpx.Response(200, content=_stream(b"ok"))

    forwarder = make_forwarder(handler)

    response = await forwarder.forward(_inbound())

    assert await _read(response) == b"ok"
    assert len(upstream_calls) == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_partly_sent_body_is_not_retried(make_forwarder, upstream_calls, sleep):
    async def handler(request):
        await request.aread()
        raise httpx.ReadError("connection reset while reading response")

    forwarder = make_forwarder(handler)
    body = RequestBody(_stream(b"payload"))

    response = await forwarder.forward(_inbound(method="POST", body=body))

    assert response.status_code == 502
    assert len(upstream_calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_deny_policy_masks_caller(make_forwarder, upstream_calls, config):
    cfg = config.model_copy(update={"headers": HeaderSettings(policy="deny")})
    forwarder = make_forwarder(lambda request: httpx.Response(200, content=_stream(b"")), cfg)

    response = await forwarder.forward(
        _inbound(
            headers=[
                ("user-agent", "my-app/1.0"),
                ("x-forwarded-for", "10.0.0.1"),
                ("referer", "https://app.example.com"),
                ("x-goog-api-key", "k"),
            ]
        )
    )
    await _read(response)

    sent = upstream_calls[0].headers
    assert sent["user-agent"].startswith("Mozilla/5.0")
    assert sent["pragma"] == "no-cache"
    assert sent["x-goog-api-key"] == "k"
    assert "x-forwarded-for" not in sent
    assert "referer" not in sent


@pytest.mark.asyncio
async def test_identical_requests_give_identical_responses(make_forwarder):
    forwarder = make_forwarder(lambda request: httpx.Response(200, content=_stream(b"same")))

    first = await forwarder.forward(_inbound())
    second = await forwarder.forward(_inbound())

    assert (first.status_code, await _read(first)) == (second.status_code, await _read(second))


@pytest.mark.asyncio
async def test_unencodable_header_ends_as_502(make_forwarder, upstream_calls, sleep):
    forwarder = make_forwarder(lambda request: httpx.Response(200, content=_stream(b"")))

    response = await forwarder.forward(_inbound(headers=[("x-goog-api-key", "caf\xe9")]))

    assert response.status_code == 502
    assert json.loads(response.body)["error"] == "Proxy request failed"
    assert upstream_calls == []
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_buffered_body_is_resent_on_every_attempt(make_forwarder, upstream_calls, sleep, config):
    cfg = config.model_copy(update={"upstream": UpstreamSettings(body_mode="buffer")})

    def handler(request):
        raise httpx.ConnectError("connection refused")

    forwarder = make_forwarder(handler, cfg)
    body = RequestBody(_stream(b"{", b"}"))

    response = await forwarder.forward(_inbound(method="POST", body=body))

    assert response.status_code == 502
    assert len(upstream_calls) == 3
    assert [call.content for call in upstream_calls] == [b"{}", b"{}", b"{}"]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_buffered_body_succeeds_after_retry(make_forwarder, upstream_calls, config):
    cfg = config.model_copy(update={"upstream": UpstreamSettings(body_mode="buffer")})

    async def handler(request):
        if len(upstream_calls) == 1:
            raise httpx.ConnectError("reset")
        return httpx.Response(200, content=_stream(b"echo:" + await request.aread()))

    forwarder = make_forwarder(handler, cfg)

    response = await forwarder.forward(
        _inbound(method="POST", body=RequestBody(_stream(b"payload")))
    )

    assert await _read(response) == b"echo:payload"
    assert upstream_calls[1].headers["content-length"] == "7"


@pytest.mark.asyncio
async def test_slow_upstream_times_out_on_every_attempt(make_forwarder, upstream_calls, sleep, config):
    cfg = config.model_copy(update={"retry": RetrySettings(timeout_ms=20)})

    async def handler(request):
        await asyncio.sleep(10)
        return httpx.Response(200, content=_stream(b""))

    forwarder = make_forwarder(handler, cfg)

    response = await forwarder.forward(_inbound())

    assert response.status_code == 502
    assert len(upstream_calls) == 3
    assert sleep.delays == [1.0, 2.0]
    assert json.loads(response.body) == {
        "error": "Proxy request failed",
        "message": "Upstream request timed out after 20 ms",
    }
