"""Shared request data types."""

from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

from fastapi import Request

BODYLESS_METHODS = ("GET", "HEAD")


class RequestBody:
    """Single-pass async byte stream for an inbound request body.

    The underlying stream can only be read once, so ``consumed`` flips as soon
    as anyone starts iterating.
    """

    def __init__(self, chunks: AsyncIterable[bytes]) -> None:
        self._chunks = chunks
        self.consumed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        self.consumed = True
        async for chunk in self._chunks:
            if chunk:
                yield chunk

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self])


@dataclass(frozen=True)
class InboundRequest:
    """Immutable snapshot of the caller's request."""

    method: str
    url: str
    headers: tuple[tuple[str, str], ...]
    body: RequestBody | None = None

    @classmethod
    def from_request(cls, request: Request) -> "InboundRequest":
        """Snapshot a Starlette request, keeping the percent-encoded path."""
        url = request.url
        raw_path = request.scope.get("raw_path")
        if raw_path:
            url = url.replace(path=raw_path.decode("latin-1"))

        body = None
        if _has_body(request.method, request.headers):
            body = RequestBody(request.stream())

        return cls(
            method=request.method,
            url=str(url),
            headers=_join_duplicates(request.headers.items()),
            body=body,
        )


@dataclass(frozen=True)
class PreparedRequest:
    """Prepared data for an upstream request."""

    method: str
    url: str
    headers: dict[str, str]
    body: RequestBody | bytes | None = None


@dataclass
class RetryState:
    """Attempt bookkeeping for a single forwarded request."""

    attempt: int = 0
    last_error: Exception | None = None


def _join_duplicates(items) -> tuple[tuple[str, str], ...]:
    """Fold repeated header names into one comma-separated value."""
    joined: dict[str, str] = {}
    for name, value in items:
        joined[name] = f"{joined[name]}, {value}" if name in joined else value
    return tuple(joined.items())


def _has_body(method: str, headers) -> bool:
    if method.upper() in BODYLESS_METHODS:
        return False
    if "transfer-encoding" in headers:
        return True
    content_length = headers.get("content-length")
    return content_length is not None and content_length.strip() not in ("", "0")
