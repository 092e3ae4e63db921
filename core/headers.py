"""Header filtering for upstream requests and CORS response headers."""

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from core.config import CorsSettings, HeaderSettings
from core.exceptions import ConfigurationError

HeaderKey = str | re.Pattern[str]
HeaderItems = Iterable[tuple[str, str]]

# Connection-level headers; framing belongs to the client and the ASGI server
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def pick_headers(headers: HeaderItems, keys: Sequence[HeaderKey]) -> dict[str, str]:
    """Copy only headers whose name matches one of ``keys``.

    String keys must match exactly (case-sensitive), compiled patterns match
    when they find the name.
    """
    picked: dict[str, str] = {}
    for name, value in headers:
        if any(
            key == name if isinstance(key, str) else key.search(name)
            for key in keys
        ):
            picked[name] = value
    return picked


def omit_headers(headers: HeaderItems, names: Iterable[str]) -> dict[str, str]:
    """Copy every header except those in ``names`` (case-insensitive)."""
    denied = {name.lower() for name in names}
    return {name: value for name, value in headers if name.lower() not in denied}


def strip_hop_by_hop(headers: HeaderItems) -> dict[str, str]:
    return omit_headers(headers, HOP_BY_HOP_HEADERS)


class HeaderPolicy(Protocol):
    """Decides which inbound headers reach the upstream."""

    def apply(self, headers: HeaderItems) -> dict[str, str]: ...


class AllowListPolicy:
    """Relay only explicitly allowed headers."""

    def __init__(self, keys: Sequence[HeaderKey]) -> None:
        self.keys = list(keys)

    def apply(self, headers: HeaderItems) -> dict[str, str]:
        return pick_headers(headers, self.keys)


class DenyListPolicy:
    """Relay everything except identifying headers, then mask the caller.

    The synthetic headers replace any surviving header of the same name so
    the upstream sees a generic browser-like client.
    """

    def __init__(
        self,
        denied: Iterable[str],
        synthetic: Mapping[str, str] | None = None,
    ) -> None:
        self.denied = frozenset(name.lower() for name in denied)
        self.synthetic = dict(synthetic or {})

    def apply(self, headers: HeaderItems) -> dict[str, str]:
        filtered = omit_headers(headers, self.denied)
        self._inject(filtered)
        return filtered

    def _inject(self, headers: dict[str, str]) -> None:
        overridden = {name.lower() for name in self.synthetic}
        for name in [n for n in headers if n.lower() in overridden]:
            del headers[name]
        headers.update(self.synthetic)


def build_header_policy(settings: HeaderSettings) -> HeaderPolicy:
    """Select the header policy variant configured for this deployment."""
    if settings.policy == "deny":
        return DenyListPolicy(settings.deny, settings.synthetic)
    keys: list[HeaderKey] = list(settings.allow)
    for pattern in settings.allow_patterns:
        try:
            keys.append(re.compile(pattern))
        except re.error as e:
            raise ConfigurationError(f"Invalid header pattern {pattern!r}: {e}") from e
    return AllowListPolicy(keys)


def cors_headers(settings: CorsSettings) -> dict[str, str]:
    """Permissive cross-origin headers added to every response."""
    return {
        "access-control-allow-origin": settings.allow_origin,
        "access-control-allow-methods": settings.allow_methods,
        "access-control-allow-headers": settings.allow_headers,
    }
