"""Upstream URL construction."""

from urllib.parse import parse_qsl, urlencode, urlsplit


def build_upstream_url(base_url: str, inbound_url: str, reserved_param: str) -> str:
    """Point the inbound path and query at the fixed upstream authority.

    Only the path and query of ``inbound_url`` are used; its host is ignored.
    Query pairs named ``reserved_param`` are dropped, the rest keep their order.
    """
    parts = urlsplit(inbound_url)
    path = parts.path or "/"
    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key != reserved_param
    ]

    url = base_url.rstrip("/") + path
    if params:
        url += "?" + urlencode(params)
    return url
