"""Client IP extraction.

Uses the socket peer unless proxy headers are trusted, in which case the
usual proxy/CDN headers are checked first. Only syntactically valid
addresses are accepted from headers.
"""

from __future__ import annotations

import ipaddress

from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"

# Checked in order; the first header holding a valid IP wins.
_SINGLE_VALUE_HEADERS = (
    "x-client-ip",
)
_LIST_HEADERS = (
    "x-forwarded-for",
)
_TRAILING_HEADERS = (
    "cf-connecting-ip",
    "fastly-client-ip",
    "true-client-ip",
    "x-real-ip",
    "x-cluster-client-ip",
    "x-forwarded",
    "forwarded-for",
)


def _clean(candidate: str) -> str | None:
    value = candidate.strip().strip('"')
    if value.startswith("[") and "]" in value:
        # [2001:db8::1]:443
        value = value[1 : value.index("]")]
    elif value.count(":") == 1:
        # 203.0.113.7:8080
        value = value.split(":", 1)[0]
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return None
    return value


def _first_valid(values: str) -> str | None:
    for part in values.split(","):
        ip = _clean(part)
        if ip:
            return ip
    return None


def _from_forwarded(header: str) -> str | None:
    # RFC 7239: Forwarded: for=192.0.2.60;proto=http, for="[2001:db8::1]"
    for element in header.split(","):
        for pair in element.split(";"):
            name, _, value = pair.partition("=")
            if name.strip().lower() == "for":
                ip = _clean(value)
                if ip:
                    return ip
    return None


def get_client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str:
    """Return the best guess of the requesting client's IP address.

    Args:
        request: Incoming request.
        trust_proxy_headers: Consult forwarding headers before the socket
            peer. Clients can set these freely unless a proxy rewrites them.

    Returns:
        The client IP, or "unknown" if none could be determined.
    """
    headers = request.headers

    if trust_proxy_headers:
        for name in _SINGLE_VALUE_HEADERS:
            value = headers.get(name)
            if value and (ip := _clean(value)):
                return ip
        for name in _LIST_HEADERS:
            value = headers.get(name)
            if value and (ip := _first_valid(value)):
                return ip
        for name in _TRAILING_HEADERS:
            value = headers.get(name)
            if value and (ip := _first_valid(value)):
                return ip
        forwarded = headers.get("forwarded")
        if forwarded and (ip := _from_forwarded(forwarded)):
            return ip

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT
