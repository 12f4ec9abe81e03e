"""Helpers for reading client identity from inbound requests."""

from fastapi import Request

DEFAULT_CLIENT_IP = "127.0.0.1"


def get_client_ip(request: Request) -> str:
    """
    Best-effort client IP for rate limiting.

    Proxy headers are consulted in order: the first entry of
    ``x-forwarded-for``, then ``x-real-ip``, then ``cf-connecting-ip``.
    Falls back to the socket peer, then to localhost.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_CLIENT_IP
