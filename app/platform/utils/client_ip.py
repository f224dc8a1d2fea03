from typing import Optional

from fastapi import Request


def get_client_ip(request: Request) -> str:
    """
    Originating address for anonymous usage buckets.

    First entry of X-Forwarded-For when behind a proxy, otherwise the socket
    peer.
    """
    forwarded_for: Optional[str] = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first[:45]

    if request.client and request.client.host:
        return request.client.host
    return "unknown"
