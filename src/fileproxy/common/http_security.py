"""Access control for operational endpoints."""

from __future__ import annotations

import hmac
from ipaddress import ip_address
from typing import Optional

from fastapi import HTTPException, Request, status


def require_metrics_access(request: Request, token: Optional[str]) -> None:
    """Allow metrics scraping with the configured bearer token, or from loopback when none is set."""
    if token:
        expected = f"Bearer {token}"
        auth_header = request.headers.get("authorization")
        if not auth_header or not hmac.compare_digest(auth_header, expected):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid metrics token")
        return

    client_host = request.client.host if request.client else None
    if not client_host:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access denied")

    try:
        loopback = ip_address(client_host).is_loopback
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access denied") from exc
    if not loopback:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access restricted to localhost")
