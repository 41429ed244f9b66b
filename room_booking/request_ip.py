from __future__ import annotations

from typing import Mapping

FALLBACK_IP = "0.0.0.0"


def _first_forwarded(value: str | None) -> str | None:
    if not value:
        return None
    first = value.split(",")[0].strip()
    return first or None


def _normalize_ip(value: str | None) -> str | None:
    if not value:
        return None
    if "::ffff:" in value:
        return value.split("::ffff:")[-1] or None
    return value


def client_ip_from_headers(headers: Mapping[str, str] | None) -> str:
    if not headers:
        return FALLBACK_IP
    forwarded = _first_forwarded(headers.get("X-Forwarded-For"))
    candidate = _normalize_ip(forwarded or headers.get("X-Real-Ip"))
    return candidate or FALLBACK_IP


def client_ip(headers: Mapping[str, str] | None, remote_addr: str | None = None) -> str:
    """Header-provided address first, then the socket peer."""
    from_headers = client_ip_from_headers(headers)
    if from_headers != FALLBACK_IP:
        return from_headers
    return _normalize_ip(remote_addr) or FALLBACK_IP
