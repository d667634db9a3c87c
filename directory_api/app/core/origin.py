"""
Cross-site request forgery defence through origin validation.

Browsers attach an ``Origin`` header (or at least a ``Referer``) to
state-changing requests.  :class:`OriginGuard` accepts a mutating
request only when that origin is one of the configured front-end
origins.  The check has no side effects and must run before the rate
limiter: a forged request is rejected without spending the victim's
rate-limit budget.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

from fastapi import Request

from .errors import ForbiddenError


logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class OriginCheck:
    is_valid: bool
    error: Optional[str] = None


def normalize_origin(value: str) -> Optional[str]:
    """Reduce a URL or origin to ``scheme://host[:port]``.

    Scheme and host are lowercased and default ports are dropped, so
    ``HTTPS://Example.com:443/path`` becomes ``https://example.com``.
    Returns ``None`` when the value has no scheme or host.
    """
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


class OriginGuard:
    """Validate the declared origin of a request against an allow-list."""

    def __init__(self, allowed_origins: Iterable[str]) -> None:
        self.allowed_origins = frozenset(
            origin for origin in (normalize_origin(o) for o in allowed_origins) if origin
        )

    def check(self, method: str, origin: Optional[str], referer: Optional[str]) -> OriginCheck:
        if method.upper() in SAFE_METHODS:
            return OriginCheck(True)
        if origin:
            declared = normalize_origin(origin)
            if declared is None:
                return OriginCheck(False, "Invalid origin header")
        elif referer:
            # Some browsers omit Origin but still send Referer.
            declared = normalize_origin(referer)
            if declared is None:
                return OriginCheck(False, "Invalid referer header")
        else:
            return OriginCheck(False, "Missing origin header")
        if declared not in self.allowed_origins:
            return OriginCheck(False, "Invalid request origin")
        return OriginCheck(True)


def verify_origin(request: Request) -> None:
    """Dependency rejecting forged mutating requests with ``FORBIDDEN``."""
    guard: OriginGuard = request.app.state.origin_guard
    result = guard.check(
        request.method,
        request.headers.get("origin"),
        request.headers.get("referer"),
    )
    if not result.is_valid:
        logger.warning(
            "Rejected %s %s: %s (origin=%r)",
            request.method,
            request.url.path,
            result.error,
            request.headers.get("origin"),
        )
        raise ForbiddenError(
            "Invalid request origin. This may be a cross-site request forgery attempt."
        )
