"""Authentication middleware for management API endpoints."""

import os
import secrets
import time
from collections.abc import Callable
from typing import Any

import structlog
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

logger = structlog.get_logger(__name__)

PROTECTED_PREFIX = "/api/v1/"


def get_management_api_key() -> str | None:
    """Get management API key from the MANAGEMENT_API_KEY environment variable."""
    return os.getenv("MANAGEMENT_API_KEY")


def get_trust_proxy_headers() -> bool:
    """Whether X-Forwarded-For / X-Real-IP are trusted (TRUST_PROXY_HEADERS, default: false).

    Enable only behind a reverse proxy that overwrites these headers.
    """
    return os.getenv("TRUST_PROXY_HEADERS", "false").lower() in ("true", "1", "yes")


def _get_client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    if not trust_proxy_headers:
        return request.client.host if request.client else "unknown"

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host
    return "unknown"


def _parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def _check_credentials(request: Request, expected_key: str | None) -> tuple[str, str] | None:
    """Check the Authorization header.

    Returns:
        ``(reason, detail)`` describing the failure, or None if authenticated.
    """
    if not expected_key:
        return "management_api_key_not_configured", "Management API key not configured. Access denied."

    authorization = request.headers.get("Authorization")
    if not authorization:
        return "missing_authorization_header", "Missing Authorization header"

    api_key = _parse_bearer_token(authorization)
    if not api_key:
        return (
            "invalid_authorization_format",
            "Invalid Authorization header format. Expected: Bearer {api_key}",
        )

    if not secrets.compare_digest(api_key, expected_key):
        return "invalid_api_key", "Invalid management API key"
    return None


class ManagementAPIAuthMiddleware(BaseHTTPMiddleware):
    """Enforce ``Authorization: Bearer {MANAGEMENT_API_KEY}`` on ``/api/v1/*``.

    Public endpoints (validation, activation requests, health) are not under
    the protected prefix. Failed attempts are rate limited per client IP.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        management_api_key: str | None = None,
        auth_rate_limit: int = 5,
        auth_rate_window_seconds: int = 60,
        trust_proxy_headers: bool | None = None,
    ) -> None:
        """Initialize authentication middleware.

        Args:
            app: ASGI application instance.
            management_api_key: Expected key; read from MANAGEMENT_API_KEY when None.
            auth_rate_limit: Maximum failed attempts per window per IP.
            auth_rate_window_seconds: Time window in seconds for rate limiting.
            trust_proxy_headers: Take the client IP from forwarding headers;
                read from TRUST_PROXY_HEADERS when None.
        """
        super().__init__(app)
        self._management_api_key = management_api_key or get_management_api_key()
        self._auth_rate_limit = auth_rate_limit
        self._auth_rate_window_seconds = auth_rate_window_seconds
        self._trust_proxy_headers = (
            get_trust_proxy_headers() if trust_proxy_headers is None else trust_proxy_headers
        )
        self._failed_attempts: dict[str, list[float]] = {}

        if not self._management_api_key:
            logger.warning(
                "management_api_key_not_configured",
                message="MANAGEMENT_API_KEY not set; management API access will be denied",
            )

    def _retry_after(self, ip: str, now: float) -> int:
        """Seconds until ``ip`` may try again, 0 if it is not rate limited."""
        cutoff = now - self._auth_rate_window_seconds
        attempts = [t for t in self._failed_attempts.get(ip, []) if t > cutoff]
        if attempts:
            self._failed_attempts[ip] = attempts
        else:
            self._failed_attempts.pop(ip, None)
        if len(attempts) < self._auth_rate_limit:
            return 0
        return int(self._auth_rate_window_seconds - (now - min(attempts))) + 1

    def _record_failure(self, ip: str, now: float) -> None:
        cutoff = now - self._auth_rate_window_seconds
        for stale_ip in [k for k, v in self._failed_attempts.items() if v[-1] <= cutoff]:
            del self._failed_attempts[stale_ip]
        self._failed_attempts.setdefault(ip, []).append(now)

    async def dispatch(self, request: Request, call_next: Callable[..., Any]) -> Response:
        path = request.url.path
        if not path.startswith(PROTECTED_PREFIX):
            return await call_next(request)  # type: ignore[no-any-return]

        client_ip = _get_client_ip(request, self._trust_proxy_headers)
        retry_after = self._retry_after(client_ip, time.time())
        if retry_after:
            logger.warning(
                "authentication_rate_limit_exceeded",
                endpoint=path,
                method=request.method,
                client_ip=client_ip,
                retry_after=retry_after,
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Too many authentication attempts. Please try again later.",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        failure = _check_credentials(request, self._management_api_key)
        if failure is not None:
            reason, detail = failure
            self._record_failure(client_ip, time.time())
            logger.warning(
                "authentication_failed",
                reason=reason,
                endpoint=path,
                method=request.method,
                client_ip=client_ip,
            )
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": detail},
                headers={"WWW-Authenticate": "Bearer"},
            )

        logger.info(
            "authentication_success",
            endpoint=path,
            method=request.method,
            client_ip=client_ip,
        )
        request.state.authenticated = True
        return await call_next(request)  # type: ignore[no-any-return]
