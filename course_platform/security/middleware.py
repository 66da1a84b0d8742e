"""Security middleware for FastAPI: CORS, headers, screening, rate limiting, auth.

Middleware ordering (outermost first):
1. CORS -- handles OPTIONS preflight before anything else
2. Security headers -- applied to every response, including rejections below
3. Request screening -- reject traversal/injection patterns in the URL
4. Rate limiting -- reject floods before touching the store
5. Auth -- resolve the actor, guard /api/admin
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import unquote

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from course_platform.config import Settings, get_settings
from course_platform.errors import PlatformError
from course_platform.security.auth import (
    PUBLIC_ALLOWLIST,
    SERVICE_ACTOR,
    SKIP_METHODS,
    extract_bearer_token,
    is_admin_path,
    is_service_key,
    is_webhook_path,
    resolve_actor,
    verify_token,
)
from course_platform.security.ratelimit import RateLimitService
from course_platform.store import get_store

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

_SUSPICIOUS_PATTERNS = [
    re.compile(r"\.\./"),  # directory traversal
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),  # inline event handler
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"exec\s*\(", re.IGNORECASE),
]


def log_security_event(event: str, details: dict[str, Any], severity: str = "low") -> None:
    """Structured security log line. ``high`` severity logs at ERROR."""
    level = logging.ERROR if severity == "high" else logging.WARNING
    logger.log(level, "SECURITY_EVENT event=%s severity=%s details=%s", event, severity, details)


def get_client_ip(request: Request, settings: Settings | None = None) -> str:
    """Extract client IP, respecting TRUSTED_PROXIES config.

    Settings default to the ones the app was built with (``app.state.settings``).
    """
    if settings is None:
        app = request.scope.get("app")
        settings = getattr(getattr(app, "state", None), "settings", None) or get_settings()
    if settings.trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def is_suspicious_url(url: str) -> bool:
    decoded = unquote(url)
    return any(p.search(decoded) for p in _SUSPICIOUS_PATTERNS)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RequestScreeningMiddleware(BaseHTTPMiddleware):
    """Reject URLs carrying traversal, script or SQL injection patterns."""

    async def dispatch(self, request: Request, call_next):
        target = request.url.path
        if request.url.query:
            target += "?" + request.url.query
        if is_suspicious_url(target):
            log_security_event(
                "suspicious_request",
                {"path": request.url.path, "ip": get_client_ip(request)},
                severity="medium",
            )
            return JSONResponse({"error": "Invalid request"}, status_code=400)
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client, per-path request limits with X-RateLimit-* headers."""

    def __init__(self, app, service: RateLimitService):
        super().__init__(app)
        self._service = service

    async def dispatch(self, request: Request, call_next):
        if request.method in SKIP_METHODS:
            return await call_next(request)

        ip = get_client_ip(request)
        try:
            decision = await run_in_threadpool(self._service.check, ip, request.url.path)
        except Exception as e:
            # Counter storage down (e.g. redis): fail open
            log_security_event(
                "rate_limiter_unavailable",
                {"path": request.url.path, "error": type(e).__name__},
                severity="high",
            )
            return await call_next(request)
        if not decision.allowed:
            log_security_event(
                "rate_limit_exceeded",
                {"ip": ip, "path": request.url.path, "limit": decision.limit},
                severity="medium",
            )
            return JSONResponse(
                {"error": "Too many requests", "retryAfter": decision.retry_after},
                status_code=429,
                headers=decision.headers(),
            )

        response = await call_next(request)
        for name, value in decision.headers().items():
            response.headers[name] = value
        return response


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolve the caller into ``request.state.actor`` and guard admin paths.

    Runs BEFORE request body parsing (so an unauthenticated admin POST returns
    401 rather than 400).
    """

    async def dispatch(self, request: Request, call_next):
        method = request.method
        path = request.url.path
        request.state.actor = None

        if method in SKIP_METHODS or (method, path) in PUBLIC_ALLOWLIST:
            return await call_next(request)

        # Webhooks are signature-verified by their handler, not token-verified
        if method == "POST" and is_webhook_path(path):
            return await call_next(request)

        settings = request.app.state.settings
        api_key = request.headers.get("x-api-key")
        token = extract_bearer_token(request.headers.get("authorization"))

        if api_key:
            if not is_service_key(api_key, settings):
                log_security_event("invalid_api_key", {"path": path, "ip": get_client_ip(request)}, "high")
                return JSONResponse({"error": "Invalid API key"}, status_code=401)
            request.state.actor = SERVICE_ACTOR
        elif token:
            try:
                claims = verify_token(token, settings)
            except ValueError as e:
                logger.debug("Auth failed: %s", e)
                return JSONResponse(
                    {"error": "Invalid or expired credentials"},
                    status_code=401,
                    headers={"WWW-Authenticate": "Bearer"},
                )
            # Runs outside the app's exception handlers
            try:
                request.state.actor = await run_in_threadpool(resolve_actor, claims, get_store())
            except PlatformError as e:
                logger.error("Actor lookup failed for %s %s: %s", method, path, e.message)
                return JSONResponse(e.to_dict(), status_code=e.status_code)

        if is_admin_path(path):
            actor = request.state.actor
            if actor is None:
                log_security_event(
                    "unauthorized_admin_access", {"path": path, "ip": get_client_ip(request)}, "high"
                )
                return JSONResponse(
                    {"error": "Authentication required"},
                    status_code=401,
                    headers={"WWW-Authenticate": "Bearer"},
                )
            if not actor.is_admin:
                log_security_event(
                    "forbidden_admin_access", {"path": path, "user": actor.user_id}, "medium"
                )
                return JSONResponse({"error": "Admin access required"}, status_code=403)

        return await call_next(request)


def install_security_middleware(
    app: FastAPI,
    settings: Settings | None = None,
    rate_limiter: RateLimitService | None = None,
) -> None:
    """Install all security middleware on the FastAPI app.

    Middleware is added in reverse order (last added = outermost = runs first).
    """
    settings = settings or get_settings()
    rate_limiter = rate_limiter or RateLimitService(
        settings.rate_limit_storage_uri,
        settings.rate_limit_default,
        settings.rate_limit_auth,
    )
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter

    # 5. Auth (innermost)
    app.add_middleware(AuthMiddleware)
    # 4. Rate limiting
    app.add_middleware(RateLimitMiddleware, service=rate_limiter)
    # 3. Request screening
    app.add_middleware(RequestScreeningMiddleware)
    # 2. Security headers
    app.add_middleware(SecurityHeadersMiddleware)
    # 1. CORS (outermost -- handles OPTIONS preflight)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key", "X-WC-Webhook-Signature"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )
