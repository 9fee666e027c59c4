from __future__ import annotations

import hmac
import logging
import os
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

log = logging.getLogger("linkguard.auth")

ROLE_ORDER = {"viewer": 1, "admin": 2}

_PUBLIC_PATHS = [
    re.compile(r"^/health/live$"),
    re.compile(r"^/api/v1/health/"),
    re.compile(r"^/metrics$"),
]


class AuthError(Exception):
    pass


@dataclass(frozen=True)
class Principal:
    subject: str
    role: str


@dataclass(frozen=True)
class PolicyRule:
    method: str  # "GET", "POST" or "*"
    pattern: re.Pattern
    required_role: str


# Ordered: first match wins
RULES: List[PolicyRule] = [
    # runs the external build tool of every node
    PolicyRule(method="POST", pattern=re.compile(r"^/api/v1/builds$"), required_role="admin"),
    PolicyRule(method="POST", pattern=re.compile(r"^/api/v1/artifacts/"), required_role="viewer"),
    PolicyRule(method="GET", pattern=re.compile(r"^/api/v1/"), required_role="viewer"),
    PolicyRule(method="*", pattern=re.compile(r"^/api/v1/"), required_role="admin"),
]


def required_role_for(method: str, path: str) -> Optional[str]:
    m = (method or "GET").upper()
    for rule in RULES:
        if rule.method != "*" and rule.method != m:
            continue
        if rule.pattern.match(path):
            return rule.required_role
    return None


def role_satisfies(actual: Optional[str], required: str) -> bool:
    return ROLE_ORDER.get(actual or "", 0) >= ROLE_ORDER[required]


class StaticTokenProvider:
    """Bearer tokens from LINKGUARD_ADMIN_TOKEN / LINKGUARD_VIEWER_TOKEN."""

    def __init__(self):
        self.admin_token = os.getenv("LINKGUARD_ADMIN_TOKEN")
        self.viewer_token = os.getenv("LINKGUARD_VIEWER_TOKEN")
        if not (self.admin_token or self.viewer_token):
            raise AuthError("Missing token config. Set LINKGUARD_ADMIN_TOKEN or LINKGUARD_VIEWER_TOKEN.")

    def _extract_bearer(self, request: Request) -> str:
        auth_header = request.headers.get("authorization")
        if not auth_header:
            raise AuthError("Authentication required")
        if not auth_header.startswith("Bearer "):
            raise AuthError("Invalid authorization header")
        return auth_header[len("Bearer "):].strip()

    def authenticate(self, request: Request) -> Principal:
        token = self._extract_bearer(request)
        if self.admin_token and hmac.compare_digest(token.encode(), self.admin_token.encode()):
            return Principal(subject="admin", role="admin")
        if self.viewer_token and hmac.compare_digest(token.encode(), self.viewer_token.encode()):
            return Principal(subject="viewer", role="viewer")
        raise AuthError("Invalid bearer token")


def should_enable_auth_middleware() -> bool:
    v = (os.getenv("LINKGUARD_AUTH_ENABLED", "true") or "true").strip().lower()
    return v not in ("0", "false", "no")


class AuthMiddleware(BaseHTTPMiddleware):
    """Bearer-token authentication and role check for /api/v1.

    enabled=None re-reads LINKGUARD_AUTH_ENABLED on every request.
    """

    def __init__(self, app, *, enabled: Optional[bool] = None):
        super().__init__(app)
        self.enabled = enabled

    def _is_enabled(self) -> bool:
        return should_enable_auth_middleware() if self.enabled is None else self.enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        method = request.method.upper()

        if any(pat.match(path) for pat in _PUBLIC_PATHS):
            request.state.principal = Principal(subject="anonymous", role="viewer")
            return await call_next(request)

        # Auth disabled (dev-only): allow everything as admin
        if not self._is_enabled():
            request.state.principal = Principal(subject="anonymous", role="admin")
            return await call_next(request)

        try:
            principal = StaticTokenProvider().authenticate(request)
        except AuthError as e:
            if path.startswith("/api/v1"):
                log.info("authn deny method=%s path=%s reason=%s", method, path, str(e))
                return JSONResponse(status_code=401, content={"detail": str(e)})
            # docs and schema stay readable
            principal = Principal(subject="anonymous", role="viewer")
        request.state.principal = principal

        required = required_role_for(method, path)
        if required is not None and not role_satisfies(principal.role, required):
            log.info(
                "authz deny subject=%s role=%s required=%s method=%s path=%s",
                principal.subject, principal.role, required, method, path,
            )
            return JSONResponse(
                status_code=403,
                content={"detail": "Insufficient role", "required_role": required, "actual_role": principal.role},
            )

        return await call_next(request)
