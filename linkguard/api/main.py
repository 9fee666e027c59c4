from __future__ import annotations

from fastapi import FastAPI

from linkguard.api.endpoints import artifacts, builds, health, metrics_export, nodes
from linkguard.api.middleware.auth import AuthMiddleware
from linkguard.api.middleware.error_shaping import SafeErrorMiddleware
from linkguard.api.middleware.request_id import RequestIdMiddleware

app = FastAPI(
    title="linkguard API",
    version="0.1.0",
)

# Starlette wraps in reverse order: the last middleware added is the outermost.
# Runtime order: SafeErrorMiddleware -> RequestIdMiddleware -> AuthMiddleware -> handler
# Auth follows LINKGUARD_AUTH_ENABLED (on unless set to 0/false/no).
app.add_middleware(AuthMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SafeErrorMiddleware)

app.include_router(health.router)
app.include_router(metrics_export.router)
app.include_router(builds.router)
app.include_router(artifacts.router)
app.include_router(nodes.router)
