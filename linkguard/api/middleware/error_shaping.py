from __future__ import annotations

import logging
import traceback
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from linkguard.core.errors import ConfigError, LinkguardError

log = logging.getLogger("linkguard.errors")


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    Shapes errors that escape a handler:
      - LinkguardError -> 422 (400 for ConfigError) with kind/message/remediation
      - anything else  -> 500 without a traceback; the traceback is logged
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except LinkguardError as e:
            rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
            log.warning("%s rid=%s path=%s: %s", e.kind, rid, request.url.path, e.message)
            payload = {"detail": e.to_dict()}
            if rid:
                payload["request_id"] = rid
            return JSONResponse(status_code=400 if isinstance(e, ConfigError) else 422, content=payload)
        except Exception as e:
            rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
            log.error(
                "Unhandled error: %s rid=%s path=%s\n%s",
                str(e),
                rid,
                request.url.path,
                traceback.format_exc(),
            )
            payload = {"detail": "Internal Server Error"}
            if rid:
                payload["request_id"] = rid
            return JSONResponse(status_code=500, content=payload)
