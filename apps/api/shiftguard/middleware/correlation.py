"""Correlation ID middleware.

Pure ASGI middleware (no BaseHTTPMiddleware) so asyncpg connections stay
on the request's event loop.
"""

import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from shiftguard.logging_config import correlation_id_ctx, get_logger

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
ORGANIZATION_ID_HEADER = "X-Organization-ID"

# Probe traffic is logged at DEBUG to keep request logs readable
QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready"})


class CorrelationIdMiddleware:
    """Tags every HTTP request with a correlation ID.

    An incoming X-Correlation-ID is reused; otherwise a UUID is generated.
    The ID is bound for logging during the request and echoed back in the
    response headers. The caller's X-Organization-ID, when present, is
    added to the request log lines.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        correlation_id = headers.get(
            CORRELATION_ID_HEADER.lower().encode(), b""
        ).decode() or str(uuid.uuid4())
        organization_id = headers.get(
            ORGANIZATION_ID_HEADER.lower().encode(), b""
        ).decode() or None

        token = correlation_id_ctx.set(correlation_id)
        start_time = time.perf_counter()
        status_code: int | None = None

        method = scope.get("method", "")
        path = scope.get("path", "")
        log = logger.debug if path in QUIET_PATHS else logger.info
        request_fields = {"method": method, "path": path}
        if organization_id:
            request_fields["organization_id"] = organization_id

        log("Request started", **request_fields)

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code

            if message["type"] == "http.response.start":
                status_code = message.get("status")
                response_headers = list(message.get("headers", []))
                response_headers.append(
                    (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode())
                )
                message = {**message, "headers": response_headers}

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
            log(
                "Request completed",
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                **request_fields,
            )
        except Exception:
            logger.exception(
                "Request failed",
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                **request_fields,
            )
            raise
        finally:
            correlation_id_ctx.reset(token)
