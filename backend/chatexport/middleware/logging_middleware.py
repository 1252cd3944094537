"""
FastAPI middleware for logging API requests and responses.

Uses pure ASGI middleware (not BaseHTTPMiddleware) so zip downloads and
relayed responses pass through untouched.

Logged per request: method, path, query params, client, status code and
duration. JSON request bodies are logged at DEBUG with credentials masked;
uploads (multipart) are never logged.
"""

import json
import logging
import time
from typing import Optional
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.logging_config import filter_sensitive_data, truncate_large_data

logger = logging.getLogger(__name__)


def _sanitize_body(data: bytes) -> str:
    """Mask credentials if the body is JSON, fall back to truncated text."""
    text = data.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return truncate_large_data(text, max_length=2000)
    return truncate_large_data(json.dumps(filter_sensitive_data(payload), ensure_ascii=False), max_length=2000)


class RequestLoggingMiddleware:
    """Pure ASGI middleware to log all API requests."""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[list] = None):
        """
        Args:
            app: The ASGI application
            exclude_paths: Paths that are not logged (e.g., ["/health"])
        """
        self.app = app
        self.exclude_paths = exclude_paths or ["/health", "/"]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "") in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "")
        query_string = scope.get("query_string", b"").decode("utf-8", errors="ignore")
        headers = {
            k.decode("utf-8", errors="ignore").lower(): v.decode("utf-8", errors="ignore")
            for k, v in scope.get("headers", [])
        }
        client = scope.get("client")
        log_body = (
            logger.isEnabledFor(logging.DEBUG)
            and headers.get("content-type", "").startswith("application/json")
        )

        body_chunks = []

        async def logging_receive() -> Message:
            message = await receive()
            if log_body and message["type"] == "http.request":
                body_chunks.append(message.get("body", b""))
            return message

        status_code = 0

        async def logging_send(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
            await send(message)

        context = {
            "method": method,
            "path": path,
            "query": query_string or None,
            "client": client[0] if client else None,
            "headers": filter_sensitive_data(headers),
        }
        logger.info(f"Request started: {method} {path}", extra={"extra_fields": context})

        try:
            await self.app(scope, logging_receive, logging_send)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {method} {path} - {e}",
                exc_info=True,
                extra={"extra_fields": {**context, "duration_ms": round(duration_ms, 2)}},
            )
            raise

        duration_ms = (time.time() - start_time) * 1000

        if body_chunks:
            logger.debug(f"Request body: {_sanitize_body(b''.join(body_chunks))}")

        level = logging.WARNING if status_code >= 400 else logging.INFO
        logger.log(
            level,
            f"Request completed: {method} {path} - {status_code} ({duration_ms:.1f}ms)",
            extra={"extra_fields": {
                **context,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            }},
        )
