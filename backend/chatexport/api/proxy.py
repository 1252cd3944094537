"""
Notion relay - Forwards requests to the Notion API for clients that cannot
call it directly (browsers are blocked by CORS).
"""

import logging

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response

from ..config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"/{settings.relay_prefix}", tags=["relay"])

RELAY_METHODS = ["GET", "POST", "PATCH", "PUT", "DELETE"]


def build_target_url(path: str, query: str = "") -> str:
    """Public API URL for a relayed path; /v1 is added when missing."""
    normalized = "/" + path.lstrip("/")
    if not normalized.startswith("/v1"):
        normalized = f"/v1{normalized}" if normalized != "/" else "/v1/"
    target = f"{settings.notion_api_base.rstrip('/')}{normalized}"
    return f"{target}?{query}" if query else target


@router.api_route("/{path:path}", methods=RELAY_METHODS)
async def relay(path: str, request: Request):
    """
    Forward a request to the Notion API and mirror the response.

    Requires an Authorization header carrying the integration token.
    """
    authorization = request.headers.get("authorization")
    if not authorization:
        return PlainTextResponse(
            "Missing Authorization header. Forward the Notion token as an Authorization header.",
            status_code=400,
        )

    try:
        url = build_target_url(path, request.url.query)
        headers = {
            "Notion-Version": settings.notion_version,
            "Content-Type": request.headers.get("content-type") or "application/json",
            "Authorization": authorization,
        }
        body = await request.body() if request.method != "GET" else None

        async with httpx.AsyncClient(timeout=settings.notion_timeout) as client:
            resp = await client.request(request.method, url, headers=headers, content=body or None)

        logger.info(f"Relayed {request.method} /{path} -> {resp.status_code}")
        return Response(
            content=resp.content,
            status_code=resp.status_code,
            media_type=resp.headers.get("content-type") or "application/json",
        )
    except Exception as e:
        logger.error(f"Notion relay failed: {request.method} /{path} - {e}", exc_info=True)
        return PlainTextResponse(f"Notion proxy error: {str(e) or 'Unknown error'}", status_code=500)
