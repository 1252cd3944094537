"""
Notion API client.
Thin async wrapper over the endpoints the sync engine needs. Talks either
to the public API or to a relay that forwards to it.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

NOTION_API_BASE = "https://api.notion.com"
NOTION_VERSION = "2022-06-28"


class NotionAPIError(RuntimeError):
    """Non-success response from the Notion API."""

    def __init__(self, status_code: Optional[int], body: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Notion API error {status_code}: {body}")


class NotionUnreachableError(NotionAPIError):
    """The API could not be reached at all (DNS, TLS, CORS-style blocking, ...)."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            None,
            reason,
            f"Unable to reach the Notion API at {url}: {reason}. "
            "Configure a relay URL (proxy_url) that forwards requests to api.notion.com.",
        )


class NotionClient:
    """
    Notion API client.

    Every call is a single HTTP request; pagination is left to the caller
    so it can check for cancellation between pages.
    """

    def __init__(self, token: str, proxy_url: Optional[str] = None,
                 api_base: str = NOTION_API_BASE, notion_version: str = NOTION_VERSION,
                 timeout: float = 60.0):
        """
        Initialize the client.

        Args:
            token: Integration token sent as bearer token
            proxy_url: Relay base URL; paths are sent without the /v1 segment
            api_base: Public API host used when no relay is configured
            notion_version: Value of the Notion-Version header
            timeout: Per-request timeout in seconds
        """
        self.token = token
        self.proxy_url = proxy_url.strip() if proxy_url and proxy_url.strip() else None
        self.notion_version = notion_version
        self.timeout = timeout
        if self.proxy_url:
            self.base_url = self.proxy_url.rstrip("/")
        else:
            self.base_url = f"{api_base.rstrip('/')}/v1"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Notion-Version": self.notion_version,
        }

    async def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                      params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Send one request and return the decoded JSON body.

        Raises:
            NotionAPIError: On any non-2xx response
            NotionUnreachableError: When the request never got a response
        """
        url = f"{self.base_url}{path}"
        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(
                    method, url, json=body, params=params, headers=self._get_headers()
                )
        except httpx.TransportError as e:
            logger.error(f"Notion request failed: {method} {path} - {e}")
            raise NotionUnreachableError(self.base_url, str(e) or type(e).__name__) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"Notion {method} {path} -> {resp.status_code}",
            extra={"extra_fields": {
                "method": method,
                "path": path,
                "status_code": resp.status_code,
                "duration_ms": round(duration_ms, 2),
            }}
        )

        if resp.status_code < 200 or resp.status_code >= 300:
            raise NotionAPIError(resp.status_code, resp.text)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def retrieve_database(self, database_id: str) -> Dict[str, Any]:
        """Fetch a database including its property schema."""
        return await self.request("GET", f"/databases/{database_id}")

    async def query_database(self, database_id: str, filter: Optional[Dict[str, Any]] = None,
                             start_cursor: Optional[str] = None,
                             page_size: int = 100) -> Dict[str, Any]:
        """Fetch one page of query results (results, has_more, next_cursor)."""
        body: Dict[str, Any] = {"page_size": page_size}
        if filter:
            body["filter"] = filter
        if start_cursor:
            body["start_cursor"] = start_cursor
        return await self.request("POST", f"/databases/{database_id}/query", body=body)

    async def create_page(self, parent: Dict[str, Any], properties: Dict[str, Any],
                          children: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Create a page or database record."""
        body: Dict[str, Any] = {"parent": parent, "properties": properties}
        if children:
            body["children"] = children
        return await self.request("POST", "/pages", body=body)

    async def update_page(self, page_id: str, properties: Optional[Dict[str, Any]] = None,
                          archived: Optional[bool] = None) -> Dict[str, Any]:
        """Patch page properties and/or the archived flag."""
        body: Dict[str, Any] = {}
        if properties is not None:
            body["properties"] = properties
        if archived is not None:
            body["archived"] = archived
        return await self.request("PATCH", f"/pages/{page_id}", body=body)

    async def archive_page(self, page_id: str) -> Dict[str, Any]:
        """Soft-delete a page."""
        return await self.update_page(page_id, archived=True)

    async def append_block_children(self, block_id: str,
                                    children: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Append blocks to a page or block."""
        return await self.request("PATCH", f"/blocks/{block_id}/children", body={"children": children})

    async def list_block_children(self, block_id: str, start_cursor: Optional[str] = None,
                                  page_size: int = 100) -> Dict[str, Any]:
        """Fetch one page of child blocks."""
        params: Dict[str, Any] = {"page_size": page_size}
        if start_cursor:
            params["start_cursor"] = start_cursor
        return await self.request("GET", f"/blocks/{block_id}/children", params=params)

    async def iter_block_children(self, block_id: str) -> List[Dict[str, Any]]:
        """All child blocks of a block, following pagination."""
        blocks: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            page = await self.list_block_children(block_id, start_cursor=cursor)
            blocks.extend(page.get("results", []))
            if not page.get("has_more") or not page.get("next_cursor"):
                return blocks
            cursor = page["next_cursor"]
