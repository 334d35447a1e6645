"""Async HTTP client for the storefront's row store, object storage and auth service."""

import asyncio
import json
import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Reads are safe to repeat; writes are attempted exactly once
RETRYABLE_METHODS = {"GET", "HEAD"}


class RateLimitError(Exception):
    """Raised when rate limit is hit."""

    def __init__(self, retry_after: datetime | None = None):
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded")


class APIError(Exception):
    """Raised for store errors."""

    def __init__(self, status_code: int | None, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"API Error {status_code}: {message}")


def _format_filter(value: Any) -> str:
    """Render a filter value in PostgREST operator syntax."""
    if isinstance(value, (list, tuple, set)):
        items = ",".join(_format_scalar(v) for v in value)
        return f"in.({items})"
    if value is None:
        return "is.null"
    return f"eq.{_format_scalar(value)}"


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_content_range(header: str | None) -> int:
    """Extract the total from a Content-Range header like '0-9/42' or '*/42'."""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    if total == "*":
        return 0
    return int(total)


class SupabaseClient:
    """Client for the row store (PostgREST), object storage and auth admin API.

    Uses the service role key, so row-level security does not apply. Every
    call is atomic for its own statement only; nothing here spans a transaction.
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        anon_key: str | None = None,
        bucket: str = "public",
        debug: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.anon_key = anon_key or service_key
        self.bucket = bucket
        self.debug = debug
        self.client = httpx.AsyncClient(
            base_url=self.url,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
            timeout=30.0,
            transport=transport,
        )

    def _log_debug(self, method: str, url: str, request_body: Any, response: httpx.Response) -> None:
        """Log request/response details for debugging."""
        if not self.debug:
            return
        logger.debug("%s %s -> %s", method, url, response.status_code)
        if request_body is not None and not isinstance(request_body, (bytes, bytearray)):
            logger.debug("Request: %s", json.dumps(request_body, default=str)[:2000])
        logger.debug("Response: %s", response.text[:500])

    def _handle_response(self, response: httpx.Response) -> Any:
        """Turn a response into parsed JSON or raise."""
        if response.status_code == 429:
            retry_after = None
            if "Retry-After" in response.headers:
                try:
                    retry_after = parsedate_to_datetime(response.headers["Retry-After"])
                except (ValueError, TypeError):
                    pass
            raise RateLimitError(retry_after)

        if response.status_code >= 400:
            try:
                error_data = response.json()
                # PostgREST uses 'message', storage uses 'error', auth uses 'msg'
                message = (
                    error_data.get("message")
                    or error_data.get("msg")
                    or error_data.get("error_description")
                    or error_data.get("error")
                    or ""
                )
                details = error_data.get("details")
                if details:
                    message = f"{message}: {details}" if message else str(details)
                if not message:
                    message = response.text
            except (ValueError, json.JSONDecodeError, AttributeError):
                message = response.text
            raise APIError(response.status_code, message or f"HTTP {response.status_code}")

        if not response.content:
            return None
        try:
            return response.json()
        except (ValueError, json.JSONDecodeError):
            return None

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: Any = None,
        content: bytes | None = None,
        headers: dict | None = None,
        max_retries: int = 3,
    ) -> httpx.Response:
        """Make a request, retrying rate limits always and failures only for reads.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE, HEAD)
            endpoint: Path relative to the project URL (e.g., "/rest/v1/products")
            params: Query parameters
            json_data: Optional JSON body
            content: Optional raw body (storage uploads)
            headers: Extra headers for this request
            max_retries: Maximum retry attempts
        """
        retryable = method in RETRYABLE_METHODS

        for attempt in range(max_retries + 1):
            try:
                response = await self.client.request(
                    method,
                    endpoint,
                    params=params,
                    json=json_data,
                    content=content,
                    headers=headers,
                )
                self._log_debug(method, endpoint, json_data, response)
                self._handle_response(response)
                return response

            except RateLimitError as e:
                if attempt >= max_retries:
                    raise APIError(429, "Rate limit exceeded") from e
                wait_seconds = 5.0
                if e.retry_after:
                    wait_seconds = (e.retry_after - datetime.now(e.retry_after.tzinfo)).total_seconds()
                logger.warning("Rate limited. Waiting %.0fs...", max(wait_seconds, 0))
                await asyncio.sleep(min(max(wait_seconds, 0), 60))

            except APIError as e:
                if e.status_code is not None and e.status_code < 500:
                    raise
                if not retryable or attempt >= max_retries:
                    raise
                backoff = 2 ** attempt  # 1s, 2s, 4s
                logger.warning("Server error on %s %s. Retrying in %ss...", method, endpoint, backoff)
                await asyncio.sleep(backoff)

            except httpx.RequestError as e:
                if not retryable or attempt >= max_retries:
                    raise APIError(None, f"Network error: {e}") from e
                backoff = 2 ** attempt
                logger.warning("Network error on %s %s. Retrying in %ss...", method, endpoint, backoff)
                await asyncio.sleep(backoff)

        raise APIError(None, f"Request failed after {max_retries} retries")

    # Row store

    def _rest_params(
        self,
        filters: dict | None,
        columns: str | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> dict[str, str]:
        params: dict[str, str] = {}
        if columns:
            params["select"] = columns
        for column, value in (filters or {}).items():
            params[column] = _format_filter(value)
        if order:
            field, _, direction = order.partition(" ")
            params["order"] = f"{field}.{direction or 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        return params

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """Select rows from a table.

        Args:
            table: Table name
            columns: PostgREST select list
            filters: column -> value (equality) or column -> list (containment)
            order: "column" or "column desc"
            limit: Maximum rows to return
        """
        response = await self._request(
            "GET",
            f"/rest/v1/{table}",
            params=self._rest_params(filters, columns, order, limit),
        )
        return response.json() if response.content else []

    async def select_one(self, table: str, columns: str = "*", filters: dict | None = None) -> dict | None:
        """Select the first matching row, or None when nothing matches."""
        rows = await self.select(table, columns, filters, limit=1)
        return rows[0] if rows else None

    async def count(self, table: str, filters: dict | None = None) -> int:
        """Count matching rows without fetching them."""
        response = await self._request(
            "HEAD",
            f"/rest/v1/{table}",
            params=self._rest_params(filters, "*"),
            headers={"Prefer": "count=exact"},
        )
        return _parse_content_range(response.headers.get("Content-Range"))

    async def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        """Insert one row or a batch in a single statement; returns inserted rows."""
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json_data=rows,
            headers={"Prefer": "return=representation"},
        )
        return response.json() if response.content else []

    async def upsert(self, table: str, row: dict) -> list[dict]:
        """Insert a row, merging into an existing one with the same key."""
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json_data=row,
            headers={"Prefer": "return=representation,resolution=merge-duplicates"},
        )
        return response.json() if response.content else []

    async def update(self, table: str, values: dict, filters: dict) -> list[dict]:
        """Update matching rows."""
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=self._rest_params(filters),
            json_data=values,
            headers={"Prefer": "return=representation"},
        )
        return response.json() if response.content else []

    async def delete(self, table: str, filters: dict) -> None:
        """Delete matching rows. Refuses to run without a filter."""
        if not filters:
            raise ValueError("delete requires at least one filter")
        await self._request("DELETE", f"/rest/v1/{table}", params=self._rest_params(filters))

    # Object storage

    async def upload(self, path: str, content: bytes, content_type: str | None = None) -> None:
        """Upload bytes to the bucket. Fails if the object already exists."""
        await self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{path}",
            content=content,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "Cache-Control": "3600",
                "x-upsert": "false",
            },
        )

    def get_public_url(self, path: str) -> str:
        """Public URL of an object in the bucket."""
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{path}"

    async def remove(self, paths: list[str]) -> None:
        """Remove objects from the bucket."""
        await self._request(
            "DELETE",
            f"/storage/v1/object/{self.bucket}",
            json_data={"prefixes": paths},
        )

    # Auth

    async def get_session_user(self, access_token: str) -> dict:
        """Resolve the user behind a session access token.

        Raises:
            APIError: if the token is invalid or expired
        """
        response = await self._request(
            "GET",
            "/auth/v1/user",
            headers={
                "apikey": self.anon_key,
                "Authorization": f"Bearer {access_token}",
            },
            max_retries=1,
        )
        data = response.json() if response.content else None
        if not data or not data.get("id"):
            raise APIError(401, "Invalid session")
        return data

    async def create_auth_user(self, email: str, password: str, metadata: dict | None = None) -> str:
        """Create a confirmed credentialed account; returns its id."""
        response = await self._request(
            "POST",
            "/auth/v1/admin/users",
            json_data={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata or {},
            },
        )
        data = response.json() if response.content else {}
        # Older GoTrue versions wrap the user object
        user = data.get("user", data)
        if not user.get("id"):
            raise APIError(response.status_code, "Auth service returned no user id")
        return user["id"]

    async def delete_auth_user(self, user_id: str) -> None:
        """Delete a credentialed account."""
        await self._request("DELETE", f"/auth/v1/admin/users/{user_id}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "SupabaseClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
