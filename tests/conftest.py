"""Shared fixtures: an in-memory store and a fake image host."""

import asyncio
import copy
import itertools

import httpx
import pytest

from vitrine_clone.api.client import APIError

IMAGE_HOST = "https://cdn.example.com"
STORE_URL = "https://project.example.co"


class FakeStore:
    """In-memory stand-in for the row/blob/auth client.

    Tables are lists of dicts in insertion order. Failures and delays can be
    injected per (operation, table).
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.blobs: dict[str, bytes] = {}
        self.sessions: dict[str, str] = {}
        self.auth_users: dict[str, str] = {}
        self.failures: dict[tuple[str, str | None], APIError] = {}
        self.delays: dict[tuple[str, str | None], float] = {}
        self.calls: list[tuple[str, str | None]] = []
        self._ids = itertools.count(1)

    # Test helpers

    def add(self, table: str, **row) -> dict:
        row.setdefault("id", f"{table}-{next(self._ids)}")
        self.tables.setdefault(table, []).append(row)
        return row

    def rows(self, table: str, **filters) -> list[dict]:
        return [r for r in self.tables.get(table, []) if self._matches(r, filters)]

    def fail(self, operation: str, table: str | None = None, message: str = "simulated failure", status: int = 400) -> None:
        self.failures[(operation, table)] = APIError(status, message)

    def delay(self, operation: str, table: str | None, seconds: float) -> None:
        self.delays[(operation, table)] = seconds

    def writes(self) -> list[tuple[str, str | None]]:
        return [c for c in self.calls if c[0] in ("insert", "upsert", "update", "delete", "upload", "remove")]

    # Internals

    @staticmethod
    def _matches(row: dict, filters: dict | None) -> bool:
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                if row.get(column) not in value:
                    return False
            elif row.get(column) != value:
                return False
        return True

    @staticmethod
    def _project(row: dict, columns: str) -> dict:
        if columns.strip() == "*":
            return copy.deepcopy(row)
        keys = [c.strip() for c in columns.split(",")]
        return {k: copy.deepcopy(row.get(k)) for k in keys}

    async def _enter(self, operation: str, table: str | None) -> None:
        self.calls.append((operation, table))
        seconds = self.delays.get((operation, table))
        if seconds:
            await asyncio.sleep(seconds)
        error = self.failures.get((operation, table))
        if error:
            raise APIError(error.status_code, error.message)

    # Row store

    async def select(self, table, columns="*", filters=None, order=None, limit=None):
        await self._enter("select", table)
        rows = [self._project(r, columns) for r in self.rows(table, **(filters or {}))]
        if order:
            field, _, direction = order.partition(" ")
            rows.sort(key=lambda r: r.get(field), reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def select_one(self, table, columns="*", filters=None):
        rows = await self.select(table, columns, filters, limit=1)
        return rows[0] if rows else None

    async def count(self, table, filters=None):
        await self._enter("count", table)
        return len(self.rows(table, **(filters or {})))

    async def insert(self, table, rows):
        await self._enter("insert", table)
        batch = rows if isinstance(rows, list) else [rows]
        inserted = []
        for row in batch:
            stored = dict(row)
            stored.setdefault("id", f"{table}-{next(self._ids)}")
            stored.setdefault("created_at", "2026-10-18T00:00:00Z")
            self.tables.setdefault(table, []).append(stored)
            inserted.append(copy.deepcopy(stored))
        return inserted

    async def upsert(self, table, row):
        await self._enter("upsert", table)
        for existing in self.tables.get(table, []):
            if existing.get("id") == row.get("id"):
                existing.update(row)
                return [copy.deepcopy(existing)]
        self.tables.setdefault(table, []).append(dict(row))
        return [dict(row)]

    async def update(self, table, values, filters):
        await self._enter("update", table)
        updated = []
        for row in self.rows(table, **filters):
            row.update(values)
            updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table, filters):
        await self._enter("delete", table)
        self.tables[table] = [r for r in self.tables.get(table, []) if not self._matches(r, filters)]

    # Blob store

    async def upload(self, path, content, content_type=None):
        await self._enter("upload", None)
        if path in self.blobs:
            raise APIError(409, "The resource already exists")
        self.blobs[path] = content

    def get_public_url(self, path):
        return f"{STORE_URL}/storage/v1/object/public/public/{path}"

    async def remove(self, paths):
        await self._enter("remove", None)
        for path in paths:
            self.blobs.pop(path, None)

    # Auth

    async def get_session_user(self, access_token):
        await self._enter("get_session_user", None)
        if access_token not in self.sessions:
            raise APIError(401, "invalid JWT")
        return {"id": self.sessions[access_token]}

    async def create_auth_user(self, email, password, metadata=None):
        await self._enter("create_auth_user", None)
        user_id = f"auth-{next(self._ids)}"
        self.auth_users[user_id] = email
        return user_id

    async def delete_auth_user(self, user_id):
        await self._enter("delete_auth_user", None)
        self.auth_users.pop(user_id, None)

    async def close(self):
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


class FakeImageHost:
    """Serves image bytes by URL through httpx.MockTransport."""

    def __init__(self):
        self.images: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.timeouts: set[str] = set()
        self.streams: dict[str, tuple[bytes, int]] = {}
        self.requests: list[str] = []
        self.bytes_sent = 0

    def add(self, name: str, content: bytes = b"\x89PNG fake image bytes") -> str:
        url = f"{IMAGE_HOST}/{name}"
        self.images[url] = content
        return url

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)
        if url in self.statuses:
            return httpx.Response(self.statuses[url])
        if url in self.streams:
            return httpx.Response(200, content=self._chunks(*self.streams[url]), headers={"content-type": "image/jpeg"})
        if url not in self.images:
            return httpx.Response(404)
        return httpx.Response(200, content=self.images[url], headers={"content-type": "image/png"})

    def stream(self, name: str, chunk: bytes, count: int) -> str:
        """Serve count copies of chunk as a chunked body without content-length."""
        url = f"{IMAGE_HOST}/{name}"
        self.streams[url] = (chunk, count)
        return url

    async def _chunks(self, chunk: bytes, count: int):
        for _ in range(count):
            self.bytes_sent += len(chunk)
            yield chunk

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def image_host():
    return FakeImageHost()


@pytest.fixture
def accounts(store):
    """A source and a target seller account."""
    source = store.add("users", id="source-user", name="Source Seller", listing_limit=100, role="corretor")
    target = store.add("users", id="target-user", name="Target Seller", listing_limit=100, role="corretor")
    return source, target
