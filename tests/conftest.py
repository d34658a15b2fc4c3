"""Shared test fixtures."""

from __future__ import annotations

import json
import math
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio

from usogui.client import ApiClient
from usogui.config import Settings
from usogui.storage import MemoryStore

API_URL = "http://wiki.test/api"
PRIMARY_TOKEN = "test-token"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_760_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWikiApi:
    """In-memory stand-in for the wiki REST API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.resources: dict[str, list[dict[str, Any]]] = {
            "characters": [{"id": i, "name": f"Character {i}"} for i in range(1, 121)],
            "users": [{"id": i, "username": f"reader{i}"} for i in range(1, 46)],
        }
        self.chapters = {n: {"id": n, "number": n, "title": f"Chapter {n} title"} for n in range(1, 540)}
        # Progress of the primary test reader; other tokens get their own entry
        self.user_progress = 30
        self.progress_by_token: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.fail_paths: dict[str, int] = {}

    def progress_for(self, token: str) -> int:
        if token == PRIMARY_TOKEN:
            return self.user_progress
        return self.progress_by_token.get(token, self.user_progress)

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")

        if path in self.fail_paths:
            status = self.fail_paths[path]
            return httpx.Response(status, json={"message": f"boom {status}", "statusCode": status})

        if path == "/users/profile/progress":
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if request.method == "GET":
                return httpx.Response(200, json={"userProgress": self.progress_for(token), "username": "reader1"})
            value = json.loads(request.content)["userProgress"]
            if token == PRIMARY_TOKEN:
                self.user_progress = value
            else:
                self.progress_by_token[token] = value
            return httpx.Response(
                200,
                json={"message": "Reading progress updated successfully", "userProgress": value},
            )

        if path == "/users/profile" and request.method == "PATCH":
            body = json.loads(request.content)
            if "username" in body:
                self.resources["users"][0]["username"] = body["username"]
            return httpx.Response(200, json={"id": 1, **body})

        if path.startswith("/chapters/"):
            number = int(path.rsplit("/", 1)[1])
            if number not in self.chapters:
                return httpx.Response(404, json={"message": "Chapter not found"})
            return httpx.Response(200, json=self.chapters[number])

        resource = path.strip("/")
        if resource in self.resources and request.method == "GET":
            page = int(request.url.params.get("page", "1"))
            limit = int(request.url.params.get("limit", "20"))
            items = self.resources[resource]
            search = request.url.params.get("search")
            if search:
                items = [i for i in items if search in json.dumps(i)]
            start = (page - 1) * limit
            return httpx.Response(
                200,
                json={
                    "data": items[start : start + limit],
                    "total": len(items),
                    "page": page,
                    "totalPages": math.ceil(len(items) / limit),
                },
            )

        return httpx.Response(404, json={"message": "Not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_url=API_URL,
        storage_backend="memory",
        log_format="console",
        paged_cache_ttl_seconds=60,
        paged_cache_max_entries=50,
    )


@pytest.fixture
def wiki() -> FakeWikiApi:
    return FakeWikiApi()


@pytest_asyncio.fixture
async def anon_api(wiki: FakeWikiApi) -> AsyncGenerator[ApiClient, None]:
    """Client without a token: anonymous reader."""
    api = ApiClient(API_URL, transport=wiki.transport())
    yield api
    await api.close()


@pytest_asyncio.fixture
async def authed_api(wiki: FakeWikiApi) -> AsyncGenerator[ApiClient, None]:
    """Client with a bearer token: authenticated reader."""
    api = ApiClient(API_URL, token=PRIMARY_TOKEN, transport=wiki.transport())
    yield api
    await api.close()
