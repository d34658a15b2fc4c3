"""Reader app fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tests.conftest import PRIMARY_TOKEN, FakeClock, FakeWikiApi
from usogui.config import Settings
from usogui.main import create_app
from usogui.sessions import ReaderSessions
from usogui.storage import MemoryStore

SESSION_ID = "reader-session-0001"


@pytest_asyncio.fixture
async def app(
    settings: Settings, store: MemoryStore, wiki: FakeWikiApi, clock: FakeClock
) -> AsyncGenerator[FastAPI, None]:
    """App wired to the fake wiki, with reader sessions on the shared store."""
    app = create_app(settings)
    readers = await ReaderSessions.open(settings, store=store, transport=wiki.transport(), clock=clock)
    app.state.readers = readers
    yield app
    await readers.close()


def client_for(app: FastAPI, headers: dict[str, str] | None = None) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test", headers=headers)


@pytest_asyncio.fixture
async def bare_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Client that sends no reader identity."""
    async with client_for(app) as ac:
        yield ac


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Anonymous reader identified by a session id."""
    async with client_for(app, {"X-Reader-Session": SESSION_ID}) as ac:
        yield ac


@pytest_asyncio.fixture
async def authed_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated reader backed by the remote profile."""
    async with client_for(app, {"Authorization": f"Bearer {PRIMARY_TOKEN}"}) as ac:
        yield ac
