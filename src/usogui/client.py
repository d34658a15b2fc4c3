"""REST collaborator client.

Thin async wrapper over the wiki API. Every failure, transport or HTTP,
surfaces as ``FetchError`` carrying status, url and method so callers can
render a retryable error state.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from usogui.config import Settings
from usogui.exceptions import FetchError
from usogui.schemas import Chapter, PaginatedResponse, ProgressResponse

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

Fetcher = Callable[[int], Awaitable[PaginatedResponse]]


class ApiClient:
    """Async client for the wiki REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )
        self._token = token

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ApiClient:
        return cls(
            settings.api_url,
            token=token,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def set_token(self, token: str | None) -> None:
        """Set or clear the bearer token used for authenticated calls."""
        self._token = token

    async def close(self) -> None:
        await self._http.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send a JSON request and return the decoded body.

        Raises:
            FetchError: On transport failure, non-2xx status or undecodable body.
        """
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        url = f"{str(self._http.base_url).rstrip('/')}{endpoint}"
        try:
            response = await self._http.request(method, endpoint, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("api_transport_error", method=method, url=url, error=str(e))
            msg = f"Request failed: {e}"
            raise FetchError(msg, url=url, method=method) from e

        if response.is_error:
            details: Any = None
            message = f"HTTP {response.status_code}: {response.reason_phrase}"
            try:
                details = response.json()
                if isinstance(details, dict):
                    message = details.get("message") or details.get("error") or message
            except ValueError:
                pass
            logger.warning("api_error_response", method=method, url=url, status=response.status_code)
            raise FetchError(str(message), status=response.status_code, url=url, method=method, details=details)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            msg = f"Invalid JSON from {url}"
            raise FetchError(msg, status=response.status_code, url=url, method=method) from e

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def get_paginated(
        self,
        resource: str,
        page: int = 1,
        limit: int = 20,
        filters: Mapping[str, Any] | None = None,
    ) -> PaginatedResponse:
        """GET /{resource}?page=&limit=&{filters}."""
        params: dict[str, Any] = {k: v for k, v in (filters or {}).items() if v is not None}
        params["page"] = page
        params["limit"] = limit
        body = await self.request("GET", f"/{resource.strip('/')}", params=params)
        envelope = _validate(PaginatedResponse, body, f"/{resource}")
        return envelope.with_page_count(limit)

    def list_fetcher(
        self,
        resource: str,
        limit: int = 20,
        filters: Mapping[str, Any] | None = None,
    ) -> Fetcher:
        """Build the ``fetcher(page)`` callable the paged cache consumes."""
        frozen = dict(filters or {})

        async def fetch(page: int) -> PaginatedResponse:
            return await self.get_paginated(resource, page=page, limit=limit, filters=frozen)

        return fetch

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def get_progress(self) -> int:
        """GET /users/profile/progress."""
        body = await self.request("GET", "/users/profile/progress")
        return _validate(ProgressResponse, body, "/users/profile/progress").user_progress

    async def update_progress(self, value: int) -> int:
        """PUT /users/profile/progress. Returns the value the server stored."""
        body = await self.request("PUT", "/users/profile/progress", json={"userProgress": value})
        if body is None:
            return value
        return _validate(ProgressResponse, body, "/users/profile/progress").user_progress

    async def update_profile(self, **fields: Any) -> dict[str, Any]:
        """PATCH /users/profile with camelCase field names."""
        return await self.request("PATCH", "/users/profile", json=fields) or {}

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------

    async def get_chapter(self, number: int) -> Chapter:
        """GET /chapters/{number}."""
        body = await self.request("GET", f"/chapters/{number}")
        return _validate(Chapter, body, f"/chapters/{number}")


def _validate(model: type[ModelT], body: Any, endpoint: str) -> ModelT:
    """Validate a response body, reporting shape mismatches as fetch failures."""
    try:
        return model.model_validate(body)
    except ValidationError as e:
        msg = f"Unexpected response shape from {endpoint}"
        raise FetchError(msg, url=endpoint, details=body) from e
