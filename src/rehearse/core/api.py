"""Backend API client for tests that exercise the HTTP API next to the UI.

An ``ApiClient`` wraps an engine request context, so requests share the
engine's network stack but no browser cookies. Reads (``GET``, ``HEAD``,
``OPTIONS``) are allowed inside ``assert_eventually`` checks; every other
method changes server state and raises ``MutationInCheck`` there::

    async with pool.api() as api:
        created = await api.post("/users/register", data=fixture_factory.create(USER))
        assert created.status == 201

        async def user_listed() -> None:
            (await api.get("/users", params={"page": 1})).expect_ok()

        await assert_eventually(user_listed)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self, TypeVar

from pydantic import BaseModel, ValidationError

from rehearse.core.errors import EngineError
from rehearse.core.guard import ensure_mutation_allowed

if TYPE_CHECKING:
    from rehearse.core.config.main import ApiConfig
    from rehearse.core.engine.base import EngineRequestContext

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

Params = Mapping[str, str | int | float | bool]


@dataclass(frozen=True)
class ApiResponse:
    """A fully read HTTP response; the engine-side handle is already disposed."""

    url: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise AssertionError(f"{self.url} did not return JSON: {e}") from e

    def parse(self, model: type[M]) -> M:
        """Validate the JSON body into ``model``.

        A mismatch raises ``AssertionError`` so a check built on it can be
        retried until the backend catches up.
        """
        try:
            return model.model_validate_json(self.body)
        except ValidationError as e:
            raise AssertionError(f"{self.url} response does not match {model.__name__}: {e}") from e

    def expect_status(self, *statuses: int) -> Self:
        if self.status not in statuses:
            expected = " or ".join(map(str, statuses))
            raise AssertionError(f"Expected status {expected} from {self.url}, got {self.status}: {self.text()[:200]}")
        return self

    def expect_ok(self) -> Self:
        if not self.ok:
            raise AssertionError(f"Expected a 2xx status from {self.url}, got {self.status}: {self.text()[:200]}")
        return self


def _encode_body(data: Any, headers: dict[str, str]) -> bytes | None:
    if data is None or isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, BaseModel):
        encoded = data.model_dump_json()
    elif isinstance(data, Mapping):
        encoded = json.dumps(dict(data), ensure_ascii=False)
    elif isinstance(data, list):
        encoded = json.dumps(data, ensure_ascii=False)
    else:
        raise TypeError(f"Cannot send {type(data).__name__} as a request body")
    if not any(name.lower() == "content-type" for name in headers):
        headers["Content-Type"] = "application/json"
    return encoded.encode("utf-8")


class ApiClient:
    """HTTP client bound to one engine request context."""

    def __init__(self, request_context: EngineRequestContext, config: ApiConfig) -> None:
        self.request_context = request_context
        self.config = config
        self.disposed = False

    def __repr__(self) -> str:
        return f"<ApiClient {self.config.base_url or '(no base url)'} disposed={self.disposed}>"

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        params: Params | None = None,
        headers: Mapping[str, str] | None = None,
        data: Any = None,
        fail_on_status_code: bool | None = None,
        max_retries: int | None = None,
    ) -> ApiResponse:
        """Send a request and read the whole response.

        ``data`` may be bytes, text, a mapping, a list or a pydantic model;
        structured bodies are sent as JSON. ``max_retries`` repeats the request
        on connection failures only.

        Raises:
            MutationInCheck: A non-read method was used inside a retried check.
            EngineError: The connection failed, the client was disposed, or
                ``fail_on_status_code`` is set and the status is an error.
        """
        method = method.upper()
        if method not in READ_METHODS:
            ensure_mutation_allowed(f"{method} {url}")
        if self.disposed:
            raise EngineError(f"{method} {url} failed: API client has been disposed")

        request_headers = dict(headers or {})
        body = _encode_body(data, request_headers)
        response = await self.request_context.fetch(
            method,
            url,
            params=dict(params) if params else None,
            headers=request_headers or None,
            data=body,
            fail_on_status_code=self.config.fail_on_status_code if fail_on_status_code is None else fail_on_status_code,
            max_retries=self.config.max_retries if max_retries is None else max_retries,
        )
        log.debug("%s %s -> %d", method, response.url, response.status)
        return response

    async def get(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.fetch("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.fetch("HEAD", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.fetch("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.fetch("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.fetch("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.fetch("DELETE", url, **kwargs)

    async def dispose(self) -> None:
        """Release the request context. Safe to call more than once."""
        if self.disposed:
            return
        self.disposed = True
        await self.request_context.dispose()
