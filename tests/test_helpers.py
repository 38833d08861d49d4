"""
Common testing utilities.

Provides stand-ins for the aiohttp client session and the SQLAlchemy session maker so the
service functions can be exercised without network or database, plus small data factories.
"""

from datetime import datetime, timezone, timedelta
import json
from typing import Any, Dict, List, Optional, Tuple
import uuid
from sqlalchemy.dialects import postgresql

from de.hejtalent.crm.model.ms365 import Ms365Token


def generate_user_id() -> str:
    """Generate a CRM user id (uuid) for testing."""
    return str(uuid.uuid4())


def generate_test_datetime(offset_minutes: int = 0) -> datetime:
    """Generate a timezone-aware datetime for testing."""
    return datetime.now(timezone.utc) + timedelta(minutes=offset_minutes)


def make_token(
    user_id: str,
    email_address: str = "recruiter@example.com",
    expires_in_minutes: int = 60,
    access_token: str = "stored-access-token",
    refresh_token: str = "stored-refresh-token",
) -> Ms365Token:
    now = generate_test_datetime()
    return Ms365Token(
        id=generate_user_id(),
        user_id=user_id,
        email_address=email_address,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=now + timedelta(minutes=expires_in_minutes),
        created_at=now,
        updated_at=now,
    )


class FakeResponse:
    """Minimal aiohttp ClientResponse usable as an async context manager."""

    def __init__(self, status: int = 200, json_body: Any = None, text_body: Optional[str] = None):
        self.status = status
        self._json_body = json_body
        self._text_body = text_body

    async def json(self) -> Any:
        if self._json_body is None and self._text_body is not None:
            return json.loads(self._text_body)
        return self._json_body

    async def text(self) -> str:
        if self._text_body is not None:
            return self._text_body
        return json.dumps(self._json_body)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class FakeHttpSession:
    """
    Replays queued responses in order and records every request.

    A request with no queued response fails the test.
    """

    def __init__(self, *responses: FakeResponse):
        self.responses: List[FakeResponse] = list(responses)
        self.requests: List[Tuple[str, str, Dict[str, Any]]] = []

    def queue(self, response: FakeResponse) -> None:
        self.responses.append(response)

    def _request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append((method, url, kwargs))
        assert self.responses, f"unexpected {method} {url}"
        return self.responses.pop(0)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._request("POST", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._request("DELETE", url, **kwargs)

    def urls(self) -> List[str]:
        return [url for _, url, _ in self.requests]


class FakeScalarResult:
    def __init__(self, rows: List[Any]):
        self._rows = rows

    def first(self) -> Any:
        return self._rows[0] if self._rows else None

    def all(self) -> List[Any]:
        return list(self._rows)


class FakeTransaction:
    async def __aenter__(self) -> "FakeTransaction":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class FakeDatabaseSession:
    """
    Records executed statements and added objects.

    `scalars` answers with the rows queued on the owning FakeSessionMaker. `fail_with` makes
    every statement raise, for storage failure paths.
    """

    def __init__(self, maker: "FakeSessionMaker"):
        self.maker = maker
        self.fail_with = maker.fail_with

    def begin(self) -> FakeTransaction:
        return FakeTransaction()

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def scalars(self, stmt: Any) -> FakeScalarResult:
        self._check()
        self.maker.statements.append(stmt)
        rows = self.maker.scalar_rows.pop(0) if self.maker.scalar_rows else []
        return FakeScalarResult(rows)

    async def execute(self, stmt: Any) -> None:
        self._check()
        self.maker.statements.append(stmt)

    def add(self, instance: Any) -> None:
        self._check()
        self.maker.added.append(instance)

    async def __aenter__(self) -> "FakeDatabaseSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class FakeSessionMaker:
    """Callable stand-in for async_sessionmaker."""

    def __init__(self, *scalar_rows: List[Any], fail_with: Optional[Exception] = None):
        self.scalar_rows: List[List[Any]] = list(scalar_rows)
        self.fail_with = fail_with
        self.statements: List[Any] = []
        self.added: List[Any] = []

    def __call__(self) -> FakeDatabaseSession:
        return FakeDatabaseSession(self)


def compiled_params(stmt: Any) -> Dict[str, Any]:
    """Bound parameters of a statement compiled for PostgreSQL."""
    return stmt.compile(dialect=postgresql.dialect()).params
