# tests/conftest.py
from __future__ import annotations

import json
import os
from collections import deque
from collections.abc import AsyncIterator, Callable, Generator, Iterator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

from tasksync.api.v1.dependencies import get_remote_client_dep
from tasksync.db.session import Base
from tasksync.db.session import get_db as app_get_session
from tasksync.main import app as fastapi_app
from tasksync.services.remote import RemoteClient
from tasksync.services.sync_config import SyncConfig
from tasksync.services.sync_service import SyncDispatcher
from tasksync.services.task_service import TaskService

TEST_DB_URL = "sqlite://"
REMOTE_BASE_URL = "http://remote.test/api"

Responder = Callable[[httpx.Request, dict[str, Any]], httpx.Response]


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


class RemoteStub:
    """In-process stand-in for the remote authority.

    Batch responders are consumed in order; once exhausted the default
    responder answers. Every submitted batch body is recorded.
    """

    def __init__(self) -> None:
        self.batches: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []
        self.responders: deque[Responder] = deque()
        self.default: Responder = self.success
        self.healthy = True

    @staticmethod
    def server_id_for(record_id: str) -> str:
        return f"srv_{record_id[:6]}"

    @classmethod
    def success(cls, request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        """Acknowledge every submitted item."""
        return httpx.Response(
            200,
            json={
                "processed_items": [
                    {
                        "client_id": item["record_id"],
                        "server_id": cls.server_id_for(item["record_id"]),
                        "status": "success",
                    }
                    for item in body["items"]
                ]
            },
        )

    @staticmethod
    def transport_error(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        """Simulate a dropped connection."""
        raise httpx.ConnectError("Network error", request=request)

    @staticmethod
    def fixed(payload: Any, status_code: int = 200) -> Responder:
        """Return the same body whatever was submitted."""

        def _responder(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return httpx.Response(status_code, json=payload)

        return _responder

    def then(self, *responders: Responder) -> RemoteStub:
        self.responders.extend(responders)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/health"):
            if not self.healthy:
                raise httpx.ConnectError("Connection refused", request=request)
            return httpx.Response(200, json={"status": "ok"})

        body = json.loads(request.content)
        self.batches.append(body)
        self.headers.append(request.headers)
        responder = self.responders.popleft() if self.responders else self.default
        return responder(request, body)

    def submitted_record_ids(self) -> list[list[str]]:
        return [[item["record_id"] for item in batch["items"]] for batch in self.batches]


@pytest.fixture()
def remote_stub() -> RemoteStub:
    return RemoteStub()


@pytest.fixture()
def sync_config() -> SyncConfig:
    return SyncConfig(base_url=REMOTE_BASE_URL, batch_size=50, max_retries=3)


@pytest_asyncio.fixture()
async def remote_client(
    remote_stub: RemoteStub, sync_config: SyncConfig
) -> AsyncIterator[RemoteClient]:
    client = RemoteClient(sync_config, transport=httpx.MockTransport(remote_stub.handler))
    try:
        yield client
    finally:
        await client.close()


@pytest.fixture()
def task_service(db_session: Session) -> TaskService:
    return TaskService(db_session)


@pytest.fixture()
def make_dispatcher(
    db_session: Session, remote_stub: RemoteStub
) -> Callable[..., SyncDispatcher]:
    """Build a dispatcher against the stub with config overrides."""

    def _make(**overrides: Any) -> SyncDispatcher:
        config = SyncConfig(
            base_url=REMOTE_BASE_URL,
            batch_size=overrides.pop("batch_size", 50),
            max_retries=overrides.pop("max_retries", 3),
            **overrides,
        )
        remote = RemoteClient(config, transport=httpx.MockTransport(remote_stub.handler))
        return SyncDispatcher(db_session, remote, config)

    return _make


@pytest.fixture()
def dispatcher(make_dispatcher: Callable[..., SyncDispatcher]) -> SyncDispatcher:
    return make_dispatcher()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI, db_session: Session, remote_stub: RemoteStub, sync_config: SyncConfig
) -> Iterator[TestClient]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    remote = RemoteClient(sync_config, transport=httpx.MockTransport(remote_stub.handler))
    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_remote_client_dep] = lambda: remote
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_remote_client_dep, None)
