"""
Pytest configuration and fixtures for ChatRelay tests.

This module provides shared fixtures for testing database models, repositories,
the queue, the session layer and the relay service.
"""

import os

# Settings are read at import time; keep tests off PostgreSQL and the log dir
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")

from dataclasses import dataclass  # noqa: E402
from typing import Callable, Generator, Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from chatrelay.db.connection import enable_sqlite_foreign_keys  # noqa: E402
from chatrelay.engine.base import EngineResult, ReasoningEngine  # noqa: E402
from chatrelay.exceptions import EngineError  # noqa: E402
from chatrelay.models.db import Base, PermissionMode  # noqa: E402
from chatrelay.services.relay import MessageRelay  # noqa: E402


@pytest.fixture
def test_engine():
    """Create a test database engine using SQLite in-memory.

    Each test gets its own database; StaticPool keeps the single in-memory
    connection alive and shares it with TestClient worker threads.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> sessionmaker:
    """Session factory bound to the test database."""
    return sessionmaker(
        bind=test_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a new database session for a test."""
    session = session_factory()
    yield session
    session.close()


@dataclass
class EngineCall:
    prompt: str
    resumption_token: Optional[str]
    working_context: str
    mode: PermissionMode
    timeout: float


class FakeEngine(ReasoningEngine):
    """Scripted engine issuing tokens tok-1, tok-2, ... and echoing prompts."""

    def __init__(self) -> None:
        self.calls: list[EngineCall] = []
        self.fail_with: Optional[EngineError] = None
        self.on_invoke: Optional[Callable[[EngineCall], None]] = None
        self.fixed_token: Optional[str] = None
        self._counter = 0

    @property
    def prompts(self) -> list[str]:
        return [call.prompt for call in self.calls]

    def invoke(self, prompt, resumption_token, working_context, mode, timeout):
        call = EngineCall(prompt, resumption_token, working_context, mode, timeout)
        self.calls.append(call)
        if self.on_invoke is not None:
            hook, self.on_invoke = self.on_invoke, None
            hook(call)
        if self.fail_with is not None:
            raise self.fail_with

        self._counter += 1
        return EngineResult(
            response_text=f"echo: {prompt}",
            resumption_token=self.fixed_token or f"tok-{self._counter}",
            cost_units=0.01,
        )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def relay(fake_engine, session_factory) -> MessageRelay:
    """Relay service over the test database and the fake engine."""
    return MessageRelay(
        engine=fake_engine,
        session_factory=session_factory,
        working_directory="/work/project",
        engine_timeout=5.0,
    )


@pytest.fixture
def api_client(relay):
    """Create a test client for FastAPI bound to the test relay."""
    from fastapi.testclient import TestClient

    from chatrelay.api.app import create_app

    app = create_app(relay=relay, run_reaper=False)
    with TestClient(app) as client:
        yield client
