from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cobuy.core.config import get_config
from cobuy.core.exceptions import TransportError
from cobuy.models import Base, GroupMember
from cobuy.realtime.handles import ConnectionHandle
from cobuy.services.session_store import SessionStore


class RecordingHandle(ConnectionHandle):
    """In-memory subscriber that records every payload it is sent."""

    def __init__(self, user_id: str, fail: bool = False) -> None:
        super().__init__(user_id)
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: dict[str, Any]) -> None:
        if self.fail or self._closed:
            raise TransportError("peer went away")
        self.sent.append(payload)

    async def close(self) -> None:
        self._closed = True

    def types(self) -> list[str]:
        return [item["type"] for item in self.sent]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [item for item in self.sent if item["type"] == event_type]


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'cobuy_test.db'}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def store_factory(session_factory):
    settings = get_config()

    def _factory() -> SessionStore:
        return SessionStore(db=session_factory(), settings=settings)

    return _factory


@pytest.fixture
def seed_group(session_factory):
    def _seed(group_id: str, user_ids: list[str]) -> None:
        session = session_factory()
        for user_id in user_ids:
            session.add(GroupMember(group_id=group_id, user_id=user_id, display_name=user_id.upper()))
        session.commit()
        session.close()

    return _seed


@pytest.fixture
def make_handle():
    return RecordingHandle
