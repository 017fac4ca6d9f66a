# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from listenroom.auth import UserContext
from listenroom.config import Settings
from listenroom.rooms import identify
from listenroom.state import RoomStore
from main import create_app

from .helpers import T0


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Deterministic settings; no environment lookups."""
    return Settings(
        static_dir=tmp_path / "static",
        secret="test-secret",
        rate_limit=1000,
    )


@pytest.fixture()
def store() -> RoomStore:
    return RoomStore()


@pytest.fixture()
def host(store: RoomStore) -> UserContext:
    client, _ = identify(store, name="Host", now=T0)
    return UserContext(client_id=client.client_id, name=client.name)


@pytest.fixture()
def guest(store: RoomStore) -> UserContext:
    client, _ = identify(store, name="Guest", now=T0)
    return UserContext(client_id=client.client_id, name=client.name)


@pytest.fixture()
async def client(aiohttp_client, settings: Settings, store: RoomStore):
    return await aiohttp_client(create_app(settings, store))


