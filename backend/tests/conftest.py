"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Awaitable, Callable, Iterator

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = Path(__file__).resolve().parents[1]
for path in (ROOT_DIR, ROOT_DIR / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from app.config import Settings
from app.main import build_hub, create_app
from liveroom.monitoring.registry import registry
from liveroom.realtime import SignalingHub
from support import GRACE_SECONDS, KICK_DELAY_SECONDS, DummyWebSocket, Peer, VirtualScheduler


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture()
def hub(scheduler: VirtualScheduler) -> SignalingHub:
    return SignalingHub(
        ice_servers=[{"urls": ["stun:stun.example.org:3478"]}],
        grace_seconds=GRACE_SECONDS,
        kick_close_delay_seconds=KICK_DELAY_SECONDS,
        kick_reason="removed",
        scheduler=scheduler,
    )


@pytest.fixture()
def open_peer(hub: SignalingHub) -> Callable[..., Awaitable[Peer]]:
    """Connect and register a client; the ``registered`` reply is discarded."""

    async def _open(identity: str, username: str | None = None) -> Peer:
        websocket = DummyWebSocket()
        connection = await hub.connect(websocket)
        await hub.register(connection, identity, username or identity.upper())
        websocket.sent.clear()
        return Peer(connection, websocket)

    return _open


@pytest.fixture()
def reset_metrics() -> Iterator[None]:
    for metric in registry._metrics.values():
        metric.clear()
    yield
    for metric in registry._metrics.values():
        metric.clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        kick_close_delay_seconds=0.0,
        webrtc_stun_servers=["stun:stun.example.org:3478"],
    )


@pytest.fixture()
def client(settings: Settings) -> Iterator[TestClient]:
    """Yield a TestClient around a freshly built application and hub."""

    application = create_app(settings, build_hub(settings))
    with TestClient(application) as test_client:
        yield test_client
