"""Pytest configuration, Hypothesis profiles and shared fixtures."""

import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from hypothesis import settings

from eventrelay.core.config import RelaySettings
from eventrelay.core.connection import ConnectionManager
from eventrelay.core.agent import RelayAgent
from eventrelay.stores.memory import InMemoryEventStore
from fakes import FakeConnector, FakeRequestSender

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio as the async backend for pytest-asyncio."""
    return "asyncio"


@pytest.fixture
def relay_settings() -> RelaySettings:
    """Settings with polling off and timers too slow to fire during a test."""
    return RelaySettings(
        store="memory",
        flush_interval=3600,
        connectivity_poll_interval=0,
        reconnect_base_delay=60,
        reconnect_max_delay=600,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def request_sender() -> FakeRequestSender:
    return FakeRequestSender()


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
async def agent(relay_settings, store, connector, request_sender):
    """RelayAgent over fakes; not started."""
    relay = RelayAgent(
        settings=relay_settings,
        store=store,
        connector=connector,
        request=request_sender,
    )
    yield relay
    await relay.stop()


@pytest.fixture
async def manager(connector):
    """ConnectionManager with a slow backoff so reconnects never fire on their own."""
    conn = ConnectionManager(connector, base_delay=60, max_delay=600, max_attempts=3)
    yield conn
    await conn.close()


@dataclass
class Collector:
    """In-process collector: POST /events and a /ws stream."""

    server: TestServer
    http_batches: list[dict[str, Any]] = field(default_factory=list)
    ws_batches: list[dict[str, Any]] = field(default_factory=list)
    status: int = 200

    @property
    def http_url(self) -> str:
        return str(self.server.make_url("/events"))

    @property
    def ws_url(self) -> str:
        return str(self.server.make_url("/ws")).replace("http://", "ws://", 1)


@pytest.fixture
async def collector():
    holder: dict[str, Collector] = {}

    async def events(request: web.Request) -> web.Response:
        holder["c"].http_batches.append(await request.json())
        return web.Response(status=holder["c"].status)

    async def stream(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                holder["c"].ws_batches.append(json.loads(msg.data))
                await ws.send_str("ack")
        return ws

    app = web.Application()
    app.router.add_post("/events", events)
    app.router.add_get("/ws", stream)
    server = TestServer(app)
    await server.start_server()
    holder["c"] = Collector(server=server)
    yield holder["c"]
    await server.close()
