"""Tests for RelayAgent: producer, control and connectivity surfaces."""

import asyncio

import pytest

from eventrelay.core.agent import ControlResult, RelayAgent, build_store, client_version
from eventrelay.core.config import RelaySettings
from eventrelay.core.connection import ConnectionState
from eventrelay.core.errors import StorageError
from eventrelay.core.scheduler import CycleStatus
from eventrelay.core.stats import ActivityStats
from eventrelay.stores.memory import InMemoryEventStore
from eventrelay.stores.sqlite import SqliteEventStore
from fakes import FakeConnector, FakeRequestSender, FlakyDeleteStore, eventually


class BrokenAppendStore(InMemoryEventStore):
    async def append(self, record):
        raise StorageError("database is locked", "append")


class TestSubmit:
    @pytest.mark.timeout(5)
    async def test_stamps_and_stores(self, agent, store):
        event_id = await agent.submit({"type": "page_open", "url": "https://a.example"})
        assert event_id is not None
        (event,) = await store.read_all()
        assert event.id == event_id
        assert {"received_ts", "ts", "event_id"} <= event.record.keys()

    @pytest.mark.parametrize("record", [None, "text", {}, {"_internal": 1}, {"x": object()}])
    @pytest.mark.timeout(5)
    async def test_rejects_bad_records(self, agent, store, record):
        assert await agent.submit(record) is None
        assert await store.count() == 0

    @pytest.mark.timeout(5)
    async def test_storage_failure_drops_event(self, relay_settings):
        agent = RelayAgent(
            relay_settings,
            store=BrokenAppendStore(),
            connector=FakeConnector(),
            request=FakeRequestSender(),
        )
        try:
            assert await agent.submit({"type": "x"}) is None
        finally:
            await agent.stop()


class TestControlSurface:
    @pytest.mark.timeout(5)
    async def test_flush_now_delivers(self, agent, store, request_sender):
        await agent.submit({"type": "a"})
        await agent.submit({"type": "b"})

        result = await agent.flush_now()

        assert result.ok
        assert result.status == "ok"
        assert result.data.status is CycleStatus.DELIVERED
        assert result.data.event_count == 2
        assert await store.count() == 0
        assert len(request_sender.bodies) == 1

    @pytest.mark.timeout(5)
    async def test_flush_now_on_empty_store(self, agent, request_sender):
        result = await agent.flush_now()
        assert result.ok
        assert result.data.status is CycleStatus.EMPTY
        assert request_sender.bodies == []

    @pytest.mark.timeout(5)
    async def test_flush_now_reports_failure(self, agent, store, request_sender):
        request_sender.status = 500
        await agent.submit({"type": "a"})

        result = await agent.flush_now()

        assert not result.ok
        assert result.status == "error"
        assert result.error == "HTTP POST failed: 500"
        assert result.data.status is CycleStatus.FAILED
        assert await store.count() == 1
        assert agent.tracker.attempts(result.data.fingerprint) == 1

    @pytest.mark.timeout(5)
    async def test_export_all(self, agent):
        first = await agent.submit({"type": "a", "url": "https://a.example"})
        second = await agent.submit({"type": "b"})

        result = await agent.export_all()

        assert result.ok
        assert [e["id"] for e in result.data] == [first, second]
        assert result.data[0]["url"] == "https://a.example"

    @pytest.mark.timeout(5)
    async def test_export_does_not_consume(self, agent, store):
        await agent.submit({"type": "a"})
        await agent.export_all()
        assert await store.count() == 1

    @pytest.mark.timeout(5)
    async def test_compute_stats(self, agent):
        await agent.submit({"type": "page_open", "url": "https://a.example"})
        await agent.submit({"type": "active_period", "url": "https://a.example", "duration": 1500})
        await agent.submit({"type": "active_period", "url": "https://a.example", "duration": 500})

        result = await agent.compute_stats()

        assert result.ok
        assert isinstance(result.data, ActivityStats)
        assert result.data.total_events == 3
        assert result.data.by_type == {"page_open": 1, "active_period": 2}
        assert result.data.active_time_by_url == {"https://a.example": 2000}

    @pytest.mark.timeout(5)
    async def test_store_failures_become_error_results(self, relay_settings):
        agent = RelayAgent(
            relay_settings,
            store=FlakyDeleteStore(raise_on_read=True),
            connector=FakeConnector(),
            request=FakeRequestSender(),
        )
        try:
            for result in (
                await agent.export_all(),
                await agent.compute_stats(),
                await agent.flush_now(),
            ):
                assert not result.ok
                assert "disk I/O error" in result.error
        finally:
            await agent.stop()

    def test_control_result_status(self):
        assert ControlResult(ok=True).status == "ok"
        assert ControlResult(ok=False, error="boom").status == "error"


class TestConnectivitySignals:
    @pytest.mark.timeout(5)
    async def test_lost_then_restored(self, agent, connector):
        agent.connection.connect()
        await eventually(lambda: agent.connection.is_connected)

        agent.network_lost()
        assert agent.connection.snapshot().state is ConnectionState.DISCONNECTED

        assert agent.network_restored() is True
        await eventually(lambda: agent.connection.is_connected)
        assert connector.attempts == 2

    @pytest.mark.timeout(5)
    async def test_flush_uses_stream_when_connected(self, agent, connector, request_sender):
        agent.connection.connect()
        await eventually(lambda: agent.connection.is_connected)
        await agent.submit({"type": "a"})

        result = await agent.flush_now()

        assert result.data.method.value == "stream"
        assert len(connector.last.sent) == 1
        assert request_sender.bodies == []


class TestLifecycle:
    @pytest.mark.timeout(5)
    async def test_start_connects_and_stop_releases(self, relay_settings, connector, request_sender):
        store = InMemoryEventStore()
        async with RelayAgent(
            relay_settings, store=store, connector=connector, request=request_sender
        ) as agent:
            await eventually(lambda: agent.connection.is_connected)
        assert agent.connection.snapshot().state is ConnectionState.DISCONNECTED
        assert connector.closed
        assert request_sender.closed

    @pytest.mark.timeout(5)
    async def test_timer_delivers_submitted_events(self, connector, request_sender):
        settings = RelaySettings(
            store="memory",
            flush_interval=0.02,
            connectivity_poll_interval=0,
        )
        store = InMemoryEventStore()
        agent = RelayAgent(settings, store=store, connector=connector, request=request_sender)
        await agent.start()
        try:
            await agent.submit({"type": "a"})
            await eventually(lambda: agent.scheduler.get_stats().events_delivered == 1)
        finally:
            await agent.stop()

    @pytest.mark.timeout(5)
    async def test_start_offline_skips_connect(self, connector, request_sender, unused_tcp_port):
        settings = RelaySettings(
            store="memory",
            flush_interval=3600,
            connectivity_poll_interval=3600,
            collector_http_url=f"http://127.0.0.1:{unused_tcp_port}/events",
        )
        agent = RelayAgent(settings, connector=connector, request=request_sender)
        try:
            await agent.start()
            await asyncio.sleep(0.01)
            assert agent.monitor.online is False
            assert connector.attempts == 0
            assert agent.connection.snapshot().offline
        finally:
            await agent.stop()

    @pytest.mark.timeout(5)
    async def test_stop_is_idempotent(self, agent):
        await agent.stop()
        await agent.stop()


class TestBuildStore:
    def test_memory(self):
        store = build_store(RelaySettings(store="memory", store_max_events=5))
        assert isinstance(store, InMemoryEventStore)

    async def test_sqlite(self, tmp_path):
        store = build_store(RelaySettings(store="sqlite", store_path=tmp_path / "relay.db"))
        try:
            assert isinstance(store, SqliteEventStore)
        finally:
            await store.close()

    def test_client_version(self):
        assert isinstance(client_version(), str)
        assert client_version()
