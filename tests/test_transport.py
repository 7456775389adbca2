"""Tests for stream-first delivery and the aiohttp transports."""

import json

import pytest

from eventrelay.core.connection import ConnectionManager
from eventrelay.core.errors import StreamConnectionError, TransportError
from eventrelay.core.event import Batch, ClientInfo
from eventrelay.core.transport import DeliveryMethod, TransportDelivery
from eventrelay.transports.http import HttpRequestSender
from eventrelay.transports.websocket import WebSocketConnector
from fakes import FakeRequestSender, eventually


def make_batch(n: int = 2) -> Batch:
    return Batch(
        client=ClientInfo(agent="test-agent", version="0.0.1"),
        events=tuple({"type": "x", "n": i} for i in range(n)),
    )


@pytest.fixture
async def connected(manager):
    manager.connect()
    await eventually(lambda: manager.is_connected)
    return manager


class TestTransportDelivery:
    @pytest.mark.timeout(5)
    async def test_stream_when_connected(self, connected, connector, request_sender):
        delivery = TransportDelivery(connected, request_sender)
        batch = make_batch()
        result = await delivery.deliver(batch)
        assert result.success
        assert result.method is DeliveryMethod.STREAM
        assert json.loads(connector.last.sent[0])["batch_id"] == batch.batch_id
        assert request_sender.bodies == []

    @pytest.mark.timeout(5)
    async def test_request_when_disconnected(self, manager, request_sender):
        delivery = TransportDelivery(manager, request_sender)
        result = await delivery.deliver(make_batch())
        assert result.success
        assert result.method is DeliveryMethod.REQUEST
        assert result.status == 200
        assert result.stream_error is None
        assert len(request_sender.bodies) == 1

    @pytest.mark.timeout(5)
    async def test_stream_failure_falls_back_to_request(self, connected, connector, request_sender):
        connector.last.fail_send = True
        delivery = TransportDelivery(connected, request_sender)
        batch = make_batch()
        result = await delivery.deliver(batch)
        assert result.success
        assert result.method is DeliveryMethod.REQUEST
        assert "socket write failed" in result.stream_error
        assert json.loads(request_sender.bodies[0]) == json.loads(batch.to_json())

    @pytest.mark.parametrize("status", [200, 201, 204, 299])
    @pytest.mark.timeout(5)
    async def test_any_2xx_is_success(self, manager, status):
        delivery = TransportDelivery(manager, FakeRequestSender(status=status))
        assert (await delivery.deliver(make_batch())).success

    @pytest.mark.parametrize("status", [301, 400, 404, 500, 503])
    @pytest.mark.timeout(5)
    async def test_non_2xx_is_failure(self, manager, status):
        delivery = TransportDelivery(manager, FakeRequestSender(status=status))
        result = await delivery.deliver(make_batch())
        assert not result.success
        assert result.status == status
        assert result.error == f"HTTP POST failed: {status}"

    @pytest.mark.timeout(5)
    async def test_stream_failure_and_server_error(self, connected, connector):
        connector.last.fail_send = True
        delivery = TransportDelivery(connected, FakeRequestSender(status=500))
        result = await delivery.deliver(make_batch(1))
        assert not result.success
        assert result.method is DeliveryMethod.REQUEST
        assert result.stream_error is not None

    @pytest.mark.timeout(5)
    async def test_request_error_is_failure(self, manager):
        delivery = TransportDelivery(manager, FakeRequestSender(error="connection reset"))
        result = await delivery.deliver(make_batch())
        assert not result.success
        assert result.error == "connection reset"
        assert result.status is None


class TestHttpRequestSender:
    @pytest.mark.timeout(10)
    async def test_posts_json(self, collector):
        sender = HttpRequestSender(collector.http_url, timeout=5)
        try:
            batch = make_batch()
            assert await sender.post(batch.to_json()) == 200
        finally:
            await sender.close()
        assert collector.http_batches == [json.loads(batch.to_json())]

    @pytest.mark.timeout(10)
    async def test_returns_error_status(self, collector):
        collector.status = 500
        sender = HttpRequestSender(collector.http_url, timeout=5)
        try:
            assert await sender.post(make_batch().to_json()) == 500
        finally:
            await sender.close()

    @pytest.mark.timeout(10)
    async def test_unreachable_raises_transport_error(self, unused_tcp_port):
        sender = HttpRequestSender(f"http://127.0.0.1:{unused_tcp_port}/events", timeout=2)
        try:
            with pytest.raises(TransportError) as exc_info:
                await sender.post("{}")
            assert exc_info.value.method == "request"
        finally:
            await sender.close()


class TestWebSocketConnector:
    @pytest.mark.timeout(10)
    async def test_send_and_receive(self, collector):
        connector = WebSocketConnector(collector.ws_url, heartbeat=None)
        try:
            connection = await connector.connect()
            await connection.send_text(make_batch().to_json())
            assert await connection.receive() == "ack"
            await connection.close()
            assert connection.closed
        finally:
            await connector.close()
        assert len(collector.ws_batches) == 1

    @pytest.mark.timeout(10)
    async def test_handshake_failure(self, unused_tcp_port):
        connector = WebSocketConnector(f"ws://127.0.0.1:{unused_tcp_port}/ws")
        try:
            with pytest.raises(StreamConnectionError):
                await connector.connect()
        finally:
            await connector.close()

    @pytest.mark.timeout(10)
    async def test_end_to_end_over_stream(self, collector):
        manager = ConnectionManager(
            WebSocketConnector(collector.ws_url, heartbeat=None), base_delay=60, max_delay=60
        )
        sender = HttpRequestSender(collector.http_url, timeout=5)
        try:
            manager.connect()
            await eventually(lambda: manager.is_connected, timeout=5)
            result = await TransportDelivery(manager, sender).deliver(make_batch(3))
            assert result.method is DeliveryMethod.STREAM
            await eventually(lambda: len(collector.ws_batches) == 1, timeout=5)
            assert collector.ws_batches[0]["events"][2] == {"type": "x", "n": 2}
            assert collector.http_batches == []
        finally:
            await manager.close()
            await sender.close()
