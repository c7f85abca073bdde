import asyncio
import json

import pytest

from copytrader.config.settings import StreamConfig
from copytrader.connectors.ws_client import ConnectionState, HyperliquidWebSocketClient
from copytrader.errors import CopyTradingError, ErrorKind

from fakes import FailingConnection, FakeConnection, FakeConnector, wait_for

URL = "wss://example.test/ws"
SUBSCRIPTION = {"type": "userFills", "user": "0xtarget"}


def _client(connector: FakeConnector, **config) -> tuple[HyperliquidWebSocketClient, list[float]]:
    client = HyperliquidWebSocketClient(StreamConfig(**config), URL, connect=connector)
    delays: list[float] = []

    async def record_wait(delay: float) -> bool:
        delays.append(delay)
        return False

    client._wait_before_reconnect = record_wait
    return client, delays


def test_reconnect_delay_doubles_and_caps() -> None:
    client = HyperliquidWebSocketClient(
        StreamConfig(reconnect_base_delay_sec=1.0, reconnect_max_delay_sec=30.0), URL
    )
    assert [client.reconnect_delay(n) for n in range(1, 8)] == [1, 2, 4, 8, 16, 30, 30]


@pytest.mark.asyncio
async def test_reconnects_with_increasing_delay_then_gives_up() -> None:
    connector = FakeConnector()
    client, delays = _client(
        connector,
        reconnect_base_delay_sec=1.0,
        reconnect_max_delay_sec=8.0,
        max_reconnect_attempts=6,
    )

    with pytest.raises(CopyTradingError) as exc_info:
        await client.run([SUBSCRIPTION], lambda payload: None)

    assert exc_info.value.kind is ErrorKind.FATAL
    assert delays == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]
    assert len(connector.calls) == 7
    assert client.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_connection_that_delivered_messages_resets_attempts() -> None:
    connector = FakeConnector(
        [
            FailingConnection(),
            FailingConnection(),
            FakeConnection(['{"channel": "pong"}']),
        ]
    )
    client, delays = _client(
        connector,
        reconnect_base_delay_sec=1.0,
        reconnect_max_delay_sec=30.0,
        max_reconnect_attempts=3,
    )

    with pytest.raises(CopyTradingError):
        await client.run([SUBSCRIPTION], lambda payload: None)

    assert delays == [1.0, 2.0, 1.0, 2.0, 4.0]
    assert len(connector.calls) == 6


@pytest.mark.asyncio
async def test_subscribes_and_dispatches_decoded_messages() -> None:
    connection = FakeConnection(
        [
            '{"channel": "subscriptionResponse", "data": {}}',
            "not json",
            '{"channel": "userFills", "data": {"fills": []}}',
        ],
        stay_open=True,
    )
    client = HyperliquidWebSocketClient(StreamConfig(), URL, connect=FakeConnector([connection]))
    received: list[dict] = []

    def handler(payload: dict) -> None:
        received.append(payload)
        if payload["channel"] == "userFills":
            client.stop()

    await asyncio.wait_for(client.run([SUBSCRIPTION], handler), timeout=2)

    assert json.loads(connection.sent[0]) == {"method": "subscribe", "subscription": SUBSCRIPTION}
    assert [p["channel"] for p in received] == ["subscriptionResponse", "userFills"]
    assert client.state is ConnectionState.DISCONNECTED
    assert client.last_message_age_sec() is not None


@pytest.mark.asyncio
async def test_handler_errors_do_not_drop_connection() -> None:
    connection = FakeConnection(['{"n": 1}', '{"n": 2}'], stay_open=True)
    client = HyperliquidWebSocketClient(StreamConfig(), URL, connect=FakeConnector([connection]))
    seen: list[int] = []

    def handler(payload: dict) -> None:
        seen.append(payload["n"])
        if payload["n"] == 1:
            raise RuntimeError("handler bug")
        client.stop()

    await asyncio.wait_for(client.run([SUBSCRIPTION], handler), timeout=2)
    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_sends_keepalive_ping() -> None:
    connection = FakeConnection(stay_open=True)
    client = HyperliquidWebSocketClient(
        StreamConfig(ping_interval_sec=0.01), URL, connect=FakeConnector([connection])
    )
    task = asyncio.create_task(client.run([SUBSCRIPTION], lambda payload: None))

    await wait_for(lambda: '{"method":"ping"}' in connection.sent)
    client.stop()
    await asyncio.wait_for(task, timeout=2)


@pytest.mark.asyncio
async def test_stop_interrupts_reconnect_wait() -> None:
    client = HyperliquidWebSocketClient(
        StreamConfig(reconnect_base_delay_sec=30.0, reconnect_max_delay_sec=60.0),
        URL,
        connect=FakeConnector(),
    )
    task = asyncio.create_task(client.run([SUBSCRIPTION], lambda payload: None))

    await wait_for(lambda: client.state is ConnectionState.RECONNECTING)
    client.stop()
    await asyncio.wait_for(task, timeout=2)
    assert client.state is ConnectionState.DISCONNECTED
