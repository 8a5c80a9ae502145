"""Socket session lifecycle: handshake, buffering, heartbeat and teardown."""
from urllib.parse import parse_qs, urlparse

import pytest

from relaychat.services.relay.channel import ChannelState
from relaychat.services.relay.protocol import Message
from relaychat.services.relay.socket import SocketSession, SocketState

from tests.conftest import RELAY_URL, until


def make_socket(fake_session, **kwargs):
    kwargs.setdefault("timeout", 0.2)
    return SocketSession(RELAY_URL, {"uid": "0ab1"}, session=fake_session, **kwargs)


@pytest.mark.asyncio
async def test_connect_opens_websocket_with_params(fake_session):
    socket = make_socket(fake_session)
    opened = []
    socket.on_open(lambda: opened.append(True))

    socket.connect()
    ws = await fake_session.accept()
    await until(lambda: opened)

    url = urlparse(ws.url)
    assert url.path == "/socket/websocket"
    assert parse_qs(url.query) == {"uid": ["0ab1"], "vsn": ["2.0.0"]}
    assert socket.state is SocketState.OPEN
    await socket.disconnect()


@pytest.mark.asyncio
async def test_connect_is_not_repeated_while_open(fake_session):
    socket = make_socket(fake_session)
    socket.connect()
    socket.connect()
    await fake_session.accept()
    await until(socket.is_connected)
    socket.connect()

    assert len(fake_session.connect_calls) == 1
    await socket.disconnect()


@pytest.mark.asyncio
async def test_frames_pushed_before_open_are_flushed_in_order(fake_session):
    socket = make_socket(fake_session)
    socket.push(Message(topic="user:0ab1", event="first", ref="a"))
    socket.push(Message(topic="user:0ab1", event="second", ref="b"))

    socket.connect()
    ws = await fake_session.accept()

    assert (await ws.next_frame())[3] == "first"
    assert (await ws.next_frame())[3] == "second"
    await socket.disconnect()


@pytest.mark.asyncio
async def test_disconnect_is_idempotent_and_errors_channels(fake_session):
    socket = make_socket(fake_session)
    closes, channel_errors = [], []
    socket.on_close(closes.append)

    socket.connect()
    ws = await fake_session.accept()
    await until(socket.is_connected)
    channel = socket.channel("user:0ab1")
    channel.on_error(channel_errors.append)
    channel.join()

    await socket.disconnect()
    await socket.disconnect()

    assert ws.closed
    assert socket.state is SocketState.CLOSED
    assert len(closes) == 1
    assert closes[0].clean is True
    assert channel.state is ChannelState.ERRORED
    assert channel_errors == [{"reason": "socket closed"}]


@pytest.mark.asyncio
async def test_disconnect_before_connect_is_a_noop(fake_session):
    socket = make_socket(fake_session)
    closes = []
    socket.on_close(closes.append)

    await socket.disconnect()

    assert closes == []
    assert fake_session.connect_calls == []


@pytest.mark.asyncio
async def test_server_close_fires_close_hook(fake_session):
    socket = make_socket(fake_session)
    closes = []
    socket.on_close(closes.append)

    socket.connect()
    ws = await fake_session.accept()
    await until(socket.is_connected)
    ws.server_close(code=4000, reason="going away")
    await socket.wait_closed()

    assert len(closes) == 1
    assert closes[0].code == 4000
    assert closes[0].clean is False
    assert not socket.is_connected()


@pytest.mark.asyncio
async def test_handshake_failure_fires_error_then_close(fake_session):
    fake_session.fail_with = ConnectionRefusedError("refused")
    socket = make_socket(fake_session)
    order = []
    socket.on_error(lambda e: order.append(("error", type(e))))
    socket.on_close(lambda event: order.append(("close", event.clean)))

    socket.connect()
    await until(lambda: len(order) == 2)

    assert order == [("error", ConnectionRefusedError), ("close", False)]
    assert socket.state is SocketState.CLOSED


@pytest.mark.asyncio
async def test_transport_error_closes_socket(fake_session):
    socket = make_socket(fake_session)
    errors, closes = [], []
    socket.on_error(errors.append)
    socket.on_close(closes.append)

    socket.connect()
    ws = await fake_session.accept()
    await until(socket.is_connected)
    ws.server_error()
    await socket.wait_closed()

    assert len(errors) == 1
    assert len(closes) == 1


@pytest.mark.asyncio
async def test_undecodable_frames_are_ignored(fake_session):
    socket = make_socket(fake_session)
    seen = []
    socket.on_message(seen.append)

    socket.connect()
    ws = await fake_session.accept()
    await until(socket.is_connected)
    ws.server_send("garbage")
    ws.server_send([None, None, "user:0ab1", "chat", {"message": "ok"}])
    await until(lambda: seen)

    assert [m.event for m in seen] == ["chat"]
    assert socket.is_connected()
    await socket.disconnect()


@pytest.mark.asyncio
async def test_heartbeat_reply_keeps_connection(fake_session):
    socket = make_socket(fake_session, heartbeat_interval=0.02)
    socket.connect()
    ws = await fake_session.accept()

    first = await ws.next_frame()
    assert first[2:4] == ["phoenix", "heartbeat"]
    ws.server_send([None, first[1], "phoenix", "phx_reply", {"status": "ok", "response": {}}])

    second = await ws.next_frame()
    assert second[2:4] == ["phoenix", "heartbeat"]
    assert second[1] != first[1]
    assert socket.is_connected()
    await socket.disconnect()


@pytest.mark.asyncio
async def test_missed_heartbeat_drops_connection(fake_session):
    socket = make_socket(fake_session, heartbeat_interval=0.02)
    closes = []
    socket.on_close(closes.append)

    socket.connect()
    ws = await fake_session.accept()
    await ws.next_frame()
    await socket.wait_closed()

    assert closes[0].reason == "heartbeat timeout"
    assert closes[0].clean is False
    assert ws.closed


@pytest.mark.asyncio
async def test_malformed_reply_settles_push_without_dropping_socket(fake_session):
    socket = make_socket(fake_session)
    channel = socket.channel("user:0ab1")
    replies = []
    channel.join().receive("error", replies.append)

    socket.connect()
    ws = await fake_session.accept()
    join = await ws.next_frame()
    ws.server_send([join[0], join[1], join[2], "phx_reply", "not-an-object"])
    await until(lambda: replies)

    assert replies == ["not-an-object"]
    assert channel.state is ChannelState.ERRORED
    assert socket.is_connected()
    await socket.disconnect()
