import asyncio
import contextlib

import pytest

from pqgchrouter.message import ChatMessage, MessageType
from pqgchrouter.routing import ClientKey
from pqgchrouter.server import AuthError, handle_conn, main, parse_auth
from pqgchrouter.session import Session


def make(msg_type, send_id=1, cluster_id=1, recv_id=0, content=""):
    return ChatMessage(
        send_id=send_id,
        recv_id=recv_id,
        msg_type=msg_type,
        cluster_id=cluster_id,
        sender="alice",
        content=content,
    )


def test_parse_member_auth():
    line = make(MessageType.MEMBER_AUTH, send_id=4, cluster_id=2).to_json().strip()
    assert parse_auth(line) == ClientKey(user_id=4, cluster_id=2, is_leader=False)


def test_parse_leader_auth():
    line = make(MessageType.LEADER_AUTH, send_id=4, cluster_id=2).to_json().strip()
    assert parse_auth(line) == ClientKey(user_id=4, cluster_id=2, is_leader=True)


@pytest.mark.parametrize(
    "line",
    [
        None,
        "not json",
        '{"sendId":1}',
        make(MessageType.TEXT).to_json().strip(),
    ],
)
def test_parse_auth_rejects(line):
    with pytest.raises(AuthError):
        parse_auth(line)


def test_main_rejects_bad_port():
    assert main(["notaport"]) == 1
    assert main(["70000"]) == 1


@contextlib.asynccontextmanager
async def running(session):
    server = await asyncio.start_server(
        lambda r, w: handle_conn(r, w, session), "127.0.0.1", 0
    )
    port = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(server.wait_closed(), 2)


async def connect(port, auth=None):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    if auth is not None:
        writer.write(auth.to_json().encode())
        await writer.drain()
    return reader, writer


async def read_message(reader):
    line = await asyncio.wait_for(reader.readline(), 2)
    return ChatMessage.from_json(line.decode())


async def ping(reader, writer):
    writer.write(make(MessageType.PING).to_json().encode())
    await writer.drain()
    return await read_message(reader)


async def close(writer):
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()


async def wait_until(predicate):
    for _ in range(200):
        if predicate():
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_invalid_auth_line_gets_error_and_close():
    async with running(Session()) as port:
        reader, writer = await connect(port)
        writer.write(b"hello\n")
        await writer.drain()
        reply = await read_message(reader)
        assert reply.msg_type == MessageType.ERR
        assert reply.content == "invalid auth"
        assert await asyncio.wait_for(reader.readline(), 2) == b""
        await close(writer)


@pytest.mark.asyncio
async def test_non_auth_first_message_rejected():
    session = Session()
    async with running(session) as port:
        reader, writer = await connect(port, make(MessageType.TEXT))
        reply = await read_message(reader)
        assert reply.content == "invalid auth"
        assert session.connections == {}
        await close(writer)


@pytest.mark.asyncio
async def test_eof_before_auth_gets_error():
    async with running(Session()) as port:
        reader, writer = await connect(port)
        writer.write_eof()
        reply = await read_message(reader)
        assert reply.msg_type == MessageType.ERR
        await close(writer)


@pytest.mark.asyncio
async def test_ping_gets_pong():
    session = Session()
    async with running(session) as port:
        reader, writer = await connect(port, make(MessageType.MEMBER_AUTH, send_id=5, cluster_id=3))
        pong = await ping(reader, writer)
        assert pong.msg_type == MessageType.PONG
        assert pong.sender == "pqgch-router"
        assert (pong.recv_id, pong.cluster_id) == (5, 3)
        await close(writer)


@pytest.mark.asyncio
async def test_text_is_relayed_to_others_only():
    session = Session()
    async with running(session) as port:
        a_reader, a_writer = await connect(port, make(MessageType.MEMBER_AUTH, send_id=1))
        await ping(a_reader, a_writer)
        b_reader, b_writer = await connect(port, make(MessageType.MEMBER_AUTH, send_id=2))
        await ping(b_reader, b_writer)

        text = make(MessageType.TEXT, send_id=1, content="hello group")
        a_writer.write(b"garbage\n" + text.to_json().encode())
        await a_writer.drain()

        assert await read_message(b_reader) == text
        assert (await ping(a_reader, a_writer)).msg_type == MessageType.PONG
        assert session.history == (text,)
        await close(a_writer)
        await close(b_writer)


@pytest.mark.asyncio
async def test_disconnect_leaves_session():
    session = Session()
    async with running(session) as port:
        a_reader, a_writer = await connect(port, make(MessageType.MEMBER_AUTH, send_id=1))
        await ping(a_reader, a_writer)
        b_reader, b_writer = await connect(port, make(MessageType.LEADER_AUTH, send_id=2))
        await ping(b_reader, b_writer)
        await close(a_writer)

        leader = ClientKey(user_id=2, cluster_id=1, is_leader=True)
        await wait_until(lambda: list(session.connections) == [leader])
        assert list(session.connections) == [leader]

        pong = await ping(b_reader, b_writer)
        assert (pong.msg_type, pong.recv_id) == (MessageType.PONG, 2)

        await close(b_writer)
        await wait_until(lambda: session.connections == {})
        assert session.connections == {}


@pytest.mark.asyncio
async def test_duplicate_join_terminates_old_connection():
    session = Session()
    auth = make(MessageType.MEMBER_AUTH, send_id=7)
    async with running(session) as port:
        old_reader, old_writer = await connect(port, auth)
        await ping(old_reader, old_writer)
        new_reader, new_writer = await connect(port, auth)

        notice = await read_message(old_reader)
        assert notice.msg_type == MessageType.ERR
        assert notice.content == "session terminated due to duplicate join"
        assert await asyncio.wait_for(old_reader.readline(), 2) == b""

        assert (await ping(new_reader, new_writer)).msg_type == MessageType.PONG
        assert list(session.connections) == [ClientKey(user_id=7, cluster_id=1, is_leader=False)]
        await close(old_writer)
        await close(new_writer)