"""TCP front end: authenticates clients and feeds their messages to the session."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import socket
import sys
from typing import Optional

from .message import ChatMessage, MessageType
from .routing import ClientKey
from .session import Session

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9000
KEEPALIVE_SECONDS = 20
_LINE_LIMIT = 16 * 1024 * 1024


class AuthError(Exception):
    """The first line of a connection is not a valid auth message."""


def parse_auth(line: Optional[str]) -> ClientKey:
    """Turn an auth line into the client's key; raise AuthError otherwise."""
    if line is None:
        raise AuthError("no auth message")
    try:
        msg = ChatMessage.from_json(line)
    except ValueError as exc:
        raise AuthError(f"invalid auth message: {exc}") from exc
    if msg.msg_type == MessageType.MEMBER_AUTH:
        return ClientKey(user_id=msg.send_id, cluster_id=msg.cluster_id, is_leader=False)
    if msg.msg_type == MessageType.LEADER_AUTH:
        return ClientKey(user_id=msg.send_id, cluster_id=msg.cluster_id, is_leader=True)
    raise AuthError(f"expected auth message, received type ID: {msg.msg_type.label}")


async def _read_line(reader: asyncio.StreamReader) -> Optional[str]:
    data = await reader.readline()
    if not data:
        return None
    text = data.decode("utf-8")
    if text.endswith("\n"):
        text = text[:-1]
        if text.endswith("\r"):
            text = text[:-1]
    return text


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()


async def _send_auth_error(writer: asyncio.StreamWriter) -> None:
    try:
        writer.write(ChatMessage.err("invalid auth").to_json().encode())
        await writer.drain()
    except OSError as exc:
        logger.info("failed to write auth error: %s", exc)
    finally:
        await _close(writer)


async def _pump(queue: asyncio.Queue, writer: asyncio.StreamWriter) -> None:
    try:
        while (line := await queue.get()) is not None:
            writer.write(line.encode())
            await writer.drain()
    except OSError as exc:
        logger.info("failed to write message: %s", exc)
    finally:
        await _close(writer)


async def _serve_client(
    reader: asyncio.StreamReader,
    key: ClientKey,
    session: Session,
    stop_wait: asyncio.Task,
) -> bool:
    """Read the client's messages until it hangs up (True) or is stopped (False)."""
    while True:
        read = asyncio.create_task(_read_line(reader))
        try:
            done, _ = await asyncio.wait({read, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not read.done():
                read.cancel()
        if read not in done:
            return False
        try:
            line = read.result()
        except (OSError, ValueError) as exc:
            logger.warning("read from %s failed: %s", key, exc)
            return True
        if line is None:
            return True
        try:
            msg = ChatMessage.from_json(line)
        except ValueError as exc:
            logger.warning("invalid message from client: %s", exc)
            continue
        logger.info("received %s", msg)
        if msg.msg_type == MessageType.PING:
            session.ping(key)
        else:
            session.send_message(msg, key)


async def handle_conn(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    session: Session,
) -> None:
    """Serve one client connection from authentication to disconnect."""
    peer = writer.get_extra_info("peername")
    logger.info("new connection from %s", peer)

    try:
        key = parse_auth(await _read_line(reader))
    except (AuthError, OSError, ValueError) as exc:
        logger.warning("%s, dropping connection", exc)
        await _send_auth_error(writer)
        return

    queue: asyncio.Queue = asyncio.Queue()
    stopped = asyncio.Event()
    session.join(key, queue.put_nowait, stopped.set)
    logger.info("%s logged in successfully", key)

    pump = asyncio.create_task(_pump(queue, writer))
    stop_wait = asyncio.create_task(stopped.wait())
    try:
        if await _serve_client(reader, key, session, stop_wait):
            session.leave(key)
    finally:
        stop_wait.cancel()
        queue.put_nowait(None)
        await pump


def _set_keepalive(writer: asyncio.StreamWriter) -> None:
    sock = writer.get_extra_info("socket")
    if sock is None:
        return
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        idle_option = getattr(socket, "TCP_KEEPIDLE", None)
        if idle_option is None:
            idle_option = getattr(socket, "TCP_KEEPALIVE", None)
        if idle_option is not None:
            sock.setsockopt(socket.IPPROTO_TCP, idle_option, KEEPALIVE_SECONDS)
        interval_option = getattr(socket, "TCP_KEEPINTVL", None)
        if interval_option is not None:
            sock.setsockopt(socket.IPPROTO_TCP, interval_option, KEEPALIVE_SECONDS)
    except OSError as exc:
        logger.warning("could not enable keepalive: %s", exc)


async def serve(host: str = "0.0.0.0", port: int = DEFAULT_PORT) -> None:
    """Listen on ``host``:``port`` and route messages between clients forever."""
    session = Session()

    async def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        _set_keepalive(writer)
        try:
            await handle_conn(reader, writer, session)
        except Exception as exc:  # one bad connection must not take the server down
            logger.warning("connection %s error: %s", peer, exc)

    server = await asyncio.start_server(on_connect, host, port, limit=_LINE_LIMIT)
    logger.info("listening on %s:%s", host, port)
    checker = asyncio.create_task(session.run_timeout_checker())
    try:
        async with server:
            await server.serve_forever()
    finally:
        checker.cancel()


def main(argv: Optional[list[str]] = None) -> int:
    """Run the router; the optional argument is the port to listen on."""
    parser = argparse.ArgumentParser(prog="pqgchrouter", description="Group chat message router.")
    parser.add_argument("port", nargs="?", default=str(DEFAULT_PORT))
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO)

    try:
        port = int(args.port)
    except ValueError:
        logger.error("invalid port: %s", args.port)
        return 1
    if not 0 <= port <= 65535:
        logger.error("invalid port: %s", args.port)
        return 1

    try:
        asyncio.run(serve("0.0.0.0", port))
    except OSError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())