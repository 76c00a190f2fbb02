"""Shared state of the chat session: who is connected, what was said, who is alive."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from .message import ChatMessage, MessageType
from .routing import ClientKey, applies_route, route_message

logger = logging.getLogger(__name__)

Send = Callable[[str], object]
Stop = Callable[[], object]

DEFAULT_TIMEOUT = 30.0
DEFAULT_CHECK_INTERVAL = 15.0
ROUTER_NAME = "pqgch-router"


class Session:
    """The single session every client joins.

    ``send`` callables receive JSON lines for a client; ``stop`` callables
    tell a client's connection to end. ``clock`` returns seconds as a float.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self._clock = clock
        self.connections: dict[ClientKey, Send] = {}
        self._joined_once: set[ClientKey] = set()
        self._last_seen: dict[ClientKey, float] = {}
        self._stops: dict[ClientKey, Stop] = {}
        self._messages: list[ChatMessage] = []

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        """Messages sent in the session so far, oldest first."""
        return tuple(self._messages)

    def join(self, key: ClientKey, send: Send, stop: Stop) -> None:
        """Add a client, replaying the history that routes to it.

        A key that has joined before restarts the whole session.
        """
        if key in self._joined_once:
            logger.warning("duplicate join of %s, restarting session", key)
            notice = ChatMessage.err("session terminated due to duplicate join").to_json()
            for old_send in self.connections.values():
                old_send(notice)
            self.reset()

        for message in self._messages:
            if applies_route(message, key):
                send(message.to_json())

        self.connections[key] = send
        self._joined_once.add(key)
        self._last_seen[key] = self._clock()
        self._stops[key] = stop

    def leave(self, key: ClientKey) -> None:
        """Remove a connected client; the session is cleared when nobody is left."""
        if self.connections.pop(key, None) is None:
            return
        logger.info("%s disconnected", key)
        self._last_seen.pop(key, None)
        stop = self._stops.pop(key, None)
        if stop is not None:
            stop()
        if not self.connections:
            logger.info("no members left in session, clearing")
            self.reset()

    def send_message(self, msg: ChatMessage, sender_key: ClientKey) -> None:
        """Route a client's message and keep it in the history."""
        route_message(msg, self.connections, sender_key)
        self._messages.append(msg)

    def ping(self, key: ClientKey) -> None:
        """Mark a client alive and answer it with a pong."""
        self._last_seen[key] = self._clock()
        pong = ChatMessage(
            send_id=0,
            recv_id=key.user_id,
            msg_type=MessageType.PONG,
            cluster_id=key.cluster_id,
            sender=ROUTER_NAME,
            content="",
        )
        route_message(pong, self.connections, None)

    def expire(self) -> list[ClientKey]:
        """Drop every client not seen for longer than the timeout; return them."""
        now = self._clock()
        timed_out = [key for key, last in self._last_seen.items() if now - last > self.timeout]
        for key in timed_out:
            logger.warning("%s timed out", key)
            self.leave(key)
        return timed_out

    def reset(self) -> None:
        """Forget everything and stop every client still registered."""
        self._messages.clear()
        self.connections.clear()
        self._joined_once.clear()
        self._last_seen.clear()
        stops = list(self._stops.values())
        self._stops.clear()
        for stop in stops:
            stop()

    async def run_timeout_checker(self, interval: float = DEFAULT_CHECK_INTERVAL) -> None:
        """Expire silent clients every ``interval`` seconds, forever."""
        while True:
            self.expire()
            await asyncio.sleep(interval)