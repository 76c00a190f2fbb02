"""Client identities and the rules deciding which clients receive a message."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .message import ChatMessage, MessageType, RouteType


@dataclass(frozen=True)
class ClientKey:
    """Identity of a connected client."""

    user_id: int
    cluster_id: int
    is_leader: bool

    def __str__(self) -> str:
        leader = "true" if self.is_leader else "false"
        return f"client [ID: {self.user_id} / Cluster ID: {self.cluster_id} / Leader?: {leader}]"


def applies_route(app_msg: ChatMessage, client: ClientKey) -> bool:
    """Whether ``app_msg`` is to be delivered to ``client``."""
    route = app_msg.route_type()
    if route is RouteType.BROADCAST:
        return True
    if route is RouteType.DIRECT:
        return app_msg.cluster_id == client.cluster_id and app_msg.recv_id == client.user_id
    if route is RouteType.LEADER_DIRECT:
        return client.is_leader and client.cluster_id == app_msg.recv_id
    if route is RouteType.CLUSTER_BROADCAST:
        return client.cluster_id == app_msg.cluster_id
    if route is RouteType.LEADER_BROADCAST:
        return client.is_leader
    return False


def route_message(
    app_msg: ChatMessage,
    connections: Mapping[ClientKey, Callable[[str], object]],
    sender_key: Optional[ClientKey],
) -> list[ClientKey]:
    """Send ``app_msg`` as a JSON line to every connection it routes to.

    The sender never gets its own message back, except for pongs.
    Returns the clients the message was handed to.
    """
    line = app_msg.to_json()
    delivered = []
    for client, send in connections.items():
        if client == sender_key and app_msg.msg_type != MessageType.PONG:
            continue
        if applies_route(app_msg, client):
            send(line)
            delivered.append(client)
    return delivered