"""Chat messages exchanged between clients and the router, and their JSON wire form."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Mapping

_U64_MAX = 2**64 - 1


class MessageType(IntEnum):
    """Kind of a chat message; the integer value is what goes on the wire."""

    MEMBER_AUTH = 0
    LEADER_AUTH = 1
    TEXT = 2
    AKE_ONE = 3
    AKE_TWO = 4
    XI_RI_COMMITMENT = 5
    KEY = 6
    LEAD_AKE_ONE = 7
    LEAD_AKE_TWO = 8
    LEADER_XI_RI_COMMITMENT = 9
    QKDID_LEADER = 10
    QKDID_MEMBER = 11
    PING = 12
    PONG = 13
    ERR = 14

    @property
    def label(self) -> str:
        """Name of the type as shown in log lines."""
        return _LABELS[self]


_LABELS = {
    MessageType.MEMBER_AUTH: "MemberAuth",
    MessageType.LEADER_AUTH: "LeaderAuth",
    MessageType.TEXT: "Text",
    MessageType.AKE_ONE: "AkeOne",
    MessageType.AKE_TWO: "AkeTwo",
    MessageType.XI_RI_COMMITMENT: "XiRiCommitment",
    MessageType.KEY: "Key",
    MessageType.LEAD_AKE_ONE: "LeadAkeOne",
    MessageType.LEAD_AKE_TWO: "LeadAkeTwo",
    MessageType.LEADER_XI_RI_COMMITMENT: "LeaderXiRiCommitment",
    MessageType.QKDID_LEADER: "QKDIDLeader",
    MessageType.QKDID_MEMBER: "QKDIDMember",
    MessageType.PING: "Ping",
    MessageType.PONG: "Pong",
    MessageType.ERR: "Err",
}


class RouteType(Enum):
    """How a message is delivered to connected clients."""

    BROADCAST = "broadcast"
    DIRECT = "direct"
    CLUSTER_BROADCAST = "cluster_broadcast"
    LEADER_DIRECT = "leader_direct"
    LEADER_BROADCAST = "leader_broadcast"
    NONE = "none"


_ROUTES = {
    MessageType.TEXT: RouteType.BROADCAST,
    MessageType.AKE_ONE: RouteType.DIRECT,
    MessageType.AKE_TWO: RouteType.DIRECT,
    MessageType.PONG: RouteType.DIRECT,
    MessageType.XI_RI_COMMITMENT: RouteType.CLUSTER_BROADCAST,
    MessageType.KEY: RouteType.CLUSTER_BROADCAST,
    MessageType.QKDID_MEMBER: RouteType.CLUSTER_BROADCAST,
    MessageType.LEAD_AKE_ONE: RouteType.LEADER_DIRECT,
    MessageType.LEAD_AKE_TWO: RouteType.LEADER_DIRECT,
    MessageType.QKDID_LEADER: RouteType.LEADER_DIRECT,
    MessageType.LEADER_XI_RI_COMMITMENT: RouteType.LEADER_BROADCAST,
}


def _u64(data: Mapping[str, Any], field: str) -> int:
    if field not in data:
        raise ValueError(f"missing field `{field}`")
    value = data[field]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field `{field}` must be an unsigned integer")
    if not 0 <= value <= _U64_MAX:
        raise ValueError(f"field `{field}` out of range")
    return value


def _text(data: Mapping[str, Any], field: str) -> str:
    if field not in data:
        raise ValueError(f"missing field `{field}`")
    value = data[field]
    if not isinstance(value, str):
        raise ValueError(f"field `{field}` must be a string")
    return value


@dataclass
class ChatMessage:
    """A message as carried between clients, one JSON object per line."""

    send_id: int
    recv_id: int
    msg_type: MessageType
    cluster_id: int
    sender: str
    content: str

    def __post_init__(self) -> None:
        self.msg_type = MessageType(self.msg_type)

    def route_type(self) -> RouteType:
        """How this message is to be delivered."""
        return _ROUTES.get(self.msg_type, RouteType.NONE)

    @classmethod
    def err(cls, message: str) -> ChatMessage:
        """An error message from the router carrying ``message`` as content."""
        return cls(
            send_id=0,
            recv_id=0,
            msg_type=MessageType.ERR,
            cluster_id=0,
            sender="",
            content=message,
        )

    def to_dict(self) -> dict[str, Any]:
        """The message as a dictionary with wire field names."""
        return {
            "sendId": self.send_id,
            "recvId": self.recv_id,
            "type": int(self.msg_type),
            "clusterId": self.cluster_id,
            "sender": self.sender,
            "content": self.content,
        }

    def to_json(self) -> str:
        """The message as one compact JSON line, newline included."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False) + "\n"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChatMessage:
        """Build a message from wire field names; raise ValueError on bad input."""
        if not isinstance(data, Mapping):
            raise ValueError("message must be a JSON object")
        if "type" not in data:
            raise ValueError("missing field `type`")
        raw_type = data["type"]
        if isinstance(raw_type, bool) or not isinstance(raw_type, int):
            raise ValueError("field `type` must be an integer")
        try:
            msg_type = MessageType(raw_type)
        except ValueError:
            raise ValueError("unknown message type") from None
        return cls(
            send_id=_u64(data, "sendId"),
            recv_id=_u64(data, "recvId"),
            msg_type=msg_type,
            cluster_id=_u64(data, "clusterId"),
            sender=_text(data, "sender"),
            content=_text(data, "content"),
        )

    @classmethod
    def from_json(cls, line: str) -> ChatMessage:
        """Parse one JSON line; raise ValueError if it is not a valid message."""
        return cls.from_dict(json.loads(line))

    def __str__(self) -> str:
        return (
            f"{{ SenderID: {self.send_id}, ReceiverID: {self.recv_id}, "
            f"Type: {self.msg_type.label}, ClusterID: {self.cluster_id}, "
            f"SenderName: {self.sender} }}"
        )