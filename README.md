# pqgchrouter

A small TCP router that relays newline-delimited JSON messages between the
members and leaders of one or more clusters taking part in a group key
exchange. It authenticates each connection by role, forwards every message to
the clients it is meant for, replays earlier messages to late joiners and
drops clients that go quiet.

## Installing

```
pip install .
```

Only the Python standard library is needed (Python 3.10 or later). The tests
use `pytest` and `pytest-asyncio`, available through the `test` extra:

```
pip install ".[test]"
pytest
```

## Running

```
pqgch-router            # listens on 0.0.0.0:9000
pqgch-router 9100       # listens on 0.0.0.0:9100
```

The only argument is the port. A port that is not a number from 0 to 65535,
or one that cannot be bound, makes the command exit with status 1. Log lines
(level INFO and above) go to standard error. TCP keepalive is switched on for
each accepted connection, with 20 seconds of idle time and a 20-second probe
interval where the platform allows setting them.

## Wire format

Every message is one JSON object on one line:

```json
{"sendId":3,"recvId":0,"type":2,"clusterId":1,"sender":"alice","content":"hello"}
```

| field       | meaning                                    |
|-------------|--------------------------------------------|
| `sendId`    | id of the sending user (unsigned 64-bit)   |
| `recvId`    | id of the receiving user, or a cluster id  |
| `type`      | message type number (table below)          |
| `clusterId` | cluster the sender belongs to              |
| `sender`    | display name of the sender                 |
| `content`   | payload                                    |

All six fields are required. A line that is not valid JSON, lacks a field,
has a field of the wrong kind or carries an unknown type number is rejected.

### Message types and routing

| type | name                   | delivered to                                         |
|------|------------------------|------------------------------------------------------|
| 0    | MemberAuth             | first line only: log in as a cluster member          |
| 1    | LeaderAuth             | first line only: log in as a cluster leader          |
| 2    | Text                   | every connected client                               |
| 3    | AkeOne                 | the user `recvId` in cluster `clusterId`             |
| 4    | AkeTwo                 | the user `recvId` in cluster `clusterId`             |
| 5    | XiRiCommitment         | every client in cluster `clusterId`                  |
| 6    | Key                    | every client in cluster `clusterId`                  |
| 7    | LeadAkeOne             | the leader of cluster `recvId`                       |
| 8    | LeadAkeTwo             | the leader of cluster `recvId`                       |
| 9    | LeaderXiRiCommitment   | every leader                                         |
| 10   | QKDIDLeader            | the leader of cluster `recvId`                       |
| 11   | QKDIDMember            | every client in cluster `clusterId`                  |
| 12   | Ping                   | not forwarded; the router answers with a Pong        |
| 13   | Pong                   | the user `recvId` in cluster `clusterId`             |
| 14   | Err                    | not routed; sent by the router on errors             |

A message is never echoed back to the connection that sent it. The router's
Pong has `sendId` 0, `sender` `"pqgch-router"` and empty content, and is
addressed to the pinging client's user id and cluster id.

## Session behaviour

All connections share one session.

* The first line on a connection must be a MemberAuth or LeaderAuth message.
  Its `sendId` and `clusterId` identify the client. If the line is missing,
  malformed or of another type, the router writes an `Err` message with
  content `invalid auth` and closes the connection.
* After authentication, lines that are not valid messages are logged and
  ignored.
* Every message a client sends (other than Ping) is kept in the session
  history, whether or not it reached anyone. A client that joins later
  receives, in order, every earlier message that routes to it.
* Clients should send a Ping regularly. A client not heard from for more than
  30 seconds is disconnected; the check runs every 15 seconds.
* If an identity that has already joined the session joins again, every
  connected client receives `Err` with content
  `session terminated due to duplicate join`, all of them are disconnected,
  and the session starts afresh with the new client.
* When the last client leaves, the session and its history are cleared.

## Using it as a library

* `pqgchrouter.message` — `MessageType` (an `IntEnum` of the numbers above),
  `RouteType`, and `ChatMessage` with `route_type()`, `err(message)`,
  `to_dict()` / `from_dict(data)` and `to_json()` / `from_json(line)`.
  `to_json()` returns one compact line ending in a newline; `from_json` and
  `from_dict` raise `ValueError` on bad input.
* `pqgchrouter.routing` — `ClientKey(user_id, cluster_id, is_leader)`,
  `applies_route(app_msg, client)` and
  `route_message(app_msg, connections, sender_key)`, which calls the send
  callable of every matching connection and returns the keys it delivered to.
* `pqgchrouter.session` — `Session(timeout=30.0, clock=time.monotonic)` with
  `join(key, send, stop)`, `leave(key)`, `send_message(msg, sender_key)`,
  `ping(key)`, `expire()`, `reset()`, the `history` property and the
  coroutine `run_timeout_checker(interval=15.0)`. `send` receives JSON lines
  for a client and `stop` is called when the client is to be disconnected.
* `pqgchrouter.server` — `parse_auth(line)` (raises `AuthError`),
  `handle_conn(reader, writer, session)` for one asyncio stream connection,
  `serve(host, port)` to run the router inside an asyncio program, and
  `main(argv=None)` behind the `pqgch-router` command.

```python
from pqgchrouter.message import ChatMessage, MessageType
from pqgchrouter.routing import ClientKey
from pqgchrouter.session import Session

session = Session()
alice, bob = ClientKey(1, 7, False), ClientKey(2, 7, True)
session.join(alice, print, lambda: None)
session.join(bob, print, lambda: None)
session.send_message(ChatMessage(1, 0, MessageType.TEXT, 7, "alice", "hi"), alice)
# bob's send callable receives the Text line; alice's does not.
```

```python
import asyncio

from pqgchrouter.server import serve

asyncio.run(serve("127.0.0.1", 9000))
```

## Limits

The router keeps everything in memory: the session history is lost when the
process stops or the last client leaves. It does no encryption or
authentication beyond the role named in the first line; connections are plain
TCP.