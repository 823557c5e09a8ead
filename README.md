# gamenet

A transport-independent networking layer for games. It turns messages into
packets and back, over channels with different delivery guarantees:

- **unreliable**: messages may be lost or arrive out of order;
- **reliable ordered**: every message arrives, in the order it was sent;
- **reliable unordered**: every message arrives, in any order.

Messages larger than 1200 bytes (`gamenet.packet.SLICE_SIZE`) are split into
slices and put back together on the other side. Packets carry
acknowledgements, so a connection tracks its round-trip time, packet loss and
bandwidth.

## Installation

```
pip install gamenet
```

Python 3.10 or later is required. The package has no dependencies.

## Usage

```python
from gamenet.channel import DefaultChannel
from gamenet.client_id import ClientId
from gamenet.connection import Client, ConnectionConfig
from gamenet.server import ClientConnected, Server

server = Server(ConnectionConfig())
client = Client(ConnectionConfig())

client_id = ClientId.from_raw(1)
server.add_connection(client_id)          # your transport calls this
assert isinstance(server.get_event(), ClientConnected)

server.send_message(client_id, DefaultChannel.RELIABLE_ORDERED, b"hello")

# Every tick: collect packets and move them over your transport.
for packet in server.get_packets_to_send(client_id):
    client.process_packet(packet)

print(client.receive_message(DefaultChannel.RELIABLE_ORDERED))  # b'hello'
```

In the other direction, `client.get_packets_to_send()` returns the packets for
the server, which you pass to `server.process_packet_from(payload, client_id)`.

Call `update(duration)` on the client and on the server once per tick, with
the time that has passed in seconds. Reliable messages that have not been
acknowledged are sent again once the channel's resend time (0.3 seconds by
default) has passed. Records of sent packets that were never acknowledged are
dropped after 3 seconds, and so are unreliable sliced messages whose slices
stopped arriving.

### Channels

`DefaultChannel.config()` returns the three default channels: `UNRELIABLE`
(id 0), `RELIABLE_UNORDERED` (id 1) and `RELIABLE_ORDERED` (id 2), each
limited to 5 MiB. To define your own, pass lists of `ChannelConfig` values as
`client_channels_config` and `server_channels_config` of `ConnectionConfig`.
Each channel has an id (0 to 255, unique within its list), a memory limit, a
`SendType` and, for reliable channels, a `resend_time`. The order of a list
sets the priority of its channels when the `available_bytes_per_tick` budget
(60 000 by default) is handed out.

An unreliable channel that is out of memory drops new messages. A reliable
channel that is out of memory disconnects the connection.

### Server

`Server` keeps one connection per `ClientId`. `add_connection` and
`remove_connection` queue `ClientConnected` and `ClientDisconnected` events,
read with `get_event()`. `broadcast_message` and `broadcast_message_except`
send to several clients at once; `clients_id()` and `disconnections_id()` list
connected and disconnected clients. `network_info`, `get_packets_to_send` and
`process_packet_from` raise `ClientNotFound` for an unknown client; the other
per-client methods return a neutral value (`None`, `0`, `0.0` or `False`).

### Disconnections

When a connection fails, for example because a packet cannot be decoded, a
packet names an unknown channel, or a reliable channel runs out of memory, it
becomes disconnected rather than raising. `Client.disconnect_reason()` then
returns a `DisconnectReason` whose `kind` is a `DisconnectKind`, with the
channel id and error where they apply. `Server.remove_connection` reports that
reason in the `ClientDisconnected` event, or `DisconnectKind.TRANSPORT` if the
connection had not failed. Using a channel id that is not configured is a
programming error and raises `ValueError`.

### Statistics

`Client.network_info()` and `Server.network_info(client_id)` return a
`NetworkInfo` with the round-trip time in seconds, the packet loss as a
fraction, and the bytes sent and received per second, measured over a
6 second window.

### Packet format

`gamenet.packet.encode_packet` and `decode_packet` convert the packet types
(`SmallReliable`, `SmallUnreliable`, `ReliableSlice`, `UnreliableSlice`,
`Ack`) to and from bytes. Malformed input raises `SerializationError`.

## What gamenet does not do

gamenet does not open sockets or send anything over the network. It has no
connection handshake, authentication or encryption, and no command-line
program. You move the bytes yourself, over UDP or any other transport, and
tell the client and server when a peer connects or goes away.

## Running the tests

```
pip install -e .[test]
pytest
```