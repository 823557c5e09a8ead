"""Server side: one connection per client plus connection events."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

from .client_id import ClientId
from .connection import Client, ConnectionConfig, NetworkInfo
from .errors import ClientNotFound, DisconnectKind, DisconnectReason

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientConnected:
    """A client was added to the server."""

    client_id: ClientId


@dataclass(frozen=True)
class ClientDisconnected:
    """A client was removed from the server."""

    client_id: ClientId
    reason: DisconnectReason


ServerEvent = ClientConnected | ClientDisconnected


class Server:
    """Holds a connection for every client and queues connection events."""

    def __init__(self, connection_config: ConnectionConfig | None = None) -> None:
        self.connection_config = (
            connection_config if connection_config is not None else ConnectionConfig()
        )
        self._connections: dict[ClientId, Client] = {}
        self._events: deque[ServerEvent] = deque()

    def add_connection(self, client_id: ClientId) -> None:
        """Add a connected client; does nothing if it already exists."""
        if client_id in self._connections:
            return
        connection = Client.from_server(self.connection_config)
        connection.set_connected()
        self._connections[client_id] = connection
        self._events.append(ClientConnected(client_id))

    def get_event(self) -> ServerEvent | None:
        """Return the oldest pending event, or None."""
        return self._events.popleft() if self._events else None

    def has_connections(self) -> bool:
        return bool(self._connections)

    def disconnect_reason(self, client_id: ClientId) -> DisconnectReason | None:
        """Return why the client disconnected, or None."""
        connection = self._connections.get(client_id)
        return connection.disconnect_reason() if connection is not None else None

    def rtt(self, client_id: ClientId) -> float:
        """Return the round-trip time of the client, 0.0 if unknown."""
        connection = self._connections.get(client_id)
        return connection.rtt() if connection is not None else 0.0

    def packet_loss(self, client_id: ClientId) -> float:
        """Return the packet loss of the client, 0.0 if unknown."""
        connection = self._connections.get(client_id)
        return connection.packet_loss() if connection is not None else 0.0

    def bytes_sent_per_sec(self, client_id: ClientId) -> float:
        """Return the bytes sent per second to the client, 0.0 if unknown."""
        connection = self._connections.get(client_id)
        return connection.bytes_sent_per_sec() if connection is not None else 0.0

    def bytes_received_per_sec(self, client_id: ClientId) -> float:
        """Return the bytes received per second from the client, 0.0 if unknown."""
        connection = self._connections.get(client_id)
        return connection.bytes_received_per_sec() if connection is not None else 0.0

    def _connection(self, client_id: ClientId) -> Client:
        connection = self._connections.get(client_id)
        if connection is None:
            raise ClientNotFound()
        return connection

    def network_info(self, client_id: ClientId) -> NetworkInfo:
        """Return all statistics of the client; raise ClientNotFound if unknown."""
        return self._connection(client_id).network_info()

    def remove_connection(self, client_id: ClientId) -> None:
        """Remove a client and emit a disconnection event; does nothing if unknown."""
        connection = self._connections.pop(client_id, None)
        if connection is None:
            return
        reason = connection.disconnect_reason() or DisconnectReason(DisconnectKind.TRANSPORT)
        self._events.append(ClientDisconnected(client_id, reason))

    def disconnect(self, client_id: ClientId) -> None:
        """Disconnect a client; does nothing if unknown."""
        connection = self._connections.get(client_id)
        if connection is not None:
            connection.disconnect_with_reason(
                DisconnectReason(DisconnectKind.DISCONNECTED_BY_SERVER)
            )

    def disconnect_all(self) -> None:
        """Disconnect every client."""
        for connection in self._connections.values():
            connection.disconnect_with_reason(
                DisconnectReason(DisconnectKind.DISCONNECTED_BY_SERVER)
            )

    def broadcast_message(self, channel_id: int, message: bytes) -> None:
        """Send a message to every client over a channel."""
        message = bytes(message)
        for connection in self._connections.values():
            connection.send_message(channel_id, message)

    def broadcast_message_except(
        self, except_id: ClientId, channel_id: int, message: bytes
    ) -> None:
        """Send a message to every client but one over a channel."""
        message = bytes(message)
        for client_id, connection in self._connections.items():
            if client_id != except_id:
                connection.send_message(channel_id, message)

    def channel_available_memory(self, client_id: ClientId, channel_id: int) -> int:
        """Return the free memory of a client's channel, 0 if the client is unknown."""
        connection = self._connections.get(client_id)
        return connection.channel_available_memory(channel_id) if connection is not None else 0

    def can_send_message(self, client_id: ClientId, channel_id: int, size_bytes: int) -> bool:
        """Return whether a message fits in a client's channel, False if unknown."""
        connection = self._connections.get(client_id)
        if connection is None:
            return False
        return connection.can_send_message(channel_id, size_bytes)

    def send_message(self, client_id: ClientId, channel_id: int, message: bytes) -> None:
        """Send a message to one client over a channel."""
        connection = self._connections.get(client_id)
        if connection is None:
            _log.error("Tried to send a message to invalid client %s", client_id)
            return
        connection.send_message(channel_id, message)

    def receive_message(self, client_id: ClientId, channel_id: int) -> bytes | None:
        """Return the next message from a client on a channel, or None."""
        connection = self._connections.get(client_id)
        return connection.receive_message(channel_id) if connection is not None else None

    def iter_client_ids(self) -> Iterator[ClientId]:
        """Iterate over the ids of connected clients."""
        return (cid for cid, c in self._connections.items() if c.is_connected())

    def clients_id(self) -> list[ClientId]:
        """Return the ids of connected clients."""
        return list(self.iter_client_ids())

    def iter_disconnection_ids(self) -> Iterator[ClientId]:
        """Iterate over the ids of disconnected clients."""
        return (cid for cid, c in self._connections.items() if c.is_disconnected())

    def disconnections_id(self) -> list[ClientId]:
        """Return the ids of disconnected clients."""
        return list(self.iter_disconnection_ids())

    def connected_clients(self) -> int:
        """Return the number of connected clients."""
        return sum(1 for _ in self.iter_client_ids())

    def is_connected(self, client_id: ClientId) -> bool:
        connection = self._connections.get(client_id)
        return connection is not None and connection.is_connected()

    def update(self, duration: float) -> None:
        """Advance every connection by ``duration`` seconds."""
        for connection in self._connections.values():
            connection.update(duration)

    def get_packets_to_send(self, client_id: ClientId) -> list[bytes]:
        """Return the packets due for a client; raise ClientNotFound if unknown."""
        return self._connection(client_id).get_packets_to_send()

    def process_packet_from(self, payload: bytes, client_id: ClientId) -> None:
        """Handle a packet from a client; raise ClientNotFound if unknown."""
        self._connection(client_id).process_packet(payload)