"""A connection endpoint: channels, packet sequencing, acknowledgements and stats."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field, replace

from .channel import ChannelConfig, DefaultChannel, SendContext, SendType
from .connection_stats import ConnectionStats
from .errors import ChannelError, DisconnectKind, DisconnectReason, SerializationError
from .packet import (
    Ack,
    Packet,
    ReliableSlice,
    SmallReliable,
    SmallUnreliable,
    UnreliableSlice,
    decode_packet,
    encode_packet,
)
from .pending_acks import PendingAcks
from .reliable import ReceiveChannelReliable, SendChannelReliable
from .unreliable import ReceiveChannelUnreliable, SendChannelUnreliable

# Sent packets not acknowledged within this many seconds are considered lost.
_DISCARD_AFTER = 3.0
# Weight of a new sample in the smoothed round-trip time.
_RTT_SMOOTHING = 0.125


@dataclass
class ConnectionConfig:
    """Configuration of a connection and its channels.

    ``available_bytes_per_tick`` is the message budget of each call to
    ``get_packets_to_send``; at 60 Hz the default is 28.8 Mbps. The order of each
    channel list sets the priority of the channels when building packets.
    """

    available_bytes_per_tick: int = 60_000
    server_channels_config: list[ChannelConfig] = field(default_factory=DefaultChannel.config)
    client_channels_config: list[ChannelConfig] = field(default_factory=DefaultChannel.config)


@dataclass(frozen=True)
class NetworkInfo:
    """Statistics of a connection."""

    rtt: float
    packet_loss: float
    bytes_sent_per_second: float
    bytes_received_per_second: float


class ConnectionStatus(enum.Enum):
    """State of a connection."""

    CONNECTED = enum.auto()
    CONNECTING = enum.auto()
    DISCONNECTED = enum.auto()


@dataclass(frozen=True)
class _ReliableMessagesSent:
    channel_id: int
    message_ids: tuple[int, ...]


@dataclass(frozen=True)
class _ReliableSliceSent:
    channel_id: int
    message_id: int
    slice_index: int


@dataclass(frozen=True)
class _AckSent:
    largest_acked_packet: int


_SentInfo = _ReliableMessagesSent | _ReliableSliceSent | _AckSent | None


@dataclass(frozen=True)
class _PacketSent:
    sent_at: float
    info: _SentInfo


def _invalid_channel(operation: str, channel_id: int) -> ValueError:
    return ValueError(f"Called '{operation}' with invalid channel {channel_id}")


class Client:
    """One side of a connection; times are in seconds.

    Built from a config it sends on the client channels and receives on the
    server channels; ``from_server`` builds the opposite side.
    """

    def __init__(self, config: ConnectionConfig | None = None) -> None:
        config = config if config is not None else ConnectionConfig()
        self.available_bytes_per_tick = config.available_bytes_per_tick
        self._packet_sequence = 0
        self._current_time = 0.0
        # Sequences are inserted in increasing order, so iteration is ordered.
        self._sent_packets: dict[int, _PacketSent] = {}
        self._pending_acks = PendingAcks()
        self._stats = ConnectionStats()
        self._rtt = 0.0
        self._status = ConnectionStatus.CONNECTING
        self._disconnect_reason: DisconnectReason | None = None

        self._send_order: list[SendChannelReliable | SendChannelUnreliable] = []
        self._send_reliable: dict[int, SendChannelReliable] = {}
        self._send_unreliable: dict[int, SendChannelUnreliable] = {}
        for channel_config in config.client_channels_config:
            channel_id = int(channel_config.channel_id)
            if channel_id in self._send_reliable or channel_id in self._send_unreliable:
                raise ValueError(f"already exists send channel {channel_id}")
            if channel_config.send_type is SendType.UNRELIABLE:
                channel: SendChannelReliable | SendChannelUnreliable = SendChannelUnreliable(
                    channel_id, channel_config.max_memory_usage_bytes
                )
                self._send_unreliable[channel_id] = channel
            else:
                channel = SendChannelReliable(
                    channel_id, channel_config.resend_time, channel_config.max_memory_usage_bytes
                )
                self._send_reliable[channel_id] = channel
            self._send_order.append(channel)

        self._receive_reliable: dict[int, ReceiveChannelReliable] = {}
        self._receive_unreliable: dict[int, ReceiveChannelUnreliable] = {}
        for channel_config in config.server_channels_config:
            channel_id = int(channel_config.channel_id)
            if channel_id in self._receive_reliable or channel_id in self._receive_unreliable:
                raise ValueError(f"already exists receive channel {channel_id}")
            if channel_config.send_type is SendType.UNRELIABLE:
                self._receive_unreliable[channel_id] = ReceiveChannelUnreliable(
                    channel_id, channel_config.max_memory_usage_bytes
                )
            else:
                self._receive_reliable[channel_id] = ReceiveChannelReliable(
                    channel_config.max_memory_usage_bytes,
                    ordered=channel_config.send_type is SendType.RELIABLE_ORDERED,
                )

    @classmethod
    def from_server(cls, config: ConnectionConfig) -> Client:
        """Build the server side: send on server channels, receive on client channels."""
        return cls(
            replace(
                config,
                server_channels_config=config.client_channels_config,
                client_channels_config=config.server_channels_config,
            )
        )

    def rtt(self) -> float:
        """Return the smoothed round-trip time in seconds."""
        return self._rtt

    def packet_loss(self) -> float:
        """Return the fraction of packets lost."""
        return self._stats.packet_loss()

    def bytes_sent_per_sec(self) -> float:
        """Return the bytes sent per second."""
        return self._stats.bytes_sent_per_second(self._current_time)

    def bytes_received_per_sec(self) -> float:
        """Return the bytes received per second."""
        return self._stats.bytes_received_per_second(self._current_time)

    def network_info(self) -> NetworkInfo:
        """Return all statistics of the connection."""
        return NetworkInfo(
            rtt=self._rtt,
            packet_loss=self.packet_loss(),
            bytes_sent_per_second=self.bytes_sent_per_sec(),
            bytes_received_per_second=self.bytes_received_per_sec(),
        )

    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    def is_connecting(self) -> bool:
        return self._status is ConnectionStatus.CONNECTING

    def is_disconnected(self) -> bool:
        return self._status is ConnectionStatus.DISCONNECTED

    def disconnect_reason(self) -> DisconnectReason | None:
        """Return why the connection ended, or None while it is alive."""
        return self._disconnect_reason

    def set_connected(self) -> None:
        """Mark as connected; a disconnected client stays disconnected."""
        if not self.is_disconnected():
            self._status = ConnectionStatus.CONNECTED

    def set_connecting(self) -> None:
        """Mark as connecting; a disconnected client stays disconnected."""
        if not self.is_disconnected():
            self._status = ConnectionStatus.CONNECTING

    def disconnect(self) -> None:
        """Disconnect by the client's own request."""
        self.disconnect_with_reason(DisconnectReason(DisconnectKind.DISCONNECTED_BY_CLIENT))

    def disconnect_due_to_transport(self) -> None:
        """Disconnect because the transport layer failed."""
        self.disconnect_with_reason(DisconnectReason(DisconnectKind.TRANSPORT))

    def disconnect_with_reason(self, reason: DisconnectReason) -> None:
        """Disconnect with ``reason``; the first reason recorded is kept."""
        if not self.is_disconnected():
            self._status = ConnectionStatus.DISCONNECTED
            self._disconnect_reason = reason

    def channel_available_memory(self, channel_id: int) -> int:
        """Return the free memory in bytes of a send channel."""
        channel_id = int(channel_id)
        channel = self._send_reliable.get(channel_id) or self._send_unreliable.get(channel_id)
        if channel is None:
            raise _invalid_channel("channel_available_memory", channel_id)
        return channel.available_memory()

    def can_send_message(self, channel_id: int, size_bytes: int) -> bool:
        """Return whether a message of ``size_bytes`` fits in a send channel."""
        channel_id = int(channel_id)
        channel = self._send_reliable.get(channel_id) or self._send_unreliable.get(channel_id)
        if channel is None:
            raise _invalid_channel("can_send_message", channel_id)
        return channel.can_send_message(size_bytes)

    def send_message(self, channel_id: int, message: bytes) -> None:
        """Queue a message on a channel; does nothing once disconnected."""
        if self.is_disconnected():
            return
        channel_id = int(channel_id)
        reliable = self._send_reliable.get(channel_id)
        if reliable is not None:
            try:
                reliable.send_message(message)
            except ChannelError as error:
                self.disconnect_with_reason(
                    DisconnectReason(DisconnectKind.SEND_CHANNEL_ERROR, channel_id, error)
                )
            return
        unreliable = self._send_unreliable.get(channel_id)
        if unreliable is None:
            raise _invalid_channel("send_message", channel_id)
        unreliable.send_message(message)

    def receive_message(self, channel_id: int) -> bytes | None:
        """Return the next message of a channel, or None."""
        if self.is_disconnected():
            return None
        channel_id = int(channel_id)
        channel = self._receive_reliable.get(channel_id) or self._receive_unreliable.get(channel_id)
        if channel is None:
            raise _invalid_channel("receive_message", channel_id)
        return channel.receive_message()

    def update(self, duration: float) -> None:
        """Advance the connection clock by ``duration`` seconds."""
        self._current_time += duration
        self._stats.update(self._current_time)

        for channel in self._receive_unreliable.values():
            channel.discard_incomplete_old_slices(self._current_time)

        lost: list[int] = []
        for sequence, sent in self._sent_packets.items():
            if self._current_time - sent.sent_at >= _DISCARD_AFTER:
                lost.append(sequence)
            else:
                # Later packets were sent after this one, so they are not lost either.
                break
        for sequence in lost:
            del self._sent_packets[sequence]

    def process_packet(self, packet: bytes) -> None:
        """Handle a packet received from the peer."""
        if self.is_disconnected():
            return

        self._stats.received_packet(len(packet))
        try:
            decoded = decode_packet(packet)
        except SerializationError as error:
            self.disconnect_with_reason(
                DisconnectReason(DisconnectKind.PACKET_DESERIALIZATION, error=error)
            )
            return

        self._pending_acks.add(decoded.sequence)

        if isinstance(decoded, Ack):
            self._process_acks(decoded.ack_ranges)
            return

        channel_id = decoded.channel_id
        reliable = isinstance(decoded, (SmallReliable, ReliableSlice))
        channels = self._receive_reliable if reliable else self._receive_unreliable
        channel = channels.get(channel_id)
        if channel is None:
            self.disconnect_with_reason(
                DisconnectReason(DisconnectKind.RECEIVED_INVALID_CHANNEL_ID, channel_id)
            )
            return

        try:
            match decoded:
                case SmallReliable(messages=messages):
                    for message_id, message in messages:
                        channel.process_message(message, message_id)
                case SmallUnreliable(messages=messages):
                    for message in messages:
                        channel.process_message(message)
                case ReliableSlice(slice=piece):
                    channel.process_slice(piece)
                case UnreliableSlice(slice=piece):
                    channel.process_slice(piece, self._current_time)
        except ChannelError as error:
            self.disconnect_with_reason(
                DisconnectReason(DisconnectKind.RECEIVE_CHANNEL_ERROR, channel_id, error)
            )

    def _process_acks(self, ack_ranges: list[range]) -> None:
        # Only look at packets actually in flight, whatever the size of the ranges.
        new_acks = [
            sequence
            for sequence in self._sent_packets
            if any(sequence in ack_range for ack_range in ack_ranges)
        ]

        for sequence in new_acks:
            sent = self._sent_packets.pop(sequence)
            self._stats.acked_packet(sent.sent_at, self._current_time)

            sample = self._current_time - sent.sent_at
            if self._rtt < sys.float_info.epsilon:
                self._rtt = sample
            else:
                self._rtt = self._rtt * (1 - _RTT_SMOOTHING) + sample * _RTT_SMOOTHING

            match sent.info:
                case _ReliableMessagesSent(channel_id=channel_id, message_ids=message_ids):
                    channel = self._send_reliable[channel_id]
                    for message_id in message_ids:
                        channel.process_message_ack(message_id)
                case _ReliableSliceSent(
                    channel_id=channel_id, message_id=message_id, slice_index=slice_index
                ):
                    self._send_reliable[channel_id].process_slice_message_ack(
                        message_id, slice_index
                    )
                case _AckSent(largest_acked_packet=largest):
                    self._pending_acks.acknowledge_up_to(largest)

    def get_packets_to_send(self) -> list[bytes]:
        """Build and serialize the packets due this tick."""
        if self.is_disconnected():
            return []

        context = SendContext(
            available_bytes=self.available_bytes_per_tick,
            packet_sequence=self._packet_sequence,
        )
        packets: list[Packet] = []
        for channel in self._send_order:
            if isinstance(channel, SendChannelReliable):
                packets.extend(channel.get_packets_to_send(context, self._current_time))
            else:
                packets.extend(channel.get_packets_to_send(context))

        if len(self._pending_acks):
            packets.append(Ack(context.next_sequence(), list(self._pending_acks)))
        self._packet_sequence = context.packet_sequence

        sent_at = self._current_time
        for packet in packets:
            self._sent_packets[packet.sequence] = _PacketSent(sent_at, self._sent_info(packet))

        serialized: list[bytes] = []
        for packet in packets:
            try:
                serialized.append(encode_packet(packet))
            except SerializationError as error:
                self.disconnect_with_reason(
                    DisconnectReason(DisconnectKind.PACKET_SERIALIZATION, error=error)
                )
                return []

        self._stats.sent_packets(len(serialized), sum(map(len, serialized)))
        return serialized

    @staticmethod
    def _sent_info(packet: Packet) -> _SentInfo:
        match packet:
            case SmallReliable(channel_id=channel_id, messages=messages):
                return _ReliableMessagesSent(channel_id, tuple(mid for mid, _ in messages))
            case ReliableSlice(channel_id=channel_id, slice=piece):
                return _ReliableSliceSent(channel_id, piece.message_id, piece.slice_index)
            case Ack(ack_ranges=ack_ranges):
                return _AckSent(ack_ranges[-1].stop - 1)
        return None