"""Error types raised and reported by connections, channels and packets."""

from __future__ import annotations

import enum
from dataclasses import dataclass

# Same value as ``packet.SLICE_SIZE``; repeated here so this module has no imports.
_SLICE_SIZE = 1200


class SerializationErrorKind(enum.Enum):
    """Reasons a packet could not be written or read."""

    BUFFER_TOO_SHORT = enum.auto()
    INVALID_NUM_SLICES = enum.auto()
    SLICE_SIZE_ABOVE_LIMIT = enum.auto()
    EMPTY_SLICE = enum.auto()
    INVALID_ACK_RANGE = enum.auto()
    INVALID_PACKET_TYPE = enum.auto()


_SERIALIZATION_MESSAGES = {
    SerializationErrorKind.BUFFER_TOO_SHORT: "buffer too short",
    SerializationErrorKind.INVALID_NUM_SLICES: "invalid number of slices",
    SerializationErrorKind.INVALID_ACK_RANGE: "invalid ack range",
    SerializationErrorKind.INVALID_PACKET_TYPE: "invalid packet type",
    SerializationErrorKind.SLICE_SIZE_ABOVE_LIMIT: (
        f"invalid slice size, it's above the limit of {_SLICE_SIZE} bytes"
    ),
    SerializationErrorKind.EMPTY_SLICE: "invalid slice, slices cannot be empty",
}


class SerializationError(ValueError):
    """A packet could not be serialized or deserialized."""

    def __init__(self, kind: SerializationErrorKind) -> None:
        super().__init__(kind)
        self.kind = kind

    def __str__(self) -> str:
        return _SERIALIZATION_MESSAGES[self.kind]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SerializationError):
            return NotImplemented
        return self.kind is other.kind

    def __hash__(self) -> int:
        return hash((SerializationError, self.kind))


class ChannelErrorKind(enum.Enum):
    """Errors that can occur inside a channel."""

    RELIABLE_CHANNEL_MAX_MEMORY_REACHED = enum.auto()
    INVALID_SLICE_MESSAGE = enum.auto()


_CHANNEL_MESSAGES = {
    ChannelErrorKind.RELIABLE_CHANNEL_MAX_MEMORY_REACHED: "reliable channel memory usage was exausted",
    ChannelErrorKind.INVALID_SLICE_MESSAGE: "received an invalid slice packet",
}


class ChannelError(Exception):
    """A channel reached an unrecoverable state."""

    def __init__(self, kind: ChannelErrorKind) -> None:
        super().__init__(kind)
        self.kind = kind

    def __str__(self) -> str:
        return _CHANNEL_MESSAGES[self.kind]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChannelError):
            return NotImplemented
        return self.kind is other.kind

    def __hash__(self) -> int:
        return hash((ChannelError, self.kind))


class DisconnectKind(enum.Enum):
    """Possible causes of a disconnection."""

    TRANSPORT = enum.auto()
    DISCONNECTED_BY_CLIENT = enum.auto()
    DISCONNECTED_BY_SERVER = enum.auto()
    PACKET_SERIALIZATION = enum.auto()
    PACKET_DESERIALIZATION = enum.auto()
    RECEIVED_INVALID_CHANNEL_ID = enum.auto()
    SEND_CHANNEL_ERROR = enum.auto()
    RECEIVE_CHANNEL_ERROR = enum.auto()


_SERIALIZATION_KINDS = {DisconnectKind.PACKET_SERIALIZATION, DisconnectKind.PACKET_DESERIALIZATION}
_CHANNEL_ERROR_KINDS = {DisconnectKind.SEND_CHANNEL_ERROR, DisconnectKind.RECEIVE_CHANNEL_ERROR}
_CHANNEL_ID_KINDS = _CHANNEL_ERROR_KINDS | {DisconnectKind.RECEIVED_INVALID_CHANNEL_ID}


@dataclass(frozen=True)
class DisconnectReason:
    """Why a connection ended, with the channel and error involved where relevant."""

    kind: DisconnectKind
    channel_id: int | None = None
    error: SerializationError | ChannelError | None = None

    def __post_init__(self) -> None:
        if self.kind in _CHANNEL_ID_KINDS and self.channel_id is None:
            raise ValueError(f"{self.kind.name} requires a channel id")
        if self.kind in _SERIALIZATION_KINDS and not isinstance(self.error, SerializationError):
            raise ValueError(f"{self.kind.name} requires a SerializationError")
        if self.kind in _CHANNEL_ERROR_KINDS and not isinstance(self.error, ChannelError):
            raise ValueError(f"{self.kind.name} requires a ChannelError")

    def __str__(self) -> str:
        kind = self.kind
        if kind is DisconnectKind.TRANSPORT:
            return "connection terminated by the transport layer"
        if kind is DisconnectKind.DISCONNECTED_BY_CLIENT:
            return "connection terminated by the client"
        if kind is DisconnectKind.DISCONNECTED_BY_SERVER:
            return "connection terminated by the server"
        if kind is DisconnectKind.PACKET_SERIALIZATION:
            return f"failed to serialize packet: {self.error}"
        if kind is DisconnectKind.PACKET_DESERIALIZATION:
            return f"failed to deserialize packet: {self.error}"
        if kind is DisconnectKind.RECEIVED_INVALID_CHANNEL_ID:
            return f"received message with invalid channel {self.channel_id}"
        if kind is DisconnectKind.SEND_CHANNEL_ERROR:
            return f"send channel {self.channel_id} with error: {self.error}"
        return f"receive channel {self.channel_id} with error: {self.error}"


class ClientNotFound(LookupError):
    """No client exists with the given id."""

    def __init__(self) -> None:
        super().__init__("client with given id was not found")