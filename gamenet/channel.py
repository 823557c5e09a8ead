"""Channel configuration and the per-tick state shared by send channels."""

from __future__ import annotations

import enum
from dataclasses import dataclass

_DEFAULT_MAX_MEMORY_BYTES = 5 * 1024 * 1024
_DEFAULT_RESEND_TIME = 0.3


class SendType(enum.Enum):
    """Delivery guarantee of a channel."""

    # Messages can be lost or received out of order.
    UNRELIABLE = enum.auto()
    # Messages are guaranteed to arrive, in the order they were sent.
    RELIABLE_ORDERED = enum.auto()
    # Messages are guaranteed to arrive, possibly in a different order.
    RELIABLE_UNORDERED = enum.auto()

    @property
    def is_reliable(self) -> bool:
        return self is not SendType.UNRELIABLE


@dataclass(frozen=True)
class ChannelConfig:
    """Configuration of one channel of a server or client.

    ``channel_id`` must be unique within its own list. ``max_memory_usage_bytes``
    bounds the unacknowledged data the channel may hold. ``resend_time`` is the
    delay in seconds before a reliable message is sent again; unreliable channels
    ignore it.
    """

    channel_id: int
    max_memory_usage_bytes: int
    send_type: SendType
    resend_time: float = _DEFAULT_RESEND_TIME

    def __post_init__(self) -> None:
        if not 0 <= int(self.channel_id) <= 0xFF:
            raise ValueError(f"channel id {self.channel_id} does not fit in one byte")
        if self.max_memory_usage_bytes < 0:
            raise ValueError("max_memory_usage_bytes cannot be negative")
        if self.resend_time < 0:
            raise ValueError("resend_time cannot be negative")


class DefaultChannel(enum.IntEnum):
    """Channel ids of the default configuration."""

    UNRELIABLE = 0
    RELIABLE_UNORDERED = 1
    RELIABLE_ORDERED = 2

    @classmethod
    def config(cls) -> list[ChannelConfig]:
        """Return the default channels: unreliable, reliable unordered, reliable ordered."""
        return [
            ChannelConfig(
                channel_id=cls.UNRELIABLE,
                max_memory_usage_bytes=_DEFAULT_MAX_MEMORY_BYTES,
                send_type=SendType.UNRELIABLE,
            ),
            ChannelConfig(
                channel_id=cls.RELIABLE_UNORDERED,
                max_memory_usage_bytes=_DEFAULT_MAX_MEMORY_BYTES,
                send_type=SendType.RELIABLE_UNORDERED,
                resend_time=_DEFAULT_RESEND_TIME,
            ),
            ChannelConfig(
                channel_id=cls.RELIABLE_ORDERED,
                max_memory_usage_bytes=_DEFAULT_MAX_MEMORY_BYTES,
                send_type=SendType.RELIABLE_ORDERED,
                resend_time=_DEFAULT_RESEND_TIME,
            ),
        ]


@dataclass
class SendContext:
    """Packet sequence counter and byte budget shared by the channels in one tick."""

    available_bytes: int
    packet_sequence: int = 0

    def next_sequence(self) -> int:
        """Return the current packet sequence and advance it."""
        sequence = self.packet_sequence
        self.packet_sequence += 1
        return sequence