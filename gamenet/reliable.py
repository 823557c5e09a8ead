"""Reliable send and receive channels, ordered or unordered."""

from __future__ import annotations

from dataclasses import dataclass, field

from .channel import SendContext
from .errors import ChannelError, ChannelErrorKind
from .packet import SLICE_SIZE, Packet, ReliableSlice, Slice, SmallReliable, varint_len
from .slice_constructor import SliceConstructor


@dataclass
class _SmallMessage:
    message: bytes
    last_sent: float | None = None


@dataclass
class _SlicedMessage:
    message: bytes
    num_slices: int
    num_acked_slices: int = 0
    next_slice_to_send: int = 0
    acked: list[bool] = field(default_factory=list)
    last_sent: list[float | None] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: bytes) -> _SlicedMessage:
        num_slices = -(-len(payload) // SLICE_SIZE)
        return cls(
            message=payload,
            num_slices=num_slices,
            acked=[False] * num_slices,
            last_sent=[None] * num_slices,
        )


def _max_memory_error() -> ChannelError:
    return ChannelError(ChannelErrorKind.RELIABLE_CHANNEL_MAX_MEMORY_REACHED)


class SendChannelReliable:
    """Keeps messages until they are acknowledged, resending them periodically.

    ``resend_time`` and all time values are in seconds.
    """

    def __init__(self, channel_id: int, resend_time: float, max_memory_usage_bytes: int) -> None:
        self.channel_id = channel_id
        self.resend_time = resend_time
        self.max_memory_usage_bytes = max_memory_usage_bytes
        # Message ids are inserted in increasing order, so iteration is ordered by id.
        self._unacked: dict[int, _SmallMessage | _SlicedMessage] = {}
        self._next_message_id = 0
        self._memory_usage_bytes = 0

    def available_memory(self) -> int:
        """Return the number of bytes the channel can still hold."""
        return self.max_memory_usage_bytes - self._memory_usage_bytes

    def can_send_message(self, size_bytes: int) -> bool:
        """Return whether a message of ``size_bytes`` fits in the remaining memory."""
        return size_bytes + self._memory_usage_bytes <= self.max_memory_usage_bytes

    def _due(self, last_sent: float | None, current_time: float) -> bool:
        return last_sent is None or current_time - last_sent >= self.resend_time

    def get_packets_to_send(self, context: SendContext, current_time: float) -> list[Packet]:
        """Build packets for unacknowledged messages that are due to be (re)sent."""
        packets: list[Packet] = []
        small_messages: list[tuple[int, bytes]] = []
        small_messages_bytes = 0

        for message_id, unacked in self._unacked.items():
            if isinstance(unacked, _SmallMessage):
                size = len(unacked.message)
                if context.available_bytes < size:
                    continue
                if not self._due(unacked.last_sent, current_time):
                    continue

                context.available_bytes -= size
                serialized_size = size + varint_len(size) + varint_len(message_id)
                if small_messages_bytes + serialized_size > SLICE_SIZE:
                    packets.append(
                        SmallReliable(context.next_sequence(), self.channel_id, small_messages)
                    )
                    small_messages = []
                    small_messages_bytes = 0

                small_messages_bytes += serialized_size
                small_messages.append((message_id, unacked.message))
                unacked.last_sent = current_time
                continue

            start_index = unacked.next_slice_to_send
            for offset in range(unacked.num_slices):
                if context.available_bytes < SLICE_SIZE:
                    break

                index = (start_index + offset) % unacked.num_slices
                if unacked.acked[index]:
                    continue
                if not self._due(unacked.last_sent[index], current_time):
                    continue

                start = index * SLICE_SIZE
                payload = unacked.message[start:start + SLICE_SIZE]
                context.available_bytes -= len(payload)

                piece = Slice(
                    message_id=message_id,
                    slice_index=index,
                    num_slices=unacked.num_slices,
                    payload=payload,
                )
                packets.append(ReliableSlice(context.next_sequence(), self.channel_id, piece))
                unacked.last_sent[index] = current_time
                unacked.next_slice_to_send = (index + 1) % unacked.num_slices

        if small_messages:
            packets.append(SmallReliable(context.next_sequence(), self.channel_id, small_messages))

        return packets

    def send_message(self, message: bytes) -> None:
        """Queue a message; raise ChannelError if the channel memory would be exceeded."""
        message = bytes(message)
        if self._memory_usage_bytes + len(message) > self.max_memory_usage_bytes:
            raise _max_memory_error()

        self._memory_usage_bytes += len(message)
        if len(message) > SLICE_SIZE:
            unacked: _SmallMessage | _SlicedMessage = _SlicedMessage.from_payload(message)
        else:
            unacked = _SmallMessage(message)

        self._unacked[self._next_message_id] = unacked
        self._next_message_id += 1

    def process_message_ack(self, message_id: int) -> None:
        """Forget a small message that the peer acknowledged."""
        unacked = self._unacked.get(message_id)
        if unacked is None:
            return
        if not isinstance(unacked, _SmallMessage):
            raise RuntimeError(f"message {message_id} is sliced, not small")
        del self._unacked[message_id]
        self._memory_usage_bytes -= len(unacked.message)

    def process_slice_message_ack(self, message_id: int, slice_index: int) -> None:
        """Mark one slice as acknowledged; forget the message once all slices are."""
        unacked = self._unacked.get(message_id)
        if unacked is None:
            return
        if not isinstance(unacked, _SlicedMessage):
            raise RuntimeError(f"message {message_id} is small, not sliced")

        if unacked.acked[slice_index]:
            return
        unacked.acked[slice_index] = True
        unacked.num_acked_slices += 1

        if unacked.num_acked_slices == unacked.num_slices:
            self._memory_usage_bytes -= len(unacked.message)
            del self._unacked[message_id]


class ReceiveChannelReliable:
    """Collects reliable messages and hands them out, in order or as they arrive."""

    def __init__(self, max_memory_usage_bytes: int, ordered: bool) -> None:
        self.max_memory_usage_bytes = max_memory_usage_bytes
        self.ordered = ordered
        self.most_recent_message_id = 0
        self._received_ids: set[int] = set()
        self._slices: dict[int, SliceConstructor] = {}
        self._messages: dict[int, bytes] = {}
        self._oldest_pending_message_id = 0
        self._memory_usage_bytes = 0

    @property
    def pending_received_ids(self) -> frozenset[int]:
        """Ids received out of order that are still tracked (unordered channels)."""
        return frozenset(self._received_ids)

    def _reserve(self, size: int) -> None:
        if self._memory_usage_bytes + size > self.max_memory_usage_bytes:
            raise _max_memory_error()
        self._memory_usage_bytes += size

    def process_message(self, message: bytes, message_id: int) -> None:
        """Store a received message; raise ChannelError when memory is exhausted."""
        if message_id < self._oldest_pending_message_id:
            # Already received and delivered.
            return

        message = bytes(message)
        if self.ordered:
            if message_id not in self._messages:
                self._reserve(len(message))
                self._messages[message_id] = message
            return

        if self.most_recent_message_id < message_id:
            self.most_recent_message_id = message_id

        if message_id not in self._received_ids:
            self._reserve(len(message))
            self._received_ids.add(message_id)
            self._messages[message_id] = message

    def process_slice(self, slice: Slice) -> None:
        """Add a slice of a message; raise ChannelError on bad slices or exhausted memory."""
        if slice.message_id in self._messages or slice.message_id < self._oldest_pending_message_id:
            # Message already assembled.
            return

        constructor = self._slices.get(slice.message_id)
        if constructor is None:
            self._reserve(slice.num_slices * SLICE_SIZE)
            constructor = SliceConstructor(slice.message_id, slice.num_slices)
            self._slices[slice.message_id] = constructor

        message = constructor.process_slice(slice.slice_index, slice.payload)
        if message is None:
            return

        # Memory is accounted again with the exact message size.
        self._memory_usage_bytes -= constructor.num_slices * SLICE_SIZE
        del self._slices[slice.message_id]
        self.process_message(message, slice.message_id)

    def receive_message(self) -> bytes | None:
        """Return the next deliverable message, or None if there is none."""
        if self.ordered:
            message = self._messages.pop(self._oldest_pending_message_id, None)
            if message is None:
                return None
            self._oldest_pending_message_id += 1
            self._memory_usage_bytes -= len(message)
            return message

        if not self._messages:
            return None
        message_id = min(self._messages)
        message = self._messages.pop(message_id)

        if message_id == self._oldest_pending_message_id:
            # Advance past every id that already arrived out of order.
            while self._oldest_pending_message_id in self._received_ids:
                self._received_ids.remove(self._oldest_pending_message_id)
                self._oldest_pending_message_id += 1

        self._memory_usage_bytes -= len(message)
        return message