"""Unreliable send and receive channels."""

from __future__ import annotations

import logging
from collections import deque

from .channel import SendContext
from .packet import SLICE_SIZE, Packet, Slice, SmallUnreliable, UnreliableSlice, varint_len
from .slice_constructor import SliceConstructor

_log = logging.getLogger(__name__)

# Incomplete sliced messages are discarded after this many seconds.
_DISCARD_AFTER = 3.0
_MANY_FRAGMENTS = 20


class SendChannelUnreliable:
    """Queues messages and emits them once, dropping what does not fit."""

    def __init__(self, channel_id: int, max_memory_usage_bytes: int) -> None:
        self.channel_id = channel_id
        self.max_memory_usage_bytes = max_memory_usage_bytes
        self._messages: deque[bytes] = deque()
        self._sliced_message_id = 0
        self._memory_usage_bytes = 0

    def can_send_message(self, size_bytes: int) -> bool:
        """Return whether a message of ``size_bytes`` fits in the remaining memory."""
        return size_bytes + self._memory_usage_bytes <= self.max_memory_usage_bytes

    def available_memory(self) -> int:
        """Return the number of bytes the channel can still hold."""
        return self.max_memory_usage_bytes - self._memory_usage_bytes

    def get_packets_to_send(self, context: SendContext) -> list[Packet]:
        """Drain the queue into packets, dropping messages beyond the byte budget."""
        packets: list[Packet] = []
        small_messages: list[bytes] = []
        small_messages_bytes = 0

        while self._messages:
            message = self._messages.popleft()
            self._memory_usage_bytes -= len(message)
            if context.available_bytes < len(message):
                continue

            context.available_bytes -= len(message)
            if len(message) > SLICE_SIZE:
                num_slices = -(-len(message) // SLICE_SIZE)
                for slice_index in range(num_slices):
                    start = slice_index * SLICE_SIZE
                    piece = Slice(
                        message_id=self._sliced_message_id,
                        slice_index=slice_index,
                        num_slices=num_slices,
                        payload=message[start:start + SLICE_SIZE],
                    )
                    packets.append(UnreliableSlice(context.next_sequence(), self.channel_id, piece))
                self._sliced_message_id += 1
            else:
                serialized_size = len(message) + varint_len(len(message))
                if small_messages_bytes + serialized_size > SLICE_SIZE:
                    packets.append(
                        SmallUnreliable(context.next_sequence(), self.channel_id, small_messages)
                    )
                    small_messages = []
                    small_messages_bytes = 0
                small_messages_bytes += serialized_size
                small_messages.append(message)

        if small_messages:
            packets.append(SmallUnreliable(context.next_sequence(), self.channel_id, small_messages))

        return packets

    def send_message(self, message: bytes) -> None:
        """Queue a message; it is dropped when the channel is out of memory."""
        message = bytes(message)
        if self._memory_usage_bytes + len(message) > self.max_memory_usage_bytes:
            _log.warning(
                "dropped unreliable message sent because channel %d is memory limited",
                self.channel_id,
            )
            return

        num_fragments = len(message) // SLICE_SIZE
        if num_fragments > _MANY_FRAGMENTS:
            _log.warning(
                "Sending an unreliable message with %d fragments, messages with this many "
                "fragments are susceptible to packet loss. Consider breaking your message "
                "into smaller ones or using a reliable channel",
                num_fragments,
            )

        self._memory_usage_bytes += len(message)
        self._messages.append(message)


class ReceiveChannelUnreliable:
    """Buffers received messages and reassembles sliced ones."""

    def __init__(self, channel_id: int, max_memory_usage_bytes: int) -> None:
        self.channel_id = channel_id
        self.max_memory_usage_bytes = max_memory_usage_bytes
        self._messages: deque[bytes] = deque()
        self._slices: dict[int, SliceConstructor] = {}
        self._slices_last_received: dict[int, float] = {}
        self._memory_usage_bytes = 0

    def process_message(self, message: bytes) -> None:
        """Buffer a received message; it is dropped when the channel is out of memory."""
        message = bytes(message)
        if self._memory_usage_bytes + len(message) > self.max_memory_usage_bytes:
            _log.warning(
                "dropped unreliable message received because channel %d is memory limited",
                self.channel_id,
            )
            return

        self._memory_usage_bytes += len(message)
        self._messages.append(message)

    def process_slice(self, slice: Slice, current_time: float) -> None:
        """Add a slice; a complete message is buffered. Raises ChannelError on bad slices."""
        if slice.message_id not in self._slices:
            message_len = slice.num_slices * SLICE_SIZE
            if self._memory_usage_bytes + message_len > self.max_memory_usage_bytes:
                _log.warning(
                    "dropped unreliable slice message received because channel %d is memory limited",
                    self.channel_id,
                )
                return
            self._memory_usage_bytes += message_len
            self._slices[slice.message_id] = SliceConstructor(slice.message_id, slice.num_slices)

        constructor = self._slices[slice.message_id]
        message = constructor.process_slice(slice.slice_index, slice.payload)
        if message is None:
            self._slices_last_received[slice.message_id] = current_time
            return

        del self._slices[slice.message_id]
        self._slices_last_received.pop(slice.message_id, None)
        self._memory_usage_bytes -= constructor.num_slices * SLICE_SIZE
        self._memory_usage_bytes += len(message)
        self._messages.append(message)

    def discard_incomplete_old_slices(self, current_time: float) -> None:
        """Drop sliced messages whose last slice arrived too long ago."""
        lost: list[int] = []
        for message_id in sorted(self._slices_last_received):
            if current_time - self._slices_last_received[message_id] >= _DISCARD_AFTER:
                lost.append(message_id)
            else:
                # Later messages were sent after this one, so they are not lost either.
                break

        for message_id in lost:
            del self._slices_last_received[message_id]
            constructor = self._slices.pop(message_id)
            self._memory_usage_bytes -= constructor.num_slices * SLICE_SIZE

    def receive_message(self) -> bytes | None:
        """Return the next buffered message, or None if there is none."""
        if not self._messages:
            return None
        message = self._messages.popleft()
        self._memory_usage_bytes -= len(message)
        return message