"""Wire packets exchanged between connections and their binary encoding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .errors import SerializationError, SerializationErrorKind

# Sliced messages are split into chunks of this many bytes.
SLICE_SIZE = 1200
# Largest serialized packet accepted by encode_packet.
MAX_PACKET_BYTES = 1400
MAX_NUM_SLICES = 1_000_000

_MAX_VARINT = (1 << 62) - 1

_TYPE_SMALL_RELIABLE = 0
_TYPE_SMALL_UNRELIABLE = 1
_TYPE_RELIABLE_SLICE = 2
_TYPE_UNRELIABLE_SLICE = 3
_TYPE_ACK = 4


@dataclass(frozen=True)
class Slice:
    """One chunk of a message too large to fit in a single packet."""

    message_id: int
    slice_index: int
    num_slices: int
    payload: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", bytes(self.payload))


@dataclass(frozen=True)
class SmallReliable:
    """Aggregated small messages of a reliable channel, as (message id, payload) pairs."""

    sequence: int
    channel_id: int
    messages: list

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", [(int(mid), bytes(msg)) for mid, msg in self.messages])


@dataclass(frozen=True)
class SmallUnreliable:
    """Aggregated small messages of an unreliable channel."""

    sequence: int
    channel_id: int
    messages: list

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", [bytes(msg) for msg in self.messages])


@dataclass(frozen=True)
class ReliableSlice:
    """A slice of a large reliable message."""

    sequence: int
    channel_id: int
    slice: Slice


@dataclass(frozen=True)
class UnreliableSlice:
    """A slice of a large unreliable message."""

    sequence: int
    channel_id: int
    slice: Slice


@dataclass(frozen=True)
class Ack:
    """Acknowledged packet sequences, as ascending, non-adjacent ranges."""

    sequence: int
    ack_ranges: list

    def __post_init__(self) -> None:
        object.__setattr__(self, "ack_ranges", list(self.ack_ranges))


Packet = Union[SmallReliable, SmallUnreliable, ReliableSlice, UnreliableSlice, Ack]


def varint_len(value: int) -> int:
    """Return the number of bytes the variable-length encoding of ``value`` takes."""
    if value < 0 or value > _MAX_VARINT:
        raise ValueError(f"value {value} cannot be encoded as a varint")
    if value <= 63:
        return 1
    if value <= 16383:
        return 2
    if value <= 1_073_741_823:
        return 4
    return 8


_LENGTH_PREFIX = {1: 0, 2: 1, 4: 2, 8: 3}


class _Writer:
    def __init__(self) -> None:
        self.buffer = bytearray()

    def u8(self, value: int) -> None:
        if not 0 <= value <= 0xFF:
            raise ValueError(f"value {value} does not fit in one byte")
        self.buffer.append(value)

    def u16(self, value: int) -> None:
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"value {value} does not fit in two bytes")
        self.buffer += value.to_bytes(2, "big")

    def varint(self, value: int) -> None:
        length = varint_len(value)
        encoded = bytearray(value.to_bytes(length, "big"))
        encoded[0] |= _LENGTH_PREFIX[length] << 6
        self.buffer += encoded

    def bytes_with_length(self, data: bytes) -> None:
        self.varint(len(data))
        self.buffer += data

    def slice(self, sequence: int, channel_id: int, piece: Slice) -> None:
        self.varint(sequence)
        self.u8(channel_id)
        self.varint(piece.message_id)
        self.varint(piece.slice_index)
        self.varint(piece.num_slices)
        self.bytes_with_length(piece.payload)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    def _take(self, count: int) -> memoryview:
        end = self._pos + count
        if end > len(self._data):
            raise SerializationError(SerializationErrorKind.BUFFER_TOO_SHORT)
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return int.from_bytes(self._take(2), "big")

    def varint(self) -> int:
        first = self.u8()
        length = 1 << (first >> 6)
        rest = bytes(self._take(length - 1))
        return int.from_bytes(bytes([first & 0x3F]) + rest, "big")

    def bytes_with_varint_length(self) -> bytes:
        return bytes(self._take(self.varint()))


def _write_ack(writer: _Writer, ack_ranges: list) -> None:
    if not ack_ranges:
        raise ValueError("an ack packet needs at least one range")
    if any(len(r) == 0 or r.step != 1 for r in ack_ranges):
        raise ValueError("ack ranges must be non-empty with step 1")

    # Ranges are written from the last one backwards: its end and size, the number
    # of remaining ranges, then for each one the gap to the previous start and its size.
    *rest, last = ack_ranges
    writer.varint(last.stop - 1)
    writer.varint(last.stop - 1 - last.start)
    writer.varint(len(rest))

    previous_start = last.start
    for current in reversed(rest):
        gap = previous_start - current.stop - 1
        if gap < 0:
            raise ValueError("ack ranges must be ascending and not adjacent")
        writer.varint(gap)
        writer.varint(current.stop - 1 - current.start)
        previous_start = current.start


def encode_packet(packet: Packet) -> bytes:
    """Serialize a packet; raise SerializationError if it exceeds MAX_PACKET_BYTES."""
    writer = _Writer()
    match packet:
        case SmallReliable(sequence=sequence, channel_id=channel_id, messages=messages):
            writer.u8(_TYPE_SMALL_RELIABLE)
            writer.varint(sequence)
            writer.u8(channel_id)
            writer.u16(len(messages))
            for message_id, message in messages:
                writer.varint(message_id)
                writer.bytes_with_length(message)
        case SmallUnreliable(sequence=sequence, channel_id=channel_id, messages=messages):
            writer.u8(_TYPE_SMALL_UNRELIABLE)
            writer.varint(sequence)
            writer.u8(channel_id)
            writer.u16(len(messages))
            for message in messages:
                writer.bytes_with_length(message)
        case ReliableSlice(sequence=sequence, channel_id=channel_id, slice=piece):
            writer.u8(_TYPE_RELIABLE_SLICE)
            writer.slice(sequence, channel_id, piece)
        case UnreliableSlice(sequence=sequence, channel_id=channel_id, slice=piece):
            writer.u8(_TYPE_UNRELIABLE_SLICE)
            writer.slice(sequence, channel_id, piece)
        case Ack(sequence=sequence, ack_ranges=ack_ranges):
            writer.u8(_TYPE_ACK)
            writer.varint(sequence)
            _write_ack(writer, ack_ranges)
        case _:
            raise TypeError(f"not a packet: {packet!r}")

    if len(writer.buffer) > MAX_PACKET_BYTES:
        raise SerializationError(SerializationErrorKind.BUFFER_TOO_SHORT)
    return bytes(writer.buffer)


def _read_slice(reader: _Reader) -> tuple[int, int, Slice]:
    sequence = reader.varint()
    channel_id = reader.u8()
    message_id = reader.varint()
    slice_index = reader.varint()
    num_slices = reader.varint()
    if num_slices == 0 or num_slices > MAX_NUM_SLICES:
        raise SerializationError(SerializationErrorKind.INVALID_NUM_SLICES)
    payload = reader.bytes_with_varint_length()
    return sequence, channel_id, Slice(message_id, slice_index, num_slices, payload)


def _read_ack(reader: _Reader) -> Ack:
    sequence = reader.varint()
    first_end = reader.varint()
    first_size = reader.varint()
    num_remaining = reader.varint()
    if first_end < first_size:
        raise SerializationError(SerializationErrorKind.INVALID_ACK_RANGE)

    first_start = first_end - first_size
    ranges = [range(first_start, first_end + 1)]
    previous_start = first_start
    for _ in range(num_remaining):
        gap = reader.varint()
        if previous_start < 2 + gap:
            raise SerializationError(SerializationErrorKind.INVALID_ACK_RANGE)
        range_end = previous_start - gap - 2
        range_size = reader.varint()
        if range_end < range_size:
            raise SerializationError(SerializationErrorKind.INVALID_ACK_RANGE)
        range_start = range_end - range_size
        ranges.append(range(range_start, range_end + 1))
        previous_start = range_start

    ranges.reverse()
    return Ack(sequence, ranges)


def decode_packet(data: bytes) -> Packet:
    """Parse a packet from the start of ``data``; raise SerializationError when malformed."""
    reader = _Reader(data)
    packet_type = reader.u8()

    if packet_type == _TYPE_SMALL_RELIABLE:
        sequence = reader.varint()
        channel_id = reader.u8()
        count = reader.u16()
        messages = []
        for _ in range(count):
            message_id = reader.varint()
            messages.append((message_id, reader.bytes_with_varint_length()))
        return SmallReliable(sequence, channel_id, messages)

    if packet_type == _TYPE_SMALL_UNRELIABLE:
        sequence = reader.varint()
        channel_id = reader.u8()
        count = reader.u16()
        messages = [reader.bytes_with_varint_length() for _ in range(count)]
        return SmallUnreliable(sequence, channel_id, messages)

    if packet_type == _TYPE_RELIABLE_SLICE:
        sequence, channel_id, piece = _read_slice(reader)
        if not piece.payload:
            raise SerializationError(SerializationErrorKind.EMPTY_SLICE)
        if len(piece.payload) > SLICE_SIZE:
            raise SerializationError(SerializationErrorKind.SLICE_SIZE_ABOVE_LIMIT)
        return ReliableSlice(sequence, channel_id, piece)

    if packet_type == _TYPE_UNRELIABLE_SLICE:
        sequence, channel_id, piece = _read_slice(reader)
        return UnreliableSlice(sequence, channel_id, piece)

    if packet_type == _TYPE_ACK:
        return _read_ack(reader)

    raise SerializationError(SerializationErrorKind.INVALID_PACKET_TYPE)