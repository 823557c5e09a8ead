import pytest

from gamenet.channel import SendContext
from gamenet.errors import ChannelError, ChannelErrorKind
from gamenet.packet import SLICE_SIZE, ReliableSlice, Slice, SmallReliable, encode_packet
from gamenet.reliable import ReceiveChannelReliable, SendChannelReliable

U64_MAX = (1 << 64) - 1
RESEND_TIME = 0.1


def make_context(available=U64_MAX):
    return SendContext(available_bytes=available)


def test_small_packet():
    context = make_context()
    current_time = 0.0
    recv = ReceiveChannelReliable(10000, True)
    send = SendChannelReliable(0, RESEND_TIME, 10000)

    message1 = bytes([1, 2, 3])
    message2 = bytes([3, 4, 5])
    send.send_message(message1)
    send.send_message(message2)

    packets = send.get_packets_to_send(context, current_time)
    assert len(packets) == 1
    packet = packets[0]
    assert isinstance(packet, SmallReliable)
    assert packet.sequence == 0
    assert packet.channel_id == 0
    for message_id, message in packet.messages:
        recv.process_message(message, message_id)

    assert recv.receive_message() == message1
    assert recv.receive_message() == message2
    assert recv.receive_message() is None

    assert send.get_packets_to_send(context, current_time) == []

    current_time += RESEND_TIME
    assert len(send.get_packets_to_send(context, current_time)) == 1

    current_time += RESEND_TIME
    send.process_message_ack(0)
    send.process_message_ack(1)
    assert send.get_packets_to_send(context, current_time) == []
    assert send.available_memory() == 10000


def test_small_packet_unordered():
    context = make_context()
    current_time = 0.0
    recv = ReceiveChannelReliable(10000, False)
    send = SendChannelReliable(0, RESEND_TIME, 10000)

    message1 = bytes([1, 2, 3])
    message2 = bytes([3, 4, 5])
    message3 = bytes([6, 7, 8])
    for message in (message1, message2, message3):
        send.send_message(message)

    packets = send.get_packets_to_send(context, current_time)
    assert len(packets) == 1
    messages = packets[0].messages
    assert len(messages) == 3

    recv.process_message(messages[2][1], messages[2][0])
    new_message3 = recv.receive_message()
    recv.process_message(messages[1][1], messages[1][0])
    new_message2 = recv.receive_message()
    recv.process_message(messages[0][1], messages[0][0])
    new_message1 = recv.receive_message()

    assert new_message1 == message1
    assert new_message2 == message2
    assert new_message3 == message3
    assert recv.most_recent_message_id == 2
    assert recv.pending_received_ids == frozenset()

    assert send.get_packets_to_send(context, current_time) == []

    current_time += RESEND_TIME
    assert len(send.get_packets_to_send(context, current_time)) == 1

    current_time += RESEND_TIME
    send.process_message_ack(0)
    send.process_message_ack(1)
    send.process_message_ack(2)
    assert send.get_packets_to_send(context, current_time) == []


def test_slice_packet():
    context = make_context()
    current_time = 0.0
    recv = ReceiveChannelReliable(10000, True)
    send = SendChannelReliable(0, RESEND_TIME, 10000)

    message = bytes([5]) * (SLICE_SIZE * 3)
    send.send_message(message)

    packets = send.get_packets_to_send(context, current_time)
    assert len(packets) == 3
    for packet in packets:
        assert isinstance(packet, ReliableSlice)
        assert packet.channel_id == 0
        recv.process_slice(packet.slice)

    assert recv.receive_message() == message

    assert send.get_packets_to_send(context, current_time) == []

    current_time += RESEND_TIME
    assert len(send.get_packets_to_send(context, current_time)) == 3

    current_time += RESEND_TIME
    send.process_slice_message_ack(0, 0)
    send.process_slice_message_ack(0, 1)
    send.process_slice_message_ack(0, 2)
    assert send.get_packets_to_send(context, current_time) == []
    assert send.available_memory() == 10000


def test_max_memory():
    context = make_context()
    recv = ReceiveChannelReliable(99, True)
    send = SendChannelReliable(0, RESEND_TIME, 101)

    message = bytes([5]) * 100
    send.send_message(message)

    packets = send.get_packets_to_send(context, 0.0)
    assert len(packets) == 1
    packet = packets[0]
    assert packet.sequence == 0
    for message_id, payload in packet.messages:
        with pytest.raises(ChannelError) as info:
            recv.process_message(payload, message_id)
        assert info.value.kind is ChannelErrorKind.RELIABLE_CHANNEL_MAX_MEMORY_REACHED

    with pytest.raises(ChannelError) as info:
        send.send_message(message)
    assert info.value.kind is ChannelErrorKind.RELIABLE_CHANNEL_MAX_MEMORY_REACHED


def test_available_bytes():
    send = SendChannelReliable(0, RESEND_TIME, U64_MAX)
    message = bytes(100)
    send.send_message(message)
    send.send_message(message)

    assert len(send.get_packets_to_send(make_context(50), 0.0)) == 0
    assert len(send.get_packets_to_send(make_context(100), 0.0)) == 1
    assert len(send.get_packets_to_send(make_context(100), 0.0)) == 1
    assert len(send.get_packets_to_send(make_context(U64_MAX), 0.0)) == 0


def test_small_packet_max_size():
    send = SendChannelReliable(0, RESEND_TIME, U64_MAX)
    message = bytes([0, 1, 2, 3])
    for _ in range(300):
        send.send_message(message)

    packets = send.get_packets_to_send(make_context(), 0.0)
    assert len(packets) == 2
    for packet in packets:
        assert len(encode_packet(packet)) < 1300


def test_sequences_are_consecutive_and_budget_is_consumed():
    send = SendChannelReliable(3, RESEND_TIME, U64_MAX)
    send.send_message(bytes(SLICE_SIZE * 2))
    send.send_message(b"abc")
    context = SendContext(available_bytes=U64_MAX, packet_sequence=10)

    packets = send.get_packets_to_send(context, 0.0)
    assert [p.sequence for p in packets] == [10, 11, 12]
    assert context.packet_sequence == 13
    assert context.available_bytes == U64_MAX - SLICE_SIZE * 2 - 3
    assert all(p.channel_id == 3 for p in packets)


def test_slices_skipped_without_budget():
    send = SendChannelReliable(0, RESEND_TIME, U64_MAX)
    send.send_message(bytes(SLICE_SIZE * 2))
    assert send.get_packets_to_send(make_context(SLICE_SIZE - 1), 0.0) == []
    packets = send.get_packets_to_send(make_context(SLICE_SIZE), 0.0)
    assert [p.slice.slice_index for p in packets] == [0]


def test_memory_accounting():
    send = SendChannelReliable(0, RESEND_TIME, 1000)
    assert send.can_send_message(1000)
    assert not send.can_send_message(1001)
    send.send_message(bytes(400))
    assert send.available_memory() == 600
    assert not send.can_send_message(601)
    send.process_message_ack(0)
    assert send.available_memory() == 1000
    # Acking an unknown message does nothing.
    send.process_message_ack(42)
    assert send.available_memory() == 1000


def test_duplicate_slice_ack_counted_once():
    send = SendChannelReliable(0, RESEND_TIME, 10000)
    send.send_message(bytes(SLICE_SIZE * 2))
    send.process_slice_message_ack(0, 0)
    send.process_slice_message_ack(0, 0)
    assert send.available_memory() == 10000 - SLICE_SIZE * 2
    send.process_slice_message_ack(0, 1)
    assert send.available_memory() == 10000


def test_ordered_waits_for_missing_message():
    recv = ReceiveChannelReliable(1000, True)
    recv.process_message(b"second", 1)
    assert recv.receive_message() is None
    recv.process_message(b"first", 0)
    assert recv.receive_message() == b"first"
    assert recv.receive_message() == b"second"
    # Old message ids are discarded.
    recv.process_message(b"first", 0)
    assert recv.receive_message() is None


def test_duplicate_message_stored_once():
    recv = ReceiveChannelReliable(1000, False)
    recv.process_message(b"x", 0)
    recv.process_message(b"x", 0)
    assert recv.receive_message() == b"x"
    assert recv.receive_message() is None


def test_slice_memory_limit():
    recv = ReceiveChannelReliable(SLICE_SIZE, True)
    piece = Slice(message_id=0, slice_index=0, num_slices=2, payload=bytes(SLICE_SIZE))
    with pytest.raises(ChannelError) as info:
        recv.process_slice(piece)
    assert info.value.kind is ChannelErrorKind.RELIABLE_CHANNEL_MAX_MEMORY_REACHED


def test_invalid_slice_size_raises():
    recv = ReceiveChannelReliable(10000, True)
    piece = Slice(message_id=0, slice_index=0, num_slices=2, payload=bytes(10))
    with pytest.raises(ChannelError) as info:
        recv.process_slice(piece)
    assert info.value.kind is ChannelErrorKind.INVALID_SLICE_MESSAGE


def test_sliced_message_out_of_order():
    recv = ReceiveChannelReliable(10000, True)
    message = bytes(range(256)) * 10
    pieces = [
        Slice(0, index, 3, message[index * SLICE_SIZE:(index + 1) * SLICE_SIZE])
        for index in range(3)
    ]
    for piece in reversed(pieces):
        recv.process_slice(piece)
    assert recv.receive_message() == message
    assert recv.receive_message() is None
    # A late duplicate slice of a delivered message is ignored.
    recv.process_slice(pieces[0])
    assert recv.receive_message() is None