from gamenet.channel import SendContext
from gamenet.packet import SLICE_SIZE, Slice, SmallUnreliable, UnreliableSlice, encode_packet
from gamenet.unreliable import ReceiveChannelUnreliable, SendChannelUnreliable

U64_MAX = (1 << 64) - 1


def test_small_packet():
    recv = ReceiveChannelUnreliable(0, 10000)
    send = SendChannelUnreliable(0, 10000)
    context = SendContext(available_bytes=U64_MAX)

    message1 = bytes([1, 2, 3])
    message2 = bytes([3, 4, 5])
    send.send_message(message1)
    send.send_message(message2)

    packets = send.get_packets_to_send(context)
    assert len(packets) == 1
    for packet in packets:
        assert isinstance(packet, SmallUnreliable)
        for message in packet.messages:
            recv.process_message(message)

    assert recv.receive_message() == message1
    assert recv.receive_message() == message2
    assert recv.receive_message() is None

    assert send.get_packets_to_send(context) == []


def test_slice_packet():
    recv = ReceiveChannelUnreliable(0, 10000)
    send = SendChannelUnreliable(0, 10000)
    context = SendContext(available_bytes=U64_MAX)

    message = bytes([5]) * (SLICE_SIZE * 3)
    send.send_message(message)

    packets = send.get_packets_to_send(context)
    assert len(packets) == 3
    for packet in packets:
        assert isinstance(packet, UnreliableSlice)
        recv.process_slice(packet.slice, 0.0)

    assert recv.receive_message() == message
    assert recv.receive_message() is None
    assert send.get_packets_to_send(context) == []


def test_slice_packets_use_consecutive_sequences():
    send = SendChannelUnreliable(0, 10000)
    context = SendContext(available_bytes=U64_MAX)
    send.send_message(bytes(SLICE_SIZE * 2 + 1))
    packets = send.get_packets_to_send(context)
    assert [p.sequence for p in packets] == list(range(len(packets)))
    assert context.packet_sequence == len(packets)
    assert [p.slice.slice_index for p in packets] == list(range(len(packets)))


def test_max_memory():
    recv = ReceiveChannelUnreliable(0, 50)
    send = SendChannelUnreliable(0, 40)
    context = SendContext(available_bytes=U64_MAX)

    message = bytes([5]) * 50
    send.send_message(message)
    send.send_message(message)

    packets = send.get_packets_to_send(context)
    assert packets == []
    assert recv.receive_message() is None


def test_receive_drops_when_memory_limited():
    recv = ReceiveChannelUnreliable(0, 50)
    recv.process_message(bytes(40))
    recv.process_message(bytes(40))
    assert recv.receive_message() == bytes(40)
    assert recv.receive_message() is None


def test_available_bytes():
    send = SendChannelUnreliable(0, U64_MAX)
    message = bytes(100)
    send.send_message(message)

    assert send.get_packets_to_send(SendContext(available_bytes=50)) == []
    assert send.get_packets_to_send(SendContext(available_bytes=U64_MAX)) == []

    send.send_message(message)
    send.send_message(message)

    assert len(send.get_packets_to_send(SendContext(available_bytes=100))) == 1
    assert send.get_packets_to_send(SendContext(available_bytes=U64_MAX)) == []


def test_small_packet_max_size():
    send = SendChannelUnreliable(0, U64_MAX)
    context = SendContext(available_bytes=U64_MAX)
    message = bytes([0, 1, 2, 3])

    # (4 + 1) * 400 = 2000 bytes = 2 packets
    for _ in range(400):
        send.send_message(message)

    packets = send.get_packets_to_send(context)
    assert len(packets) == 2
    for packet in packets:
        assert len(encode_packet(packet)) < 1300


def test_memory_accounting():
    send = SendChannelUnreliable(0, 100)
    send.send_message(bytes(40))
    assert send.available_memory() == 100 - 40
    assert send.can_send_message(60)
    assert not send.can_send_message(61)
    send.get_packets_to_send(SendContext(available_bytes=U64_MAX))
    assert send.available_memory() == 100


def test_discard_incomplete_old_slices_frees_memory():
    recv = ReceiveChannelUnreliable(0, 2 * SLICE_SIZE)
    recv.process_slice(Slice(0, 0, 2, bytes(SLICE_SIZE)), 0.0)

    # No room for another sliced message while the first one is pending.
    recv.process_slice(Slice(1, 0, 1, bytes([7, 7])), 0.5)
    assert recv.receive_message() is None

    recv.discard_incomplete_old_slices(3.0)
    recv.process_slice(Slice(1, 0, 1, bytes([7, 7])), 3.0)
    assert recv.receive_message() == bytes([7, 7])


def test_recent_slices_are_kept():
    recv = ReceiveChannelUnreliable(0, 10000)
    first = bytes([1]) * SLICE_SIZE
    second = bytes([2]) * 10
    recv.process_slice(Slice(0, 0, 2, first), 0.0)
    recv.discard_incomplete_old_slices(2.9)
    recv.process_slice(Slice(0, 1, 2, second), 2.9)
    assert recv.receive_message() == first + second


def test_discarded_message_is_not_completed():
    recv = ReceiveChannelUnreliable(0, 10000)
    recv.process_slice(Slice(0, 0, 2, bytes(SLICE_SIZE)), 0.0)
    recv.discard_incomplete_old_slices(5.0)
    recv.process_slice(Slice(0, 1, 2, bytes(5)), 5.0)
    assert recv.receive_message() is None