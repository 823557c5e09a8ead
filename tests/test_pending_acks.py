from gamenet.pending_acks import MAX_PENDING_RANGES, PendingAcks


def test_pending_acks():
    acks = PendingAcks()
    acks.add(3)
    assert list(acks) == [range(3, 4)]

    acks.add(4)
    assert list(acks) == [range(3, 5)]

    acks.add(2)
    assert list(acks) == [range(2, 5)]

    acks.add(0)
    assert list(acks) == [range(0, 1), range(2, 5)]

    acks.add(7)
    assert list(acks) == [range(0, 1), range(2, 5), range(7, 8)]

    acks.add(1)
    assert list(acks) == [range(0, 5), range(7, 8)]

    acks.add(5)
    assert list(acks) == [range(0, 6), range(7, 8)]

    acks.add(6)
    assert list(acks) == [range(0, 8)]


def test_ack_pending_acks():
    acks = PendingAcks()
    for i in range(10):
        acks.add(i)
    assert list(acks) == [range(0, 10)]

    acks.acknowledge_up_to(0)
    assert list(acks) == [range(1, 10)]

    acks.acknowledge_up_to(3)
    assert list(acks) == [range(4, 10)]

    acks.add(0)
    assert list(acks) == [range(0, 1), range(4, 10)]
    acks.acknowledge_up_to(5)
    assert list(acks) == [range(6, 10)]

    acks.add(0)
    assert list(acks) == [range(0, 1), range(6, 10)]
    acks.acknowledge_up_to(10)
    assert list(acks) == []


def test_duplicate_sequence_is_ignored():
    acks = PendingAcks()
    acks.add(5)
    acks.add(5)
    assert list(acks) == [range(5, 6)]
    assert len(acks) == 1


def test_acknowledge_below_first_range_keeps_everything():
    acks = PendingAcks()
    acks.add(10)
    acks.acknowledge_up_to(5)
    assert list(acks) == [range(10, 11)]


def test_acknowledge_last_of_range_removes_it():
    acks = PendingAcks()
    acks.add(1)
    acks.add(2)
    acks.add(8)
    acks.acknowledge_up_to(2)
    assert list(acks) == [range(8, 9)]


def test_number_of_ranges_is_limited():
    acks = PendingAcks()
    for i in range(MAX_PENDING_RANGES + 1):
        acks.add(i * 2)
    assert len(acks) == MAX_PENDING_RANGES
    ranges = list(acks)
    assert ranges[0] == range(2, 3)
    assert ranges[-1] == range(MAX_PENDING_RANGES * 2, MAX_PENDING_RANGES * 2 + 1)


def test_empty_pending_acks_is_falsy():
    acks = PendingAcks()
    assert not acks
    acks.add(0)
    assert len(acks) == 1