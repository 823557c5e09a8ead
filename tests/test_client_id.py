import pytest

from gamenet.client_id import ClientId


def test_round_trip_raw():
    assert ClientId.from_raw(42).raw() == 42
    assert ClientId.from_raw(0).raw() == 0
    assert ClientId.from_raw(2**64 - 1).raw() == 2**64 - 1


def test_str_is_raw_value():
    assert str(ClientId.from_raw(12345)) == "12345"


def test_equality_and_hash():
    ids = {ClientId.from_raw(1), ClientId.from_raw(1), ClientId.from_raw(2)}
    assert len(ids) == 2
    assert ClientId.from_raw(7) == ClientId(7)


def test_ordering():
    values = [ClientId.from_raw(v) for v in (5, 1, 3)]
    assert [c.raw() for c in sorted(values)] == [1, 3, 5]
    assert ClientId.from_raw(1) < ClientId.from_raw(2)


@pytest.mark.parametrize("value", [-1, 2**64])
def test_out_of_range(value):
    with pytest.raises(ValueError):
        ClientId.from_raw(value)


def test_non_integer_rejected():
    with pytest.raises(TypeError):
        ClientId.from_raw("1")