"""Unique identifier for connected clients."""

from __future__ import annotations

from dataclasses import dataclass

_U64_MAX = (1 << 64) - 1


@dataclass(frozen=True, order=True)
class ClientId:
    """A 64 bit unsigned client identifier."""

    value: int

    def __post_init__(self) -> None:
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise TypeError("client id must be an integer")
        if not 0 <= self.value <= _U64_MAX:
            raise ValueError(f"client id {self.value} does not fit in 64 unsigned bits")

    @classmethod
    def from_raw(cls, value: int) -> ClientId:
        """Create a client id from a raw 64 bit value."""
        return cls(value)

    def raw(self) -> int:
        """Return the raw 64 bit value."""
        return self.value

    def __str__(self) -> str:
        return str(self.value)