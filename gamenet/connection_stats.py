"""Sliding-window statistics of a connection: bandwidth and packet loss."""

from __future__ import annotations

import math

# Width of one bucket and of the whole window, in milliseconds.
RESOLUTION_MS = 300
WINDOW_MS = 6000
WINDOW_SLOTS = WINDOW_MS // RESOLUTION_MS

_WINDOW_SECONDS = WINDOW_MS / 1000
# Rate over the complete buckets only: the current one is still filling.
_COMPLETE_WINDOW_SECONDS = (WINDOW_MS - RESOLUTION_MS) / 1000


def _to_micros(seconds: float) -> int:
    """Quantize a time in seconds to whole microseconds, absorbing float drift."""
    return round(seconds * 1_000_000)


def _slot(seconds: float) -> int:
    return (_to_micros(seconds) // 1000 // RESOLUTION_MS) % WINDOW_SLOTS


def _rate(total: int, seconds: float) -> float:
    if seconds == 0:
        return math.nan if total == 0 else math.inf
    return total / seconds


class ConnectionStats:
    """Counts packets and bytes in 300 ms buckets over a 6 second window.

    All times are in seconds since the connection started.
    """

    def __init__(self) -> None:
        self._packets_sent = [0] * WINDOW_SLOTS
        self._packets_acked = [0] * WINDOW_SLOTS
        self._bytes_sent = [0] * WINDOW_SLOTS
        self._bytes_received = [0] * WINDOW_SLOTS
        self._current_index = 0

    @property
    def packets_sent(self) -> list[int]:
        """Packets sent per bucket."""
        return list(self._packets_sent)

    @property
    def packets_acked(self) -> list[int]:
        """Packets acknowledged per bucket, counted in the bucket they were sent in."""
        return list(self._packets_acked)

    @property
    def bytes_sent(self) -> list[int]:
        """Bytes sent per bucket."""
        return list(self._bytes_sent)

    @property
    def bytes_received(self) -> list[int]:
        """Bytes received per bucket."""
        return list(self._bytes_received)

    def update(self, current_time: float) -> None:
        """Move to the bucket of ``current_time``, clearing it when it changes."""
        index = _slot(current_time)
        if index != self._current_index:
            self._current_index = index
            self._packets_sent[index] = 0
            self._bytes_sent[index] = 0
            self._bytes_received[index] = 0
            self._packets_acked[index] = 0

    def sent_packets(self, num_packets: int, num_bytes: int) -> None:
        """Record packets sent in the current bucket."""
        self._packets_sent[self._current_index] += num_packets
        self._bytes_sent[self._current_index] += num_bytes

    def received_packet(self, num_bytes: int) -> None:
        """Record a received packet in the current bucket."""
        self._bytes_received[self._current_index] += num_bytes

    def acked_packet(self, sent_at: float, current_time: float) -> None:
        """Record the acknowledgement of a packet sent at ``sent_at``."""
        delta = _to_micros(current_time) - _to_micros(sent_at)
        if delta < 0:
            raise ValueError("a packet cannot be acknowledged before it was sent")
        if delta > WINDOW_MS * 1000:
            # Outside the window, nothing to count it against.
            return
        self._packets_acked[_slot(sent_at)] += 1

    def _per_second(self, buckets: list[int], current_time: float) -> float:
        total = sum(buckets)
        seconds = _to_micros(current_time) / 1_000_000
        if seconds < _WINDOW_SECONDS:
            return _rate(total, seconds)
        total -= buckets[self._current_index]
        return total / _COMPLETE_WINDOW_SECONDS

    def bytes_sent_per_second(self, current_time: float) -> float:
        """Return the average send rate over the window."""
        return self._per_second(self._bytes_sent, current_time)

    def bytes_received_per_second(self, current_time: float) -> float:
        """Return the average receive rate over the window."""
        return self._per_second(self._bytes_received, current_time)

    def _settled_sum(self, buckets: list[int]) -> int:
        # The current and the two previous buckets may still have packets or acks in flight.
        in_flight = {(self._current_index - back) % WINDOW_SLOTS for back in range(3)}
        return sum(value for index, value in enumerate(buckets) if index not in in_flight)

    def packet_loss(self) -> float:
        """Return the fraction of settled sent packets that were never acknowledged."""
        sent = self._settled_sum(self._packets_sent)
        acked = self._settled_sum(self._packets_acked)
        if sent == 0:
            return 0.0
        return (sent - acked) / sent