"""Sorted set of received packet sequences that still have to be acknowledged."""

from __future__ import annotations

from collections.abc import Iterator

# Oldest ranges are dropped beyond this count.
MAX_PENDING_RANGES = 64


class PendingAcks:
    """Received sequences kept as ascending half-open ranges."""

    def __init__(self) -> None:
        # Each entry is [start, end), mutable so ranges can grow in place.
        self._ranges: list[list[int]] = []

    def add(self, sequence: int) -> None:
        """Record a received packet sequence, merging it into existing ranges."""
        ranges = self._ranges
        if not ranges:
            ranges.append([sequence, sequence + 1])
            return

        for index, current in enumerate(ranges):
            start, end = current
            if start <= sequence < end:
                return

            if start == sequence + 1:
                current[0] = sequence
                return

            if end == sequence:
                current[1] = sequence + 1
                following = index + 1
                if following < len(ranges) and current[1] == ranges[following][0]:
                    current[1] = ranges[following][1]
                    del ranges[following]
                return

            if start > sequence + 1:
                ranges.insert(index, [sequence, sequence + 1])
                return

        ranges.append([sequence, sequence + 1])
        if len(ranges) > MAX_PENDING_RANGES:
            del ranges[0]

    def acknowledge_up_to(self, largest_ack: int) -> None:
        """Forget every sequence up to and including ``largest_ack``."""
        ranges = self._ranges
        while ranges:
            first = ranges[0]
            if largest_ack < first[0]:
                return
            if first[1] <= largest_ack:
                del ranges[0]
                continue
            first[0] = largest_ack + 1
            if first[0] >= first[1]:
                del ranges[0]
            return

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[range]:
        return (range(start, end) for start, end in self._ranges)