"""Reassembly of messages split into slices."""

from __future__ import annotations

import logging

from .errors import ChannelError, ChannelErrorKind
from .packet import SLICE_SIZE

_log = logging.getLogger(__name__)


class SliceConstructor:
    """Collects the slices of one message until it is complete."""

    def __init__(self, message_id: int, num_slices: int) -> None:
        if num_slices <= 0:
            raise ValueError("a sliced message needs at least one slice")
        self.message_id = message_id
        self.num_slices = num_slices
        self._received = [False] * num_slices
        self._num_received = 0
        self._data = bytearray(num_slices * SLICE_SIZE)

    def process_slice(self, slice_index: int, data: bytes) -> bytes | None:
        """Store a slice; return the whole message once every slice has arrived.

        Raises ChannelError when the slice has an invalid index or size.
        """
        if not 0 <= slice_index < self.num_slices:
            _log.error(
                "Invalid slice index for SliceMessage, got %d, expected less than %d.",
                slice_index,
                self.num_slices,
            )
            raise ChannelError(ChannelErrorKind.INVALID_SLICE_MESSAGE)

        is_last = slice_index == self.num_slices - 1
        if is_last:
            if len(data) > SLICE_SIZE:
                _log.error(
                    "Invalid last slice_size for SliceMessage, got %d, expected less than %d.",
                    len(data),
                    SLICE_SIZE,
                )
                raise ChannelError(ChannelErrorKind.INVALID_SLICE_MESSAGE)
        elif len(data) != SLICE_SIZE:
            _log.error(
                "Invalid slice_size for SliceMessage, got %d, expected %d.", len(data), SLICE_SIZE
            )
            raise ChannelError(ChannelErrorKind.INVALID_SLICE_MESSAGE)

        if not self._received[slice_index]:
            self._received[slice_index] = True
            self._num_received += 1

            start = slice_index * SLICE_SIZE
            end = start + len(data)
            if is_last:
                del self._data[end:]
            self._data[start:end] = data
            _log.debug(
                "Received slice %d from message %d. (%d/%d)",
                slice_index,
                self.message_id,
                self._num_received,
                self.num_slices,
            )

        if self._num_received == self.num_slices:
            _log.debug("Received all slices for message %d.", self.message_id)
            message = bytes(self._data)
            self._data = bytearray()
            return message

        return None