"""Sliding send and receive windows of a KTP socket.

Both windows map 8-bit sequence numbers onto slots of a small circular
buffer. The send window tracks which buffered messages still wait for
transmission or acknowledgement. The receive window stores out-of-order
arrivals until the gap before them is filled, and tracks how much space it
can advertise to the peer.
"""

from __future__ import annotations

import enum
import errno
import os
from typing import List, Optional, Tuple

from .protocol import (
    MAX_SEQ_NUM,
    MSG_SIZE,
    RECV_BUFF_SIZE,
    SEND_BUFF_SIZE,
    NoMessageError,
    NoSpaceError,
)

Ack = Tuple[int, int]


def _pad(message: bytes) -> bytes:
    body = bytes(message)
    if len(body) > MSG_SIZE:
        raise OSError(errno.EMSGSIZE, os.strerror(errno.EMSGSIZE))
    return body.ljust(MSG_SIZE, b"\0")


class _SlotState(enum.IntEnum):
    FREE = 0
    QUEUED = 1
    SENT = 2


class SendWindow:
    """Outgoing messages of one socket, waiting to be sent and acknowledged."""

    def __init__(self) -> None:
        self.last_seq_ack = 0
        self.window_size = RECV_BUFF_SIZE
        self.last_buf_index = 0
        self._state = [_SlotState.FREE] * SEND_BUFF_SIZE
        self._buffer = [bytes(MSG_SIZE)] * SEND_BUFF_SIZE
        self._sent_at = [0.0] * MAX_SEQ_NUM
        self._slot_of = [0] * MAX_SEQ_NUM
        self._last_ack_num = 0
        self._map_from(self.last_seq_ack, self.window_size)

    def _map_from(self, seq: int, count: int) -> None:
        base = self._slot_of[seq]
        for offset in range(1, count + 1):
            self._slot_of[(seq + offset) % MAX_SEQ_NUM] = (base + offset) % SEND_BUFF_SIZE

    def enqueue(self, message: bytes) -> int:
        """Buffer a message for sending and return its length.

        Raises NoSpaceError when the send buffer is full and OSError(EMSGSIZE)
        when the message is longer than MSG_SIZE.
        """
        payload = _pad(message)
        slot = (self.last_buf_index + 1) % SEND_BUFF_SIZE
        if self._state[slot] is not _SlotState.FREE:
            raise NoSpaceError("send buffer is full")
        self._state[slot] = _SlotState.QUEUED
        self._buffer[slot] = payload
        self.last_buf_index = slot
        return len(message)

    def on_ack(self, ack_num: int, window_size: int) -> int:
        """Apply an acknowledgement; return how many messages it newly confirmed."""
        previous = self.last_seq_ack
        advance = (ack_num - previous) % MAX_SEQ_NUM
        confirmed = 0
        if advance <= self.window_size:
            self.last_seq_ack = ack_num
            for offset in range(1, advance + 1):
                self._state[self._slot_of[(previous + offset) % MAX_SEQ_NUM]] = _SlotState.FREE
                confirmed += 1
        self.window_size = window_size
        self._last_ack_num = ack_num
        self._map_from(ack_num, window_size)
        return confirmed

    def due_packets(self, now: float, timeout: float) -> List[Tuple[int, bytes]]:
        """Return ``(seq_num, payload)`` for every packet to transmit at ``now``.

        Queued packets are sent for the first time; sent packets are sent
        again once more than ``timeout`` has passed since their last sending.
        """
        first_seq = (self.last_seq_ack + 1) % MAX_SEQ_NUM
        first_slot = self._slot_of[first_seq]
        due = []
        for offset in range(self.window_size):
            slot = (first_slot + offset) % SEND_BUFF_SIZE
            seq = (first_seq + offset) % MAX_SEQ_NUM
            state = self._state[slot]
            if state is _SlotState.FREE:
                continue
            if state is _SlotState.SENT and now - self._sent_at[seq] <= timeout:
                continue
            self._sent_at[seq] = now
            self._state[slot] = _SlotState.SENT
            due.append((seq, self._buffer[slot]))
        return due

    def next_is_empty(self) -> bool:
        """Whether no message waits in the slot after the latest acknowledgement."""
        seq = (self._last_ack_num + 1) % MAX_SEQ_NUM
        return self._state[self._slot_of[seq]] is _SlotState.FREE


class ReceiveWindow:
    """Incoming messages of one socket, reordered and held for delivery."""

    def __init__(self) -> None:
        self.to_deliver = 1
        self.last_inorder_packet = 0
        self.window_size = RECV_BUFF_SIZE
        self.nospace = False
        self.was_full = False
        self._valid = [False] * RECV_BUFF_SIZE
        self._buffer = [bytes(MSG_SIZE)] * RECV_BUFF_SIZE
        self._slot_of = [0] * MAX_SEQ_NUM
        for seq in range(RECV_BUFF_SIZE):
            self._slot_of[seq] = seq

    def _slot(self, seq: int) -> int:
        return self._slot_of[seq % MAX_SEQ_NUM]

    def _map_after(self, seq: int, count: int, start: int = 1) -> None:
        base = self._slot_of[seq]
        for offset in range(start, count + 1):
            self._slot_of[(seq + offset) % MAX_SEQ_NUM] = (base + offset) % RECV_BUFF_SIZE

    def _ack(self) -> Ack:
        return (self.last_inorder_packet, self.window_size)

    def on_data(self, seq_num: int, payload: bytes) -> Optional[Ack]:
        """Accept a data packet; return the acknowledgement to send, if any."""
        last = self.last_inorder_packet
        window = self.window_size
        next_expected = (last + 1) % MAX_SEQ_NUM

        if self._valid[self._slot(seq_num)]:
            return self._ack()

        if (seq_num - last) % MAX_SEQ_NUM > window:
            return self._ack() if self.nospace else None

        slot = self._slot(seq_num)
        if not self._valid[slot] and seq_num != last:
            self._buffer[slot] = _pad(payload)
            self._valid[slot] = True

        if seq_num == next_expected:
            self._map_after(next_expected, RECV_BUFF_SIZE, start=0)
            outside = self._slot(last + window + 1)
            last_slot = self._slot(last)
            outside_free = 0
            for offset in range(RECV_BUFF_SIZE):
                current = (outside + offset) % RECV_BUFF_SIZE
                if current == last_slot or self._valid[current]:
                    break
                outside_free += 1

            last = seq_num
            while (
                self._valid[self._slot(last + 1)]
                and (last + 1 - next_expected) % MAX_SEQ_NUM < window
            ):
                last = (last + 1) % MAX_SEQ_NUM

            new_window = (outside - (self._slot(last) + 1) + outside_free) % RECV_BUFF_SIZE
            self.last_inorder_packet = last
            self.window_size = new_window
            if new_window == 0:
                self.nospace = True
                self.was_full = True
            else:
                self.was_full = False
        elif self.window_size != 0:
            self.was_full = False
        return self._ack()

    def on_empty(self) -> None:
        """The peer confirmed it learned that receive space is available again."""
        self.nospace = False
        self.was_full = False

    def refresh(self) -> Optional[Ack]:
        """After a quiet period, return a space-available acknowledgement if one is owed."""
        if not self.was_full or self.nospace:
            return None
        last = self.last_inorder_packet
        free = 0
        for offset in range(RECV_BUFF_SIZE):
            if self._valid[self._slot(last + offset)]:
                break
            free += 1
        self.window_size = free
        self._map_after(last, RECV_BUFF_SIZE)
        return self._ack()

    def deliver(self) -> bytes:
        """Hand the next in-order message to the application.

        Raises NoMessageError when none is waiting.
        """
        slot = self.to_deliver % RECV_BUFF_SIZE
        if not self._valid[slot]:
            raise NoMessageError()
        message = self._buffer[slot]
        self._valid[slot] = False
        self.to_deliver = (self.to_deliver + 1) % RECV_BUFF_SIZE
        if self.window_size < RECV_BUFF_SIZE:
            self.window_size += 1
        self._map_after(self.last_inorder_packet, RECV_BUFF_SIZE)
        self.nospace = False
        return message