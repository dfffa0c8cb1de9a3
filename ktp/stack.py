"""The KTP stack: a table of reliable sockets served by background threads.

A :class:`KTPStack` owns a fixed number of socket slots. Each slot wraps a
UDP socket together with its send and receive windows. Three daemon threads
keep the slots running:

* the receiver waits for incoming packets, applies data and acknowledgements
  to the windows, answers with acknowledgements, and after a quiet period
  tells the peer when receive space has been freed again;
* the sender transmits queued messages and retransmits unacknowledged ones
  after the timeout;
* the collector releases the UDP sockets of slots that have been closed.
"""

from __future__ import annotations

import errno
import ipaddress
import os
import random
import select
import socket as _socket
import threading
import time
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from .protocol import (
    DATA_PACKET_SIZE,
    DROP_PROBABILITY,
    MAX_SOCKETS,
    MSG_SIZE,
    TIMEOUT,
    NoSpaceError,
    NotBoundError,
    PacketType,
    decode_packet,
    drop_message,
    encode_ack,
    encode_data,
    encode_empty,
)
from .window import ReceiveWindow, SendWindow

Address = Tuple[str, int]

_RULE = "-" * 40


def _os_error(code: int) -> OSError:
    return OSError(code, os.strerror(code))


def _normalize(addr: object) -> Address:
    """Check an IPv4 ``(host, port)`` pair and return it in canonical form."""
    try:
        host, port = addr  # type: ignore[misc]
        ip = ipaddress.IPv4Address(host)
        port = int(port)
    except (TypeError, ValueError):
        raise _os_error(errno.EINVAL) from None
    if not 0 <= port <= 0xFFFF:
        raise _os_error(errno.EINVAL)
    return str(ip), port


def _poll_interval(timeout: float) -> float:
    """Period of the receiver's wait and of the sender's rounds."""
    whole = int(timeout)
    if whole == timeout:
        value = whole // 2 - (1 - whole % 2)
    else:
        value = timeout / 2
    return max(float(value), 0.01)


@dataclass
class Statistics:
    """Counters of traffic handled by a stack."""

    messages: int = 0
    transmissions: int = 0
    acks: int = 0

    def report(self, p: float) -> str:
        """Render the statistics summary for drop probability ``p``."""
        lines = ["Statistics:", f"Value of P: {p:f}"]
        if self.messages == 0:
            lines.append("No messages sent")
            return "\n".join(lines) + "\n"
        avg_msg = self.transmissions / self.messages
        avg_ack = self.acks / self.messages
        lines += [
            _RULE,
            f"Total Messages Sent: {self.messages}",
            f"Total Times Message Sent: {self.transmissions}",
            f"Total Times Ack Sent: {self.acks}",
            f"Average Messages Sent per Message: {avg_msg:f}",
            f"Average Ack Sent per Message: {avg_ack:f}",
            f"Total Average Transmissions (Messages + Ack) per Message: {avg_msg + avg_ack:f}",
            _RULE,
        ]
        return "\n".join(lines) + "\n"


@dataclass
class _Slot:
    in_use: bool = False
    sock: Optional[_socket.socket] = None
    dest: Optional[Address] = None
    send: SendWindow = field(default_factory=SendWindow)
    recv: ReceiveWindow = field(default_factory=ReceiveWindow)
    lock: threading.RLock = field(default_factory=threading.RLock)


class KTPStack:
    """A set of KTP sockets and the threads that drive them."""

    def __init__(
        self,
        p: float = DROP_PROBABILITY,
        timeout: float = TIMEOUT,
        capacity: int = MAX_SOCKETS,
        rng: Optional[random.Random] = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.p = p
        self.timeout = timeout
        self.capacity = capacity
        self._rng = rng if rng is not None else random.Random()
        self._slots = [_Slot() for _ in range(capacity)]
        self._table_lock = threading.Lock()
        self._stats = Statistics()
        self._stats_lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._interval = _poll_interval(timeout)

    # ----------------------------------------------------------------- lifecycle

    def start(self) -> None:
        """Start the receiver, sender and collector threads."""
        if self._threads:
            return
        self._stop.clear()
        for name, target in (
            ("ktp-collector", self._collector_loop),
            ("ktp-receiver", self._receiver_loop),
            ("ktp-sender", self._sender_loop),
        ):
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        """Stop the threads and release every socket."""
        self._stop.set()
        for thread in self._threads:
            thread.join()
        self._threads = []
        with self._table_lock:
            for slot in self._slots:
                with slot.lock:
                    if slot.sock is not None:
                        slot.sock.close()
                    slot.sock = None
                    slot.in_use = False
                    slot.dest = None

    def __enter__(self) -> "KTPStack":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ----------------------------------------------------------------- socket API

    def _slot(self, sockfd: int) -> _Slot:
        if not isinstance(sockfd, int) or not 0 <= sockfd < self.capacity:
            raise _os_error(errno.EBADF)
        slot = self._slots[sockfd]
        if not slot.in_use:
            raise _os_error(errno.EBADF)
        return slot

    def socket(self) -> int:
        """Allocate a KTP socket and return its descriptor.

        Raises NoSpaceError when every slot is taken.
        """
        with self._table_lock:
            index = next((i for i, s in enumerate(self._slots) if not s.in_use), None)
            if index is None:
                raise NoSpaceError("no free socket slot")
            slot = self._slots[index]
            slot.in_use = True
            leftover, slot.sock = slot.sock, None
        if leftover is not None:
            leftover.close()
        try:
            udp = _socket.socket(_socket.AF_INET, _socket.SOCK_DGRAM)
        except OSError:
            with self._table_lock:
                slot.in_use = False
            raise
        with slot.lock:
            slot.sock = udp
            slot.dest = None
            slot.send = SendWindow()
            slot.recv = ReceiveWindow()
        return index

    def bind(self, sockfd: int, src_addr: Address, dest_addr: Address) -> None:
        """Bind the socket to ``src_addr`` and fix ``dest_addr`` as its peer."""
        slot = self._slot(sockfd)
        src = _normalize(src_addr)
        dest = _normalize(dest_addr)
        with slot.lock:
            if slot.sock is None:
                raise _os_error(errno.EBADF)
            slot.sock.bind(src)
            slot.dest = dest

    def sendto(self, sockfd: int, data: bytes, dest_addr: Address) -> int:
        """Queue ``data`` for reliable delivery to the bound peer.

        Raises OSError(EMSGSIZE) for messages longer than MSG_SIZE,
        NotBoundError when ``dest_addr`` is not the bound peer and
        NoSpaceError when the send buffer is full.
        """
        slot = self._slot(sockfd)
        if len(data) > MSG_SIZE:
            raise _os_error(errno.EMSGSIZE)
        dest = _normalize(dest_addr)
        with slot.lock:
            if slot.dest is None or dest != slot.dest:
                raise NotBoundError()
            return slot.send.enqueue(bytes(data))

    def recvfrom(self, sockfd: int) -> Tuple[bytes, Optional[Address]]:
        """Return the next in-order message and the peer's address.

        Raises NoMessageError when no message is waiting.
        """
        slot = self._slot(sockfd)
        with slot.lock:
            message = slot.recv.deliver()
            return message, slot.dest

    def close(self, sockfd: int) -> None:
        """Release the socket; its UDP socket is closed by the collector."""
        slot = self._slot(sockfd)
        with slot.lock:
            slot.in_use = False

    def statistics(self) -> Statistics:
        """Return a snapshot of the traffic counters."""
        with self._stats_lock:
            return replace(self._stats)

    # ----------------------------------------------------------------- internals

    def _count(self, *, messages: int = 0, transmissions: int = 0, acks: int = 0) -> None:
        with self._stats_lock:
            self._stats.messages += messages
            self._stats.transmissions += transmissions
            self._stats.acks += acks

    @staticmethod
    def _transmit(sock: _socket.socket, data: bytes, addr: Optional[Address]) -> None:
        if addr is None:
            return
        try:
            sock.sendto(data, addr)
        except OSError:
            pass

    def _send_ack(self, slot: _Slot, ack: Tuple[int, int], special: bool) -> None:
        if slot.sock is None or slot.dest is None:
            return
        self._count(acks=1)
        self._transmit(slot.sock, encode_ack(ack[0], ack[1], special), slot.dest)

    def _collector_loop(self) -> None:
        while not self._stop.is_set():
            with self._table_lock:
                for slot in self._slots:
                    with slot.lock:
                        if not slot.in_use and slot.sock is not None:
                            slot.sock.close()
                            slot.sock = None
                            slot.dest = None
            self._stop.wait(2 * self.timeout)

    def _sender_loop(self) -> None:
        while not self._stop.is_set():
            for slot in self._slots:
                with slot.lock:
                    if not slot.in_use or slot.sock is None or slot.dest is None:
                        continue
                    for seq, payload in slot.send.due_packets(time.monotonic(), self.timeout):
                        self._count(transmissions=1)
                        self._transmit(slot.sock, encode_data(seq, payload), slot.dest)
            self._stop.wait(self._interval)

    def _receiver_loop(self) -> None:
        while not self._stop.is_set():
            with self._table_lock:
                active = [
                    (slot, slot.sock)
                    for slot in self._slots
                    if slot.in_use and slot.sock is not None
                ]
            if not active:
                self._stop.wait(self._interval)
                continue
            try:
                readable, _, _ = select.select(
                    [sock for _, sock in active], [], [], self._interval
                )
            except (OSError, ValueError):
                continue
            if not readable:
                self._refresh_windows()
                continue
            ready = set(readable)
            for slot, sock in active:
                if sock in ready:
                    self._receive(slot, sock)

    def _refresh_windows(self) -> None:
        for slot in self._slots:
            with slot.lock:
                if not slot.in_use:
                    continue
                ack = slot.recv.refresh()
                if ack is not None:
                    self._send_ack(slot, ack, special=True)

    def _receive(self, slot: _Slot, sock: _socket.socket) -> None:
        try:
            data, _ = sock.recvfrom(DATA_PACKET_SIZE + 16)
        except OSError:
            return
        if drop_message(self.p, self._rng):
            return
        try:
            packet = decode_packet(data)
        except ValueError:
            return
        with slot.lock:
            if not slot.in_use or slot.sock is not sock:
                return
            if packet.type is PacketType.EMPTY:
                slot.recv.on_empty()
            elif packet.type is PacketType.DATA:
                ack = slot.recv.on_data(packet.seq_num, packet.payload)
                if ack is not None:
                    self._send_ack(slot, ack, special=False)
            else:
                confirmed = slot.send.on_ack(packet.seq_num, packet.window_size)
                if confirmed:
                    self._count(messages=confirmed)
                if packet.window_size > 0 and packet.special and slot.send.next_is_empty():
                    self._count(transmissions=1)
                    self._transmit(sock, encode_empty(), slot.dest)