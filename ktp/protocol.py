"""Wire format, constants and errors of the KTP reliable datagram protocol.

Every packet is an ASCII header followed by an optional payload:

* data packet:   ``'0' '0' <seq:8 bits> <payload:MSG_SIZE bytes>``
* empty packet:  ``'0' '1'``
* ack packet:    ``'1' <special:'0'|'1'> <seq:8 bits> <window:8 bits>``

Bits are written as the characters ``'0'`` and ``'1'``, most significant first.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass
from typing import Optional, Protocol, Union

DROP_PROBABILITY = 0.05
TIMEOUT = 5
MAX_SOCKETS = 30
SOCK_KTP = 5555
SEND_BUFF_SIZE = 10
RECV_BUFF_SIZE = 10
MAX_SEQ_NUM = 256
MSG_SIZE = 512

SEQ_BITS = 8
HEADER_SIZE = 2 + SEQ_BITS
DATA_PACKET_SIZE = MSG_SIZE + HEADER_SIZE
ACK_PACKET_SIZE = 2 + 2 * SEQ_BITS
EMPTY_PACKET_SIZE = 2

ENOSPACE = 999
ENOTBOUND = 998
ENOMESSAGE = 997


class KTPError(OSError):
    """Base class of errors reported by KTP sockets."""

    code: int = 0
    default_message = "KTP error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(self.code, message or self.default_message)


class NoSpaceError(KTPError):
    """No free socket slot or no free send-buffer space."""

    code = ENOSPACE
    default_message = "no space available"


class NotBoundError(KTPError):
    """The destination does not match the address the socket is bound to."""

    code = ENOTBOUND
    default_message = "destination not bound"


class NoMessageError(KTPError):
    """No in-order message is waiting to be delivered."""

    code = ENOMESSAGE
    default_message = "no message available"


class PacketType(enum.Enum):
    """Kinds of packet carried on the wire."""

    DATA = "data"
    EMPTY = "empty"
    ACK = "ack"


@dataclass(frozen=True)
class Packet:
    """A decoded packet.

    ``special`` marks an acknowledgement that announces freed receive space.
    """

    type: PacketType
    seq_num: int = 0
    window_size: int = 0
    payload: bytes = b""
    special: bool = False


BitString = Union[str, bytes, bytearray]


def to_bits(value: int, width: int = SEQ_BITS) -> str:
    """Render ``value`` as ``width`` characters of '0'/'1', most significant first."""
    if width <= 0:
        raise ValueError("width must be positive")
    if not 0 <= value < (1 << width):
        raise ValueError(f"{value} does not fit in {width} bits")
    return format(value, f"0{width}b")


def from_bits(bits: BitString) -> int:
    """Parse a string of '0'/'1' characters into an integer."""
    text = bits.decode("ascii", "replace") if isinstance(bits, (bytes, bytearray)) else bits
    if not text or any(ch not in "01" for ch in text):
        raise ValueError(f"not a bit string: {text!r}")
    return int(text, 2)


def encode_data(seq_num: int, payload: bytes) -> bytes:
    """Build a data packet; the payload is padded with NUL bytes to MSG_SIZE."""
    body = bytes(payload)
    if len(body) > MSG_SIZE:
        raise ValueError(f"payload longer than {MSG_SIZE} bytes")
    header = b"00" + to_bits(seq_num).encode("ascii")
    return header + body.ljust(MSG_SIZE, b"\0")


def encode_ack(seq_num: int, window_size: int, special: bool = False) -> bytes:
    """Build an acknowledgement carrying the last in-order number and window size."""
    return (
        b"1"
        + (b"1" if special else b"0")
        + to_bits(seq_num).encode("ascii")
        + to_bits(window_size).encode("ascii")
    )


def encode_empty() -> bytes:
    """Build the empty packet that confirms a space-available acknowledgement."""
    return b"01"


def decode_packet(data: bytes) -> Packet:
    """Parse raw bytes received from the network into a :class:`Packet`."""
    raw = bytes(data)
    if len(raw) < 2:
        raise ValueError("packet too short")
    kind, flag = raw[0:1], raw[1:2]
    if flag not in (b"0", b"1"):
        raise ValueError(f"bad packet flag {flag!r}")
    if kind == b"0":
        if flag == b"1":
            return Packet(PacketType.EMPTY)
        if len(raw) < HEADER_SIZE:
            raise ValueError("data packet too short")
        seq_num = from_bits(raw[2:HEADER_SIZE])
        payload = raw[HEADER_SIZE:HEADER_SIZE + MSG_SIZE].ljust(MSG_SIZE, b"\0")
        return Packet(PacketType.DATA, seq_num=seq_num, payload=payload)
    if kind == b"1":
        if len(raw) < ACK_PACKET_SIZE:
            raise ValueError("ack packet too short")
        return Packet(
            PacketType.ACK,
            seq_num=from_bits(raw[2:HEADER_SIZE]),
            window_size=from_bits(raw[HEADER_SIZE:ACK_PACKET_SIZE]),
            special=flag == b"1",
        )
    raise ValueError(f"unknown packet kind {kind!r}")


class _RandomSource(Protocol):
    def random(self) -> float: ...


def drop_message(p: float = DROP_PROBABILITY, rng: Optional[_RandomSource] = None) -> bool:
    """Decide whether to simulate the loss of a packet, with probability ``p``."""
    source = rng if rng is not None else random
    return source.random() <= p