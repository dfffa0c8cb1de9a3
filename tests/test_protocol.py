import random

import pytest

from ktp import protocol
from ktp.protocol import (
    KTPError,
    NoMessageError,
    NoSpaceError,
    NotBoundError,
    Packet,
    PacketType,
    decode_packet,
    drop_message,
    encode_ack,
    encode_data,
    encode_empty,
    from_bits,
    to_bits,
)


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def test_to_bits_extremes():
    assert to_bits(0, 8) == "00000000"
    assert to_bits(255, 8) == "11111111"


@pytest.mark.parametrize("value", range(256))
def test_bits_round_trip(value):
    bits = to_bits(value, 8)
    assert len(bits) == 8
    assert from_bits(bits) == value
    assert from_bits(bits.encode("ascii")) == value


@pytest.mark.parametrize("value", [-1, 256, 1000])
def test_to_bits_out_of_range(value):
    with pytest.raises(ValueError):
        to_bits(value, 8)


@pytest.mark.parametrize("bits", ["", "0102", "abc", b"10x0"])
def test_from_bits_rejects_garbage(bits):
    with pytest.raises(ValueError):
        from_bits(bits)


def test_empty_packet_wire_form():
    assert encode_empty() == b"01"
    assert len(encode_empty()) == protocol.EMPTY_PACKET_SIZE


def test_ack_wire_layout():
    raw = encode_ack(7, 10, False)
    assert len(raw) == 18
    assert raw[:2] == b"10"
    assert raw[2:10] == to_bits(7).encode("ascii")
    assert raw[10:18] == to_bits(10).encode("ascii")


def test_special_ack_flag():
    assert encode_ack(0, 3, True)[:2] == b"11"


def test_data_wire_layout():
    raw = encode_data(42, b"hello")
    assert len(raw) == protocol.MSG_SIZE + 10
    assert raw[:2] == b"00"
    assert raw[2:10] == to_bits(42).encode("ascii")
    assert raw[10:15] == b"hello"
    assert set(raw[15:]) == {0}


def test_data_payload_too_long():
    with pytest.raises(ValueError):
        encode_data(1, b"x" * (protocol.MSG_SIZE + 1))


def test_decode_data_round_trip():
    payload = b"line of text\n".ljust(protocol.MSG_SIZE, b"\0")
    packet = decode_packet(encode_data(200, payload))
    assert packet == Packet(PacketType.DATA, seq_num=200, payload=payload)


@pytest.mark.parametrize("special", [False, True])
def test_decode_ack_round_trip(special):
    packet = decode_packet(encode_ack(255, 9, special))
    assert packet.type is PacketType.ACK
    assert packet.seq_num == 255
    assert packet.window_size == 9
    assert packet.special is special


def test_decode_empty():
    assert decode_packet(encode_empty()).type is PacketType.EMPTY


def test_decode_short_data_is_padded():
    packet = decode_packet(b"00" + to_bits(3).encode("ascii") + b"abc")
    assert len(packet.payload) == protocol.MSG_SIZE
    assert packet.payload.startswith(b"abc")


@pytest.mark.parametrize(
    "raw",
    [b"", b"0", b"2000000000", b"1000000", b"0000", b"0x00000000", b"10abcdefgh00000000"],
)
def test_decode_rejects_malformed(raw):
    with pytest.raises(ValueError):
        decode_packet(raw)


def test_drop_message_threshold_inclusive():
    assert drop_message(0.5, FixedRandom(0.5)) is True
    assert drop_message(0.49, FixedRandom(0.5)) is False


def test_drop_message_certain_and_never():
    rng = random.Random(1)
    assert all(drop_message(1.0, rng) for _ in range(100))
    assert not any(drop_message(-1.0, rng) for _ in range(100))


def test_drop_message_rate_roughly_p():
    rng = random.Random(12345)
    drops = sum(drop_message(protocol.DROP_PROBABILITY, rng) for _ in range(20000))
    assert 0.03 < drops / 20000 < 0.07


@pytest.mark.parametrize(
    "error_cls, code",
    [(NoSpaceError, 999), (NotBoundError, 998), (NoMessageError, 997)],
)
def test_error_codes(error_cls, code):
    err = error_cls()
    assert err.errno == code
    assert isinstance(err, KTPError)
    assert isinstance(err, OSError)


def test_error_custom_message():
    err = NoSpaceError("send buffer full")
    assert err.strerror == "send buffer full"
    assert err.errno == protocol.ENOSPACE