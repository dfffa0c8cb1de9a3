import errno
import random
import socket
import time

import pytest

from ktp.protocol import (
    MSG_SIZE,
    SEND_BUFF_SIZE,
    NoMessageError,
    NoSpaceError,
    NotBoundError,
)
from ktp.stack import KTPStack, Statistics


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


def _pair(stack):
    a_addr = ("127.0.0.1", _free_port())
    b_addr = ("127.0.0.1", _free_port())
    a = stack.socket()
    b = stack.socket()
    stack.bind(a, a_addr, b_addr)
    stack.bind(b, b_addr, a_addr)
    return a, a_addr, b, b_addr


def _receive(stack, fd, deadline):
    while time.monotonic() < deadline:
        try:
            return stack.recvfrom(fd)
        except NoMessageError:
            time.sleep(0.01)
    raise AssertionError("message not delivered in time")


def test_socket_slots_are_distinct_and_limited():
    stack = KTPStack(capacity=2)
    try:
        first = stack.socket()
        second = stack.socket()
        assert {first, second} == {0, 1}
        with pytest.raises(NoSpaceError):
            stack.socket()
    finally:
        stack.stop()


def test_closed_slot_is_reused():
    stack = KTPStack(capacity=1)
    try:
        fd = stack.socket()
        stack.close(fd)
        assert stack.socket() == fd
    finally:
        stack.stop()


def test_bad_descriptor():
    stack = KTPStack(capacity=2)
    with pytest.raises(OSError) as info:
        stack.recvfrom(1)
    assert info.value.errno == errno.EBADF
    with pytest.raises(OSError) as info:
        stack.close(-1)
    assert info.value.errno == errno.EBADF


def test_bind_rejects_invalid_address():
    stack = KTPStack()
    try:
        fd = stack.socket()
        with pytest.raises(OSError) as info:
            stack.bind(fd, ("not-an-ip", 1), ("127.0.0.1", 2))
        assert info.value.errno == errno.EINVAL
    finally:
        stack.stop()


def test_sendto_checks_destination_and_size():
    stack = KTPStack()
    try:
        a, _, _, b_addr = _pair(stack)
        with pytest.raises(NotBoundError):
            stack.sendto(a, b"hello", ("127.0.0.1", b_addr[1] + 1))
        with pytest.raises(OSError) as info:
            stack.sendto(a, b"x" * (MSG_SIZE + 1), b_addr)
        assert info.value.errno == errno.EMSGSIZE
        assert stack.sendto(a, b"hello", b_addr) == 5
    finally:
        stack.stop()


def test_send_buffer_fills_up():
    stack = KTPStack()
    try:
        a, _, _, b_addr = _pair(stack)
        accepted = 0
        with pytest.raises(NoSpaceError):
            while True:
                stack.sendto(a, b"m", b_addr)
                accepted += 1
        assert accepted == SEND_BUFF_SIZE
    finally:
        stack.stop()


def test_recvfrom_without_message():
    stack = KTPStack()
    try:
        fd = stack.socket()
        with pytest.raises(NoMessageError):
            stack.recvfrom(fd)
    finally:
        stack.stop()


def test_messages_delivered_in_order():
    with KTPStack(p=0.0, timeout=0.2, rng=random.Random(0)) as stack:
        a, a_addr, b, b_addr = _pair(stack)
        payloads = [b"first", b"second", b"third"]
        for payload in payloads:
            stack.sendto(a, payload, b_addr)
        deadline = time.monotonic() + 10
        received = [_receive(stack, b, deadline) for _ in payloads]
        assert [m for m, _ in received] == [p.ljust(MSG_SIZE, b"\0") for p in payloads]
        assert all(addr == a_addr for _, addr in received)
        while stack.statistics().messages < len(payloads) and time.monotonic() < deadline:
            time.sleep(0.02)
        stats = stack.statistics()
        assert stats.messages == len(payloads)
        assert stats.transmissions >= len(payloads)
        assert stats.acks >= 1


def test_delivery_survives_drops():
    with KTPStack(p=0.3, timeout=0.2, rng=random.Random(7)) as stack:
        a, _, b, b_addr = _pair(stack)
        payloads = [f"line {n}\n".encode() for n in range(5)]
        for payload in payloads:
            stack.sendto(a, payload, b_addr)
        deadline = time.monotonic() + 30
        received = [_receive(stack, b, deadline)[0] for _ in payloads]
        assert received == [p.ljust(MSG_SIZE, b"\0") for p in payloads]


def test_flow_control_beyond_buffer():
    with KTPStack(p=0.0, timeout=0.2, rng=random.Random(3)) as stack:
        a, _, b, b_addr = _pair(stack)
        payloads = [f"message {n}".encode() for n in range(25)]
        sent = 0
        received = []
        deadline = time.monotonic() + 60
        while len(received) < len(payloads) and time.monotonic() < deadline:
            if sent < len(payloads):
                try:
                    stack.sendto(a, payloads[sent], b_addr)
                    sent += 1
                except NoSpaceError:
                    pass
            try:
                received.append(stack.recvfrom(b)[0])
            except NoMessageError:
                time.sleep(0.01)
        assert received == [p.ljust(MSG_SIZE, b"\0") for p in payloads]


def test_stop_releases_sockets():
    with KTPStack(timeout=0.2) as stack:
        fd = stack.socket()
    with pytest.raises(OSError) as info:
        stack.recvfrom(fd)
    assert info.value.errno == errno.EBADF


def test_report_without_messages():
    text = Statistics().report(0.05)
    assert "Value of P: 0.050000" in text
    assert "No messages sent" in text
    assert "Total Messages Sent" not in text


def test_report_with_messages():
    text = Statistics(messages=2, transmissions=4, acks=3).report(0.0)
    lines = text.splitlines()
    assert "Total Messages Sent: 2" in lines
    assert "Total Times Message Sent: 4" in lines
    assert "Total Times Ack Sent: 3" in lines
    assert "Average Messages Sent per Message: 2.000000" in lines
    assert lines.count("-" * 40) == 2