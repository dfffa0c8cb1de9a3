"""Send the lines of a text file over a KTP socket.

Each message is one line of the file, read the way ``fgets`` reads it: at
most ``size - 1`` bytes, stopping after a newline. Messages travel padded
with NUL bytes to the full message size. The end of the file is marked by a
message made entirely of ``'$'`` characters.
"""

from __future__ import annotations

import argparse
import signal
import sys
import time
from typing import Iterator, List, Optional, Union

from .protocol import MSG_SIZE, NoSpaceError
from .stack import Address, KTPStack

WAITING_TIME = 1
INPUT_FILE = "input.txt"


def read_messages(path: str, size: int = MSG_SIZE) -> Iterator[bytes]:
    """Yield the file's content in line-sized chunks of at most ``size - 1`` bytes."""
    if size < 2:
        raise ValueError("message size must be at least 2")
    with open(path, "rb") as stream:
        while chunk := stream.readline(size - 1):
            yield chunk


def pad_message(text: Union[str, bytes], size: int = MSG_SIZE) -> bytes:
    """Pad a message with NUL bytes to exactly ``size`` bytes."""
    body = text.encode("utf-8") if isinstance(text, str) else bytes(text)
    if len(body) > size:
        raise ValueError(f"message longer than {size} bytes")
    return body.ljust(size, b"\0")


def end_marker(size: int = MSG_SIZE) -> bytes:
    """The message that marks the end of the transfer: ``size`` dollar signs."""
    return b"$" * size


def _send_reliably(stack, sockfd: int, message: bytes, dest_addr: Address, wait: float) -> None:
    while True:
        try:
            stack.sendto(sockfd, message, dest_addr)
            return
        except NoSpaceError:
            time.sleep(wait)


def send_file(stack, sockfd: int, path: str, dest_addr: Address, wait: float = WAITING_TIME) -> int:
    """Queue every line of ``path`` and then the end marker; return the line count.

    When the send buffer is full the call sleeps ``wait`` seconds and tries
    again. Any other socket error is raised.
    """
    count = 0
    for chunk in read_messages(path):
        _send_reliably(stack, sockfd, pad_message(chunk), dest_addr, wait)
        count += 1
        print(f"Sent Message No: {count}")
    _send_reliably(stack, sockfd, end_marker(), dest_addr, wait)
    print("End Sent")
    return count


def _parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog, description="Send a text file to a peer over KTP."
    )
    parser.add_argument("src_ip", help="local IPv4 address")
    parser.add_argument("src_port", type=int, help="local port")
    parser.add_argument("dest_ip", help="peer IPv4 address")
    parser.add_argument("dest_port", type=int, help="peer port")
    parser.add_argument("--input", default=INPUT_FILE, help="file to send")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Send a file and keep serving retransmissions until interrupted."""
    args = _parser("ktp-send").parse_args(argv)
    src = (args.src_ip, args.src_port)
    dest = (args.dest_ip, args.dest_port)
    with KTPStack() as stack:
        try:
            fd = stack.socket()
        except OSError as exc:
            print(f"k_socket: {exc}", file=sys.stderr)
            return 1
        print("Socket created successfully")
        try:
            stack.bind(fd, src, dest)
        except OSError as exc:
            print(f"k_bind: {exc}", file=sys.stderr)
            return 1
        print(
            f"Bind successful from IP addr {src[0]} and port {src[1]} "
            f"to IP addr {dest[0]} and port {dest[1]}"
        )
        try:
            send_file(stack, fd, args.input, dest)
            while True:
                time.sleep(WAITING_TIME)
        except KeyboardInterrupt:
            print(f"\nSignal {signal.SIGINT.value} received")
            print("Exiting")
        except OSError as exc:
            print(f"k_sendto: {exc}", file=sys.stderr)
            return 1
        print()
        print(stack.statistics().report(stack.p), end="")
    return 0