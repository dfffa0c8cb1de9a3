# ktp

`ktp` is a small, reliable message transport that runs on top of UDP.
Messages are fixed-size: 512 bytes each, padded with NUL bytes. Each one
carries an 8-bit sequence number.

The receiver acknowledges what it has received in order and tells the sender
how much buffer room it has left. The sender never has more messages in
flight than that window allows. It sends unacknowledged messages again after
a timeout.

The receiver can also drop incoming packets on purpose, with a set
probability, so you can watch the protocol recover.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Using the stack from Python

`ktp.stack.KTPStack` holds a fixed table of sockets, 30 by default. It runs
three background threads:

- a receiver that applies data and acknowledgements;
- a sender that transmits and retransmits;
- a collector that closes the UDP sockets of released slots.

Use it as a context manager. The threads start on entry. On exit they stop
and every socket is closed.

```python
from ktp.stack import KTPStack
from ktp.protocol import NoSpaceError, NoMessageError

with KTPStack() as stack:
    fd = stack.socket()
    stack.bind(fd, ("127.0.0.1", 5000), ("127.0.0.1", 6000))
    try:
        stack.sendto(fd, b"hello", ("127.0.0.1", 6000))
    except NoSpaceError:
        pass  # the send buffer is full; try again later
    try:
        message, peer = stack.recvfrom(fd)
    except NoMessageError:
        pass  # nothing has arrived in order yet
    stack.close(fd)
```

`KTPStack(p=0.05, timeout=5, capacity=30, rng=None)` takes these parameters:

- `p` is the probability of dropping an incoming packet.
- `timeout` is the retransmission timeout, in seconds.
- `capacity` is the number of socket slots.
- `rng` is an optional `random.Random` used for the drop decisions.

The socket methods report failures by raising `OSError`. The protocol's own
conditions raise subclasses of `ktp.protocol.KTPError`, which is itself an
`OSError`:

| Method | Raises |
| --- | --- |
| `socket()` | `NoSpaceError` when every slot is taken |
| `bind(fd, src, dest)` | `OSError` (`EINVAL`) for an address that is not an IPv4 `(host, port)` pair, and any error from binding the UDP socket |
| `sendto(fd, data, dest)` | `OSError` (`EMSGSIZE`) for more than 512 bytes; `NotBoundError` when `dest` is not the bound peer; `NoSpaceError` when the send buffer of 10 messages is full |
| `recvfrom(fd)` | `NoMessageError` when no in-order message is waiting |
| `close(fd)` | nothing of its own |

On success, `recvfrom(fd)` returns the 512-byte message and the peer's address.

`close(fd)` releases the slot. The collector closes the slot's UDP socket
later.

Every method raises `OSError` (`EBADF`) when given a descriptor that is not
in use.

`stack.statistics()` returns a `Statistics` snapshot with three counters:

- `messages`: messages that were acknowledged;
- `transmissions`: data and empty packets sent;
- `acks`: acknowledgements sent.

`Statistics.report(p)` renders these counters as a text summary.

The wire format lives in `ktp.protocol`:

- `encode_data`, `encode_ack` and `encode_empty` build packets.
- `decode_packet` parses a packet into a `Packet`.
- `to_bits` and `from_bits` convert to and from the `'0'`/`'1'` characters used in packet headers.

The sliding windows are `SendWindow` and `ReceiveWindow` in `ktp.window`.

## Sending a file between two endpoints

Each command is given two addresses:

1. its own IPv4 address and port;
2. the address and port of its peer.

Start the receiver in one terminal:

```
ktp-receive 127.0.0.1 6000 127.0.0.1 5000
```

Then start the sender in a second terminal:

```
ktp-send 127.0.0.1 5000 127.0.0.1 6000
```

`ktp-send` reads `input.txt` one line at a time and sends each line as one
message. A line longer than 511 bytes is split across several messages. Use
`--input PATH` to send another file.

After the last line it sends an end marker, a message made entirely of `$`.
It then keeps running so that lost messages can still be retransmitted. On
Ctrl-C it prints the statistics summary and exits.

`ktp-receive` writes the text of every message before the end marker to
`output.txt`. The text of a message is its bytes before the first NUL. Use
`--output PATH` to write another file.

Once the file is written, `ktp-receive` keeps running, so that it can go on
acknowledging the sender, until you press Ctrl-C.

To check that the file arrived intact:

```
ktp-check [EXPECTED] [ACTUAL]
```

`EXPECTED` and `ACTUAL` default to `input.txt` and `output.txt`. The two files
are compared line by line, as far as the shorter one goes. The command then
does one of two things:

- It reports the first line that differs. When there is one, it also shows up
  to 100 characters of the expected line, starting at the first character that
  occurs nowhere in the received line.
- It says that the files are identical.

From Python, `ktp.checker.compare_files` returns the first difference as a
`Mismatch`, or `None` when the lines agree.

## What it does not do

A `KTPStack` and its sockets live inside one Python process. There is no
separate service that holds a socket table shared by several programs.
Each of `ktp-send` and `ktp-receive` runs its own stack.