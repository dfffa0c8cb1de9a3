"""A reliable, flow-controlled message transport over UDP, with file send, receive and compare commands."""

__version__ = "0.1.0"