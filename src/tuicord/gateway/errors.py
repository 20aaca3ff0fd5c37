from __future__ import annotations


class GatewayError(RuntimeError):
    """Base class for everything the gateway client raises."""


class TransportError(GatewayError):
    """Connect, read or write failure on the socket. Always retried."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class DecodeError(GatewayError):
    """A single inbound frame could not be decoded; the frame is dropped."""


class ProtocolViolation(GatewayError):
    """The server invalidated our session."""

    def __init__(self, message: str, *, resumable: bool) -> None:
        super().__init__(message)
        self.resumable = resumable


class AuthenticationError(GatewayError):
    """Identify was rejected. Terminal, never retried."""


class ZombieConnection(GatewayError):
    """A heartbeat came due before the previous one was acknowledged."""


class HelloTimeout(GatewayError):
    pass


class ReconnectRequested(GatewayError):
    pass


class SubscriberOverflow(GatewayError):
    """The subscriber fell behind its buffer and was disconnected."""

    def __init__(self, capacity: int) -> None:
        super().__init__(f"subscriber buffer of {capacity} events overflowed")
        self.capacity = capacity


class CommandChannelClosed(GatewayError):
    pass
