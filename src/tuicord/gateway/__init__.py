from .client import GatewayClient, GatewayConfig, GatewayStats
from .commands import (
    GatewayCommand,
    Heartbeat,
    Identify,
    Resume,
    TypingStart,
    UpdatePresence,
)
from .dispatcher import EventDispatcher, EventSubscription
from .errors import (
    AuthenticationError,
    DecodeError,
    GatewayError,
    ProtocolViolation,
    SubscriberOverflow,
    TransportError,
    ZombieConnection,
)
from .events import DispatchEvent
from .identity import ClientIdentity, ClientProperties
from .state import ConnectionState, GatewayIntents, PresenceStatus
from .typing_indicators import (
    TYPING_TTL,
    TypingIndicatorManager,
    TypingIndicatorState,
    TypingUser,
)

__all__ = [
    "AuthenticationError",
    "ClientIdentity",
    "ClientProperties",
    "ConnectionState",
    "DecodeError",
    "DispatchEvent",
    "EventDispatcher",
    "EventSubscription",
    "GatewayClient",
    "GatewayCommand",
    "GatewayConfig",
    "GatewayError",
    "GatewayIntents",
    "GatewayStats",
    "Heartbeat",
    "Identify",
    "PresenceStatus",
    "ProtocolViolation",
    "Resume",
    "SubscriberOverflow",
    "TYPING_TTL",
    "TransportError",
    "TypingIndicatorManager",
    "TypingIndicatorState",
    "TypingStart",
    "TypingUser",
    "UpdatePresence",
    "ZombieConnection",
]
