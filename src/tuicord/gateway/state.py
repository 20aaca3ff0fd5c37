"""Connection states, intents and presence values."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntFlag, StrEnum
from typing import Literal


class GatewayIntents(IntFlag):
    GUILDS = 1 << 0
    GUILD_MEMBERS = 1 << 1
    GUILD_MODERATION = 1 << 2
    GUILD_EXPRESSIONS = 1 << 3
    GUILD_INTEGRATIONS = 1 << 4
    GUILD_WEBHOOKS = 1 << 5
    GUILD_INVITES = 1 << 6
    GUILD_VOICE_STATES = 1 << 7
    GUILD_PRESENCES = 1 << 8
    GUILD_MESSAGES = 1 << 9
    GUILD_MESSAGE_REACTIONS = 1 << 10
    GUILD_MESSAGE_TYPING = 1 << 11
    DIRECT_MESSAGES = 1 << 12
    DIRECT_MESSAGE_REACTIONS = 1 << 13
    DIRECT_MESSAGE_TYPING = 1 << 14
    MESSAGE_CONTENT = 1 << 15
    GUILD_SCHEDULED_EVENTS = 1 << 16

    @classmethod
    def default(cls) -> GatewayIntents:
        """Everything a chat client renders: guilds, messages, typing, presence."""
        return (
            cls.GUILDS
            | cls.GUILD_MEMBERS
            | cls.GUILD_PRESENCES
            | cls.GUILD_MESSAGES
            | cls.GUILD_MESSAGE_REACTIONS
            | cls.GUILD_MESSAGE_TYPING
            | cls.DIRECT_MESSAGES
            | cls.DIRECT_MESSAGE_REACTIONS
            | cls.DIRECT_MESSAGE_TYPING
            | cls.MESSAGE_CONTENT
        )


class PresenceStatus(StrEnum):
    ONLINE = "online"
    IDLE = "idle"
    DND = "dnd"
    INVISIBLE = "invisible"
    OFFLINE = "offline"


type ConnectionKind = Literal[
    "disconnected",
    "connecting",
    "awaiting_hello",
    "identifying",
    "resuming",
    "connected",
    "reconnecting",
    "shutting_down",
    "failed",
]


@dataclass(frozen=True, slots=True)
class Disconnected:
    kind: Literal["disconnected"] = field(default="disconnected", init=False)


@dataclass(frozen=True, slots=True)
class Connecting:
    kind: Literal["connecting"] = field(default="connecting", init=False)
    url: str
    resuming: bool = False


@dataclass(frozen=True, slots=True)
class AwaitingHello:
    kind: Literal["awaiting_hello"] = field(default="awaiting_hello", init=False)


@dataclass(frozen=True, slots=True)
class Identifying:
    kind: Literal["identifying"] = field(default="identifying", init=False)


@dataclass(frozen=True, slots=True)
class Resuming:
    kind: Literal["resuming"] = field(default="resuming", init=False)
    session_id: str
    sequence: int


@dataclass(frozen=True, slots=True)
class Connected:
    kind: Literal["connected"] = field(default="connected", init=False)
    since: float
    resumed: bool = False


@dataclass(frozen=True, slots=True)
class Reconnecting:
    kind: Literal["reconnecting"] = field(default="reconnecting", init=False)
    attempt: int
    backoff_until: float
    reason: str


@dataclass(frozen=True, slots=True)
class ShuttingDown:
    kind: Literal["shutting_down"] = field(default="shutting_down", init=False)


@dataclass(frozen=True, slots=True)
class Failed:
    """Terminal: the server rejected our credentials."""

    kind: Literal["failed"] = field(default="failed", init=False)
    error: str


type ConnectionState = (
    Disconnected
    | Connecting
    | AwaitingHello
    | Identifying
    | Resuming
    | Connected
    | Reconnecting
    | ShuttingDown
    | Failed
)

TERMINAL_KINDS: frozenset[str] = frozenset({"shutting_down", "failed"})
