"""Typed dispatch events (subset of the gateway's event catalogue)."""

from __future__ import annotations

from typing import Any, ClassVar

import msgspec

from .errors import DecodeError

__all__ = [
    "ChannelCreateEvent",
    "ChannelDeleteEvent",
    "ChannelUpdateEvent",
    "DispatchEvent",
    "GuildCreateEvent",
    "GuildDeleteEvent",
    "GuildUpdateEvent",
    "Member",
    "MessageCreateEvent",
    "MessageDeleteEvent",
    "MessageUpdateEvent",
    "PartialUser",
    "PresenceUpdateEvent",
    "ReadyEvent",
    "ResumedEvent",
    "TypingStartEvent",
    "UnknownEvent",
    "decode_event",
]


class PartialUser(msgspec.Struct, frozen=True, kw_only=True):
    id: str
    username: str | None = None
    global_name: str | None = None
    discriminator: str | None = None
    bot: bool = False

    @property
    def display_name(self) -> str:
        return self.global_name or self.username or self.id


class Member(msgspec.Struct, frozen=True, kw_only=True):
    user: PartialUser | None = None
    nick: str | None = None


class PartialGuild(msgspec.Struct, frozen=True, kw_only=True):
    id: str
    unavailable: bool = False


class ReadyEvent(msgspec.Struct, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "READY"

    session_id: str
    user: PartialUser
    resume_gateway_url: str | None = None
    guilds: tuple[PartialGuild, ...] = ()
    v: int | None = None


class ResumedEvent(msgspec.Struct, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "RESUMED"


class MessageCreateEvent(msgspec.Struct, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "MESSAGE_CREATE"

    id: str
    channel_id: str
    author: PartialUser
    content: str = ""
    guild_id: str | None = None
    member: Member | None = None
    timestamp: str | None = None
    nonce: str | int | None = None


class MessageUpdateEvent(msgspec.Struct, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "MESSAGE_UPDATE"

    id: str
    channel_id: str
    guild_id: str | None = None
    author: PartialUser | None = None
    content: str | None = None
    edited_timestamp: str | None = None


class MessageDeleteEvent(msgspec.Struct, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "MESSAGE_DELETE"

    id: str
    channel_id: str
    guild_id: str | None = None


class TypingStartEvent(msgspec.Struct, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "TYPING_START"

    channel_id: str
    user_id: str
    timestamp: int | None = None
    guild_id: str | None = None
    member: Member | None = None


class PresenceUpdateEvent(msgspec.Struct, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "PRESENCE_UPDATE"

    user: PartialUser
    status: str
    guild_id: str | None = None


class _ChannelEvent(msgspec.Struct, frozen=True, kw_only=True):
    id: str
    kind: int = msgspec.field(default=0, name="type")
    guild_id: str | None = None
    name: str | None = None
    parent_id: str | None = None
    position: int | None = None


class ChannelCreateEvent(_ChannelEvent, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "CHANNEL_CREATE"


class ChannelUpdateEvent(_ChannelEvent, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "CHANNEL_UPDATE"


class ChannelDeleteEvent(_ChannelEvent, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "CHANNEL_DELETE"


class _GuildEvent(msgspec.Struct, frozen=True, kw_only=True):
    id: str
    name: str | None = None
    icon: str | None = None
    unavailable: bool = False


class GuildCreateEvent(_GuildEvent, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "GUILD_CREATE"


class GuildUpdateEvent(_GuildEvent, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "GUILD_UPDATE"


class GuildDeleteEvent(_GuildEvent, frozen=True, kw_only=True):
    event_name: ClassVar[str] = "GUILD_DELETE"


class UnknownEvent(msgspec.Struct, frozen=True, kw_only=True):
    """An event this client does not model; the raw payload is kept."""

    event_name: ClassVar[str] = "UNKNOWN"

    name: str
    data: Any = None


type DispatchEvent = (
    ReadyEvent
    | ResumedEvent
    | MessageCreateEvent
    | MessageUpdateEvent
    | MessageDeleteEvent
    | TypingStartEvent
    | PresenceUpdateEvent
    | ChannelCreateEvent
    | ChannelUpdateEvent
    | ChannelDeleteEvent
    | GuildCreateEvent
    | GuildUpdateEvent
    | GuildDeleteEvent
    | UnknownEvent
)

EVENT_TYPES: dict[str, type[msgspec.Struct]] = {
    cls.event_name: cls
    for cls in (
        ReadyEvent,
        ResumedEvent,
        MessageCreateEvent,
        MessageUpdateEvent,
        MessageDeleteEvent,
        TypingStartEvent,
        PresenceUpdateEvent,
        ChannelCreateEvent,
        ChannelUpdateEvent,
        ChannelDeleteEvent,
        GuildCreateEvent,
        GuildUpdateEvent,
        GuildDeleteEvent,
    )
}


def decode_event(name: str, data: Any) -> DispatchEvent:
    event_type = EVENT_TYPES.get(name)
    if event_type is None:
        return UnknownEvent(name=name, data=data)
    try:
        return msgspec.convert({} if data is None else data, event_type)
    except msgspec.ValidationError as exc:
        raise DecodeError(f"malformed {name} payload: {exc}") from exc
