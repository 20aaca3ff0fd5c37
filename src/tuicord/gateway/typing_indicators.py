"""Who is typing where, derived from TYPING_START and MESSAGE_CREATE events."""

from __future__ import annotations

import itertools
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

import anyio

from .events import DispatchEvent, MessageCreateEvent, ReadyEvent, TypingStartEvent

TYPING_TTL = 10.0
DEFAULT_SWEEP_INTERVAL = 1.0

type NameResolver = Callable[[str, str | None], str | None]


@dataclass(frozen=True, slots=True)
class TypingUser:
    user_id: str
    display_name: str
    started_at: float
    expires_at: float


type TypingIndicatorState = Mapping[str, tuple[TypingUser, ...]]


def _display_name(
    event: TypingStartEvent, resolver: NameResolver | None
) -> str:
    member = event.member
    if member is not None:
        if member.nick:
            return member.nick
        if member.user is not None and (member.user.global_name or member.user.username):
            return member.user.display_name
    if resolver is not None:
        resolved = resolver(event.user_id, event.guild_id)
        if resolved:
            return resolved
    return event.user_id


class TypingIndicatorManager:
    def __init__(
        self,
        *,
        ttl: float = TYPING_TTL,
        clock: Callable[[], float] = time.monotonic,
        name_resolver: NameResolver | None = None,
        local_user_id: str | None = None,
    ) -> None:
        if ttl <= 0:
            raise ValueError("typing ttl must be positive")
        self._ttl = ttl
        self._clock = clock
        self._resolver = name_resolver
        self.local_user_id = local_user_id
        # channel id -> user id -> (entry, refresh order)
        self._channels: dict[str, dict[str, tuple[TypingUser, int]]] = {}
        self._order = itertools.count()

    @property
    def ttl(self) -> float:
        return self._ttl

    def handle_event(self, event: DispatchEvent) -> None:
        match event:
            case TypingStartEvent():
                self.typing_started(event)
            case MessageCreateEvent():
                self.message_arrived(event.channel_id, event.author.id)
            case ReadyEvent():
                self.local_user_id = event.user.id
                self._channels.clear()

    def typing_started(self, event: TypingStartEvent) -> None:
        now = self._clock()
        users = self._channels.setdefault(event.channel_id, {})
        users[event.user_id] = (
            TypingUser(
                user_id=event.user_id,
                display_name=_display_name(event, self._resolver),
                started_at=now,
                expires_at=now + self._ttl,
            ),
            next(self._order),
        )

    def message_arrived(self, channel_id: str, user_id: str) -> None:
        users = self._channels.get(channel_id)
        if users is None:
            return
        users.pop(user_id, None)
        if not users:
            del self._channels[channel_id]

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        removed = 0
        for channel_id in list(self._channels):
            users = self._channels[channel_id]
            for user_id in [u for u, (entry, _) in users.items() if entry.expires_at <= now]:
                del users[user_id]
                removed += 1
            if not users:
                del self._channels[channel_id]
        return removed

    def _ordered(self, channel_id: str) -> list[TypingUser]:
        users = self._channels.get(channel_id, {})
        ranked = sorted(
            users.values(), key=lambda item: (item[0].started_at, item[1]), reverse=True
        )
        return [
            entry for entry, _ in ranked if entry.user_id != self.local_user_id
        ]

    def typing_users(self, channel_id: str) -> list[TypingUser]:
        self.sweep()
        return self._ordered(channel_id)

    def typing_in(self, channel_id: str) -> list[str]:
        """Display names typing in `channel_id`, most recent first."""
        return [entry.display_name for entry in self.typing_users(channel_id)]

    def snapshot(self) -> TypingIndicatorState:
        self.sweep()
        state: dict[str, tuple[TypingUser, ...]] = {}
        for channel_id in self._channels:
            users = self._ordered(channel_id)
            if users:
                state[channel_id] = tuple(users)
        return state

    async def run(
        self,
        *,
        tick: float = DEFAULT_SWEEP_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        while True:
            await sleep(tick)
            self.sweep()
