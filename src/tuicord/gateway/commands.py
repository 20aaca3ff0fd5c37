"""Outbound gateway commands and the ordered channel that transmits them."""

from __future__ import annotations

import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Literal

import anyio

from ..logging import get_logger
from .errors import CommandChannelClosed, TransportError
from .identity import ClientProperties
from .state import PresenceStatus

logger = get_logger(__name__)

DEFAULT_CAPACITY = 64
DEFAULT_RETRY_DELAY = 0.5
DEFAULT_TYPING_ATTEMPTS = 3
DEFAULT_TYPING_TIMEOUT = 5.0


@dataclass(frozen=True, slots=True)
class Identify:
    kind: Literal["identify"] = field(default="identify", init=False)
    token: str = field(repr=False)
    intents: int
    properties: ClientProperties = field(default_factory=ClientProperties)
    presence: PresenceStatus | None = None


@dataclass(frozen=True, slots=True)
class Resume:
    kind: Literal["resume"] = field(default="resume", init=False)
    token: str = field(repr=False)
    session_id: str
    sequence: int


@dataclass(frozen=True, slots=True)
class Heartbeat:
    kind: Literal["heartbeat"] = field(default="heartbeat", init=False)
    sequence: int | None


@dataclass(frozen=True, slots=True)
class UpdatePresence:
    kind: Literal["update_presence"] = field(default="update_presence", init=False)
    status: PresenceStatus
    since: int | None = None
    afk: bool = False


@dataclass(frozen=True, slots=True)
class TypingStart:
    kind: Literal["typing_start"] = field(default="typing_start", init=False)
    channel_id: str


type GatewayCommand = Identify | Resume | Heartbeat | UpdatePresence | TypingStart

CONTROL_KINDS: frozenset[str] = frozenset({"identify", "resume", "heartbeat"})

type CommandSender = Callable[[GatewayCommand], Awaitable[None]]
type TypingNotifier = Callable[[str], Awaitable[None]]


def is_control(command: GatewayCommand) -> bool:
    return command.kind in CONTROL_KINDS


def _coalesce_key(command: GatewayCommand) -> tuple[str, str] | None:
    if isinstance(command, UpdatePresence):
        return ("presence", "")
    if isinstance(command, TypingStart):
        return ("typing", command.channel_id)
    return None


@dataclass(slots=True)
class _Pending:
    order: int
    command: GatewayCommand
    attempts: int = 0


class CommandChannel:
    """Serializes commands from many producers onto one connection.

    Commands go out in submission order. A queued presence update (or typing
    notification for the same channel) is replaced in place by a newer one;
    identify, resume and heartbeat are never coalesced. Control commands are
    scoped to the connection they were issued on and are purged on `detach`.
    A control command whose send fails is purged the same way, since the
    connection it belonged to is gone. Collaborator commands wait until
    `open` is called for the session.

    Typing notifications go through the REST notifier with a timeout. A
    failed one is retried up to `typing_attempts` times and then dropped;
    while it waits for a retry, control commands queued behind it go first.
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_CAPACITY,
        typing_notifier: TypingNotifier | None = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        typing_attempts: int = DEFAULT_TYPING_ATTEMPTS,
        typing_timeout: float = DEFAULT_TYPING_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        on_send_error: Callable[[TransportError], None] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if typing_attempts < 1:
            raise ValueError("typing_attempts must be at least 1")
        self._capacity = capacity
        self._typing_notifier = typing_notifier
        self._retry_delay = retry_delay
        self._typing_attempts = typing_attempts
        self._typing_timeout = typing_timeout
        self._sleep = sleep
        self._on_send_error = on_send_error
        self._pending: list[_Pending] = []
        self._order = itertools.count()
        self._cond = anyio.Condition()
        self._send: CommandSender | None = None
        self._generation = 0
        self._ready = False
        self._closed = False
        self.sent = 0
        self.coalesced = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._pending)

    def pending(self) -> list[GatewayCommand]:
        return [item.command for item in self._pending]

    def set_error_handler(self, handler: Callable[[TransportError], None]) -> None:
        self._on_send_error = handler

    async def submit(self, command: GatewayCommand) -> None:
        """Queue `command`, waiting for room when the queue is full."""
        if isinstance(command, TypingStart) and self._typing_notifier is None:
            raise ValueError("typing notifications need a typing notifier")
        async with self._cond:
            if self._closed:
                raise CommandChannelClosed("command channel is closed")
            key = _coalesce_key(command)
            if key is not None:
                for item in self._pending:
                    if _coalesce_key(item.command) == key:
                        item.command = command
                        item.attempts = 0
                        self.coalesced += 1
                        self._cond.notify_all()
                        return
            while len(self._pending) >= self._capacity and not is_control(command):
                await self._cond.wait()
                if self._closed:
                    raise CommandChannelClosed("command channel is closed")
            self._pending.append(_Pending(next(self._order), command))
            self._cond.notify_all()

    async def attach(self, send: CommandSender) -> None:
        async with self._cond:
            self._send = send
            self._generation += 1
            self._cond.notify_all()

    async def detach(self) -> None:
        async with self._cond:
            self._send = None
            self._ready = False
            self._generation += 1
            before = len(self._pending)
            self._pending = [
                item for item in self._pending if not is_control(item.command)
            ]
            purged = before - len(self._pending)
            if purged:
                logger.debug("commands.purged", count=purged)
            self._cond.notify_all()

    async def open(self) -> None:
        async with self._cond:
            self._ready = True
            self._cond.notify_all()

    async def close(self) -> None:
        async with self._cond:
            self._closed = True
            dropped = len(self._pending)
            self._pending.clear()
            self._send = None
            self._cond.notify_all()
        if dropped:
            logger.debug("commands.discarded", count=dropped)

    def _pick_locked(self) -> _Pending | None:
        if self._send is None:
            return None
        retrying: _Pending | None = None
        for item in self._pending:
            if is_control(item.command):
                return item
            if retrying is None and self._ready:
                if not item.attempts:
                    return item
                retrying = item
        return retrying

    async def _transmit(self, send: CommandSender, command: GatewayCommand) -> None:
        if isinstance(command, TypingStart):
            assert self._typing_notifier is not None
            with anyio.fail_after(self._typing_timeout):
                await self._typing_notifier(command.channel_id)
            return
        await send(command)

    def _requeue_locked(self, item: _Pending, generation: int) -> None:
        if self._closed:
            return
        if is_control(item.command) and generation != self._generation:
            return
        index = 0
        while index < len(self._pending) and self._pending[index].order < item.order:
            index += 1
        self._pending.insert(index, item)

    async def run(self) -> None:
        """Drain the queue to whichever sender is attached, until closed."""
        while True:
            async with self._cond:
                picked = self._pick_locked()
                while picked is None and not self._closed:
                    await self._cond.wait()
                    picked = self._pick_locked()
                if self._closed:
                    return
                assert picked is not None and self._send is not None
                self._pending.remove(picked)
                send = self._send
                generation = self._generation
                self._cond.notify_all()
            try:
                await self._transmit(send, picked.command)
            except TransportError as exc:
                logger.warning(
                    "commands.send_failed",
                    command=picked.command.kind,
                    error=str(exc),
                )
                async with self._cond:
                    current = self._generation == generation
                    if current:
                        self._send = None
                        self._ready = False
                        self._generation += 1
                    if not is_control(picked.command):
                        self._requeue_locked(picked, generation)
                    self._cond.notify_all()
                if current and self._on_send_error is not None:
                    self._on_send_error(exc)
                continue
            except Exception as exc:  # noqa: BLE001
                if not isinstance(picked.command, TypingStart):
                    raise
                picked.attempts += 1
                if picked.attempts >= self._typing_attempts:
                    logger.warning(
                        "commands.typing_dropped",
                        channel_id=picked.command.channel_id,
                        attempts=picked.attempts,
                        error=str(exc),
                    )
                    continue
                logger.warning(
                    "commands.typing_failed",
                    channel_id=picked.command.channel_id,
                    attempts=picked.attempts,
                    error=str(exc),
                )
                async with self._cond:
                    self._requeue_locked(picked, generation)
                    self._cond.notify_all()
                await self._sleep(self._retry_delay)
                continue
            self.sent += 1
