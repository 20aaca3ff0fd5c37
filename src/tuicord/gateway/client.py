"""Connection state machine for the gateway.

`GatewayClient.run` owns one connection attempt at a time. Each attempt runs
three cooperating loops: the receive loop (decode frames, update the session,
dispatch events), the heartbeat supervisor, and the command channel sender.
They report back through `_end_connection`, the single point where a
connection is torn down; the state machine then decides between resume,
fresh identify, backoff and giving up.
"""

from __future__ import annotations

import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from functools import partial

import anyio
from anyio.abc import TaskGroup
from pydantic import SecretStr

from ..logging import get_logger, register_secret
from .backoff import Backoff
from .codec import (
    DEFAULT_GATEWAY_URL,
    Frame,
    OpCode,
    decode_frame,
    decode_hello,
    encode_command,
    gateway_url,
)
from .commands import (
    CommandChannel,
    GatewayCommand,
    Identify,
    Resume,
    TypingNotifier,
    TypingStart,
    UpdatePresence,
    is_control,
)
from .dispatcher import DEFAULT_SUBSCRIBER_CAPACITY, EventDispatcher, EventSubscription
from .errors import (
    AuthenticationError,
    DecodeError,
    GatewayError,
    HelloTimeout,
    ProtocolViolation,
    ReconnectRequested,
    TransportError,
    ZombieConnection,
)
from .events import ReadyEvent, ResumedEvent, decode_event
from .heartbeat import DEFAULT_JITTER, HeartbeatSnapshot, HeartbeatSupervisor
from .identity import ClientIdentity
from .session import SessionSnapshot, SessionState
from .state import (
    TERMINAL_KINDS,
    AwaitingHello,
    Connected,
    Connecting,
    ConnectionState,
    Disconnected,
    Failed,
    GatewayIntents,
    Identifying,
    PresenceStatus,
    Reconnecting,
    Resuming,
    ShuttingDown,
)
from .transport import (
    CLOSE_AUTHENTICATION_FAILED,
    CLOSE_INVALID_SEQ,
    CLOSE_NORMAL,
    CLOSE_RESUMABLE,
    CLOSE_SESSION_TIMED_OUT,
    Connector,
    Transport,
    connect_websocket,
)
from .typing_indicators import TYPING_TTL, NameResolver, TypingIndicatorManager

logger = get_logger(__name__)

SESSION_RESET_CLOSE_CODES = frozenset({CLOSE_INVALID_SEQ, CLOSE_SESSION_TIMED_OUT})

type TransitionHook = Callable[[ConnectionState, ConnectionState], None]


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    token: SecretStr = field(repr=False)
    intents: int = int(GatewayIntents.default())
    status: PresenceStatus | None = PresenceStatus.ONLINE
    url: str = DEFAULT_GATEWAY_URL
    hello_timeout: float = 20.0
    connect_timeout: float = 30.0
    backoff_base: float = 1.0
    backoff_cap: float = 60.0
    backoff_jitter: float = 0.25
    stability_window: float = 60.0
    max_resume_failures: int = 3
    heartbeat_jitter: float = DEFAULT_JITTER
    subscriber_capacity: int = DEFAULT_SUBSCRIBER_CAPACITY
    command_capacity: int = 64
    typing_ttl: float = TYPING_TTL

    def __post_init__(self) -> None:
        if not isinstance(self.token, SecretStr):
            object.__setattr__(self, "token", SecretStr(self.token))
        if self.max_resume_failures < 1:
            raise ValueError("max_resume_failures must be at least 1")


@dataclass(slots=True)
class GatewayStats:
    connects: int = 0
    identifies: int = 0
    resumes: int = 0
    reconnects: int = 0
    zombies: int = 0
    resume_failures: int = 0
    dropped_frames: int = 0


class GatewayClient:
    def __init__(
        self,
        config: GatewayConfig,
        *,
        connector: Connector | None = None,
        identity: ClientIdentity | None = None,
        typing_notifier: TypingNotifier | None = None,
        name_resolver: NameResolver | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        rng: Callable[[], float] = random.random,
        on_transition: TransitionHook | None = None,
    ) -> None:
        self._config = config
        self._identity = identity or ClientIdentity()
        self._connector = connector or partial(
            connect_websocket,
            user_agent=self._identity.properties().browser_user_agent,
        )
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._on_transition = on_transition
        register_secret(config.token.get_secret_value())

        self._session = SessionState(
            identify_token=config.token, intents=config.intents
        )
        self._status = config.status
        self._state: ConnectionState = Disconnected()
        self._state_changed = anyio.Event()
        self._backoff = Backoff(
            base=config.backoff_base,
            cap=config.backoff_cap,
            jitter=config.backoff_jitter,
            rng=rng,
        )
        self._attempt = 0
        self._resume_failures = 0

        self._typing = TypingIndicatorManager(
            ttl=config.typing_ttl, clock=clock, name_resolver=name_resolver
        )
        self._dispatcher = EventDispatcher(capacity=config.subscriber_capacity)
        self._dispatcher.add_sink(self._typing.handle_event)
        self._commands = CommandChannel(
            capacity=config.command_capacity,
            typing_notifier=typing_notifier,
            on_send_error=self._end_connection,
        )

        self._heartbeat: HeartbeatSupervisor | None = None
        self._task_group: TaskGroup | None = None
        self._connection_scope: anyio.CancelScope | None = None
        self._end_reason: GatewayError | None = None
        self._connected_since: float | None = None
        self._running = False
        self._stop_requested = False
        self.stats = GatewayStats()

    # -- read-only views -------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> SessionSnapshot:
        return self._session.snapshot()

    @property
    def heartbeat(self) -> HeartbeatSnapshot | None:
        if self._heartbeat is None:
            return None
        return self._heartbeat.snapshot()

    @property
    def typing(self) -> TypingIndicatorManager:
        return self._typing

    @property
    def identity(self) -> ClientIdentity:
        return self._identity

    @property
    def reconnect_attempt(self) -> int:
        return self._attempt

    def stats_snapshot(self) -> GatewayStats:
        return replace(self.stats)

    def typing_in(self, channel_id: str) -> list[str]:
        return self._typing.typing_in(channel_id)

    def subscribe(self, capacity: int | None = None) -> EventSubscription:
        return self._dispatcher.subscribe(capacity)

    # -- collaborator commands -------------------------------------------

    async def submit(self, command: GatewayCommand) -> None:
        if is_control(command):
            raise ValueError(f"{command.kind} is issued by the connection itself")
        await self._commands.submit(command)

    async def update_presence(self, status: PresenceStatus) -> None:
        self._status = status
        await self.submit(UpdatePresence(status=status))

    async def notify_typing(self, channel_id: str) -> None:
        await self.submit(TypingStart(channel_id=channel_id))

    # -- lifecycle ---------------------------------------------------------

    async def wait_until_ready(self) -> None:
        while not isinstance(self._state, Connected):
            if self._state.kind in TERMINAL_KINDS:
                raise GatewayError(f"gateway client is {self._state.kind}")
            await self._state_changed.wait()

    def stop(self) -> None:
        """Request shutdown; `run` returns once every task has unwound."""
        self._stop_requested = True
        if self._task_group is not None:
            self._task_group.cancel_scope.cancel()

    async def run(self) -> None:
        """Connect and keep reconnecting until `stop` or a rejected token.

        Raises `AuthenticationError` when the server refuses our credentials;
        every other failure is retried with backoff.
        """
        if self._running:
            raise RuntimeError("gateway client is already running")
        if self._state.kind in TERMINAL_KINDS:
            raise RuntimeError(f"gateway client is {self._state.kind}")
        self._running = True
        failure: AuthenticationError | None = None
        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                tg.start_soon(self._commands.run)
                tg.start_soon(self._typing.run)
                try:
                    failure = await self._drive()
                finally:
                    tg.cancel_scope.cancel()
        finally:
            self._task_group = None
            with anyio.CancelScope(shield=True):
                await self._teardown()
        if failure is not None:
            raise failure

    async def _teardown(self) -> None:
        if not isinstance(self._state, Failed):
            self._transition(ShuttingDown())
        self._heartbeat = None
        await self._commands.close()
        self._dispatcher.close()
        self._running = False

    async def _drive(self) -> AuthenticationError | None:
        while not self._stop_requested:
            reason = await self._connect_once()
            if reason is None or self._stop_requested:
                return None
            if isinstance(reason, AuthenticationError):
                logger.error("gateway.authentication_failed", error=str(reason))
                self._transition(Failed(error=str(reason)))
                return reason
            await self._reconnect_after(reason)
        return None

    # -- one connection ----------------------------------------------------

    async def _connect_once(self) -> GatewayError | None:
        self._connected_since = None
        resuming = self._session.can_resume
        url = gateway_url(self._session.connect_url(self._config.url))
        self._transition(Connecting(url=url, resuming=resuming))
        try:
            with anyio.fail_after(self._config.connect_timeout):
                transport = await self._connector(url)
        except TimeoutError:
            return TransportError(
                f"connect timed out after {self._config.connect_timeout}s"
            )
        except TransportError as exc:
            return exc
        self.stats.connects += 1
        try:
            return await self._run_connection(transport, resuming)
        finally:
            if isinstance(self._state, Connected):
                self._connected_since = self._state.since
            if self._heartbeat is not None:
                self._heartbeat.stop()
            self._heartbeat = None
            self._connection_scope = None
            with anyio.CancelScope(shield=True):
                await self._commands.detach()
                code = CLOSE_RESUMABLE if self._session.can_resume else CLOSE_NORMAL
                await transport.close(code)

    async def _run_connection(
        self, transport: Transport, resuming: bool
    ) -> GatewayError | None:
        self._transition(AwaitingHello())
        try:
            interval = await self._await_hello(transport)
        except HelloTimeout as exc:
            logger.warning("gateway.hello_timeout", timeout=self._config.hello_timeout)
            self._session.clear()
            return exc
        except TransportError as exc:
            return self._classify_close(exc)

        self._end_reason = None
        heartbeat = HeartbeatSupervisor(
            interval,
            send=self._commands.submit,
            sequence=lambda: self._session.sequence,
            clock=self._clock,
            jitter=self._config.heartbeat_jitter,
            rng=self._rng,
        )
        self._heartbeat = heartbeat
        logger.debug("gateway.hello", heartbeat_interval=interval)
        async with anyio.create_task_group() as tg:
            self._connection_scope = tg.cancel_scope
            await self._commands.attach(partial(self._send_frame, transport))
            tg.start_soon(self._guard, heartbeat.run)
            tg.start_soon(self._guard, partial(self._receive_loop, transport))
            await self._handshake(resuming)
        return self._end_reason

    async def _await_hello(self, transport: Transport) -> float:
        with anyio.move_on_after(self._config.hello_timeout):
            while True:
                raw = await transport.receive()
                try:
                    frame = decode_frame(raw)
                    if frame.op is OpCode.HELLO:
                        return decode_hello(frame)
                except DecodeError as exc:
                    self._drop_frame(exc)
                    continue
                logger.debug("gateway.frame.before_hello", op=frame.op.name)
        raise HelloTimeout(f"no hello within {self._config.hello_timeout}s")

    async def _handshake(self, resuming: bool) -> None:
        token = self._session.token()
        if resuming and self._session.can_resume:
            session_id = self._session.session_id
            sequence = self._session.sequence
            assert session_id is not None and sequence is not None
            self._transition(Resuming(session_id=session_id, sequence=sequence))
            await self._commands.submit(
                Resume(token=token, session_id=session_id, sequence=sequence)
            )
            return
        self._session.clear()
        self._transition(Identifying())
        self.stats.identifies += 1
        await self._commands.submit(
            Identify(
                token=token,
                intents=self._session.intents,
                properties=self._identity.properties(),
                presence=self._status,
            )
        )

    async def _guard(self, loop: Callable[[], Awaitable[None]]) -> None:
        try:
            await loop()
        except GatewayError as exc:
            self._end_connection(exc)

    def _end_connection(self, reason: GatewayError) -> None:
        if isinstance(reason, TransportError):
            reason = self._classify_close(reason)
        if self._end_reason is None:
            self._end_reason = reason
        if self._connection_scope is not None:
            self._connection_scope.cancel()

    async def _send_frame(self, transport: Transport, command: GatewayCommand) -> None:
        await transport.send(encode_command(command))
        logger.debug("gateway.sent", command=command.kind)

    async def _receive_loop(self, transport: Transport) -> None:
        while True:
            raw = await transport.receive()
            try:
                frame = decode_frame(raw)
            except DecodeError as exc:
                self._drop_frame(exc)
                continue
            await self._handle_frame(frame)

    async def _handle_frame(self, frame: Frame) -> None:
        heartbeat = self._heartbeat
        match frame.op:
            case OpCode.DISPATCH:
                await self._handle_dispatch(frame)
            case OpCode.HEARTBEAT_ACK:
                if heartbeat is not None:
                    heartbeat.ack()
            case OpCode.HEARTBEAT:
                if heartbeat is not None:
                    await heartbeat.beat_now()
            case OpCode.RECONNECT:
                raise ReconnectRequested("server requested a reconnect")
            case OpCode.INVALID_SESSION:
                resumable = frame.d is True
                if not resumable:
                    logger.info("gateway.session.invalidated")
                    self._session.clear()
                raise ProtocolViolation(
                    "server invalidated the session", resumable=resumable
                )
            case _:
                logger.debug("gateway.frame.ignored", op=frame.op.name)

    async def _handle_dispatch(self, frame: Frame) -> None:
        assert frame.t is not None
        self._session.observe_sequence(frame.s)
        try:
            event = decode_event(frame.t, frame.d)
        except DecodeError as exc:
            self._drop_frame(exc)
            return
        if isinstance(event, ReadyEvent):
            self._session.capture_ready(
                session_id=event.session_id,
                resume_url=event.resume_gateway_url,
                user_id=event.user.id,
            )
            await self._enter_connected(resumed=False)
        elif isinstance(event, ResumedEvent):
            self.stats.resumes += 1
            await self._enter_connected(resumed=True)
        self._dispatcher.publish(event)

    async def _enter_connected(self, *, resumed: bool) -> None:
        self._resume_failures = 0
        self._transition(Connected(since=self._clock(), resumed=resumed))
        await self._commands.open()

    def _classify_close(self, exc: TransportError) -> GatewayError:
        if exc.code == CLOSE_AUTHENTICATION_FAILED:
            return AuthenticationError(f"gateway rejected the token: {exc}")
        if exc.code in SESSION_RESET_CLOSE_CODES:
            logger.info("gateway.session.expired", code=exc.code)
            self._session.clear()
        return exc

    def _drop_frame(self, exc: DecodeError) -> None:
        self.stats.dropped_frames += 1
        logger.warning("gateway.frame.dropped", error=str(exc))

    # -- recovery ----------------------------------------------------------

    async def _reconnect_after(self, reason: GatewayError) -> None:
        previous = self._state
        if isinstance(reason, ZombieConnection):
            self.stats.zombies += 1
        if isinstance(previous, Resuming):
            self._resume_failures += 1
            self.stats.resume_failures += 1
            if self._resume_failures >= self._config.max_resume_failures:
                logger.info(
                    "gateway.resume.exhausted", failures=self._resume_failures
                )
                self._session.clear()
                self._resume_failures = 0
        connected_since = self._connected_since
        if (
            connected_since is not None
            and self._clock() - connected_since >= self._config.stability_window
        ):
            self._attempt = 0

        delay = self._backoff.delay(self._attempt)
        self._attempt += 1
        self.stats.reconnects += 1
        self._transition(
            Reconnecting(
                attempt=self._attempt,
                backoff_until=self._clock() + delay,
                reason=type(reason).__name__,
            ),
            error=str(reason),
            delay=round(delay, 3),
        )
        await self._sleep(delay)

    def _transition(self, new: ConnectionState, **details: object) -> None:
        previous = self._state
        if previous.kind in TERMINAL_KINDS:
            return
        self._state = new
        logger.info("gateway.state", previous=previous.kind, state=new.kind, **details)
        changed, self._state_changed = self._state_changed, anyio.Event()
        changed.set()
        if self._on_transition is not None:
            try:
                self._on_transition(previous, new)
            except Exception:  # noqa: BLE001
                logger.exception("gateway.transition_hook_error")
