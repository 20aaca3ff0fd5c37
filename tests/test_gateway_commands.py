import anyio
import pytest

from tuicord.gateway.commands import (
    CommandChannel,
    GatewayCommand,
    Heartbeat,
    Identify,
    TypingStart,
    UpdatePresence,
    is_control,
)
from tuicord.gateway.errors import CommandChannelClosed, TransportError
from tuicord.gateway.state import PresenceStatus

from tests.gateway_fakes import wait_for


class _Wire:
    def __init__(self, *, failures: int = 0) -> None:
        self.sent: list[GatewayCommand] = []
        self.failures = failures

    async def __call__(self, command: GatewayCommand) -> None:
        if self.failures:
            self.failures -= 1
            raise TransportError("socket went away")
        self.sent.append(command)


class _Notifier:
    def __init__(self, *, failures: int = 0) -> None:
        self.channels: list[str] = []
        self.failures = failures

    async def __call__(self, channel_id: str) -> None:
        if self.failures:
            self.failures -= 1
            raise OSError("rest call failed")
        self.channels.append(channel_id)


async def _no_sleep(_delay: float) -> None:
    await anyio.sleep(0)


def test_control_kinds() -> None:
    assert is_control(Heartbeat(1))
    assert is_control(Identify(token="t", intents=1))
    assert not is_control(UpdatePresence(status=PresenceStatus.IDLE))
    assert not is_control(TypingStart(channel_id="1"))


class TestQueueing:
    @pytest.mark.anyio
    async def test_presence_is_replaced_in_place(self) -> None:
        channel = CommandChannel(typing_notifier=_Notifier())
        online = UpdatePresence(status=PresenceStatus.ONLINE)
        idle = UpdatePresence(status=PresenceStatus.IDLE)
        typing = TypingStart(channel_id="100")

        await channel.submit(online)
        await channel.submit(typing)
        await channel.submit(idle)

        assert channel.pending() == [idle, typing]
        assert channel.coalesced == 1

    @pytest.mark.anyio
    async def test_typing_coalesces_per_channel(self) -> None:
        channel = CommandChannel(typing_notifier=_Notifier())

        await channel.submit(TypingStart(channel_id="1"))
        await channel.submit(TypingStart(channel_id="2"))
        await channel.submit(TypingStart(channel_id="1"))

        assert [c.channel_id for c in channel.pending()] == ["1", "2"]

    @pytest.mark.anyio
    async def test_heartbeats_are_never_coalesced(self) -> None:
        channel = CommandChannel()

        await channel.submit(Heartbeat(1))
        await channel.submit(Heartbeat(2))

        assert channel.pending() == [Heartbeat(1), Heartbeat(2)]

    @pytest.mark.anyio
    async def test_typing_without_notifier_is_rejected(self) -> None:
        channel = CommandChannel()

        with pytest.raises(ValueError):
            await channel.submit(TypingStart(channel_id="1"))

    @pytest.mark.anyio
    async def test_detach_purges_only_control_commands(self) -> None:
        channel = CommandChannel()
        presence = UpdatePresence(status=PresenceStatus.DND)
        await channel.submit(Heartbeat(3))
        await channel.submit(presence)
        await channel.submit(Identify(token="t", intents=1))

        await channel.detach()

        assert channel.pending() == [presence]


@pytest.mark.anyio
async def test_full_queue_blocks_producers_until_drained() -> None:
    channel = CommandChannel(capacity=1, typing_notifier=_Notifier())
    wire = _Wire()
    await channel.submit(UpdatePresence(status=PresenceStatus.IDLE))
    submitted = anyio.Event()

    async def producer() -> None:
        await channel.submit(TypingStart(channel_id="2"))
        submitted.set()

    async with anyio.create_task_group() as tg:
        tg.start_soon(producer)
        await anyio.sleep(0.01)
        assert not submitted.is_set()

        await channel.attach(wire)
        await channel.open()
        tg.start_soon(channel.run)
        await wait_for(submitted.is_set)
        await wait_for(lambda: len(channel) == 0)
        await channel.close()

    assert wire.sent == [UpdatePresence(status=PresenceStatus.IDLE)]


@pytest.mark.anyio
async def test_control_commands_bypass_capacity() -> None:
    channel = CommandChannel(capacity=1)
    await channel.submit(UpdatePresence(status=PresenceStatus.IDLE))

    with anyio.fail_after(1):
        await channel.submit(Heartbeat(1))

    assert len(channel) == 2


@pytest.mark.anyio
async def test_collaborator_commands_wait_for_open() -> None:
    channel = CommandChannel()
    wire = _Wire()
    presence = UpdatePresence(status=PresenceStatus.IDLE)
    identify = Identify(token="t", intents=1)

    async with anyio.create_task_group() as tg:
        tg.start_soon(channel.run)
        await channel.submit(presence)
        await channel.attach(wire)
        await channel.submit(identify)
        await wait_for(lambda: wire.sent == [identify])
        await anyio.sleep(0.01)
        assert wire.sent == [identify]

        await channel.open()
        await wait_for(lambda: wire.sent == [identify, presence])
        await channel.close()

    assert channel.sent == 2


@pytest.mark.anyio
async def test_send_failure_keeps_command_and_reports() -> None:
    errors: list[TransportError] = []
    channel = CommandChannel(on_send_error=errors.append)
    broken = _Wire(failures=1)
    healthy = _Wire()
    first = UpdatePresence(status=PresenceStatus.IDLE)

    async with anyio.create_task_group() as tg:
        tg.start_soon(channel.run)
        await channel.attach(broken)
        await channel.open()
        await channel.submit(first)
        await wait_for(lambda: len(errors) == 1)
        assert channel.pending() == [first]

        await channel.detach()
        await channel.attach(healthy)
        await channel.open()
        await wait_for(lambda: healthy.sent == [first])
        await channel.close()

    assert broken.sent == []


@pytest.mark.anyio
async def test_failed_control_command_is_purged_with_its_connection() -> None:
    errors: list[TransportError] = []
    channel = CommandChannel(on_send_error=errors.append)
    broken = _Wire(failures=1)

    async with anyio.create_task_group() as tg:
        tg.start_soon(channel.run)
        await channel.attach(broken)
        await channel.submit(Heartbeat(9))
        await wait_for(lambda: len(errors) == 1)
        assert channel.pending() == []
        await channel.close()

    assert broken.sent == []


@pytest.mark.anyio
async def test_typing_goes_through_notifier_and_retries() -> None:
    notifier = _Notifier(failures=1)
    channel = CommandChannel(typing_notifier=notifier, sleep=_no_sleep)
    wire = _Wire()

    async with anyio.create_task_group() as tg:
        tg.start_soon(channel.run)
        await channel.attach(wire)
        await channel.open()
        await channel.submit(TypingStart(channel_id="100"))
        await wait_for(lambda: notifier.channels == ["100"])
        await channel.close()

    assert wire.sent == []


class _BrokenNotifier:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, channel_id: str) -> None:
        self.calls += 1
        raise PermissionError(f"403 on channel {channel_id}")


@pytest.mark.anyio
async def test_failing_typing_does_not_hold_back_heartbeats() -> None:
    notifier = _BrokenNotifier()
    channel = CommandChannel(typing_notifier=notifier, sleep=_no_sleep)
    wire = _Wire()

    async with anyio.create_task_group() as tg:
        tg.start_soon(channel.run)
        await channel.submit(TypingStart(channel_id="1"))
        await channel.submit(Heartbeat(5))
        await channel.open()
        await channel.attach(wire)
        await wait_for(lambda: wire.sent == [Heartbeat(5)])
        await wait_for(lambda: notifier.calls == 3)
        assert len(channel) == 0
        await channel.close()

    assert wire.sent == [Heartbeat(5)]


@pytest.mark.anyio
async def test_typing_retry_keeps_collaborator_order() -> None:
    notifier = _Notifier(failures=1)
    channel = CommandChannel(typing_notifier=notifier, sleep=_no_sleep)
    wire = _Wire()
    idle = UpdatePresence(status=PresenceStatus.IDLE)

    async with anyio.create_task_group() as tg:
        tg.start_soon(channel.run)
        await channel.submit(TypingStart(channel_id="1"))
        await channel.submit(idle)
        await channel.open()
        await channel.attach(wire)
        await wait_for(lambda: wire.sent == [idle])
        await channel.close()

    assert notifier.channels == ["1"]


@pytest.mark.anyio
async def test_slow_typing_notifier_times_out() -> None:
    calls: list[str] = []

    async def stalled(channel_id: str) -> None:
        calls.append(channel_id)
        await anyio.sleep_forever()

    channel = CommandChannel(
        typing_notifier=stalled,
        typing_attempts=1,
        typing_timeout=0.01,
        sleep=_no_sleep,
    )
    wire = _Wire()

    async with anyio.create_task_group() as tg:
        tg.start_soon(channel.run)
        await channel.submit(TypingStart(channel_id="1"))
        await channel.submit(Heartbeat(7))
        await channel.open()
        await channel.attach(wire)
        await wait_for(lambda: wire.sent == [Heartbeat(7)])
        await channel.close()

    assert calls == ["1"]


@pytest.mark.anyio
async def test_close_rejects_and_releases_producers() -> None:
    channel = CommandChannel(capacity=1, typing_notifier=_Notifier())
    await channel.submit(UpdatePresence(status=PresenceStatus.IDLE))
    failures: list[CommandChannelClosed] = []

    async def producer() -> None:
        try:
            await channel.submit(TypingStart(channel_id="100"))
        except CommandChannelClosed as exc:
            failures.append(exc)

    async with anyio.create_task_group() as tg:
        tg.start_soon(producer)
        await anyio.sleep(0.01)
        await channel.close()

    assert len(failures) == 1
    assert channel.closed
    assert len(channel) == 0
    with pytest.raises(CommandChannelClosed):
        await channel.submit(Heartbeat(1))
