import anyio
import pytest

from tuicord.gateway.events import (
    Member,
    MessageCreateEvent,
    PartialUser,
    ReadyEvent,
    TypingStartEvent,
)
from tuicord.gateway.typing_indicators import TypingIndicatorManager

from tests.gateway_fakes import ManualClock


def _typing(
    user_id: str,
    channel_id: str = "100",
    *,
    member: Member | None = None,
    guild_id: str | None = None,
) -> TypingStartEvent:
    return TypingStartEvent(
        channel_id=channel_id, user_id=user_id, member=member, guild_id=guild_id
    )


def _message(author_id: str, channel_id: str = "100") -> MessageCreateEvent:
    return MessageCreateEvent(
        id="1", channel_id=channel_id, author=PartialUser(id=author_id)
    )


class TestTypingIndicators:
    def test_most_recent_first_and_refresh_moves_to_front(self) -> None:
        """A, B, then A again reads A, B."""
        clock = ManualClock()
        manager = TypingIndicatorManager(clock=clock)

        manager.handle_event(_typing("a"))
        clock.advance(1)
        manager.handle_event(_typing("b"))
        clock.advance(1)
        manager.handle_event(_typing("a"))

        assert manager.typing_in("100") == ["a", "b"]

    def test_same_instant_orders_by_arrival(self) -> None:
        manager = TypingIndicatorManager(clock=ManualClock())

        manager.handle_event(_typing("a"))
        manager.handle_event(_typing("b"))

        assert manager.typing_in("100") == ["b", "a"]

    def test_entries_expire_after_ttl(self) -> None:
        clock = ManualClock()
        manager = TypingIndicatorManager(ttl=10.0, clock=clock)
        manager.handle_event(_typing("a"))
        clock.advance(5)
        manager.handle_event(_typing("b"))

        clock.advance(5)
        assert manager.typing_in("100") == ["b"]

        clock.advance(5)
        assert manager.typing_in("100") == []
        assert manager.snapshot() == {}

    def test_refresh_extends_expiry(self) -> None:
        clock = ManualClock()
        manager = TypingIndicatorManager(ttl=10.0, clock=clock)
        manager.handle_event(_typing("a"))
        clock.advance(8)
        manager.handle_event(_typing("a"))
        clock.advance(8)

        assert manager.typing_in("100") == ["a"]

    def test_message_from_typist_clears_entry(self) -> None:
        manager = TypingIndicatorManager(clock=ManualClock())
        manager.handle_event(_typing("a"))
        manager.handle_event(_typing("b"))
        manager.handle_event(_typing("a", channel_id="200"))

        manager.handle_event(_message("a"))

        assert manager.typing_in("100") == ["b"]
        assert manager.typing_in("200") == ["a"]

    def test_local_user_is_excluded(self) -> None:
        manager = TypingIndicatorManager(clock=ManualClock())
        manager.handle_event(
            ReadyEvent(session_id="s", user=PartialUser(id="me", username="me"))
        )
        manager.handle_event(_typing("me"))
        manager.handle_event(_typing("me", channel_id="300"))
        manager.handle_event(_typing("b"))

        assert manager.local_user_id == "me"
        assert manager.typing_in("100") == ["b"]
        assert set(manager.snapshot()) == {"100"}


def test_display_name_precedence() -> None:
    resolved: list[tuple[str, str | None]] = []

    def resolver(user_id: str, guild_id: str | None) -> str | None:
        resolved.append((user_id, guild_id))
        return "Resolved" if user_id == "r" else None

    clock = ManualClock()
    manager = TypingIndicatorManager(clock=clock, name_resolver=resolver)
    manager.handle_event(
        _typing(
            "nick",
            member=Member(nick="Nick", user=PartialUser(id="nick", username="u")),
        )
    )
    clock.advance(1)
    manager.handle_event(
        _typing(
            "global",
            member=Member(
                user=PartialUser(id="global", username="u", global_name="Global")
            ),
        )
    )
    clock.advance(1)
    manager.handle_event(
        _typing("user", member=Member(user=PartialUser(id="user", username="plain")))
    )
    clock.advance(1)
    manager.handle_event(_typing("r", guild_id="g1"))
    clock.advance(1)
    manager.handle_event(_typing("raw"))

    assert manager.typing_in("100") == ["raw", "Resolved", "plain", "Global", "Nick"]
    assert resolved == [("r", "g1"), ("raw", None)]


def test_sweep_reports_removed_entries() -> None:
    clock = ManualClock()
    manager = TypingIndicatorManager(ttl=1.0, clock=clock)
    manager.handle_event(_typing("a"))
    manager.handle_event(_typing("b", channel_id="200"))
    clock.advance(2)

    assert manager.sweep() == 2
    assert manager.sweep() == 0


def test_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValueError):
        TypingIndicatorManager(ttl=0)


@pytest.mark.anyio
async def test_run_sweeps_periodically() -> None:
    clock = ManualClock()
    manager = TypingIndicatorManager(ttl=1.0, clock=clock)
    manager.handle_event(_typing("a"))
    ticks: list[float] = []

    async def fake_sleep(delay: float) -> None:
        ticks.append(delay)
        clock.advance(delay)
        if len(ticks) > 2:
            await anyio.sleep_forever()

    with anyio.move_on_after(0.1):
        await manager.run(tick=0.75, sleep=fake_sleep)

    assert ticks == [0.75, 0.75, 0.75]
    assert manager.snapshot() == {}
