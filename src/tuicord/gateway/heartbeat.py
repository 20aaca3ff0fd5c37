"""Heartbeat timer and liveness tracking for one connection."""

from __future__ import annotations

import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import anyio

from ..logging import get_logger
from .commands import Heartbeat
from .errors import ZombieConnection

logger = get_logger(__name__)

# Fraction of the interval shaved off the first beat, drawn once per supervisor.
DEFAULT_JITTER = 0.1


@dataclass(frozen=True, slots=True)
class HeartbeatSnapshot:
    interval: float
    last_ack_received: bool
    next_due: float | None
    latency: float | None
    beats: int


class HeartbeatSupervisor:
    def __init__(
        self,
        interval: float,
        *,
        send: Callable[[Heartbeat], Awaitable[None]],
        sequence: Callable[[], int | None],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        jitter: float = DEFAULT_JITTER,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        self.interval = interval
        self._send = send
        self._sequence = sequence
        self._clock = clock
        self._sleep = sleep
        self._first_delay = interval - interval * jitter * rng()
        self.last_ack_received = True
        self.next_due: float | None = None
        self.latency: float | None = None
        self.beats = 0
        self._sent_at: float | None = None
        self._stopped = False

    @property
    def first_delay(self) -> float:
        return self._first_delay

    def snapshot(self) -> HeartbeatSnapshot:
        return HeartbeatSnapshot(
            interval=self.interval,
            last_ack_received=self.last_ack_received,
            next_due=self.next_due,
            latency=self.latency,
            beats=self.beats,
        )

    def ack(self) -> None:
        self.last_ack_received = True
        if self._sent_at is not None:
            self.latency = self._clock() - self._sent_at
            self._sent_at = None

    async def _send_beat(self) -> None:
        sequence = self._sequence()
        self.last_ack_received = False
        self._sent_at = self._clock()
        self.beats += 1
        await self._send(Heartbeat(sequence))
        logger.debug("heartbeat.sent", sequence=sequence)

    async def beat(self) -> None:
        """One timer firing: send a heartbeat, or declare the connection dead."""
        if self._stopped:
            return
        if not self.last_ack_received:
            self._stopped = True
            logger.warning(
                "heartbeat.zombie", interval=self.interval, beats=self.beats
            )
            raise ZombieConnection(
                f"no heartbeat ack within {self.interval:.1f}s"
            )
        await self._send_beat()

    async def beat_now(self) -> None:
        """Answer a server-requested heartbeat without touching the timer."""
        if self._stopped:
            return
        await self._send_beat()

    def stop(self) -> None:
        self._stopped = True

    async def run(self) -> None:
        delay = self._first_delay
        while not self._stopped:
            self.next_due = self._clock() + delay
            await self._sleep(delay)
            await self.beat()
            delay = self.interval
