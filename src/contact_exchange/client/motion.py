"""Motion source contract and helpers for bump detection."""

import asyncio
import math
from dataclasses import dataclass
from typing import Protocol

from contact_exchange.domain.errors import MotionPermissionError


@dataclass(frozen=True)
class Acceleration:
    """Raw accelerometer reading in m/s^2."""

    x: float
    y: float
    z: float


@dataclass(frozen=True)
class MotionSample:
    """Result of waiting for one bump.

    ``has_motion`` is False when the source stopped without detecting a bump.
    ``timestamp`` is epoch milliseconds at detection time.
    """

    has_motion: bool
    magnitude: float = 0.0
    timestamp: int | None = None
    acceleration: Acceleration | None = None


class MotionSource(Protocol):
    """Interface for the device motion sensor."""

    async def detect_motion(self) -> MotionSample:
        """Wait for the next bump or for the session to end."""

    def hash_acceleration(self, acceleration: Acceleration) -> str:
        """Return a short fingerprint of the bump's acceleration vector."""

    def start_session(self) -> None:
        """Begin a detection session."""

    def end_session(self) -> None:
        """End the detection session and release pending waiters."""


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def hash_acceleration(acceleration: Acceleration) -> str:
    """Fingerprint a vector as 8 hex chars of a 32-bit string hash.

    Components are rounded to whole m/s^2 so both phones in a bump produce
    the same text for near-identical readings.
    """
    text = ",".join(
        str(_round_half_up(component))
        for component in (acceleration.x, acceleration.y, acceleration.z)
    )
    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(abs(value), "x").rjust(8, "0")


class QueueMotionSource(MotionSource):
    """Motion source fed by pushed samples, for headless devices and tests."""

    def __init__(self, permission_granted: bool = True) -> None:
        self.permission_granted = permission_granted
        self.sessions_started = 0
        self.sessions_ended = 0
        self._queue: asyncio.Queue[MotionSample] = asyncio.Queue()

    def push(self, sample: MotionSample) -> None:
        self._queue.put_nowait(sample)

    async def detect_motion(self) -> MotionSample:
        if not self.permission_granted:
            raise MotionPermissionError("Motion sensor permission denied")
        return await self._queue.get()

    def hash_acceleration(self, acceleration: Acceleration) -> str:
        return hash_acceleration(acceleration)

    def start_session(self) -> None:
        self.sessions_started += 1
        # Drop stop markers left over from a previous session.
        pending = []
        while not self._queue.empty():
            sample = self._queue.get_nowait()
            if sample.has_motion:
                pending.append(sample)
        for sample in pending:
            self._queue.put_nowait(sample)

    def end_session(self) -> None:
        self.sessions_ended += 1
        self._queue.put_nowait(MotionSample(has_motion=False))
