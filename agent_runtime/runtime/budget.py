from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from agent_runtime import config


class CancellationToken:
    """
    Cooperative cancellation signal shared between a caller and a running turn.

    The runtime only looks at it at suspension points: around the provider call,
    before a tool starts and while waiting for a confirmation.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class Budget:
    max_iterations: int = 10
    max_duration: Optional[float] = None  # seconds for the whole turn
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if self.max_duration is not None and self.max_duration <= 0:
            raise ValueError("max_duration must be positive")

    @classmethod
    def from_config(cls) -> "Budget":
        return cls(max_iterations=config.agent_max_iterations(), max_duration=config.agent_max_duration_s())


class Deadline:
    """Absolute turn deadline on the running loop's monotonic clock."""

    def __init__(self, seconds: Optional[float]):
        loop = asyncio.get_running_loop()
        self._at = None if seconds is None else loop.time() + seconds

    def remaining(self) -> Optional[float]:
        if self._at is None:
            return None
        return max(0.0, self._at - asyncio.get_running_loop().time())

    @property
    def expired(self) -> bool:
        r = self.remaining()
        return r is not None and r <= 0
